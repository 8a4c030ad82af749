from __future__ import annotations

from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError

import awscredget

EXPIRATION = datetime(2024, 1, 2, 15, 4, 5, tzinfo=timezone.utc)


class FakeSTSClient:
    def __init__(self, error: Exception | None = None, response: dict | None = None) -> None:
        self.calls: list[tuple[str, dict[str, object]]] = []
        self._error = error
        self._response = response

    def _reply(self, operation: str, kwargs: dict[str, object], default: dict) -> dict:
        self.calls.append((operation, kwargs))
        if self._error is not None:
            raise self._error
        return default if self._response is None else self._response

    def get_caller_identity(self, **kwargs: object) -> dict:
        return self._reply(
            "get_caller_identity",
            kwargs,
            {"Arn": "arn:aws:iam::123:user/x", "Account": "123", "UserId": "AIDAEXAMPLE"},
        )

    def get_session_token(self, **kwargs: object) -> dict:
        return self._reply("get_session_token", kwargs, _credentials_response("ASIASESSION"))

    def assume_role(self, **kwargs: object) -> dict:
        return self._reply("assume_role", kwargs, _credentials_response("ASIAROLE"))


def _credentials_response(access_key_id: str) -> dict:
    return {
        "Credentials": {
            "AccessKeyId": access_key_id,
            "SecretAccessKey": "SK/1",
            "SessionToken": "TOK=1",
            "Expiration": EXPIRATION,
        }
    }


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} for test"}}, operation)


@pytest.fixture
def sample_credentials() -> awscredget.Credentials:
    return awscredget.Credentials(
        access_key_id="AK1",
        secret_access_key="SK/1",
        session_token="TOK=1",
        expiration=EXPIRATION,
    )


@pytest.fixture(autouse=True)
def _no_duration_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(awscredget._max_duration_env, raising=False)


@pytest.fixture
def fake_sts() -> type[FakeSTSClient]:
    return FakeSTSClient


@pytest.fixture
def client_error():
    return _client_error
