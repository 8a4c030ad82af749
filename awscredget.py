#!/usr/bin/env python3
from argparse import ArgumentParser, HelpFormatter
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import json
import os
import shlex
import sys
from typing import Any, List, Mapping, Optional, TextIO

from botocore.exceptions import BotoCoreError, ClientError
from botocore.session import Session

__version__ = "1.0.0"
_prog = "awscredget"
_role_session_name = _prog
_min_duration = 900
_max_duration = 43200
_max_duration_env = "AWSCREDGET_MAX_DURATION"


class CredgetError(Exception):
    pass


class ConfigurationError(CredgetError):
    pass


class ProviderError(CredgetError):
    def __init__(self, operation: str, error: Exception) -> None:
        super().__init__(f"unable to {operation}: {error}")
        self.operation = operation


class EncodingError(CredgetError):
    pass


class OutputFormat(Enum):
    TEXT = "text"
    SHELL = "sh"
    JSON = "json"


@dataclass(frozen=True)
class InvocationConfig:
    duration_seconds: int = 1800
    output_format: OutputFormat = OutputFormat.SHELL
    assume_role_arn: str = ""
    whoami: bool = False


@dataclass(frozen=True)
class Credentials:
    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime

    def __repr__(self) -> str:
        return f"Credentials(access_key_id={self.access_key_id!r}, expiration={self.expiration.isoformat()})"


@dataclass(frozen=True)
class Identity:
    arn: str
    account: Optional[str] = None
    user_id: Optional[str] = None


def _parser() -> ArgumentParser:
    parser = ArgumentParser(
        description="Print temporary AWS credentials obtained from a session token or an assumed role.",
        prog=_prog,
        formatter_class=lambda prog: HelpFormatter(prog, width=100),
    )
    parser.add_argument("--version", action="version", version=f"{_prog} {__version__}")
    parser.add_argument(
        "-d",
        dest="duration",
        metavar="seconds",
        type=int,
        default=1800,
        help="Validity duration of session credentials, in seconds (default: 1800)",
    )
    parser.add_argument(
        "-f",
        dest="output_format",
        metavar="format",
        default=OutputFormat.SHELL.value,
        help="Output format: sh, text, json (compatible with awscli) (default: 'sh')",
    )
    parser.add_argument(
        "-r",
        dest="role_arn",
        metavar="role",
        default="",
        help="Assume the specified role instead of requesting session credentials",
    )
    parser.add_argument(
        "-W", dest="whoami", action="store_true", help="Whoami mode: print current user (other options ignored)"
    )
    return parser


def _duration_ceiling(environ: Mapping[str, str]) -> int:
    value = environ.get(_max_duration_env, "")
    if not value:
        return _max_duration
    try:
        ceiling = int(value)
    except ValueError:
        raise ConfigurationError(f"{_max_duration_env} must be an integer, got {value!r}") from None
    if ceiling < _min_duration:
        raise ConfigurationError(f"{_max_duration_env} must be at least {_min_duration}, got {ceiling}")
    return ceiling


def resolve(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> InvocationConfig:
    """Parse command-line arguments into an InvocationConfig.

    Whoami mode skips every other check. Otherwise the duration is checked
    against [900, ceiling] before the output format is looked up. The ceiling
    defaults to 43200 seconds and can be changed through AWSCREDGET_MAX_DURATION.
    """
    args = _parser().parse_args(argv)
    if args.whoami:
        return InvocationConfig(whoami=True)

    ceiling = _duration_ceiling(os.environ if environ is None else environ)
    if args.duration < _min_duration or args.duration > ceiling:
        raise ConfigurationError(
            f"invalid duration: session duration must be between {_min_duration} and {ceiling} seconds"
        )
    try:
        output_format = OutputFormat(args.output_format)
    except ValueError:
        raise ConfigurationError(f"unknown output format: {args.output_format}") from None
    return InvocationConfig(
        duration_seconds=args.duration,
        output_format=output_format,
        assume_role_arn=args.role_arn,
    )


def _credentials(response: Mapping[str, Any]) -> Credentials:
    creds = response["Credentials"]
    return Credentials(
        access_key_id=creds["AccessKeyId"],
        secret_access_key=creds["SecretAccessKey"],
        session_token=creds["SessionToken"],
        expiration=creds["Expiration"],
    )


class IdentityProvider:
    """STS operations used by the tool, with failures raised as ProviderError."""

    def __init__(self, sts) -> None:
        self._sts = sts

    @classmethod
    def from_environment(cls) -> "IdentityProvider":
        # Credentials, region and profile come from botocore's own discovery chain.
        try:
            return cls(Session().create_client("sts"))
        except BotoCoreError as error:
            raise ProviderError("load AWS SDK config", error) from error

    def caller_identity(self) -> Identity:
        """Look up the ARN of the current principal.

        The call is blocking and cannot be cancelled once issued: it runs to
        completion or fails on its own, independent of the caller.
        """
        try:
            response = self._sts.get_caller_identity()
            return Identity(arn=response["Arn"], account=response.get("Account"), user_id=response.get("UserId"))
        except (BotoCoreError, ClientError, KeyError, TypeError) as error:
            raise ProviderError("fetch caller identity", error) from error

    def session_token(self, duration_seconds: int) -> Credentials:
        try:
            return _credentials(self._sts.get_session_token(DurationSeconds=duration_seconds))
        except (BotoCoreError, ClientError, KeyError, TypeError) as error:
            raise ProviderError("acquire session token", error) from error

    def assume_role(self, role_arn: str, session_name: str = _role_session_name) -> Credentials:
        try:
            return _credentials(self._sts.assume_role(RoleArn=role_arn, RoleSessionName=session_name))
        except (BotoCoreError, ClientError, KeyError, TypeError) as error:
            raise ProviderError(f"assume role {role_arn}", error) from error


def _rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_credentials(creds: Credentials, output_format: OutputFormat) -> str:
    if output_format is OutputFormat.TEXT:
        return f"{creds.access_key_id} {creds.secret_access_key} {creds.session_token}\n"
    elif output_format is OutputFormat.SHELL:
        return "\n".join(
            [
                f"export AWS_ACCESS_KEY_ID={shlex.quote(creds.access_key_id)}",
                f"export AWS_SECRET_ACCESS_KEY={shlex.quote(creds.secret_access_key)}",
                f"export AWS_SESSION_TOKEN={shlex.quote(creds.session_token)}",
                "",
            ]
        )
    elif output_format is OutputFormat.JSON:
        # Same shape as `aws sts get-session-token`
        try:
            data = {
                "Credentials": {
                    "AccessKeyId": creds.access_key_id,
                    "SecretAccessKey": creds.secret_access_key,
                    "SessionToken": creds.session_token,
                    "Expiration": _rfc3339(creds.expiration),
                }
            }
            return json.dumps(data, separators=(",", ":")) + "\n"
        except (TypeError, ValueError, AttributeError) as error:
            raise EncodingError(f"JSON encoding failed: {error}") from error
    raise EncodingError(f"unsupported output format: {output_format!r}")


def run(config: InvocationConfig, provider: IdentityProvider, out: Optional[TextIO] = None) -> None:
    out = sys.stdout if out is None else out
    if config.whoami:
        out.write(f"{provider.caller_identity().arn}\n")
        return

    if config.assume_role_arn:
        creds = provider.assume_role(config.assume_role_arn)
    else:
        creds = provider.session_token(config.duration_seconds)
    out.write(format_credentials(creds, config.output_format))


def main(argv: Optional[List[str]] = None) -> None:
    try:
        config = resolve(argv)
        run(config, IdentityProvider.from_environment())
    except CredgetError as error:
        print(f"{_prog}: {error}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
