"""boto3 session construction and provider error translation."""

from contextlib import contextmanager

import boto3
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from stackwarden.errors import ProviderUnavailable

TRANSIENT_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "RequestTimeout",
    "ServiceUnavailable",
    "InternalFailure",
    "InternalError",
}


def build_session(region: str | None = None, profile: str | None = None) -> boto3.Session:
    """Create a boto3 session, leaving unset values to the default credential chain."""
    kwargs = {}
    if region:
        kwargs["region_name"] = region
    if profile:
        kwargs["profile_name"] = profile
    return boto3.Session(**kwargs)


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def error_message(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Message", str(exc))


@contextmanager
def translate_errors():
    """Re-raise network failures and throttling as ProviderUnavailable."""
    try:
        yield
    except (
        EndpointConnectionError,
        ConnectTimeoutError,
        ReadTimeoutError,
        ConnectionClosedError,
    ) as e:
        raise ProviderUnavailable(str(e)) from e
    except ClientError as e:
        if error_code(e) in TRANSIENT_ERROR_CODES:
            raise ProviderUnavailable(error_message(e)) from e
        raise
