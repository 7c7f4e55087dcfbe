"""
Retry policy — bounded retries for calls to AWS.

Uses exponential backoff with jitter. A classifier decides whether an
error is worth retrying: throttling and eventual-consistency errors
are transient, permission and validation errors are permanent and
propagate on the first attempt.

Shared by the lock manager and the remote state manager.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Callable, TypeVar

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


# AWS error codes that clear up on their own
TRANSIENT_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottled",
    "RequestThrottledException",
    "TooManyRequestsException",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "LimitExceededException",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeoutException",
    "InternalError",
    "InternalFailure",
    "InternalServerError",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "OperationAborted",
    "TransactionInProgressException",
})


def client_error_code(error: BaseException) -> str:
    """The AWS error code of a ClientError, or an empty string."""
    if isinstance(error, ClientError):
        return str(error.response.get("Error", {}).get("Code", ""))
    return ""


def classify_aws_error(error: BaseException) -> ErrorKind:
    """Decide whether an error from boto3 is worth retrying."""
    if isinstance(error, (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError)):
        return ErrorKind.TRANSIENT

    if isinstance(error, ClientError):
        if client_error_code(error) in TRANSIENT_ERROR_CODES:
            return ErrorKind.TRANSIENT
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        if isinstance(status, int) and status >= 500:
            return ErrorKind.TRANSIENT

    return ErrorKind.PERMANENT


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff + jitter.

    Args:
        max_attempts: Total attempts, including the first.
        interval: Delay before the first retry, in seconds.
        backoff: Multiplier applied to the delay after each retry.
        max_interval: Upper bound for a single delay.
        classifier: Maps an exception to TRANSIENT or PERMANENT.
        sleep: Injected for tests.
    """

    max_attempts: int = 5
    interval: float = 1.0
    backoff: float = 2.0
    max_interval: float = 30.0
    classifier: Callable[[BaseException], ErrorKind] = classify_aws_error
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        base = min(self.interval * (self.backoff ** (attempt - 1)), self.max_interval)
        return base + random.uniform(0, base * 0.3)

    def call(self, fn: Callable[[], T], description: str = "call") -> T:
        """Run ``fn``, retrying transient failures.

        The last exception propagates unchanged once attempts run out or
        as soon as a permanent error is seen.
        """
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                kind = self.classifier(e)
                if kind is ErrorKind.PERMANENT or attempt >= self.max_attempts:
                    if kind is ErrorKind.TRANSIENT:
                        logger.warning(
                            "%s failed after %d attempts: %s", description, attempt, e
                        )
                    raise
                wait = self.delay(attempt)
                logger.debug(
                    "%s failed (attempt %d/%d, transient): %s, retrying in %.1fs",
                    description,
                    attempt,
                    self.max_attempts,
                    e,
                    wait,
                )
                self.sleep(wait)
                attempt += 1


# Single attempt, no retries
NO_RETRY = RetryPolicy(max_attempts=1)
