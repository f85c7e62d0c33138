"""Error taxonomy for deployment runs.

Every failure surfaced by the harness is a HarnessError. The only errors
swallowed anywhere are sub-threshold deployment status failures, edge
probe exceptions, teardown failures and mutex release failures; all of
them are logged.
"""

from __future__ import annotations

from typing import Any

import httpx

# Response bodies are embedded in messages; keep them readable
MAX_BODY_IN_MESSAGE = 2000


class HarnessError(Exception):
    """Base class for harness errors."""

    pass


class TransportError(HarnessError):
    """A request raised, or its response was not OK or not parsable."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.body = body

        details = [message]
        if status_code is not None:
            details.append(f"Status: {status_code}")
        if body:
            details.append(f"Body: {body[:MAX_BODY_IN_MESSAGE]}")
        super().__init__("\n".join(details))


class VerificationError(HarnessError):
    """A write succeeded but reading it back does not match the intent."""

    def __init__(self, field: str, expected: Any, actual: Any) -> None:
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{field} was not set correctly.\n\nExpected: {expected!r}\nActual: {actual!r}"
        )


class HarnessTimeoutError(HarnessError):
    """A bounded wait exceeded its hard deadline."""

    def __init__(self, message: str, *, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(message)


class DeploymentTimeoutError(HarnessTimeoutError):
    """The deployment did not reach a terminal state in time."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"Deployment did not complete within the timeout of {timeout_seconds} s.",
            timeout_seconds=timeout_seconds,
        )


class EdgeProvisioningTimeoutError(HarnessTimeoutError):
    """The deployed URL did not become available at the edge in time."""

    def __init__(self, url: str, timeout_seconds: float) -> None:
        self.url = url
        super().__init__(
            f"Deployment {url} was not available at the edge within the timeout "
            f"of {timeout_seconds} s.",
            timeout_seconds=timeout_seconds,
        )


class DeploymentFailedError(HarnessError):
    """The remote deployment reached a non-success terminal status."""

    def __init__(
        self,
        deployment_id: str,
        stage: str,
        status: str,
        dashboard_url: str,
    ) -> None:
        self.deployment_id = deployment_id
        self.stage = stage
        self.status = status
        self.dashboard_url = dashboard_url
        super().__init__(
            f"Deployment {deployment_id} has failed.\n\n"
            f"Stage: {stage}\nStatus: {status}\n\n{dashboard_url}"
        )


class PreconditionError(HarnessError):
    """A required configuration value is missing; raised before remote calls."""

    pass


class MutexError(HarnessError):
    """A mutex lease could not be acquired."""

    pass


def transform_response_into_error(
    response: httpx.Response | None,
    text: str | None,
    message: str = "Unexpected API response.",
) -> TransportError:
    """Build a TransportError from whatever is known about a failed call.

    Args:
        response: The response, or None if the request itself raised.
        text: The raw body text, if it was read.
        message: Context describing what was being attempted.
    """
    if response is None:
        return TransportError(message)

    if text is None:
        try:
            text = response.text
        except httpx.ResponseNotRead:
            text = ""

    return TransportError(message, status_code=response.status_code, body=text)
