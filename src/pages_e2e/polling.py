"""Bounded polling of deployment status and edge availability.

Both loops share one shape: a fixed-interval timer started at `start()`,
a hard timeout checked at every tick before anything else, and an outcome
future that resolves exactly once.

Ticks are fire-and-forget relative to the timer. When a check from tick N
is still in flight as tick N+1 fires, both run concurrently. The first
terminal transition wins: it resolves the outcome and cancels the timer,
and every later transition, including from checks still in flight, is a
no-op. Checks abandoned by a timeout are not aborted; their results are
discarded.

Poller instances own all of their state (counters, timer, outcome) and are
never shared between runs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

import httpx

from .config import PollingConfig
from .errors import (
    DeploymentFailedError,
    DeploymentTimeoutError,
    EdgeProvisioningTimeoutError,
    HarnessTimeoutError,
    TransportError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TERMINAL_SUCCESS_STAGE = "deploy"
TERMINAL_SUCCESS_STATUS = "success"
NON_FAILED_STATUSES = frozenset({"idle", "active", "success"})

NOT_PROVISIONED_BODY_MARKER = "nothing is here yet"
NOT_PROVISIONED_STATUS_CODES = frozenset({522, 530})


class PollState(str, Enum):
    """Lifecycle of a poller's outcome."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class BoundedPoller(Generic[T]):
    """Fixed-interval polling loop with a hard timeout.

    Subclasses implement `check()`, which calls `_succeed()` or `_fail()`
    when it observes a terminal condition and simply returns otherwise.
    """

    def __init__(
        self,
        *,
        interval_seconds: float,
        timeout_seconds: float,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._clock = clock
        self._outcome: asyncio.Future[T] | None = None
        self._timer: asyncio.Task[None] | None = None
        self._checks: set[asyncio.Task[None]] = set()
        self._started_at = 0.0
        self.tick_count = 0

    @property
    def state(self) -> PollState:
        if self._outcome is None or not self._outcome.done():
            return PollState.PENDING
        if self._outcome.cancelled() or self._outcome.exception() is not None:
            return PollState.FAILURE
        return PollState.SUCCESS

    @property
    def done(self) -> bool:
        return self._outcome is not None and self._outcome.done()

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    def start(self) -> None:
        """Start the timer. The first tick fires one interval from now."""
        if self._outcome is not None:
            raise RuntimeError(f"{type(self).__name__} was already started")

        loop = asyncio.get_running_loop()
        self._outcome = loop.create_future()
        self._started_at = self._now()
        self._timer = loop.create_task(self._run_timer())

    async def outcome(self) -> T:
        """Wait for the terminal outcome, starting the poller if needed.

        Raises:
            HarnessTimeoutError: If no terminal condition was observed in time.
            Exception: Whatever failure the poller transitioned to.
        """
        if self._outcome is None:
            self.start()
        assert self._outcome is not None
        return await self._outcome

    def cancel(self) -> None:
        """Stop polling and abort in-flight checks without an outcome."""
        self._stop_timer()
        for task in list(self._checks):
            task.cancel()
        if self._outcome is not None and not self._outcome.done():
            self._outcome.cancel()

    async def _run_timer(self) -> None:
        while not self.done:
            await asyncio.sleep(self._interval)
            if self.done:
                return
            self._tick()

    def _tick(self) -> None:
        self.tick_count += 1
        if self._now() - self._started_at > self._timeout:
            self._fail(self._timeout_error())
            return

        task = asyncio.get_running_loop().create_task(self._run_check())
        self._checks.add(task)
        task.add_done_callback(self._checks.discard)

    async def _run_check(self) -> None:
        try:
            await self.check()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(e)

    def _stop_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()

    def _succeed(self, value: T) -> bool:
        """Resolve the outcome; returns False if it was already terminal."""
        if self._outcome is None or self._outcome.done():
            return False
        self._stop_timer()
        self._outcome.set_result(value)
        return True

    def _fail(self, error: BaseException) -> bool:
        """Reject the outcome; returns False if it was already terminal."""
        if self._outcome is None or self._outcome.done():
            return False
        self._stop_timer()
        self._outcome.set_exception(error)
        return True

    async def check(self) -> None:
        raise NotImplementedError("Subclasses must implement check")

    def _timeout_error(self) -> HarnessTimeoutError:
        raise NotImplementedError("Subclasses must implement _timeout_error")


# =============================================================================
# Deployment completion
# =============================================================================


class DeploymentState(str, Enum):
    """Classification of a deployment's latest stage."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


def classify_deployment(stage_name: str, stage_status: str) -> DeploymentState:
    """Classify a deployment's latest stage.

    Only a successful `deploy` stage is terminal success. Any status other
    than idle, active or success (including canceled) is a failure.
    """
    if stage_name == TERMINAL_SUCCESS_STAGE and stage_status == TERMINAL_SUCCESS_STATUS:
        return DeploymentState.SUCCESS
    if stage_status not in NON_FAILED_STATUSES:
        return DeploymentState.FAILURE
    return DeploymentState.PENDING


class DeploymentSource(Protocol):
    """The subset of PagesClient the deployment poller needs."""

    async def get_deployment(self, deployment_id: str) -> dict[str, Any]: ...

    def dashboard_url(self, deployment_id: str) -> str: ...


class DeploymentPoller(BoundedPoller[str]):
    """Waits for a deployment to succeed and resolves with its URL.

    Failed status checks are tolerated up to the configured threshold; the
    check that exceeds it fails the poller with that check's error.
    """

    def __init__(
        self,
        *,
        client: DeploymentSource,
        deployment_id: str,
        polling: PollingConfig,
        clock: Callable[[], float] | None = None,
    ) -> None:
        super().__init__(
            interval_seconds=polling.deployment_check_interval,
            timeout_seconds=polling.deployment_timeout,
            clock=clock,
        )
        self._client = client
        self._deployment_id = deployment_id
        self._threshold = polling.deployment_check_api_failures_threshold
        self.not_ok_responses = 0

    @property
    def deployment_id(self) -> str:
        return self._deployment_id

    def _timeout_error(self) -> HarnessTimeoutError:
        return DeploymentTimeoutError(self._timeout)

    async def check(self) -> None:
        try:
            deployment = await self._client.get_deployment(self._deployment_id)
        except TransportError as e:
            self._record_not_ok_response(e)
            return

        if self.done:
            return

        url = deployment["url"]
        stage = deployment["latest_stage"]
        stage_name = str(stage.get("name", ""))
        stage_status = str(stage["status"])

        state = classify_deployment(stage_name, stage_status)
        if state == DeploymentState.SUCCESS:
            self._succeed(url)
        elif state == DeploymentState.FAILURE:
            self._fail(
                DeploymentFailedError(
                    deployment_id=self._deployment_id,
                    stage=stage_name,
                    status=stage_status,
                    dashboard_url=self._client.dashboard_url(self._deployment_id),
                )
            )
        else:
            logger.debug(
                "Deployment is ongoing. Stage: %s. Status: %s.",
                stage_name,
                stage_status,
                extra={"deployment_id": self._deployment_id},
            )

    def _record_not_ok_response(self, error: TransportError) -> None:
        if self.done:
            return

        self.not_ok_responses += 1
        wrapped = TransportError(
            f"Could not parse Deployment API response. Not-OK API response "
            f"{self.not_ok_responses} of {self._threshold}. {error.message}",
            status_code=error.status_code,
            body=error.body,
        )
        wrapped.__cause__ = error

        if self.not_ok_responses > self._threshold:
            logger.error(
                "Number of not-OK Deployment API responses exceeded allowed threshold %d. "
                "Erroring...",
                self._threshold,
                extra={"deployment_id": self._deployment_id},
            )
            self._fail(wrapped)
        else:
            logger.debug(
                "Received a not-OK Deployment API response, %d of a maximum %d. "
                "Suppressing error...",
                self.not_ok_responses,
                self._threshold,
                extra={"deployment_id": self._deployment_id, "error": str(error)},
            )


# =============================================================================
# Edge availability
# =============================================================================


def response_is_not_provisioned(response: httpx.Response) -> bool:
    """Whether an edge response says the deployment is not served yet."""
    if response.status_code in NOT_PROVISIONED_STATUS_CODES:
        return True
    return (
        response.status_code == 404
        and NOT_PROVISIONED_BODY_MARKER in response.text.lower()
    )


class EdgeAvailabilityPoller(BoundedPoller[str]):
    """Waits until a deployed URL is served at the edge.

    Probe exceptions are expected while provisioning and only keep the
    poller pending; the timeout is the only failure.
    """

    def __init__(
        self,
        *,
        url: str,
        http_client: httpx.AsyncClient,
        polling: PollingConfig,
        is_not_provisioned: Callable[[httpx.Response], bool] = response_is_not_provisioned,
        clock: Callable[[], float] | None = None,
    ) -> None:
        super().__init__(
            interval_seconds=polling.provisioner_check_interval,
            timeout_seconds=polling.provisioner_timeout,
            clock=clock,
        )
        self._url = url
        self._client = http_client
        self._is_not_provisioned = is_not_provisioned

    @property
    def url(self) -> str:
        return self._url

    def _timeout_error(self) -> HarnessTimeoutError:
        return EdgeProvisioningTimeoutError(self._url, self._timeout)

    async def check(self) -> None:
        try:
            response = await self._client.get(self._url)
            not_provisioned = self._is_not_provisioned(response)
        except Exception as e:
            logger.debug(
                "Could not check the deployment URL.",
                extra={"url": self._url, "error": str(e)},
            )
            return

        if not_provisioned:
            logger.debug("Deployment is not yet available at the edge.", extra={"url": self._url})
        else:
            self._succeed(self._url)
