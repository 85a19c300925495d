import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from vaultum_sdk.errors import PollCancelledError, VaultumTimeoutError
from vaultum_sdk.models import PollConfig, StatusResponse

StatusFetcher = Callable[[str], Awaitable[StatusResponse]]
StatusCallback = Callable[[StatusResponse], Any]

MAX_ATTEMPTS_MESSAGE = "Operation timeout: max attempts reached"
DEADLINE_MESSAGE = "Timeout waiting for operation"


class OperationPoller:
    """Polls an operation's status until it reaches a terminal state.

    Only a non-terminal status is retried. Errors raised by the fetcher,
    including not-found, propagate on the first occurrence.
    """

    def __init__(self, fetch_status: StatusFetcher, config: Optional[PollConfig] = None):
        self.fetch_status = fetch_status
        self.config = config or PollConfig()
        self.logger = logger

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(deadline - self._now(), 0.0)

    async def _fetch_once(
        self,
        op_id: str,
        deadline: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> StatusResponse:
        """Fetch one status, bounded by the remaining deadline and the cancel signal"""
        fetch = asyncio.ensure_future(self.fetch_status(op_id))
        waiters = {fetch}
        cancel_wait = None
        if cancel_event is not None:
            cancel_wait = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_wait)

        # An exhausted budget still gets one poll, bounded by the request timeout only
        budget = self._remaining(deadline)
        if budget is not None and budget <= 0:
            budget = None

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=budget, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()

        if fetch in done:
            return fetch.result()
        if cancel_wait is not None and cancel_wait in done:
            raise PollCancelledError(f"Polling cancelled for operation {op_id}")
        raise VaultumTimeoutError(DEADLINE_MESSAGE)

    async def _sleep(
        self,
        delay: float,
        op_id: str,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise PollCancelledError(f"Polling cancelled for operation {op_id}")

    async def _notify(self, callback: Optional[StatusCallback], status: StatusResponse) -> None:
        if callback is None:
            return
        result = callback(status)
        if inspect.isawaitable(result):
            await result

    async def poll(
        self,
        op_id: str,
        on_status: Optional[StatusCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StatusResponse:
        """Poll until success/failed, raising VaultumTimeoutError once a bound is hit"""
        interval = self.config.interval_ms / 1000
        deadline = None
        if self.config.timeout_ms is not None:
            deadline = self._now() + self.config.timeout_ms / 1000
        attempts = 0
        last_state = None

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise PollCancelledError(f"Polling cancelled for operation {op_id}")

            status = await self._fetch_once(op_id, deadline, cancel_event)
            attempts += 1

            if status.state != last_state:
                self.logger.debug(f"Operation {op_id} is {status.state.value}")
                last_state = status.state

            await self._notify(on_status, status)

            if status.is_terminal:
                self.logger.info(
                    f"Operation {op_id} finished as {status.state.value} after {attempts} poll(s)"
                )
                return status

            if self.config.max_attempts is not None and attempts >= self.config.max_attempts:
                self.logger.error(f"Operation {op_id} still pending after {attempts} attempts")
                raise VaultumTimeoutError(MAX_ATTEMPTS_MESSAGE)

            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                self.logger.error(
                    f"Operation {op_id} still pending after {self.config.timeout_ms} ms"
                )
                raise VaultumTimeoutError(DEADLINE_MESSAGE)

            delay = interval if remaining is None else min(interval, remaining)
            self.logger.debug(f"Operation {op_id} pending, waiting {delay:.3f}s before next poll")
            await self._sleep(delay, op_id, cancel_event)
