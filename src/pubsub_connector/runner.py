"""ConnectorRunner — keeps a Connector connected until asked to stop.

Plays the role of the host engine: connection-unavailable errors are
retried with exponential backoff, a stream that dies while receiving
triggers a full reconnect, and configuration errors end the run.
"""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential_jitter,
)

from pubsub_connector.config.models import RetryConfig
from pubsub_connector.connector import Connector
from pubsub_connector.errors import ConnectionUnavailableError, TransportError

logger = structlog.get_logger()


class ConnectorRunner:
    """Drives a :class:`Connector` with retry and reconnect."""

    def __init__(self, connector: Connector, retry: RetryConfig | None = None) -> None:
        self._connector = connector
        self._retry = retry or connector.config.retry
        self._stopping = asyncio.Event()
        self._reconnects = 0

    @property
    def reconnects(self) -> int:
        return self._reconnects

    def start(self) -> None:
        """Run until SIGINT/SIGTERM or :meth:`request_stop` (blocking)."""
        asyncio.run(self._run_with_signals())

    async def _run_with_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.request_stop)
        await self.run()

    async def run(self) -> None:
        """Connect, wait for the stream to close, reconnect on transport failure."""
        try:
            while not self._stopping.is_set():
                try:
                    await self._connect_with_retry()
                except ConnectionUnavailableError:
                    if self._stopping.is_set():
                        break
                    raise

                error = await self._wait_closed()
                if self._stopping.is_set() or error is None:
                    break

                self._reconnects += 1
                logger.warning(
                    "runner.reconnecting",
                    error=str(error),
                    reconnects=self._reconnects,
                )
                await asyncio.to_thread(self._connector.disconnect)
        finally:
            await asyncio.to_thread(self._connector.disconnect)
            logger.info("runner.stopped", reconnects=self._reconnects)

    def request_stop(self) -> None:
        """Ask :meth:`run` to disconnect and return."""
        if not self._stopping.is_set():
            logger.info("runner.stop_requested")
        self._stopping.set()

    async def stop(self) -> None:
        self.request_stop()
        await asyncio.to_thread(self._connector.disconnect)

    async def _connect_with_retry(self) -> None:
        retry_cfg = self._retry
        async for attempt in AsyncRetrying(
            stop=(
                stop_after_attempt(retry_cfg.max_attempts)
                | stop_when_event_set(self._stopping)
            ),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                exp_base=retry_cfg.multiplier,
                jitter=retry_cfg.initial_wait_seconds if retry_cfg.jitter else 0,
            ),
            retry=retry_if_exception_type(ConnectionUnavailableError),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                await asyncio.to_thread(self._connector.connect)

    async def _wait_closed(self) -> TransportError | None:
        closed = asyncio.ensure_future(asyncio.to_thread(self._connector.wait_closed))
        stopping = asyncio.ensure_future(self._stopping.wait())
        done, pending = await asyncio.wait(
            {closed, stopping}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        if closed in done:
            return closed.result()
        return None

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "runner.connect_failed",
            attempt=retry_state.attempt_number,
            error=str(exc),
            error_type=type(exc).__name__,
            next_wait=retry_state.next_action.sleep if retry_state.next_action else None,
        )
