"""MessageReceiver — forwards streaming-pull deliveries to a sink callback.

State machine::

    stopped --start()--> running <--pause()/resume()--> paused
    running/paused --stop() or stream failure--> stopped

Delivery callbacks run on the broker client's own callback threads.  While
the receiver is paused those callbacks park on a condition variable without
acknowledging their message.  At most one message per callback thread is
parked (the client's scheduler pool, 10 threads by default); further
messages wait unparked in the scheduler queue.  Every one of them stays
leased and counts against flow control, so the client stops pulling once
flow control is saturated.  Leases are extended only up to the client's
maximum lease duration (one hour by default); a longer pause lets them
lapse and the broker redelivers.
"""

from __future__ import annotations

import concurrent.futures
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

import structlog

from pubsub_connector.broker.base import BrokerClient, InboundMessage, StreamingHandle
from pubsub_connector.broker.naming import SubscriptionRef
from pubsub_connector.config.models import FlowControlConfig
from pubsub_connector.errors import DeliveryError, InvalidStateError, TransportError

logger = structlog.get_logger()

# Parked callbacks also re-check the stream handle at this interval
_PARK_POLL_SECONDS = 1.0


class ReceiverState(StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass(frozen=True, slots=True)
class Delivery:
    """Decoded message handed to the sink."""

    payload: bytes | str
    message_id: str
    attributes: dict[str, str] = field(default_factory=dict)
    publish_time: datetime | None = None
    delivery_attempt: int | None = None


# A sink returning False rejects the delivery; any other return accepts it.
Sink = Callable[[Delivery], object]
ErrorCallback = Callable[[TransportError], None]


class MessageReceiver:
    """Running/paused/stopped gate between a streaming pull and a sink.

    Every message the sink accepts is acked.  A sink that returns False or
    raises, and a payload that cannot be decoded, lead to a nack so the
    broker redelivers (at-least-once; sinks must tolerate duplicates).
    """

    def __init__(
        self,
        broker: BrokerClient,
        subscription: SubscriptionRef,
        *,
        flow_control: FlowControlConfig | None = None,
        payload_encoding: str | None = "utf-8",
        transport_properties: Iterable[str] = (),
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._broker = broker
        self._subscription = subscription
        self._flow_control = flow_control or FlowControlConfig()
        self._payload_encoding = payload_encoding
        self._transport_properties = frozenset(transport_properties)
        self._on_error = on_error

        # Guards state, sink, handle, error and all counters
        self._cond = threading.Condition()
        self._state = ReceiverState.STOPPED
        self._sink: Sink | None = None
        self._handle: StreamingHandle | None = None
        self._error: TransportError | None = None
        self._in_flight = 0
        self._held = 0
        self._counters = {"received": 0, "acked": 0, "nacked": 0}
        self._terminated = threading.Event()
        self._terminated.set()

    @property
    def state(self) -> ReceiverState:
        with self._cond:
            return self._state

    @property
    def error(self) -> TransportError | None:
        """The error that terminated the last stream, if any."""
        with self._cond:
            return self._error

    def start(self, sink: Sink, credentials: Any = None) -> None:
        """Open the streaming pull and begin forwarding messages to *sink*.

        Returns once the stream is open.  Raises InvalidStateError unless the
        receiver is stopped, and TransportError if the stream cannot be opened.
        """
        with self._cond:
            stale = self._state is ReceiverState.STOPPED and self._handle is not None
        if stale:
            # Previous stream died on its own; release it before reopening
            self.stop()

        with self._cond:
            if self._state is not ReceiverState.STOPPED:
                msg = f"Cannot start receiver while {self._state}"
                raise InvalidStateError(msg)
            self._sink = sink
            self._error = None
            self._terminated.clear()
            self._state = ReceiverState.RUNNING

        try:
            handle = self._broker.subscribe(
                self._subscription,
                self._on_message,
                credentials=credentials,
                flow_control=self._flow_control,
            )
        except Exception:
            with self._cond:
                self._state = ReceiverState.STOPPED
                self._sink = None
                self._cond.notify_all()
            self._broker.close()
            self._terminated.set()
            raise

        with self._cond:
            self._handle = handle
        # Runs immediately if the stream has already terminated
        handle.add_done_callback(self._on_stream_done)

        error = self.error
        if error is not None:
            self.stop()
            raise error

        logger.info(
            "receiver.started",
            subscription=self._subscription.path,
            max_messages=self._flow_control.max_messages,
        )

    def pause(self) -> None:
        """Stop handing payloads to the sink; in-flight messages are held."""
        with self._cond:
            state = self._state
            if state is ReceiverState.RUNNING:
                self._state = ReceiverState.PAUSED
        if state is ReceiverState.RUNNING:
            logger.info("receiver.paused", subscription=self._subscription.path)
        else:
            logger.debug("receiver.pause_ignored", state=state.value)

    def resume(self) -> None:
        """Release held messages to the sink and continue receiving."""
        held = 0
        with self._cond:
            state = self._state
            if state is ReceiverState.PAUSED:
                self._state = ReceiverState.RUNNING
                held = self._held
                self._cond.notify_all()
        if state is ReceiverState.PAUSED:
            logger.info(
                "receiver.resumed", subscription=self._subscription.path, held=held
            )
        else:
            logger.debug("receiver.resume_ignored", state=state.value)

    def stop(self, timeout: float | None = None) -> None:
        """Halt the stream, drain in-flight callbacks and release the client.

        Held (paused) messages are nacked; anything still unacknowledged is
        left to broker redelivery.
        """
        with self._cond:
            if self._state is ReceiverState.STOPPED and self._handle is None:
                return
            self._state = ReceiverState.STOPPED
            handle, self._handle = self._handle, None
            self._sink = None
            self._cond.notify_all()

        if handle is not None:
            handle.cancel()
            try:
                handle.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                logger.warning(
                    "receiver.stop_timeout",
                    subscription=self._subscription.path,
                    timeout=timeout,
                )
            except Exception as exc:
                # Already reported through _on_stream_done
                logger.debug("receiver.stream_closed_with_error", error=str(exc))

        with self._cond:
            drained = self._cond.wait_for(lambda: self._in_flight == 0, timeout)
            in_flight = self._in_flight
        if not drained:
            logger.warning(
                "receiver.drain_timeout",
                subscription=self._subscription.path,
                in_flight=in_flight,
            )

        self._broker.close()
        self._terminated.set()
        logger.info("receiver.stopped", subscription=self._subscription.path)

    def wait(self, timeout: float | None = None) -> TransportError | None:
        """Block until the stream terminates; return the failure, if any."""
        self._terminated.wait(timeout)
        return self.error

    def stats(self) -> dict[str, Any]:
        with self._cond:
            return {
                **self._counters,
                "in_flight": self._in_flight,
                "held": self._held,
                "state": self._state.value,
            }

    # -- delivery --------------------------------------------------------------

    def _on_message(self, message: InboundMessage) -> None:
        with self._cond:
            self._counters["received"] += 1
            self._in_flight += 1
            if self._state is ReceiverState.PAUSED:
                self._held += 1
                while self._state is ReceiverState.PAUSED and not self._stream_done():
                    self._cond.wait(_PARK_POLL_SECONDS)
                self._held -= 1
            sink = self._sink if self._state is ReceiverState.RUNNING else None

        try:
            if sink is None:
                # Stopped before delivery; hand it back to the broker
                self._settle(message, ack=False)
                return
            self._deliver(sink, message)
        finally:
            with self._cond:
                self._in_flight -= 1
                self._cond.notify_all()

    def _deliver(self, sink: Sink, message: InboundMessage) -> None:
        log = logger.bind(
            subscription=self._subscription.path,
            message_id=message.message_id,
            delivery_attempt=message.delivery_attempt,
        )
        try:
            delivery = self._decode(message)
            accepted = sink(delivery)
        except Exception as exc:
            log.warning(
                "receiver.delivery_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self._settle(message, ack=False)
            return

        if accepted is False:
            log.info("receiver.delivery_rejected")
            self._settle(message, ack=False)
            return

        self._settle(message, ack=True)
        log.debug("receiver.delivered")

    def _decode(self, message: InboundMessage) -> Delivery:
        payload: bytes | str = message.data
        if self._payload_encoding is not None:
            try:
                payload = message.data.decode(self._payload_encoding)
            except UnicodeDecodeError as exc:
                msg = (
                    f"Message {message.message_id} is not valid "
                    f"{self._payload_encoding}: {exc}"
                )
                raise DeliveryError(msg, message_id=message.message_id) from exc

        attributes = dict(message.attributes)
        if self._transport_properties:
            attributes = {
                k: v for k, v in attributes.items() if k in self._transport_properties
            }
        return Delivery(
            payload=payload,
            message_id=message.message_id,
            attributes=attributes,
            publish_time=message.publish_time,
            delivery_attempt=message.delivery_attempt,
        )

    def _settle(self, message: InboundMessage, *, ack: bool) -> None:
        if ack:
            self._broker.ack(message)
        else:
            self._broker.nack(message)
        with self._cond:
            self._counters["acked" if ack else "nacked"] += 1

    def _stream_done(self) -> bool:
        # Caller holds _cond
        return self._handle is not None and self._handle.done()

    def _on_stream_done(self, handle: Any) -> None:
        try:
            handle.result(timeout=0)
            cause: BaseException | None = None
        except concurrent.futures.CancelledError:
            cause = None
        except Exception as exc:
            cause = exc

        with self._cond:
            unexpected = self._state is not ReceiverState.STOPPED
            if unexpected:
                self._state = ReceiverState.STOPPED
                self._sink = None
                reason = cause or "stream closed by broker"
                error = TransportError(
                    f"Streaming pull on {self._subscription.path} terminated: {reason}"
                )
                error.__cause__ = cause
                self._error = error
                self._cond.notify_all()

        if not unexpected:
            return

        logger.error(
            "receiver.stream_failed",
            subscription=self._subscription.path,
            error=str(cause) if cause else None,
        )
        self._terminated.set()
        if self._on_error is not None:
            self._on_error(error)
