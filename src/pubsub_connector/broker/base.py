"""Broker-agnostic capability protocol.

Defines InboundMessage (the envelope every broker adapter produces) and
BrokerClient (the narrow set of calls the connector core needs).  The core
never imports a vendor SDK; tests substitute an in-process broker.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pubsub_connector.broker.naming import SubscriptionRef, TopicRef
from pubsub_connector.config.models import DeadLetterConfig, FlowControlConfig


@dataclass(slots=True)
class InboundMessage:
    """One broker delivery of a message.

    A redelivery produces a new envelope with the same ``message_id``.
    """

    message_id: str
    data: bytes
    attributes: dict[str, str] = field(default_factory=dict)
    publish_time: datetime | None = None
    delivery_attempt: int | None = None
    raw: Any = field(default=None, repr=False)  # native SDK message


MessageCallback = Callable[[InboundMessage], None]


@runtime_checkable
class StreamingHandle(Protocol):
    """Future-like handle on a running streaming pull."""

    def cancel(self) -> bool:
        """Ask the stream to shut down."""
        ...

    def result(self, timeout: float | None = None) -> Any:
        """Block until the stream has terminated."""
        ...

    def done(self) -> bool:
        """True once the stream has terminated."""
        ...

    def add_done_callback(self, fn: Callable[[Any], object]) -> None:
        """Invoke *fn(handle)* once the stream has terminated."""
        ...


@runtime_checkable
class BrokerClient(Protocol):
    """Calls the connector makes against a message broker."""

    def provision(
        self,
        topic: TopicRef,
        subscription: SubscriptionRef,
        *,
        credentials: Any,
        ack_deadline_seconds: int,
        dead_letter: DeadLetterConfig | None = None,
    ) -> bool:
        """Create *subscription* on *topic*; False if it already existed.

        Raises ProvisioningError for any other broker rejection.  The
        administrative connection must be released before returning.
        """
        ...

    def subscribe(
        self,
        subscription: SubscriptionRef,
        callback: MessageCallback,
        *,
        credentials: Any,
        flow_control: FlowControlConfig,
    ) -> StreamingHandle:
        """Open a streaming pull, invoking *callback* per message.

        The returned handle must complete without waiting for callbacks
        that are still running; paused callbacks are released by the
        handle's done callback.
        """
        ...

    def ack(self, message: InboundMessage) -> None:
        """Acknowledge *message*; the broker will not redeliver it."""
        ...

    def nack(self, message: InboundMessage) -> None:
        """Negatively acknowledge *message* for prompt redelivery."""
        ...

    def close(self) -> None:
        """Release the data-plane connection."""
        ...
