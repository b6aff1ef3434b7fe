"""PubSubBroker — BrokerClient implementation for Google Cloud Pub/Sub."""

from __future__ import annotations

import threading
from typing import Any

import structlog
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import pubsub_v1
from google.cloud.pubsub_v1 import types
from google.cloud.pubsub_v1.subscriber.futures import StreamingPullFuture

from pubsub_connector.broker.base import InboundMessage, MessageCallback
from pubsub_connector.broker.naming import SubscriptionRef, TopicRef
from pubsub_connector.config.models import DeadLetterConfig, FlowControlConfig
from pubsub_connector.errors import ProvisioningError, TransportError

logger = structlog.get_logger()


class PubSubBroker:
    """Wraps ``pubsub_v1.SubscriberClient`` behind the BrokerClient protocol.

    Subscription creation uses a short-lived administrative client that is
    closed as soon as the call returns.  Streaming pull uses a separate,
    long-lived client that is released by :meth:`close`.  The streaming
    pull future completes without joining running callbacks, so a stream
    that dies while the receiver is paused still reports its failure.
    """

    def __init__(self) -> None:
        self._subscriber: pubsub_v1.SubscriberClient | None = None
        self._lock = threading.Lock()

    def provision(
        self,
        topic: TopicRef,
        subscription: SubscriptionRef,
        *,
        credentials: Any,
        ack_deadline_seconds: int,
        dead_letter: DeadLetterConfig | None = None,
    ) -> bool:
        request: dict[str, Any] = {
            "name": subscription.path,
            "topic": topic.path,
            "ack_deadline_seconds": ack_deadline_seconds,
        }
        if dead_letter is not None:
            request["dead_letter_policy"] = {
                "dead_letter_topic": TopicRef(
                    topic.project_id, dead_letter.topic_id
                ).path,
                "max_delivery_attempts": dead_letter.max_delivery_attempts,
            }

        with pubsub_v1.SubscriberClient(credentials=credentials) as admin:
            try:
                admin.create_subscription(request=request)
            except google_exceptions.AlreadyExists:
                return False
            except google_exceptions.GoogleAPIError as exc:
                status = _status_code(exc)
                msg = (
                    f"Could not create subscription {subscription.path} on "
                    f"{topic.path} ({status}): {exc}"
                )
                raise ProvisioningError(msg, status_code=status) from exc
            except auth_exceptions.GoogleAuthError as exc:
                msg = f"Could not authenticate to create {subscription.path}: {exc}"
                raise ProvisioningError(msg, status_code="UNAUTHENTICATED") from exc
        return True

    def subscribe(
        self,
        subscription: SubscriptionRef,
        callback: MessageCallback,
        *,
        credentials: Any,
        flow_control: FlowControlConfig,
    ) -> StreamingPullFuture:
        with self._lock:
            if self._subscriber is None:
                self._subscriber = pubsub_v1.SubscriberClient(credentials=credentials)
            subscriber = self._subscriber

        def _on_message(message: Any) -> None:
            callback(_to_inbound(message))

        try:
            future = subscriber.subscribe(
                subscription.path,
                callback=_on_message,
                flow_control=types.FlowControl(
                    max_messages=flow_control.max_messages,
                    max_bytes=flow_control.max_bytes,
                ),
                # The handle must complete while callbacks are still parked;
                # MessageReceiver.stop drains them itself
                await_callbacks_on_shutdown=False,
            )
        except google_exceptions.GoogleAPIError as exc:
            msg = f"Could not open streaming pull on {subscription.path}: {exc}"
            raise TransportError(msg) from exc

        logger.debug("pubsub.streaming_pull_opened", subscription=subscription.path)
        return future

    def ack(self, message: InboundMessage) -> None:
        # Only enqueues the ack; the client library sends it in batches.
        message.raw.ack()

    def nack(self, message: InboundMessage) -> None:
        message.raw.nack()

    def close(self) -> None:
        with self._lock:
            subscriber, self._subscriber = self._subscriber, None
        if subscriber is not None:
            subscriber.close()
            logger.debug("pubsub.subscriber_closed")


def _to_inbound(message: Any) -> InboundMessage:
    return InboundMessage(
        message_id=message.message_id,
        data=message.data,
        attributes=dict(message.attributes),
        publish_time=message.publish_time,
        delivery_attempt=message.delivery_attempt,
        raw=message,
    )


def _status_code(exc: google_exceptions.GoogleAPIError) -> str:
    """Return the gRPC status name for *exc*, e.g. ``NOT_FOUND``."""
    grpc_code = getattr(exc, "grpc_status_code", None)
    if grpc_code is not None:
        return grpc_code.name
    if isinstance(exc, google_exceptions.RetryError):
        return "DEADLINE_EXCEEDED"
    return "UNKNOWN"
