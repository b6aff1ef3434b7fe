"""Connector — lifecycle orchestration for one Pub/Sub subscription.

``connect()`` runs credential loading, subscription provisioning and
receiver start-up, in that order, once per attempt.  Delivery progress is
tracked by the broker, so there is no connector state to snapshot.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from pubsub_connector.broker.base import BrokerClient
from pubsub_connector.config.loader import build_connector_config
from pubsub_connector.config.models import ConnectorConfig
from pubsub_connector.credentials import CredentialLoader
from pubsub_connector.errors import InvalidStateError, TransportError
from pubsub_connector.provisioner import SubscriptionProvisioner
from pubsub_connector.receiver import (
    ErrorCallback,
    MessageReceiver,
    ReceiverState,
    Sink,
)

logger = structlog.get_logger()


class Connector:
    """Subscription connector driven by host lifecycle calls.

    Parameters
    ----------
    config:
        A validated :class:`ConnectorConfig` or raw options using the
        recognized names (``project.id``, ``topic.id``, ``subscription.id``,
        ``credential.path``).  Invalid options raise ConfigurationError.
    sink:
        Called once per delivery with a :class:`~pubsub_connector.receiver.Delivery`.
    broker:
        BrokerClient to use; defaults to :class:`PubSubBroker`.
    credential_loader:
        Loader used on first connect; defaults to :class:`CredentialLoader`.
    on_error:
        Called with the TransportError when the stream dies while receiving.
    """

    def __init__(
        self,
        config: ConnectorConfig | Mapping[str, Any],
        sink: Sink,
        *,
        broker: BrokerClient | None = None,
        credential_loader: CredentialLoader | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._config = build_connector_config(config)
        if broker is None:
            from pubsub_connector.broker.pubsub import PubSubBroker

            broker = PubSubBroker()
        self._broker = broker
        self._sink = sink
        self._credential_loader = credential_loader or CredentialLoader()
        self._credentials: Any = None
        self._topic = self._config.topic
        self._subscription = self._config.subscription
        self._provisioner = SubscriptionProvisioner(broker)
        self._receiver = MessageReceiver(
            broker,
            self._subscription,
            flow_control=self._config.flow_control,
            payload_encoding=self._config.payload_encoding,
            transport_properties=self._config.transport_properties,
            on_error=on_error,
        )
        self._lock = threading.Lock()
        self._destroyed = False

    @property
    def config(self) -> ConnectorConfig:
        return self._config

    @property
    def state(self) -> ReceiverState:
        return self._receiver.state

    def connect(self, on_connect_success: Callable[[], object] | None = None) -> None:
        """Load credentials, ensure the subscription and start receiving.

        Raises ConfigurationError (fatal), or ProvisioningError /
        TransportError (retriable).  The state stays stopped on failure.
        """
        with self._lock:
            if self._destroyed:
                msg = "Connector has been destroyed"
                raise InvalidStateError(msg)
            log = logger.bind(subscription=self._subscription.path)
            log.info("connector.connecting", topic=self._topic.path)

            credentials = self._load_credentials()
            self._provisioner.ensure(
                self._topic,
                self._subscription,
                credentials,
                ack_deadline_seconds=self._config.ack_deadline_seconds,
                dead_letter=self._config.dead_letter,
            )
            self._receiver.start(self._sink, credentials=credentials)
            log.info("connector.connected")

        if on_connect_success is not None:
            on_connect_success()

    def disconnect(self) -> None:
        """Stop receiving and wait for in-flight deliveries to drain."""
        with self._lock:
            self._receiver.stop(timeout=self._config.shutdown_timeout_seconds)
        logger.info("connector.disconnected", subscription=self._subscription.path)

    def pause(self) -> None:
        self._receiver.pause()

    def resume(self) -> None:
        self._receiver.resume()

    def destroy(self) -> None:
        """Release everything; a no-op once :meth:`disconnect` has run."""
        with self._lock:
            # Also releases a stream that died on its own
            self._receiver.stop(timeout=self._config.shutdown_timeout_seconds)
            self._destroyed = True
            self._credentials = None

    def current_state(self) -> dict[str, Any]:
        # Acknowledgement progress lives on the broker
        return {}

    def restore_state(self, snapshot: Mapping[str, Any] | None) -> None:
        logger.debug("connector.restore_state_ignored", has_snapshot=bool(snapshot))

    def wait_closed(self, timeout: float | None = None) -> TransportError | None:
        """Block until the stream terminates; return its failure, if any."""
        return self._receiver.wait(timeout)

    def health(self) -> dict[str, Any]:
        state = self._receiver.state
        return {
            "status": "error" if self._receiver.error else state.value,
            "topic": self._topic.path,
            "subscription": self._subscription.path,
            "stats": self._receiver.stats(),
        }

    def _load_credentials(self) -> Any:
        if self._credentials is None:
            self._credentials = self._credential_loader.load(
                self._config.credential_path
            )
        return self._credentials
