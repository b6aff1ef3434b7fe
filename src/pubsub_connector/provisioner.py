"""SubscriptionProvisioner — idempotent subscription creation."""

from __future__ import annotations

from typing import Any

import structlog

from pubsub_connector.broker.base import BrokerClient
from pubsub_connector.broker.naming import SubscriptionRef, TopicRef
from pubsub_connector.config.models import DeadLetterConfig
from pubsub_connector.errors import ProvisioningError

logger = structlog.get_logger()


class SubscriptionProvisioner:
    """Ensures a subscription exists on its topic before receiving starts.

    An already-existing subscription counts as success, so ``ensure()`` may
    be called on every connect attempt.
    """

    def __init__(self, broker: BrokerClient) -> None:
        self._broker = broker

    def ensure(
        self,
        topic: TopicRef,
        subscription: SubscriptionRef,
        credentials: Any,
        ack_deadline_seconds: int = 10,
        dead_letter: DeadLetterConfig | None = None,
    ) -> bool:
        """Create *subscription* on *topic* if missing.

        Returns True when the subscription was created by this call and
        False when it already existed.  Raises ProvisioningError when the
        broker rejects the request for any other reason.
        """
        try:
            created = self._broker.provision(
                topic,
                subscription,
                credentials=credentials,
                ack_deadline_seconds=ack_deadline_seconds,
                dead_letter=dead_letter,
            )
        except ProvisioningError as exc:
            logger.error(
                "provisioner.failed",
                subscription=subscription.path,
                topic=topic.path,
                status_code=exc.status_code,
                error=str(exc),
            )
            raise

        if created:
            logger.info(
                "provisioner.subscription_created",
                subscription=subscription.path,
                topic=topic.path,
                ack_deadline_seconds=ack_deadline_seconds,
            )
        else:
            logger.info(
                "provisioner.subscription_exists",
                subscription=subscription.path,
                topic=topic.path,
            )
        return created
