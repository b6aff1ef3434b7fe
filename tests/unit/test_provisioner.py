"""Unit tests for SubscriptionProvisioner."""

from __future__ import annotations

import pytest

from pubsub_connector.broker.naming import SubscriptionRef, TopicRef
from pubsub_connector.config.models import DeadLetterConfig
from pubsub_connector.errors import ConnectionUnavailableError, ProvisioningError
from pubsub_connector.provisioner import SubscriptionProvisioner

TOPIC = TopicRef("proj-1", "topicA")
SUBSCRIPTION = SubscriptionRef("proj-1", "subA")


class TestSubscriptionProvisioner:
    def test_creates_missing_subscription(self, broker, credentials):
        created = SubscriptionProvisioner(broker).ensure(TOPIC, SUBSCRIPTION, credentials)
        assert created is True
        assert broker.subscriptions == {SUBSCRIPTION.path: TOPIC.path}

    def test_idempotent(self, broker, credentials):
        provisioner = SubscriptionProvisioner(broker)
        assert provisioner.ensure(TOPIC, SUBSCRIPTION, credentials) is True
        assert provisioner.ensure(TOPIC, SUBSCRIPTION, credentials) is False
        assert len(broker.subscriptions) == 1
        assert len(broker.provision_calls) == 2

    def test_passes_settings_through(self, broker, credentials):
        dead_letter = DeadLetterConfig(topic_id="topicA-dlq", max_delivery_attempts=7)
        SubscriptionProvisioner(broker).ensure(
            TOPIC,
            SUBSCRIPTION,
            credentials,
            ack_deadline_seconds=45,
            dead_letter=dead_letter,
        )
        call = broker.provision_calls[0]
        assert call["credentials"] is credentials
        assert call["ack_deadline_seconds"] == 45
        assert call["dead_letter"] is dead_letter

    def test_default_ack_deadline(self, broker, credentials):
        SubscriptionProvisioner(broker).ensure(TOPIC, SUBSCRIPTION, credentials)
        assert broker.provision_calls[0]["ack_deadline_seconds"] == 10

    def test_unknown_topic_raises_with_status(self, broker, credentials):
        missing = TopicRef("proj-1", "nowhere")
        with pytest.raises(ProvisioningError) as exc_info:
            SubscriptionProvisioner(broker).ensure(missing, SUBSCRIPTION, credentials)
        assert exc_info.value.status_code == "NOT_FOUND"
        assert isinstance(exc_info.value, ConnectionUnavailableError)
        assert broker.subscriptions == {}

    def test_broker_rejection_propagates(self, broker, credentials):
        broker.provision_errors.append(
            ProvisioningError("denied", status_code="PERMISSION_DENIED")
        )
        with pytest.raises(ProvisioningError, match="denied"):
            SubscriptionProvisioner(broker).ensure(TOPIC, SUBSCRIPTION, credentials)
