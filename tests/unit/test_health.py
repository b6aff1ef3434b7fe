"""Unit tests for subscription health checks."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from google.api_core import exceptions as google_exceptions

from pubsub_connector.config.models import ConnectorConfig
from pubsub_connector.observability.health import (
    ComponentHealth,
    ConnectorHealth,
    Status,
    check_connector_health,
    check_subscription,
)


@pytest.fixture
def config(options) -> ConnectorConfig:
    return ConnectorConfig.model_validate(options)


@pytest.fixture
def client():
    with patch("google.cloud.pubsub_v1.SubscriberClient") as cls:
        yield cls.return_value.__enter__.return_value


class TestConnectorHealth:
    def test_healthy_when_all_components_healthy(self):
        health = ConnectorHealth(
            components=[ComponentHealth("a", Status.HEALTHY), ComponentHealth("b", Status.HEALTHY)]
        )
        assert health.healthy
        assert health.summary == {"a": "healthy", "b": "healthy"}

    def test_unknown_component_is_not_healthy(self):
        health = ConnectorHealth(components=[ComponentHealth("a")])
        assert not health.healthy


class TestCheckSubscription:
    def test_bound_to_configured_topic(self, config, client):
        client.get_subscription.return_value = MagicMock(
            topic="projects/proj-1/topics/topicA", ack_deadline_seconds=10
        )
        result = check_subscription(config, credentials="creds")
        assert result.status == Status.HEALTHY
        assert "ack deadline 10s" in result.detail
        client.get_subscription.assert_called_once_with(
            request={"subscription": "projects/proj-1/subscriptions/subA"}
        )

    def test_bound_to_other_topic(self, config, client):
        client.get_subscription.return_value = MagicMock(
            topic="projects/proj-1/topics/other", ack_deadline_seconds=10
        )
        result = check_subscription(config, credentials="creds")
        assert result.status == Status.UNHEALTHY
        assert "bound to other" in result.detail

    def test_missing_subscription(self, config, client):
        client.get_subscription.side_effect = google_exceptions.NotFound("no sub")
        result = check_subscription(config, credentials="creds")
        assert result.status == Status.UNHEALTHY
        assert "no sub" in result.detail

    def test_check_connector_health(self, config, client):
        client.get_subscription.return_value = MagicMock(
            topic="projects/proj-1/topics/topicA", ack_deadline_seconds=10
        )
        result = check_connector_health(config, credentials="creds")
        assert result.healthy
        assert result.summary == {"subscription": "healthy"}
