"""Health checks for the connector's broker resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from pubsub_connector.broker.naming import resource_id
from pubsub_connector.config.models import ConnectorConfig

logger = structlog.get_logger()


class Status(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ComponentHealth:
    name: str
    status: Status = Status.UNKNOWN
    detail: str = ""


@dataclass
class ConnectorHealth:
    components: list[ComponentHealth] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return all(c.status == Status.HEALTHY for c in self.components)

    @property
    def summary(self) -> dict[str, str]:
        return {c.name: c.status.value for c in self.components}


def check_subscription(config: ConnectorConfig, credentials: Any) -> ComponentHealth:
    """Check that the subscription exists and is bound to the configured topic."""
    try:
        from google.cloud import pubsub_v1

        with pubsub_v1.SubscriberClient(credentials=credentials) as client:
            sub = client.get_subscription(
                request={"subscription": config.subscription.path}
            )
        if sub.topic != config.topic.path:
            return ComponentHealth(
                name="subscription",
                status=Status.UNHEALTHY,
                detail=f"bound to {resource_id(sub.topic)}, expected {config.topic_id}",
            )
        return ComponentHealth(
            name="subscription",
            status=Status.HEALTHY,
            detail=f"{config.subscription_id} → {config.topic_id} "
            f"(ack deadline {sub.ack_deadline_seconds}s)",
        )
    except Exception as exc:
        return ComponentHealth(
            name="subscription", status=Status.UNHEALTHY, detail=str(exc)
        )


def check_connector_health(
    config: ConnectorConfig, credentials: Any
) -> ConnectorHealth:
    """Run all health checks for *config*."""
    result = ConnectorHealth()
    result.components.append(check_subscription(config, credentials))
    logger.info("health.checked", summary=result.summary)
    return result
