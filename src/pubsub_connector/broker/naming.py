"""Pub/Sub topic and subscription references."""

from __future__ import annotations

from dataclasses import dataclass

from pubsub_connector.errors import ConfigurationError


def topic_path(project_id: str, topic_id: str) -> str:
    """Build a fully-qualified Pub/Sub topic name."""
    return f"projects/{project_id}/topics/{topic_id}"


def subscription_path(project_id: str, subscription_id: str) -> str:
    """Build a fully-qualified Pub/Sub subscription name."""
    return f"projects/{project_id}/subscriptions/{subscription_id}"


def resource_id(path: str) -> str:
    """Extract the trailing resource ID from a ``projects/.../<kind>/<id>`` path."""
    return path.rsplit("/", 1)[-1]


def _require(value: str, field: str) -> None:
    if not value or not value.strip():
        msg = f"{field} must be a non-empty string"
        raise ConfigurationError(msg)


@dataclass(frozen=True, slots=True)
class TopicRef:
    project_id: str
    topic_id: str

    def __post_init__(self) -> None:
        _require(self.project_id, "project.id")
        _require(self.topic_id, "topic.id")

    @property
    def path(self) -> str:
        return topic_path(self.project_id, self.topic_id)

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True, slots=True)
class SubscriptionRef:
    """A subscription is bound to exactly one topic; the binding is made by
    the broker at provisioning time, so it is not part of the reference."""

    project_id: str
    subscription_id: str

    def __post_init__(self) -> None:
        _require(self.project_id, "project.id")
        _require(self.subscription_id, "subscription.id")

    @property
    def path(self) -> str:
        return subscription_path(self.project_id, self.subscription_id)

    def __str__(self) -> str:
        return self.path
