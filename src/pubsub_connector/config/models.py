"""Pydantic configuration models for the Pub/Sub connector."""

from __future__ import annotations

import codecs
from typing import Self

from pydantic import (
    BaseModel,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from pubsub_connector.broker.naming import SubscriptionRef, TopicRef

# Pub/Sub resource IDs: 3-255 chars, start with a letter, no "goog" prefix.
_RESOURCE_ID_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.~+%"
)


def _id_from_path(path: str, info: ValidationInfo) -> str:
    """Reduce ``projects/<p>/<kind>/<id>`` to ``<id>``, checking kind and project."""
    kind = "topics" if info.field_name == "topic_id" else "subscriptions"
    parts = path.split("/")
    if len(parts) != 4 or parts[2] != kind or not parts[3]:
        msg = f"'{path}' is not a projects/<project>/{kind}/<id> path"
        raise ValueError(msg)
    project_id = info.data.get("project_id")
    if project_id is not None and parts[1] != project_id:
        msg = f"'{path}' belongs to project '{parts[1]}', not '{project_id}'"
        raise ValueError(msg)
    return parts[3]


class FlowControlConfig(BaseModel):
    """Client-side limits on outstanding (unacked) messages."""

    max_messages: int = Field(default=1000, ge=1)
    max_bytes: int = Field(default=100 * 1024 * 1024, ge=1)


class DeadLetterConfig(BaseModel):
    """Dead-letter policy attached to the subscription at creation time."""

    topic_id: str = Field(min_length=1)
    max_delivery_attempts: int = Field(default=5, ge=5, le=100)


class RetryConfig(BaseModel):
    """Retry / backoff configuration for reconnect attempts."""

    max_attempts: int = Field(default=5, ge=1)
    initial_wait_seconds: float = Field(default=1.0, gt=0)
    max_wait_seconds: float = Field(default=60.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True


class LoggingConfig(BaseModel):
    """structlog output settings."""

    level: str = "INFO"
    json_output: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Unknown log level '{v}'"
            raise ValueError(msg)
        return level


class ConnectorConfig(BaseModel, extra="forbid", populate_by_name=True):
    """Configuration for one subscription connector.

    The four required options accept both the dotted option names used by
    stream-processor bindings (``project.id``) and their snake_case field
    names (``project_id``).
    """

    project_id: str = Field(alias="project.id", min_length=1)
    topic_id: str = Field(alias="topic.id", min_length=1)
    subscription_id: str = Field(alias="subscription.id", min_length=1)
    credential_path: str = Field(alias="credential.path", min_length=1)

    ack_deadline_seconds: int = Field(default=10, ge=10, le=600)
    # None hands raw bytes to the sink
    payload_encoding: str | None = "utf-8"
    # Attribute names forwarded with each payload; empty forwards all
    transport_properties: list[str] = Field(default_factory=list)
    flow_control: FlowControlConfig = FlowControlConfig()
    dead_letter: DeadLetterConfig | None = None
    retry: RetryConfig = RetryConfig()
    shutdown_timeout_seconds: float = Field(default=30.0, gt=0)
    logging: LoggingConfig = LoggingConfig()

    @field_validator("topic_id", "subscription_id")
    @classmethod
    def validate_resource_id(cls, v: str, info: ValidationInfo) -> str:
        if v.startswith("projects/"):
            v = _id_from_path(v, info)
        if not 3 <= len(v) <= 255 or not v[0].isalpha():
            msg = (
                f"'{v}' must be 3-255 characters long and start with a letter"
            )
            raise ValueError(msg)
        if v.lower().startswith("goog"):
            msg = f"'{v}' must not start with 'goog'"
            raise ValueError(msg)
        bad = set(v) - _RESOURCE_ID_CHARS
        if bad:
            msg = f"'{v}' contains invalid characters: {''.join(sorted(bad))}"
            raise ValueError(msg)
        return v

    @field_validator("payload_encoding")
    @classmethod
    def validate_encoding(cls, v: str | None) -> str | None:
        if v is None:
            return None
        try:
            return codecs.lookup(v).name
        except LookupError as exc:
            msg = f"Unknown payload_encoding '{v}'"
            raise ValueError(msg) from exc

    @field_validator("project_id", "credential_path")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "value must not be blank"
            raise ValueError(msg)
        return v.strip()

    @model_validator(mode="after")
    def check_dead_letter_topic(self) -> Self:
        """A subscription cannot dead-letter into its own source topic."""
        if self.dead_letter is not None and self.dead_letter.topic_id == self.topic_id:
            msg = "dead_letter.topic_id must differ from topic.id"
            raise ValueError(msg)
        return self

    @property
    def topic(self) -> TopicRef:
        return TopicRef(self.project_id, self.topic_id)

    @property
    def subscription(self) -> SubscriptionRef:
        return SubscriptionRef(self.project_id, self.subscription_id)

    @property
    def dead_letter_topic(self) -> TopicRef | None:
        if self.dead_letter is None:
            return None
        return TopicRef(self.project_id, self.dead_letter.topic_id)
