"""Google Cloud Pub/Sub subscription connector."""

from __future__ import annotations

from pubsub_connector.connector import Connector
from pubsub_connector.receiver import Delivery, ReceiverState

__all__ = ["Connector", "Delivery", "ReceiverState"]
