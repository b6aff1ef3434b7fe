"""Shared fixtures for connector unit tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
from fakes import FakeBroker

from pubsub_connector.credentials import CredentialLoader


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def credentials() -> object:
    return object()


@pytest.fixture
def credential_loader(credentials: object) -> MagicMock:
    loader = MagicMock(spec=CredentialLoader)
    loader.load.return_value = credentials
    return loader


@pytest.fixture
def options(tmp_path) -> dict[str, Any]:
    return {
        "project.id": "proj-1",
        "topic.id": "topicA",
        "subscription.id": "subA",
        "credential.path": str(tmp_path / "key.json"),
    }
