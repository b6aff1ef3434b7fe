"""Unit tests for the Connector lifecycle."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fakes import wait_until

from pubsub_connector import Connector, ReceiverState
from pubsub_connector.errors import (
    ConfigurationError,
    InvalidStateError,
    ProvisioningError,
    TransportError,
)


def _connector(options, broker, credential_loader, **kwargs) -> Connector:
    return Connector(
        options,
        kwargs.pop("sink", MagicMock(return_value=None)),
        broker=broker,
        credential_loader=credential_loader,
        **kwargs,
    )


class TestInit:
    def test_builds_refs_from_options(self, options, broker, credential_loader):
        connector = _connector(options, broker, credential_loader)
        assert connector.config.topic.path == "projects/proj-1/topics/topicA"
        assert connector.config.subscription.path == "projects/proj-1/subscriptions/subA"
        assert connector.state is ReceiverState.STOPPED

    def test_missing_option_is_configuration_error(self, options, broker):
        del options["topic.id"]
        with pytest.raises(ConfigurationError, match="topic.id"):
            Connector(options, MagicMock(), broker=broker)

    def test_invalid_option_is_configuration_error(self, options, broker):
        options["ack_deadline_seconds"] = 5
        with pytest.raises(ConfigurationError, match="ack_deadline_seconds"):
            Connector(options, MagicMock(), broker=broker)


class TestConnect:
    def test_missing_credential_file_is_fatal(
        self, options, broker, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ):
        monkeypatch.chdir(tmp_path)
        options["credential.path"] = "./missing.json"
        connector = Connector(options, MagicMock(), broker=broker)

        with pytest.raises(ConfigurationError, match="missing.json"):
            connector.connect()
        assert connector.state is ReceiverState.STOPPED
        assert broker.provision_calls == []
        assert broker.subscribe_calls == 0

    def test_existing_subscription_connects(
        self, options, broker, credential_loader, credentials
    ):
        broker.subscriptions["projects/proj-1/subscriptions/subA"] = (
            "projects/proj-1/topics/topicA"
        )
        connector = _connector(options, broker, credential_loader)
        connector.connect()

        assert connector.state is ReceiverState.RUNNING
        assert len(broker.subscriptions) == 1
        assert broker.provision_calls[0]["credentials"] is credentials
        connector.disconnect()

    def test_connect_provisions_then_subscribes(self, options, broker, credential_loader):
        options["ack_deadline_seconds"] = 20
        options["dead_letter"] = {"topic_id": "topicA-dlq"}
        connector = _connector(options, broker, credential_loader)
        connector.connect()

        call = broker.provision_calls[0]
        assert call["ack_deadline_seconds"] == 20
        assert call["dead_letter"].topic_id == "topicA-dlq"
        assert broker.subscribe_calls == 1
        connector.disconnect()

    def test_on_connect_success_called_once_running(
        self, options, broker, credential_loader
    ):
        states: list[ReceiverState] = []
        connector = _connector(options, broker, credential_loader)
        connector.connect(on_connect_success=lambda: states.append(connector.state))
        assert states == [ReceiverState.RUNNING]
        connector.disconnect()

    def test_provisioning_error_leaves_stopped(self, options, broker, credential_loader):
        options["topic.id"] = "nowhere"
        connector = _connector(options, broker, credential_loader)
        callback = MagicMock()

        with pytest.raises(ProvisioningError) as exc_info:
            connector.connect(on_connect_success=callback)
        assert exc_info.value.status_code == "NOT_FOUND"
        assert connector.state is ReceiverState.STOPPED
        assert broker.subscribe_calls == 0
        callback.assert_not_called()

    def test_transport_error_leaves_stopped(self, options, broker, credential_loader):
        broker.subscribe_errors.append(TransportError("unavailable"))
        connector = _connector(options, broker, credential_loader)
        with pytest.raises(TransportError):
            connector.connect()
        assert connector.state is ReceiverState.STOPPED

    def test_credentials_loaded_once(self, options, broker, credential_loader):
        connector = _connector(options, broker, credential_loader)
        connector.connect()
        connector.disconnect()
        connector.connect()
        connector.disconnect()
        credential_loader.load.assert_called_once_with(options["credential.path"])
        assert len(broker.provision_calls) == 2
        assert len(broker.subscriptions) == 1

    def test_delivers_to_sink(self, options, broker, credential_loader):
        sink = MagicMock(return_value=None)
        connector = _connector(options, broker, credential_loader, sink=sink)
        connector.connect()
        message_id = broker.publish(b"payload")

        assert wait_until(lambda: broker.acked == [message_id])
        delivery = sink.call_args.args[0]
        assert delivery.payload == "payload"
        connector.disconnect()


class TestLifecycle:
    def test_pause_resume_delegate(self, options, broker, credential_loader):
        connector = _connector(options, broker, credential_loader)
        connector.connect()
        connector.pause()
        assert connector.state is ReceiverState.PAUSED
        connector.resume()
        assert connector.state is ReceiverState.RUNNING
        connector.disconnect()

    def test_disconnect_stops(self, options, broker, credential_loader):
        connector = _connector(options, broker, credential_loader)
        connector.connect()
        connector.disconnect()
        assert connector.state is ReceiverState.STOPPED
        assert broker.close_calls == 1

    def test_destroy_after_disconnect_is_noop(self, options, broker, credential_loader):
        connector = _connector(options, broker, credential_loader)
        connector.connect()
        connector.disconnect()
        connector.destroy()
        assert broker.close_calls == 1

    def test_destroy_while_running_disconnects(self, options, broker, credential_loader):
        connector = _connector(options, broker, credential_loader)
        connector.connect()
        connector.destroy()
        assert connector.state is ReceiverState.STOPPED
        assert broker.close_calls == 1

    def test_connect_after_destroy_is_invalid(self, options, broker, credential_loader):
        connector = _connector(options, broker, credential_loader)
        connector.destroy()
        with pytest.raises(InvalidStateError):
            connector.connect()

    def test_state_snapshot_is_empty(self, options, broker, credential_loader):
        connector = _connector(options, broker, credential_loader)
        assert connector.current_state() == {}
        connector.restore_state({"offset": 42})
        connector.restore_state(None)
        assert connector.current_state() == {}

    def test_wait_closed_returns_stream_error(self, options, broker, credential_loader):
        errors: list[TransportError] = []
        connector = _connector(
            options, broker, credential_loader, on_error=errors.append
        )
        connector.connect()
        broker.fail_stream()

        error = connector.wait_closed(timeout=1)
        assert isinstance(error, TransportError)
        assert connector.state is ReceiverState.STOPPED
        assert wait_until(lambda: errors == [error])
        assert connector.health()["status"] == "error"

    def test_health(self, options, broker, credential_loader):
        connector = _connector(options, broker, credential_loader)
        connector.connect()
        health = connector.health()
        assert health["status"] == "running"
        assert health["subscription"] == "projects/proj-1/subscriptions/subA"
        assert health["topic"] == "projects/proj-1/topics/topicA"
        assert health["stats"]["received"] == 0
        connector.disconnect()
