"""
Tests for the per-consumer RealtimeUpdates adapter.

Checks stable subscriber identity, callback freshness without
resubscription, enabled toggling and idempotent teardown.
"""

from unittest.mock import MagicMock, patch

import pytest

from atlas_realtime.adapter import (
    CallbackCell,
    RealtimeHandle,
    RealtimeUpdateOptions,
    RealtimeUpdates,
    generate_connection_id,
    use_realtime_updates,
)
from atlas_realtime.manager import ConnectionState


class TestConnectionId:
    """Subscriber ids are fixed for the adapter's lifetime."""

    def test_generated_id_format(self):
        connection_id = generate_connection_id()
        assert connection_id.startswith("hook-")
        assert len(connection_id) == len("hook-") + 9

    def test_generated_id_stable_across_updates(self, manager):
        updates = RealtimeUpdates(manager)
        first = updates.connection_id

        updates.update(RealtimeUpdateOptions(on_update=MagicMock()))
        updates.update(RealtimeUpdateOptions(on_update=MagicMock()))

        assert updates.connection_id == first

    def test_supplied_id_used(self, manager):
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions(connection_id="unified-inbox"))
        assert updates.connection_id == "unified-inbox"

    def test_adapters_get_distinct_ids(self, manager):
        a = RealtimeUpdates(manager, RealtimeUpdateOptions())
        b = RealtimeUpdates(manager, RealtimeUpdateOptions())

        assert a.connection_id != b.connection_id
        assert manager.subscriber_count == 2


class TestSubscription:
    """Only enabled and teardown drive subscribe/unsubscribe."""

    def test_disabled_from_start_never_subscribes(self, manager, fake_client):
        with patch.object(manager, "subscribe", wraps=manager.subscribe) as subscribe:
            updates = RealtimeUpdates(manager, RealtimeUpdateOptions(enabled=False))
            updates.update(RealtimeUpdateOptions(enabled=False))

        subscribe.assert_not_called()
        assert not updates.is_subscribed
        assert fake_client.transports == []

    def test_rerender_does_not_resubscribe(self, manager):
        updates = RealtimeUpdates(manager)

        with patch.object(manager, "subscribe", wraps=manager.subscribe) as subscribe:
            for _ in range(3):
                updates.update(RealtimeUpdateOptions(on_update=MagicMock()))

        subscribe.assert_called_once()
        assert manager.subscriber_count == 1

    def test_latest_update_callback_invoked(self, manager, fake_client):
        stale, fresh = MagicMock(), MagicMock()
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions(on_update=stale))
        updates.update(RealtimeUpdateOptions(on_update=fresh))
        fake_client.latest.emit_open()

        fake_client.latest.emit_message({"type": "new_communication"})

        stale.assert_not_called()
        fresh.assert_called_once()
        assert fresh.call_args[0][0].type == "new_communication"

    def test_missing_update_callback_is_fine(self, manager, fake_client):
        RealtimeUpdates(manager, RealtimeUpdateOptions())
        fake_client.latest.emit_open()
        fake_client.latest.emit_message({"type": "ping"})

    def test_toggle_enabled_resubscribes_same_id(self, manager):
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions(connection_id="inbox"))

        with patch.object(manager, "subscribe", wraps=manager.subscribe) as subscribe, \
                patch.object(manager, "unsubscribe", wraps=manager.unsubscribe) as unsubscribe:
            updates.update(RealtimeUpdateOptions(enabled=False))
            assert manager.subscriber_count == 0

            updates.update(RealtimeUpdateOptions(enabled=True))

        unsubscribe.assert_called_once_with("inbox")
        assert subscribe.call_args[0][0] == "inbox"
        assert manager.subscriber_count == 1
        assert updates.is_subscribed

    def test_close_is_idempotent(self, manager, fake_client):
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions())
        transport = fake_client.latest

        with patch.object(manager, "unsubscribe", wraps=manager.unsubscribe) as unsubscribe:
            updates.close()
            updates.close()

        unsubscribe.assert_called_once()
        assert transport.closed
        assert manager.subscriber_count == 0

    def test_update_after_close_does_not_subscribe(self, manager):
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions())
        updates.close()

        updates.update(RealtimeUpdateOptions(enabled=True))

        assert manager.subscriber_count == 0

    def test_context_manager_closes(self, manager):
        with RealtimeUpdates(manager, RealtimeUpdateOptions()) as updates:
            assert manager.subscriber_count == 1
            assert updates.is_subscribed

        assert manager.subscriber_count == 0

    def test_disconnect_only_affects_this_adapter(self, manager, fake_client):
        a = RealtimeUpdates(manager, RealtimeUpdateOptions(connection_id="a"))
        RealtimeUpdates(manager, RealtimeUpdateOptions(connection_id="b"))
        fake_client.latest.emit_open()

        a.disconnect()

        assert manager.subscriber_count == 1
        assert manager.is_connected
        assert not fake_client.latest.closed

    def test_update_after_disconnect_resubscribes(self, manager, fake_client):
        on_connect = MagicMock()
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions(on_connect=on_connect))
        fake_client.latest.emit_open()
        on_connect.reset_mock()

        updates.disconnect()
        assert not updates.is_subscribed
        assert manager.subscriber_count == 0

        updates.update(RealtimeUpdateOptions(enabled=True, on_connect=on_connect))

        assert updates.is_subscribed
        assert manager.subscriber_count == 1
        fake_client.latest.emit_open()
        on_connect.assert_called_once()

    def test_reconnect_is_advisory(self, manager, fake_client):
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions())
        fake_client.latest.emit_open()

        updates.reconnect()

        assert len(fake_client.transports) == 1
        assert manager.get_connection_state() == ConnectionState.CONNECTED


class TestConnectionStatus:
    """is_connected and the connect/disconnect callbacks follow the manager."""

    def test_is_connected_follows_manager(self, manager, fake_client):
        updates = RealtimeUpdates(manager)
        handle = updates.update(RealtimeUpdateOptions())
        assert isinstance(handle, RealtimeHandle)
        assert handle.is_connected is False

        fake_client.latest.emit_open()

        assert updates.is_connected
        assert updates.update(RealtimeUpdateOptions()).is_connected is True

    def test_is_connected_false_after_close(self, manager, fake_client):
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions())
        other = RealtimeUpdates(manager, RealtimeUpdateOptions())
        fake_client.latest.emit_open()

        updates.close()

        assert not updates.is_connected
        assert other.is_connected

    def test_latest_connect_callback_invoked(self, manager, fake_client):
        stale, fresh = MagicMock(), MagicMock()
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions(on_connect=stale))
        updates.update(RealtimeUpdateOptions(on_connect=fresh))

        fake_client.latest.emit_open()

        stale.assert_not_called()
        fresh.assert_called_once_with()

    def test_late_adapter_learns_connected_state(self, manager, fake_client):
        RealtimeUpdates(manager, RealtimeUpdateOptions())
        fake_client.latest.emit_open()

        on_connect = MagicMock()
        late = RealtimeUpdates(manager, RealtimeUpdateOptions(on_connect=on_connect))

        on_connect.assert_called_once_with()
        assert late.is_connected

    @pytest.mark.asyncio
    async def test_disconnect_callback_on_stream_error(self, manager, fake_client, settle):
        on_disconnect = MagicMock()
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions(on_disconnect=on_disconnect))
        fake_client.latest.emit_open()

        fake_client.latest.emit_error()
        await settle()

        on_disconnect.assert_called_once_with()
        assert not updates.is_connected

    def test_own_close_does_not_report_disconnect(self, manager, fake_client):
        on_disconnect = MagicMock()
        updates = RealtimeUpdates(manager, RealtimeUpdateOptions(on_disconnect=on_disconnect))
        fake_client.latest.emit_open()

        updates.close()

        on_disconnect.assert_not_called()

    def test_disabled_adapter_gets_no_status_callbacks(self, manager, fake_client):
        on_connect = MagicMock()
        RealtimeUpdates(manager, RealtimeUpdateOptions(connection_id="a"))
        RealtimeUpdates(manager, RealtimeUpdateOptions(enabled=False, on_connect=on_connect))

        fake_client.latest.emit_open()

        on_connect.assert_not_called()


class TestHelpers:

    def test_callback_cell_calls_latest(self):
        cell = CallbackCell()
        cell("ignored")  # Empty cell is a no-op

        first, second = MagicMock(), MagicMock()
        cell.value = first
        cell.value = second
        cell(1, 2)

        first.assert_not_called()
        second.assert_called_once_with(1, 2)

    def test_use_realtime_updates_keywords(self, manager, fake_client):
        on_update = MagicMock()
        updates = RealtimeUpdates(manager)

        handle = use_realtime_updates(updates, connection_id="phone", on_update=on_update)
        fake_client.latest.emit_open()
        fake_client.latest.emit_message({"type": "communication_update"})

        assert updates.connection_id == "phone"
        assert handle.is_connected is False
        on_update.assert_called_once()
