from unittest import mock

from reminderlink.exceptions import TransportUnsupported
from reminderlink.sync.lifecycle import LifecycleState, SessionLifecycle
from reminderlink.transport.base import ConnectionState, Transport


class TestSessionLifecycle:

    @staticmethod
    def __create_lifecycle(supported: bool = True) -> tuple[SessionLifecycle, mock.MagicMock]:
        transport = mock.MagicMock(spec=Transport)
        transport.is_supported.return_value = supported
        lifecycle = SessionLifecycle(transport, 'test')
        return lifecycle, transport

    def test_activate(self):
        lifecycle, transport = TestSessionLifecycle.__create_lifecycle()
        assert lifecycle.state == LifecycleState.IDLE
        success, data = lifecycle.activate()
        assert success, data
        assert lifecycle.state == LifecycleState.AWAITING_ACTIVATION
        transport.activate.assert_called_once_with()

    def test_activate_idempotent(self):
        lifecycle, transport = TestSessionLifecycle.__create_lifecycle()
        lifecycle.activate()
        success, _ = lifecycle.activate()
        assert success
        lifecycle.handle_activated(ConnectionState.ACTIVATED_UNREACHABLE, None)
        lifecycle.activate()
        assert transport.activate.call_count == 1
        assert lifecycle.activation_attempts == 1

    def test_not_supported(self):
        lifecycle, transport = TestSessionLifecycle.__create_lifecycle(supported=False)
        success, data = lifecycle.activate()
        assert not success
        assert 'not be synchronised' in data
        assert lifecycle.state == LifecycleState.DEGRADED
        transport.activate.assert_not_called()

        success, _ = lifecycle.activate()
        assert not success
        lifecycle.handle_deactivated()
        assert lifecycle.state == LifecycleState.DEGRADED

    def test_activate_raises_unsupported(self):
        lifecycle, transport = TestSessionLifecycle.__create_lifecycle()
        transport.activate.side_effect = TransportUnsupported('no radio')
        success, _ = lifecycle.activate()
        assert not success
        assert lifecycle.state == LifecycleState.DEGRADED

    def test_activated(self):
        lifecycle, _ = TestSessionLifecycle.__create_lifecycle()
        activated = mock.MagicMock()
        reachable = mock.MagicMock()
        lifecycle.activated_hooks.append(activated)
        lifecycle.reachable_hooks.append(reachable)

        lifecycle.activate()
        lifecycle.handle_activated(ConnectionState.ACTIVATED_REACHABLE, None)
        assert lifecycle.state == LifecycleState.ACTIVE_REACHABLE
        activated.assert_called_once_with(LifecycleState.ACTIVE_REACHABLE)
        reachable.assert_called_once_with()

    def test_activation_failed(self):
        lifecycle, transport = TestSessionLifecycle.__create_lifecycle()
        activated = mock.MagicMock()
        lifecycle.activated_hooks.append(activated)

        lifecycle.activate()
        lifecycle.handle_activated(ConnectionState.INACTIVE, RuntimeError('pairing lost'))
        assert lifecycle.state == LifecycleState.IDLE
        activated.assert_not_called()

        # A later activation retries
        lifecycle.activate()
        assert transport.activate.call_count == 2
        assert lifecycle.activation_attempts == 2

    def test_reachability(self):
        lifecycle, _ = TestSessionLifecycle.__create_lifecycle()
        reachable = mock.MagicMock()
        lifecycle.reachable_hooks.append(reachable)

        # Ignored until active
        lifecycle.handle_reachability(True)
        assert lifecycle.state == LifecycleState.IDLE

        lifecycle.activate()
        lifecycle.handle_activated(ConnectionState.ACTIVATED_UNREACHABLE, None)
        assert lifecycle.state == LifecycleState.ACTIVE_UNREACHABLE
        reachable.assert_not_called()

        lifecycle.handle_reachability(True)
        lifecycle.handle_reachability(True)
        assert lifecycle.state == LifecycleState.ACTIVE_REACHABLE
        assert reachable.call_count == 1

        lifecycle.handle_reachability(False)
        assert lifecycle.state == LifecycleState.ACTIVE_UNREACHABLE
        lifecycle.handle_reachability(True)
        assert reachable.call_count == 2

    def test_deactivated(self):
        lifecycle, transport = TestSessionLifecycle.__create_lifecycle()
        lifecycle.activate()
        lifecycle.handle_activated(ConnectionState.ACTIVATED_REACHABLE, None)
        lifecycle.handle_deactivated()
        assert lifecycle.state == LifecycleState.AWAITING_ACTIVATION
        assert transport.activate.call_count == 2

    def test_is_active(self):
        assert LifecycleState.ACTIVE_REACHABLE.is_active
        assert LifecycleState.ACTIVE_UNREACHABLE.is_active
        assert not LifecycleState.IDLE.is_active
        assert not LifecycleState.DEGRADED.is_active
        assert not LifecycleState.AWAITING_ACTIVATION.is_active
