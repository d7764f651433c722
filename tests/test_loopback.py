import threading
from unittest import mock

import pytest

from reminderlink.exceptions import NotActivated, PeerUnreachable, SendTimeout, TransportUnsupported
from reminderlink.transport.base import ConnectionState, Tier, TransportDelegate
from reminderlink.transport.loopback import LoopbackLink


class TestLoopbackLink:

    @staticmethod
    def __attach(link: LoopbackLink, name: str, activate: bool = True):
        delegate = mock.MagicMock(spec=TransportDelegate)
        delegate.on_request.return_value = {'reminders': 'e30='}
        end = link.end(name)
        end.set_delegate(delegate)
        if activate:
            end.activate()
            link.join()
        return end, delegate

    def test_two_ends_only(self, link):
        first = link.end('primary')
        second = link.end('companion')
        assert link.end('primary') is first
        assert link.peer_of(first) is second
        assert link.peer_of(second) is first
        with pytest.raises(ValueError):
            link.end('third')

    def test_activation(self, link):
        end, delegate = TestLoopbackLink.__attach(link, 'primary', activate=False)
        assert end.state == ConnectionState.INACTIVE
        end.activate()
        link.join()
        assert end.state == ConnectionState.ACTIVATED_UNREACHABLE
        delegate.on_activated.assert_called_once_with(ConnectionState.ACTIVATED_UNREACHABLE, None)

        end.activate()
        link.join()
        assert delegate.on_activated.call_count == 1

    def test_activation_error(self, link):
        error = RuntimeError('pairing lost')
        link.activation_error = error
        end, delegate = TestLoopbackLink.__attach(link, 'primary')
        assert end.state == ConnectionState.INACTIVE
        delegate.on_activated.assert_called_once_with(ConnectionState.INACTIVE, error)

    def test_not_supported(self, tmp_path):
        link = LoopbackLink(db_path=tmp_path / 'link.db', supported=False)
        end = link.end('primary')
        assert end.is_supported() is False
        assert end.state == ConnectionState.NOT_SUPPORTED
        with pytest.raises(TransportUnsupported):
            end.activate()
        link.close()

    def test_reachability(self, link):
        primary, primary_delegate = TestLoopbackLink.__attach(link, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(link, 'companion')
        link.set_reachable(True)
        link.join()
        assert primary.state == ConnectionState.ACTIVATED_REACHABLE
        primary_delegate.on_reachability_changed.assert_called_once_with(True)
        companion_delegate.on_reachability_changed.assert_called_once_with(True)

        link.set_reachable(True)
        link.join()
        assert primary_delegate.on_reachability_changed.call_count == 1

    def test_request(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(link, 'companion')
        link.set_reachable(True)
        reply = primary.send_request({'request': 'reminders'}, 1.0)
        assert reply == {'reminders': 'e30='}
        companion_delegate.on_request.assert_called_once_with({'request': 'reminders'})

    def test_request_not_activated(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary', activate=False)
        with pytest.raises(NotActivated):
            primary.send_request({'request': 'reminders'}, 1.0)

    def test_request_unreachable(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        TestLoopbackLink.__attach(link, 'companion')
        with pytest.raises(PeerUnreachable):
            primary.send_request({'request': 'reminders'}, 1.0)

    def test_request_peer_not_activated(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        TestLoopbackLink.__attach(link, 'companion', activate=False)
        link.set_reachable(True)
        with pytest.raises(PeerUnreachable):
            primary.send_request({'request': 'reminders'}, 1.0)

    def test_request_timeout(self, tmp_path):
        link = LoopbackLink(db_path=tmp_path / 'link.db', reply_delay=0.5)
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        TestLoopbackLink.__attach(link, 'companion')
        link.set_reachable(True)
        link.join()
        with pytest.raises(SendTimeout):
            primary.send_request({'request': 'reminders'}, 0.1)
        link.close()

    def test_request_link_drops(self, tmp_path):
        link = LoopbackLink(db_path=tmp_path / 'link.db', reply_delay=0.5)
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        TestLoopbackLink.__attach(link, 'companion')
        link.set_reachable(True)
        link.join()
        drop = threading.Timer(0.1, link.set_reachable, args=(False,))
        drop.start()
        with pytest.raises(PeerUnreachable):
            primary.send_request({'request': 'reminders'}, 3.0)
        drop.join()
        link.close()

    def test_push(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(link, 'companion')
        link.set_reachable(True)
        delivered = mock.MagicMock()
        failed = mock.MagicMock()
        primary.push({'reminders': 'e30='}, on_delivered=delivered, on_error=failed)
        link.join()
        companion_delegate.on_receive.assert_called_once_with({'reminders': 'e30='}, Tier.PUSH)
        delivered.assert_called_once_with({'reminders': 'e30='})
        failed.assert_not_called()

    def test_push_dropped(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(link, 'companion')
        link.set_reachable(True)
        link.drop_pushes = True
        delivered = mock.MagicMock()
        failed = mock.MagicMock()
        primary.push({'reminders': 'e30='}, on_delivered=delivered, on_error=failed)
        link.join()
        delivered.assert_not_called()
        assert failed.call_count == 1
        assert isinstance(failed.call_args[0][1], PeerUnreachable)
        companion_delegate.on_receive.assert_not_called()

    def test_push_not_activated(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary', activate=False)
        failed = mock.MagicMock()
        primary.push({'reminders': 'e30='}, on_error=failed)
        link.join()
        assert isinstance(failed.call_args[0][1], NotActivated)

    def test_context(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(link, 'companion')
        primary.update_context({'reminders': 'first'})
        primary.update_context({'reminders': 'second'})
        link.join()
        assert companion.received_context == {'reminders': 'second'}
        assert companion_delegate.on_receive.call_count == 2
        companion_delegate.on_receive.assert_called_with({'reminders': 'second'}, Tier.CONTEXT)

    def test_context_redelivered_on_activation(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(link, 'companion', activate=False)
        primary.update_context({'reminders': 'e30='})
        link.join()
        companion_delegate.on_receive.assert_not_called()
        companion.activate()
        link.join()
        companion_delegate.on_receive.assert_called_once_with({'reminders': 'e30='}, Tier.CONTEXT)

    def test_not_activated_errors(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary', activate=False)
        with pytest.raises(NotActivated):
            primary.transfer({'reminders': 'e30='})
        with pytest.raises(NotActivated):
            primary.update_context({'reminders': 'e30='})

    def test_transfer_fifo(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(link, 'companion')
        for i in range(3):
            primary.transfer({'reminders': str(i)})
        link.join()
        received = [c.args[0]['reminders'] for c in companion_delegate.on_receive.call_args_list]
        assert received == ['0', '1', '2']
        assert all(c.args[1] == Tier.DURABLE for c in companion_delegate.on_receive.call_args_list)
        assert companion.last_transfer == {'reminders': '2'}
        assert link.queued_transfers('primary') == []

    def test_transfer_waits_for_activation(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(link, 'companion', activate=False)
        primary.transfer({'reminders': 'e30='})
        link.join()
        assert link.queued_transfers('primary') == [{'reminders': 'e30='}]
        companion.activate()
        link.join()
        companion_delegate.on_receive.assert_called_once_with({'reminders': 'e30='}, Tier.DURABLE)
        assert link.queued_transfers('primary') == []

    def test_transfer_suspended(self, link):
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(link, 'companion')
        link.suspend_transfers()
        primary.transfer({'reminders': 'e30='})
        link.join()
        companion_delegate.on_receive.assert_not_called()
        link.resume_transfers()
        link.join()
        companion_delegate.on_receive.assert_called_once_with({'reminders': 'e30='}, Tier.DURABLE)

    def test_transfer_coalesced(self, tmp_path):
        link = LoopbackLink(db_path=tmp_path / 'link.db', coalesce=True)
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        link.suspend_transfers()
        for i in range(3):
            primary.transfer({'reminders': str(i)})
        assert link.queued_transfers('primary') == [{'reminders': '2'}]
        link.close()

    def test_transfer_survives_restart(self, tmp_path):
        link = LoopbackLink(db_path=tmp_path / 'link.db')
        primary, _ = TestLoopbackLink.__attach(link, 'primary')
        link.suspend_transfers()
        primary.transfer({'reminders': 'e30='})
        link.join()
        link.close()

        restarted = LoopbackLink(db_path=tmp_path / 'link.db')
        assert restarted.queued_transfers('primary') == [{'reminders': 'e30='}]
        TestLoopbackLink.__attach(restarted, 'primary')
        companion, companion_delegate = TestLoopbackLink.__attach(restarted, 'companion')
        companion_delegate.on_receive.assert_called_once_with({'reminders': 'e30='}, Tier.DURABLE)
        restarted.close()

    def test_deactivate(self, link):
        primary, delegate = TestLoopbackLink.__attach(link, 'primary')
        link.deactivate('primary')
        link.join()
        assert primary.state == ConnectionState.INACTIVE
        delegate.on_deactivated.assert_called_once_with()
