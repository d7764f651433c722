"""
Contains the ``SyncEndpoint`` class, the reconciliation engine run identically on both paired devices.

All changes to the collection, whether they come from local CRUD calls or from the transport, go through a single
ordered inbox drained by one worker thread. The worker is the only code which replaces ``collection``, so a local
mutation racing an inbound merge can never produce a torn collection.

Synchronisation is last-writer-wins at whole-collection granularity. Every snapshot carries the time it was produced
(``sentAt``) and an inbound snapshot is only applied if it is newer than the local one.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, List

from reminderlink import helpers
from reminderlink.exceptions import DecodeFailure, NotActivated, PeerUnreachable, ReminderLinkError, SendTimeout
from reminderlink.reminders.model.collection import ReminderCollection
from reminderlink.reminders.model.reminder import Reminder
from reminderlink.reminders.store import LocalStore
from reminderlink.sync.lifecycle import LifecycleState, SessionLifecycle
from reminderlink.transport import payload as wire
from reminderlink.transport.base import ConnectionState, Tier, Transport, TransportDelegate

#: Role of the device which owns the authoritative copy and answers on-demand requests.
PRIMARY = 'primary'
#: Role of the device which pulls from the primary when it becomes reachable.
COMPANION = 'companion'


class SyncEndpoint(TransportDelegate):
    """
    Keeps a local reminder collection in sync with the peer device.

    The ``role`` only changes what happens when the session comes up: the companion pulls the primary's collection
    whenever the primary becomes reachable, and falls back to whatever it already received when it is not; the
    primary re-sends its stored collection once activation completes.
    """

    def __init__(self,
                 store: LocalStore,
                 transport: Transport,
                 role: str = PRIMARY,
                 request_timeout: float = 3.0,
                 name: str = ''):
        """
        Create the endpoint and start its worker. The transport is not activated until :py:meth:`activate` is called.

        :param store: the local store holding the persisted collection.
        :param transport: the transport to the peer device.
        :param role: either ``primary`` or ``companion``.
        :param request_timeout: seconds to wait for the reply to a live request.
        :param name: name used in log messages. Defaults to the role.
        """
        if role not in (PRIMARY, COMPANION):
            raise ValueError("Unknown role: {}".format(role))
        self.store: LocalStore = store
        self.transport: Transport = transport
        self.role: str = role
        self.request_timeout: float = request_timeout
        self.name: str = name if name else role
        self.collection: ReminderCollection = store.load_collection()
        #: Called on the worker thread after an inbound snapshot replaced the collection.
        self.listeners: List[Callable[[ReminderCollection], Any]] = []
        self.counters: Dict[str, int] = {
            'applied': 0,
            'discarded_stale': 0,
            'discarded_invalid': 0,
            'pushes': 0,
            'transfers': 0,
            'requests': 0,
            'requests_answered': 0,
        }

        self.lifecycle: SessionLifecycle = SessionLifecycle(transport, self.name)
        self.lifecycle.activated_hooks.append(self._on_session_activated)
        self.lifecycle.reachable_hooks.append(self._on_became_reachable)

        self._inbox: queue.Queue = queue.Queue()
        self._closed: bool = False
        self._closed_lock = threading.Lock()
        self._worker = threading.Thread(target=self._run, name='{}-inbox'.format(self.name), daemon=True)
        self._worker.start()
        transport.set_delegate(self)

    # Worker ----------------------------------------------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            item = self._inbox.get()
            try:
                if item is None:
                    return
                func, args, future = item
                try:
                    result = func(*args)
                except Exception as e:
                    logging.exception('{}: error while handling {}: {}'.format(self.name, func.__name__, e))
                    if future is not None:
                        future.set_exception(e)
                else:
                    if future is not None:
                        future.set_result(result)
            finally:
                self._inbox.task_done()

    def _post(self, func: Callable, *args: Any) -> None:
        self._inbox.put((func, args, None))

    def _submit(self, func: Callable, *args: Any) -> Any:
        if threading.current_thread() is self._worker:
            return func(*args)
        future = Future()
        with self._closed_lock:
            if self._closed or not self._worker.is_alive():
                raise RuntimeError('{} has been closed.'.format(self.name))
            self._inbox.put((func, args, future))
        return future.result()

    def join(self) -> None:
        """
        Block until everything currently in the inbox has been handled.
        """
        self._inbox.join()

    def idle(self) -> bool:
        return self._inbox.unfinished_tasks == 0

    def close(self) -> None:
        """
        Stop the worker after the inbox has been drained. Later calls to the public API raise ``RuntimeError``.
        """
        with self._closed_lock:
            if self._closed:
                return
            self._closed = True
            self._inbox.put(None)
        self._worker.join(timeout=5)

    # Public API ------------------------------------------------------------------------------------------------------

    def activate(self) -> tuple[bool, str]:
        """
        Request activation of the transport. Safe to call any number of times.

        :returns:

            -success (:py:class:`bool`) - true if activation was requested or is already in progress or complete.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        return self._submit(self.lifecycle.activate)

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    def reminders(self) -> ReminderCollection:
        """
        :return: a copy of the current collection.
        """
        return self.collection.copy()

    def add(self, reminder: Reminder) -> tuple[bool, str]:
        """
        Add a reminder, save the collection and push it to the peer.

        :param reminder: the reminder to add.

        :returns:

            -success (:py:class:`bool`) - true if the reminder is added.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        return self._submit(self._add, reminder)

    def update(self, reminder: Reminder) -> tuple[bool, str]:
        """
        Replace the reminder with the same id, save the collection and push it to the peer.

        :param reminder: the updated reminder.

        :returns:

            -success (:py:class:`bool`) - true if the reminder is updated.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        return self._submit(self._update, reminder)

    def delete(self, reminder_id: str) -> tuple[bool, str]:
        """
        Delete a reminder, save the collection and push it to the peer.

        :param reminder_id: the id of the reminder to delete.

        :returns:

            -success (:py:class:`bool`) - true if the reminder is deleted.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        return self._submit(self._delete, reminder_id)

    def toggle_completed(self, reminder_id: str) -> tuple[bool, str]:
        """
        Flip the completion of a reminder, save the collection and push it to the peer.

        :param reminder_id: the id of the reminder to toggle.

        :returns:

            -success (:py:class:`bool`) - true if the reminder is toggled.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        return self._submit(self._toggle, reminder_id)

    def on_local_mutation(self) -> tuple[bool, str]:
        """
        The host application changed the persisted collection itself. Reload it, stamp it as a new snapshot and push it
        to the peer.

        :returns:

            -success (:py:class:`bool`) - true if the reloaded collection is saved and pushed.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        return self._submit(self._reload_and_push)

    def request_sync(self) -> tuple[bool, str]:
        """
        Ask the peer for its current collection. If the live request fails, fall back to the last durable transfer
        received, then to the peer's context, and finally to keeping the local collection. Never raises.

        :returns:

            -success (:py:class:`bool`) - true if a snapshot was obtained from the peer or a fallback.

            -data (:py:class:`str`) - message describing where the snapshot came from, or why there was none.

        """
        return self._submit(self._pull)

    def refresh(self) -> tuple[bool, str]:
        """
        Periodic refresh: retry activation if the session is idle, and on the companion pull the latest collection.

        :returns:

            -success (:py:class:`bool`) - true if the refresh did its work.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        return self._submit(self._refresh)

    def stats(self) -> Dict[str, int]:
        return dict(self.counters)

    # Transport delegate (any thread) ---------------------------------------------------------------------------------

    def on_activated(self, state: ConnectionState, error: Exception | None) -> None:
        self._post(self.lifecycle.handle_activated, state, error)

    def on_reachability_changed(self, reachable: bool) -> None:
        self._post(self.lifecycle.handle_reachability, reachable)

    def on_deactivated(self) -> None:
        self._post(self.lifecycle.handle_deactivated)

    def on_receive(self, payload: dict, tier: Tier) -> None:
        self._post(self._merge, payload, tier)

    def on_request(self, payload: dict) -> dict:
        """
        Answer a live request from the peer with the collection read from the local store.
        """
        if not wire.is_request(payload):
            if wire.has_collection(payload):
                self.on_receive(payload, Tier.LIVE)
            else:
                logging.warning('{}: ignoring unrecognised request {}'.format(self.name, list(payload)))
            return {}
        self.counters['requests_answered'] += 1
        data = self.store.load_encoded()
        if data is None:
            logging.debug('{}: answering request, nothing stored.'.format(self.name))
            return {}
        logging.debug('{}: answering request with {} bytes.'.format(self.name, len(data)))
        return wire.encode_blob(data)

    # Worker-side handlers --------------------------------------------------------------------------------------------

    def _add(self, reminder: Reminder) -> tuple[bool, str]:
        if reminder.id in self.collection:
            return False, 'Reminder {} already exists.'.format(reminder.id)
        updated = self.collection.copy()
        updated.add(reminder)
        return self._commit(updated, 'Reminder added: {}'.format(reminder.title))

    def _update(self, reminder: Reminder) -> tuple[bool, str]:
        updated = self.collection.copy()
        if not updated.replace(reminder):
            return False, 'Reminder {} not found.'.format(reminder.id)
        return self._commit(updated, 'Reminder updated: {}'.format(reminder.title))

    def _delete(self, reminder_id: str) -> tuple[bool, str]:
        updated = self.collection.copy()
        removed = updated.remove(reminder_id)
        if removed is None:
            return False, 'Reminder {} not found.'.format(reminder_id)
        return self._commit(updated, 'Reminder deleted: {}'.format(removed.title))

    def _toggle(self, reminder_id: str) -> tuple[bool, str]:
        reminder = self.collection.get(reminder_id)
        if reminder is None:
            return False, 'Reminder {} not found.'.format(reminder_id)
        updated = self.collection.copy()
        updated.replace(reminder.toggled())
        return self._commit(updated, 'Reminder {}: {}'.format(
            'reopened' if reminder.is_completed else 'completed', reminder.title))

    def _reload_and_push(self) -> tuple[bool, str]:
        return self._commit(self.store.load_collection(), 'Reloaded collection from store.')

    def _commit(self, updated: ReminderCollection, message: str) -> tuple[bool, str]:
        updated.stamp = helpers.next_stamp(self.collection.stamp)
        success, data = self.store.save_collection(updated)
        if not success:
            error = 'Failed to save reminders: {}'.format(data)
            logging.critical(error)
            return False, error
        self.collection = updated
        logging.debug('{}: {}'.format(self.name, message))
        self._push()
        return True, message

    def _push(self) -> None:
        payload = wire.encode_collection(self.collection)
        if self.lifecycle.state == LifecycleState.ACTIVE_REACHABLE:
            self.counters['pushes'] += 1
            self.transport.push(payload,
                                on_delivered=lambda p: self._post(self._push_delivered, p),
                                on_error=lambda p, e: self._post(self._push_failed, p, e))
        elif self.lifecycle.state == LifecycleState.ACTIVE_UNREACHABLE:
            self._transfer(payload)
        else:
            logging.debug('{}: session {}, reminders kept locally.'.format(self.name, self.lifecycle.state.value))

    def _push_delivered(self, payload: dict) -> None:
        try:
            self.transport.update_context(payload)
        except ReminderLinkError as e:
            logging.debug('{}: could not update context: {}'.format(self.name, e))

    def _push_failed(self, payload: dict, error: Exception) -> None:
        logging.warning('{}: push failed ({}), falling back to durable transfer.'.format(self.name, error))
        self._transfer(payload)

    def _transfer(self, payload: dict) -> None:
        try:
            self.transport.transfer(payload)
            self.counters['transfers'] += 1
        except ReminderLinkError as e:
            logging.warning('{}: durable transfer failed, will sync on next activation: {}'.format(self.name, e))

    def _merge(self, payload: dict, tier: Tier) -> bool:
        try:
            incoming = wire.decode_collection(payload)
        except DecodeFailure as e:
            self.counters['discarded_invalid'] += 1
            logging.warning('{}: discarding undecodable {} payload: {}'.format(self.name, tier.value, e))
            return False

        current = self.collection.stamp
        stampless = incoming.stamp == 0.0 and current == 0.0
        if incoming.stamp <= current and not stampless:
            self.counters['discarded_stale'] += 1
            logging.debug('{}: discarding {} snapshot sent at {} (have {}).'.format(
                self.name, tier.value, incoming.stamp, current))
            return False

        success, data = self.store.save_collection(incoming)
        if not success:
            logging.critical('{}: failed to save received reminders: {}'.format(self.name, data))
            return False
        self.collection = incoming
        self.counters['applied'] += 1
        logging.info('{}: applied {} snapshot with {} reminders.'.format(self.name, tier.value, len(incoming)))
        self.store.on_collection_replaced(incoming.copy())
        for listener in self.listeners:
            listener(incoming.copy())
        return True

    def _pull(self) -> tuple[bool, str]:
        if self.lifecycle.state == LifecycleState.ACTIVE_REACHABLE:
            self.counters['requests'] += 1
            try:
                reply = self.transport.send_request(wire.request_payload(), self.request_timeout)
            except (NotActivated, PeerUnreachable, SendTimeout) as e:
                logging.warning('{}: live request failed ({}), using fallback.'.format(self.name, e))
            else:
                if not wire.has_collection(reply):
                    return True, 'Peer has no reminders stored.'
                applied = self._merge(reply, Tier.LIVE)
                return True, 'Received reminders from peer{}.'.format('' if applied else ' (already up to date)')
        return self._fallback()

    def _fallback(self) -> tuple[bool, str]:
        found = False
        sources = (('last durable transfer', self.transport.last_transfer, Tier.DURABLE),
                   ('peer context', self.transport.received_context, Tier.CONTEXT))
        for source, fallback_payload, tier in sources:
            if not wire.has_collection(fallback_payload):
                continue
            found = True
            if self._merge(fallback_payload, tier):
                return True, 'Used {}.'.format(source)
        if found:
            return True, 'Local reminders already up to date.'
        return False, 'No snapshot from peer available, keeping local reminders.'

    def _refresh(self) -> tuple[bool, str]:
        if self.lifecycle.state == LifecycleState.IDLE:
            return self.lifecycle.activate()
        if self.lifecycle.state == LifecycleState.DEGRADED:
            return False, 'Transport not supported, nothing to refresh.'
        if self.role == COMPANION and self.lifecycle.state.is_active:
            return self._pull()
        return True, 'Nothing to refresh.'

    # Lifecycle hooks (worker thread) ---------------------------------------------------------------------------------

    def _on_session_activated(self, state: LifecycleState) -> None:
        if self.role == PRIMARY:
            if len(self.collection) > 0 or self.collection.stamp > 0:
                self._push()
        elif state == LifecycleState.ACTIVE_UNREACHABLE:
            success, data = self._fallback()
            logging.debug('{}: {}'.format(self.name, data))

    def _on_became_reachable(self) -> None:
        if self.role == COMPANION:
            success, data = self._pull()
            logging.debug('{}: reconnect pull: {}'.format(self.name, data))
