"""
Contains ``LoopbackLink`` and ``LoopbackTransport``, an in-process pair of transports. The link models everything a
real radio link does which matters to synchronisation:

- reachability, which can be switched on and off at any time;
- a dispatcher thread, so that every callback reaches the delegate from a foreign thread;
- live requests which time out or fail if the link drops while they are in flight;
- best-effort pushes which can be made to fail;
- a durable queue persisted in SQLite, so queued transfers survive the sending process restarting.

Coalescing: by default every queued transfer is kept and delivered in FIFO order per sender. When the link is created
with ``coalesce=True``, queueing a transfer discards any transfer from the same sender which has not been delivered
yet, so only the newest is delivered.

Durable transfers are delivered as soon as the receiving end is activated, whether or not the peer is reachable, unless
transfers have been suspended with :py:meth:`LoopbackLink.suspend_transfers`.
"""

from __future__ import annotations

import json
import logging
import queue
import sqlite3
import threading
import time
from contextlib import closing
from pathlib import Path
from typing import Any, Callable, Dict

from reminderlink import helpers
from reminderlink.exceptions import NotActivated, PeerUnreachable, SendTimeout, TransportUnsupported
from reminderlink.transport.base import ConnectionState, Tier, Transport


class _PendingRequest:
    """
    A live request waiting for its reply. Resolves exactly once: the first of reply, failure or timeout wins.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self.reply: dict | None = None
        self.error: Exception | None = None

    def resolve(self, reply: dict | None = None, error: Exception | None = None) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self.reply = reply
            self.error = error
            self._done.set()
            return True

    def wait(self, timeout: float) -> bool:
        return self._done.wait(timeout)


class LoopbackLink:
    """
    Joins two :py:class:`LoopbackTransport` ends.
    """

    def __init__(self,
                 db_path: Path | None = None,
                 coalesce: bool = False,
                 supported: bool = True,
                 reply_delay: float = 0.0):
        """
        Create a new link. The link starts out unreachable.

        :param db_path: path to the SQLite database holding the durable queue. Defaults to the application database.
        :param coalesce: if True, only the newest undelivered transfer per sender is kept.
        :param supported: if False, both ends report the transport as not supported.
        :param reply_delay: seconds the peer takes to answer a live request.
        """
        self.db_path: Path = Path(db_path) if db_path else helpers.db_folder()
        self.coalesce: bool = coalesce
        self.supported: bool = supported
        self.reply_delay: float = reply_delay
        #: If set, activation of either end fails with this error.
        self.activation_error: Exception | None = None
        #: If True, best-effort pushes fail instead of being delivered.
        self.drop_pushes: bool = False
        self.reachable: bool = False
        self.transfers_suspended: bool = False
        self.ends: Dict[str, LoopbackTransport] = {}
        self._lock = threading.RLock()
        self._pending: set[_PendingRequest] = set()
        self._jobs: queue.Queue = queue.Queue()
        self._thread = threading.Thread(target=self._run, name='loopback-radio', daemon=True)
        success, data = self.seed_transfer_table()
        if not success:
            logging.critical('Failed to create transfer table: {}'.format(data))
        self._thread.start()

    def end(self, name: str) -> LoopbackTransport:
        """
        Get (or create) the end of the link with the given name. A link has at most two ends.

        :param name: the name of the end, e.g. ``primary`` or ``companion``.

        :return: the transport for that end.
        """
        with self._lock:
            if name not in self.ends:
                if len(self.ends) == 2:
                    raise ValueError("A loopback link has exactly two ends.")
                self.ends[name] = LoopbackTransport(self, name)
            return self.ends[name]

    def peer_of(self, end: LoopbackTransport) -> LoopbackTransport | None:
        with self._lock:
            return next((e for e in self.ends.values() if e is not end), None)

    # Link control ----------------------------------------------------------------------------------------------------

    def set_reachable(self, reachable: bool) -> None:
        """
        Change reachability. In-flight live requests fail when the link drops, and activated ends are told about the
        change.

        :param reachable: the new reachability.
        """
        with self._lock:
            if reachable == self.reachable:
                return
            self.reachable = reachable
            if not reachable:
                for pending in list(self._pending):
                    pending.resolve(error=PeerUnreachable("Link dropped while a request was in flight."))
            ends = [e for e in self.ends.values() if e.activated]
        for end in ends:
            self.post(end.notify_reachability, reachable)
        if reachable:
            self.flush_transfers()

    def deactivate(self, name: str) -> None:
        """
        Deactivate one end, as a transport does when the session becomes inactive.

        :param name: the end to deactivate.
        """
        end = self.ends[name]
        end.deactivate()

    def suspend_transfers(self) -> None:
        self.transfers_suspended = True

    def resume_transfers(self) -> None:
        self.transfers_suspended = False
        self.flush_transfers()

    # Dispatcher ------------------------------------------------------------------------------------------------------

    def post(self, func: Callable, *args: Any) -> None:
        self._jobs.put((func, args))

    def _run(self) -> None:
        while True:
            job = self._jobs.get()
            try:
                if job is None:
                    return
                func, args = job
                func(*args)
            except Exception as e:
                logging.exception('Loopback delivery failed: {}'.format(e))
            finally:
                self._jobs.task_done()

    def join(self) -> None:
        """
        Block until every queued delivery has been made.
        """
        self._jobs.join()

    def idle(self) -> bool:
        return self._jobs.unfinished_tasks == 0

    def settle(self, *endpoints: Any, rounds: int = 50) -> bool:
        """
        Wait until the link and the given endpoints have nothing left to do. Each endpoint must offer ``join()`` and
        ``idle()``. Deliveries and endpoints feed each other, so the link is only settled once two consecutive rounds
        found everything idle.

        :param endpoints: the endpoints attached to this link.
        :param rounds: the maximum number of rounds to wait.

        :return: True if everything settled.
        """
        quiet = 0
        for _ in range(rounds):
            self.join()
            for endpoint in endpoints:
                endpoint.join()
            quiet = quiet + 1 if self.idle() and all(e.idle() for e in endpoints) else 0
            if quiet == 2:
                return True
        return False

    def close(self) -> None:
        """
        Stop the dispatcher thread. Undelivered durable transfers stay in the database.
        """
        with self._lock:
            for pending in list(self._pending):
                pending.resolve(error=PeerUnreachable("Link closed."))
        self._jobs.put(None)
        self._thread.join(timeout=5)

    # Live requests ---------------------------------------------------------------------------------------------------

    def request(self, sender: LoopbackTransport, payload: dict, timeout: float) -> dict:
        pending = _PendingRequest()
        with self._lock:
            self._pending.add(pending)
        self.post(self._answer, sender, payload, pending)
        try:
            if not pending.wait(timeout):
                pending.resolve(error=SendTimeout("No reply within {} seconds.".format(timeout)))
        finally:
            with self._lock:
                self._pending.discard(pending)
        if pending.error is not None:
            raise pending.error
        return pending.reply

    def _answer(self, sender: LoopbackTransport, payload: dict, pending: _PendingRequest) -> None:
        if self.reply_delay:
            time.sleep(self.reply_delay)
        peer = self.peer_of(sender)
        if not self.reachable or peer is None or not peer.activated or peer.delegate is None:
            pending.resolve(error=PeerUnreachable("Peer is not reachable."))
            return
        try:
            reply = peer.delegate.on_request(payload)
        except Exception as e:
            pending.resolve(error=PeerUnreachable("Peer failed to answer: {!r}".format(e)))
            return
        pending.resolve(reply=reply if reply is not None else {})

    # Best-effort pushes ----------------------------------------------------------------------------------------------

    def deliver_push(self, sender: LoopbackTransport, payload: dict,
                     on_delivered: Callable | None, on_error: Callable | None) -> None:
        peer = self.peer_of(sender)
        if self.drop_pushes or not self.reachable or peer is None or not peer.activated:
            if on_error is not None:
                on_error(payload, PeerUnreachable("Push could not be delivered."))
            return
        if peer.delegate is not None:
            peer.delegate.on_receive(payload, Tier.PUSH)
        if on_delivered is not None:
            on_delivered(payload)

    # Context ---------------------------------------------------------------------------------------------------------

    def deliver_context(self, sender: LoopbackTransport, payload: dict) -> None:
        peer = self.peer_of(sender)
        if peer is None:
            return
        peer.context = payload
        if peer.activated and peer.delegate is not None:
            peer.delegate.on_receive(payload, Tier.CONTEXT)

    # Durable transfers -----------------------------------------------------------------------------------------------

    def seed_transfer_table(self) -> tuple[bool, str]:
        """
        Creates the initial structure for the table storing queued transfers in SQLite.

        :returns:

            -success (:py:class:`bool`) - true if the table is successfully seeded.

            -data (:py:class:`str`) - error message on failure or success message.

        """
        try:
            with closing(sqlite3.connect(self.db_path)) as connection:
                with closing(connection.cursor()) as cursor:
                    sql_create_transfer_table = """CREATE TABLE IF NOT EXISTS rl_transfer (
                                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                                        sender TEXT NOT NULL,
                                        payload TEXT NOT NULL
                                        );"""
                    cursor.execute(sql_create_transfer_table)
                    connection.commit()
        except sqlite3.OperationalError as e:
            return False, repr(e)
        return True, 'rl_transfer table created'

    def enqueue_transfer(self, sender: LoopbackTransport, payload: dict) -> None:
        with self._lock:
            with closing(sqlite3.connect(self.db_path)) as connection:
                with closing(connection.cursor()) as cursor:
                    if self.coalesce:
                        cursor.execute("DELETE FROM rl_transfer WHERE sender = ?", (sender.name,))
                    cursor.execute("INSERT INTO rl_transfer(sender, payload) VALUES (?, ?)",
                                   (sender.name, json.dumps(payload)))
                    connection.commit()
        self.flush_transfers()

    def queued_transfers(self, sender: str) -> list[dict]:
        """
        Get the transfers from one sender which have not been delivered yet, oldest first.

        :param sender: the name of the sending end.

        :return: the queued payloads.
        """
        with self._lock:
            with closing(sqlite3.connect(self.db_path)) as connection:
                with closing(connection.cursor()) as cursor:
                    rows = cursor.execute("SELECT payload FROM rl_transfer WHERE sender = ? ORDER BY id",
                                          (sender,)).fetchall()
        return [json.loads(row[0]) for row in rows]

    def flush_transfers(self) -> None:
        self.post(self._deliver_transfers)

    def _deliver_transfers(self) -> None:
        if self.transfers_suspended:
            return
        for sender in list(self.ends.values()):
            receiver = self.peer_of(sender)
            if receiver is None or not receiver.activated:
                continue
            while not self.transfers_suspended:
                with self._lock:
                    with closing(sqlite3.connect(self.db_path)) as connection:
                        with closing(connection.cursor()) as cursor:
                            row = cursor.execute(
                                "SELECT id, payload FROM rl_transfer WHERE sender = ? ORDER BY id LIMIT 1",
                                (sender.name,)).fetchone()
                            if row is None:
                                break
                            cursor.execute("DELETE FROM rl_transfer WHERE id = ?", (row[0],))
                            connection.commit()
                payload = json.loads(row[1])
                receiver.transfer_received = payload
                if receiver.delegate is not None:
                    receiver.delegate.on_receive(payload, Tier.DURABLE)


class LoopbackTransport(Transport):
    """
    One end of a :py:class:`LoopbackLink`.
    """

    def __init__(self, link: LoopbackLink, name: str):
        super().__init__(name)
        self.link: LoopbackLink = link
        self.activated: bool = False
        self.activating: bool = False
        #: Last context published by the peer.
        self.context: dict = {}
        #: Last durable transfer received from the peer.
        self.transfer_received: dict = {}

    def is_supported(self) -> bool:
        return self.link.supported

    @property
    def state(self) -> ConnectionState:
        if not self.link.supported:
            return ConnectionState.NOT_SUPPORTED
        if self.activated:
            return ConnectionState.ACTIVATED_REACHABLE if self.link.reachable else \
                ConnectionState.ACTIVATED_UNREACHABLE
        if self.activating:
            return ConnectionState.ACTIVATING
        return ConnectionState.INACTIVE

    def activate(self) -> None:
        if not self.link.supported:
            raise TransportUnsupported("Loopback transport is not supported on this link.")
        if self.activated or self.activating:
            return
        self.activating = True
        self.link.post(self._complete_activation)

    def _complete_activation(self) -> None:
        self.activating = False
        error = self.link.activation_error
        if error is None:
            self.activated = True
        self.logger.debug('Activation completed: {}'.format(self.state.value))
        if self.delegate is not None:
            self.delegate.on_activated(self.state, error)
        if error is None:
            if self.context and self.delegate is not None:
                self.delegate.on_receive(self.context, Tier.CONTEXT)
            self.link.flush_transfers()

    def deactivate(self) -> None:
        self.activated = False
        self.link.post(self._notify_deactivated)

    def _notify_deactivated(self) -> None:
        if self.delegate is not None:
            self.delegate.on_deactivated()

    def notify_reachability(self, reachable: bool) -> None:
        if self.activated and self.delegate is not None:
            self.delegate.on_reachability_changed(reachable)

    def send_request(self, payload: dict, timeout: float) -> dict:
        if not self.activated:
            raise NotActivated("{} is not activated.".format(self.name))
        if not self.link.reachable:
            raise PeerUnreachable("Peer is not reachable.")
        return self.link.request(self, payload, timeout)

    def push(self,
             payload: dict,
             on_delivered: Callable[[dict], Any] | None = None,
             on_error: Callable[[dict, Exception], Any] | None = None) -> None:
        if not self.activated:
            error = NotActivated("{} is not activated.".format(self.name))
            if on_error is not None:
                self.link.post(on_error, payload, error)
            return
        self.link.post(self.link.deliver_push, self, payload, on_delivered, on_error)

    def transfer(self, payload: dict) -> None:
        if not self.activated:
            raise NotActivated("{} is not activated.".format(self.name))
        self.link.enqueue_transfer(self, payload)

    def update_context(self, payload: dict) -> None:
        if not self.activated:
            raise NotActivated("{} is not activated.".format(self.name))
        self.link.post(self.link.deliver_context, self, payload)

    @property
    def received_context(self) -> dict:
        return self.context

    @property
    def last_transfer(self) -> dict:
        return self.transfer_received
