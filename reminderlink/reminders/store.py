"""
Contains the ``LocalStore`` interface used by the sync endpoint to persist its collection, and two implementations:
``SQLiteStore``, which keeps one serialised blob per device in SQLite, and ``MemoryStore``, which keeps it in memory.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path

from reminderlink import helpers
from reminderlink.exceptions import DecodeFailure
from reminderlink.reminders.model.collection import ReminderCollection

#: Storage key for the primary device's collection.
PRIMARY_KEY = "ReminderLink.reminders"
#: Storage key for the companion device's collection.
COMPANION_KEY = "ReminderLink.companion.reminders"


class LocalStore(ABC):
    """
    Persistence used by the sync endpoint. A save always happens-before any later load the endpoint issues.
    """

    @abstractmethod
    def load_collection(self) -> ReminderCollection:
        """
        Load the persisted collection.

        :return: the persisted collection, or an empty collection if nothing has been saved.
        """

    @abstractmethod
    def save_collection(self, collection: ReminderCollection) -> tuple[bool, str]:
        """
        Persist a collection, replacing whatever was stored before.

        :param collection: the collection to persist.

        :returns:

            -success (:py:class:`bool`) - true if the collection is saved.

            -data (:py:class:`str`) - error message on failure, or success message.

        """

    def load_encoded(self) -> bytes | None:
        """
        Load the persisted collection as stored, without decoding it. Used to answer on-demand requests.

        :return: the encoded collection, or None if nothing has been saved.
        """
        collection = self.load_collection()
        return collection.encode() if len(collection) > 0 or collection.stamp > 0 else None

    def on_collection_replaced(self, collection: ReminderCollection) -> None:
        """
        Called after an inbound snapshot replaced (and saved) the collection. Override to refresh derived state such as
        scheduled notifications or cached views.

        :param collection: the new collection.
        """


class SQLiteStore(LocalStore):
    """
    Stores the encoded collection as a single blob in a key/value table.
    """

    def __init__(self, key: str = PRIMARY_KEY, db_path: Path | None = None):
        """
        Create the store, seeding the table if required.

        :param key: the fixed key the collection is stored under.
        :param db_path: path to the SQLite database file. Defaults to the application database.
        """
        self.key: str = key
        self.db_path: Path = Path(db_path) if db_path else helpers.db_folder()
        success, data = self.seed_state_table()
        if not success:
            logging.critical('Failed to create state table: {}'.format(data))

    def seed_state_table(self) -> tuple[bool, str]:
        """
        Creates the initial structure for the table storing the collection in SQLite.

        :returns:

            -success (:py:class:`bool`) - true if the table is successfully seeded.

            -data (:py:class:`str`) - error message on failure or success message.

        """
        try:
            with closing(sqlite3.connect(self.db_path)) as connection:
                with closing(connection.cursor()) as cursor:
                    sql_create_state_table = """CREATE TABLE IF NOT EXISTS rl_state (
                                        key TEXT PRIMARY KEY,
                                        value BLOB NOT NULL
                                        );"""
                    cursor.execute(sql_create_state_table)
                    connection.commit()
        except sqlite3.OperationalError as e:
            return False, repr(e)
        return True, 'rl_state table created'

    def load_encoded(self) -> bytes | None:
        try:
            with closing(sqlite3.connect(self.db_path)) as connection:
                with closing(connection.cursor()) as cursor:
                    row = cursor.execute("SELECT value FROM rl_state WHERE key = ?", (self.key,)).fetchone()
        except sqlite3.OperationalError as e:
            logging.critical('Error retrieving collection from table: {}'.format(e))
            return None
        return bytes(row[0]) if row else None

    def load_collection(self) -> ReminderCollection:
        data = self.load_encoded()
        if data is None:
            return ReminderCollection()
        try:
            return ReminderCollection.decode(data)
        except DecodeFailure as e:
            logging.critical('Stored collection {} could not be decoded: {}'.format(self.key, e))
            return ReminderCollection()

    def save_collection(self, collection: ReminderCollection) -> tuple[bool, str]:
        try:
            with closing(sqlite3.connect(self.db_path)) as connection:
                with closing(connection.cursor()) as cursor:
                    sql_upsert_state = "INSERT OR REPLACE INTO rl_state(key, value) VALUES (?, ?)"
                    cursor.execute(sql_upsert_state, (self.key, sqlite3.Binary(collection.encode())))
                    connection.commit()
        except sqlite3.OperationalError as e:
            return False, repr(e)
        return True, 'Collection stored in rl_state'


class MemoryStore(LocalStore):
    """
    Keeps the encoded collection in memory. Used for tests and for local-only use.
    """

    def __init__(self, collection: ReminderCollection | None = None):
        self._lock = threading.Lock()
        self._data: bytes | None = collection.encode() if collection is not None else None
        self.replaced: list[ReminderCollection] = []

    def load_encoded(self) -> bytes | None:
        with self._lock:
            return self._data

    def load_collection(self) -> ReminderCollection:
        data = self.load_encoded()
        return ReminderCollection.decode(data) if data is not None else ReminderCollection()

    def save_collection(self, collection: ReminderCollection) -> tuple[bool, str]:
        with self._lock:
            self._data = collection.encode()
        return True, 'Collection stored in memory'

    def on_collection_replaced(self, collection: ReminderCollection) -> None:
        self.replaced.append(collection)
