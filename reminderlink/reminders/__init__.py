"""
This is the reminder part of ReminderLink. Here, you'll find the following:

- ``model`` - Contains the ``Reminder`` class, which represents a single reminder, and the ``ReminderCollection`` class,
which represents the ordered set of a device's reminders.
- ``store.py`` - Contains the ``LocalStore`` interface used to persist a collection, with SQLite and in-memory
implementations.

"""

from . import model
from . import store

__all__ = ['model', 'store', ]
