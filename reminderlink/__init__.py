"""
This is the main package for ReminderLink.

- ``reminders`` - the reminder model and local storage.
- ``transport`` - the transport between the two paired devices, and the wire format.
- ``sync`` - the sync endpoint, its session lifecycle and the background refresh.
- ``cli`` - the ReminderLink command line.
- ``helpers`` - helpers used throughout ReminderLink.

"""

from . import helpers

__all__ = ['helpers', ]

__version__ = "0.1.0"
