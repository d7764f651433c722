"""
This is the model of the reminder part of ReminderLink. Here, you'll find the following:

- ``reminder.py`` - Contains the ``Reminder`` class which represents a reminder, and the ``Priority`` enumeration.
- ``collection.py`` - Contains the ``ReminderCollection`` class, the unit of synchronisation.

"""

from . import reminder, collection

__all__ = ['reminder', 'collection', ]
