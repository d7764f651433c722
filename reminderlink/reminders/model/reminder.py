"""
Contains the ``Reminder`` class, which represents a single reminder, and the ``Priority`` enumeration.
"""

from __future__ import annotations

import datetime
from enum import Enum

from reminderlink import helpers
from reminderlink.exceptions import DecodeFailure, ValidationFailure
from reminderlink.helpers import DateUtil


class Priority(Enum):
    """
    The priority of a reminder. The value is the form used on the wire.
    """
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @staticmethod
    def parse(value: str | Priority) -> Priority:
        """
        Parse a priority from its wire value or its name, ignoring case.

        :param value: the value to parse, e.g. ``"Medium"`` or ``"high"``.

        :return: the matching priority.
        """
        if isinstance(value, Priority):
            return value
        for priority in Priority:
            if isinstance(value, str) and value.lower() in (priority.value.lower(), priority.name.lower()):
                return priority
        raise ValidationFailure("Unknown priority: {}".format(value))


class Reminder:
    """
    Represents a reminder. Two reminders with the same ``id`` are the same logical reminder, regardless of their other
    values. There is no version field; reminders are only ever synchronised as part of a whole collection.
    """

    def __init__(self,
                 title: str,
                 notes: str = '',
                 due_date: datetime.datetime | None = None,
                 is_completed: bool = False,
                 priority: Priority | str = Priority.MEDIUM,
                 reminder_id: str | None = None,
                 created_at: datetime.datetime | None = None,
                 ):
        """
        Create a new reminder.

        :param title: the title of this reminder. Must not be blank.
        :param notes: free-text notes, may be empty.
        :param due_date: the datetime when this reminder is due. Defaults to one hour from now.
        :param is_completed: True if this reminder has been completed.
        :param priority: the priority of this reminder.
        :param reminder_id: the UUID of this reminder. A new UUID is assigned if not given.
        :param created_at: the datetime when this reminder was created. Defaults to now.

        :raises ValidationFailure: if the title is blank or a datetime is missing its timezone.
        """
        if not isinstance(title, str) or title.strip() == '':
            raise ValidationFailure("Reminder title must not be empty.")
        current = helpers.now()
        self.id: str = reminder_id if reminder_id else helpers.get_uuid()
        self.title: str = title
        self.notes: str = notes if notes is not None else ''
        self.due_date: datetime.datetime = Reminder._aware(due_date, 'due_date') if due_date else \
            current + datetime.timedelta(hours=1)
        self.is_completed: bool = bool(is_completed)
        self.priority: Priority = Priority.parse(priority)
        self.created_at: datetime.datetime = Reminder._aware(created_at, 'created_at') if created_at else current

    @staticmethod
    def _aware(value: datetime.datetime, field: str) -> datetime.datetime:
        if not isinstance(value, datetime.datetime):
            raise ValidationFailure("{} must be a datetime, got {!r}".format(field, value))
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value

    def with_changes(self, **changes) -> Reminder:
        """
        Create a copy of this reminder with some values replaced. The ``id`` and ``created_at`` of a reminder are
        immutable and cannot be changed.

        :param changes: any of ``title``, ``notes``, ``due_date``, ``is_completed`` and ``priority``.

        :return: the updated copy.
        """
        immutable = {'id', 'reminder_id', 'created_at'}.intersection(changes)
        if immutable:
            raise ValidationFailure("Cannot change {} of a reminder.".format(', '.join(sorted(immutable))))
        values = {
            'title': self.title,
            'notes': self.notes,
            'due_date': self.due_date,
            'is_completed': self.is_completed,
            'priority': self.priority,
        }
        unknown = set(changes).difference(values)
        if unknown:
            raise ValidationFailure("Unknown reminder fields: {}".format(', '.join(sorted(unknown))))
        values.update(changes)
        return Reminder(reminder_id=self.id, created_at=self.created_at, **values)

    def toggled(self) -> Reminder:
        """
        :return: a copy of this reminder with its completion flipped.
        """
        return self.with_changes(is_completed=not self.is_completed)

    def to_dict(self) -> dict:
        """
        Convert to a dictionary using the wire field names.

        :return: the dictionary representation of this reminder.
        """
        return {
            'id': self.id,
            'title': self.title,
            'notes': self.notes,
            'dueDate': DateUtil.convert('', self.due_date, DateUtil.ISO_DATETIME),
            'isCompleted': self.is_completed,
            'priority': self.priority.value,
            'createdAt': DateUtil.convert('', self.created_at, DateUtil.ISO_DATETIME),
        }

    @staticmethod
    def from_dict(data: dict) -> Reminder:
        """
        Creates a Reminder instance from a dictionary produced by :py:meth:`to_dict`.

        :param data: the dictionary to read.

        :raises DecodeFailure: if a field is missing or malformed.

        :return: a Reminder instance.
        """
        try:
            for field in ('dueDate', 'createdAt', 'notes'):
                if not isinstance(data[field], str):
                    raise DecodeFailure("Invalid {} in reminder {}: {!r}".format(field, data.get('id'), data[field]))
            due_date = DateUtil.convert(DateUtil.ISO_DATETIME, data['dueDate'])
            created_at = DateUtil.convert(DateUtil.ISO_DATETIME, data['createdAt'])
            if due_date is False or created_at is False:
                raise DecodeFailure("Invalid date in reminder {}".format(data.get('id')))
            if not isinstance(data['id'], str) or data['id'] == '':
                raise DecodeFailure("Invalid reminder id {!r}".format(data['id']))
            if not isinstance(data['isCompleted'], bool):
                raise DecodeFailure("Invalid completion flag in reminder {}".format(data.get('id')))
            return Reminder(
                reminder_id=data['id'],
                title=data['title'],
                notes=data['notes'],
                due_date=due_date,
                is_completed=data['isCompleted'],
                priority=Priority.parse(data['priority']),
                created_at=created_at,
            )
        except (KeyError, TypeError, AttributeError, ValidationFailure) as e:
            raise DecodeFailure("Unable to decode reminder: {!r}".format(e)) from e

    def __eq__(self, other):
        if not isinstance(other, Reminder):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def __str__(self):
        return self.title

    def __repr__(self):
        return self.title
