"""
Contains the ``ReminderCollection`` class, the ordered set of a device's reminders. The collection is the unit of
synchronisation: single reminders are never sent or merged on their own.
"""

from __future__ import annotations

import datetime
import json
import math
from typing import Iterator, List

from reminderlink import helpers
from reminderlink.exceptions import DecodeFailure, ValidationFailure
from reminderlink.reminders.model.reminder import Reminder


class ReminderCollection:
    """
    An ordered list of reminders with unique ids, together with the ``stamp`` of the snapshot it represents.

    The stamp is the send time (seconds since the epoch) of the last local mutation, or the ``sentAt`` of the last
    inbound snapshot which replaced this collection. A collection which has never been stamped has a stamp of ``0.0``.
    """

    def __init__(self, reminders: List[Reminder] | None = None, stamp: float = 0.0):
        """
        Create a new collection.

        :param reminders: the reminders in this collection, in order.
        :param stamp: the send time of the snapshot this collection represents.

        :raises ValidationFailure: if two reminders share an id.
        """
        self.reminders: List[Reminder] = []
        self.stamp: float = float(stamp)
        for reminder in reminders or []:
            self.add(reminder)

    def add(self, reminder: Reminder) -> None:
        """
        Append a reminder.

        :param reminder: the reminder to append.

        :raises ValidationFailure: if a reminder with the same id is already present.
        """
        if self.get(reminder.id) is not None:
            raise ValidationFailure("Duplicate reminder id {}".format(reminder.id))
        self.reminders.append(reminder)

    def replace(self, reminder: Reminder) -> bool:
        """
        Replace the reminder with the same id, keeping its position.

        :param reminder: the updated reminder.

        :return: True if a reminder was replaced.
        """
        for index, existing in enumerate(self.reminders):
            if existing.id == reminder.id:
                self.reminders[index] = reminder
                return True
        return False

    def remove(self, reminder_id: str) -> Reminder | None:
        """
        Remove a reminder by id.

        :param reminder_id: the id of the reminder to remove.

        :return: the removed reminder, or None if it was not found.
        """
        reminder = self.get(reminder_id)
        if reminder is not None:
            self.reminders.remove(reminder)
        return reminder

    def get(self, reminder_id: str) -> Reminder | None:
        return next((r for r in self.reminders if r.id == reminder_id), None)

    def ids(self) -> List[str]:
        return [r.id for r in self.reminders]

    def copy(self) -> ReminderCollection:
        return ReminderCollection(list(self.reminders), self.stamp)

    # Views -----------------------------------------------------------------------------------------------------------

    def upcoming(self, when: datetime.datetime | None = None) -> List[Reminder]:
        """
        Reminders which are not completed and are due in the future, soonest first.

        :param when: the time to compare due dates against. Defaults to now.
        """
        when = when if when else helpers.now()
        return sorted((r for r in self.reminders if not r.is_completed and r.due_date > when),
                      key=lambda r: r.due_date)

    def completed(self) -> List[Reminder]:
        """
        Completed reminders, most recently due first.
        """
        return sorted((r for r in self.reminders if r.is_completed), key=lambda r: r.due_date, reverse=True)

    def by_due_date(self) -> List[Reminder]:
        return sorted(self.reminders, key=lambda r: r.due_date)

    def next_reminder(self, when: datetime.datetime | None = None) -> Reminder | None:
        upcoming = self.upcoming(when)
        return upcoming[0] if upcoming else None

    def pending_count(self, when: datetime.datetime | None = None) -> int:
        return len(self.upcoming(when))

    # Encoding --------------------------------------------------------------------------------------------------------

    def encode(self) -> bytes:
        """
        Encode this collection as UTF-8 JSON. The encoding is deterministic: keys are sorted and separators are compact,
        so equal collections always produce identical bytes.

        :return: the encoded collection.
        """
        document = {
            'sentAt': self.stamp,
            'reminders': [r.to_dict() for r in self.reminders],
        }
        return json.dumps(document, sort_keys=True, separators=(',', ':'), ensure_ascii=False).encode('utf-8')

    @staticmethod
    def decode(data: bytes | str) -> ReminderCollection:
        """
        Decode a collection produced by :py:meth:`encode`. A bare JSON list of reminders (the stampless form) is also
        accepted and decoded with a stamp of ``0.0``.

        :param data: the encoded collection.

        :raises DecodeFailure: if the data is not a valid collection.

        :return: the decoded collection.
        """
        try:
            document = json.loads(data, parse_constant=ReminderCollection._reject_constant)
        except (ValueError, TypeError) as e:
            raise DecodeFailure("Collection is not valid JSON: {}".format(e)) from e

        if isinstance(document, list):
            items, stamp = document, 0.0
        elif isinstance(document, dict) and isinstance(document.get('reminders'), list):
            items, stamp = document['reminders'], document.get('sentAt', 0.0)
        else:
            raise DecodeFailure("Collection has an unrecognised structure.")

        if isinstance(stamp, bool) or not isinstance(stamp, (int, float)):
            raise DecodeFailure("Invalid sentAt value {!r}".format(stamp))
        try:
            stamp = float(stamp)
        except OverflowError as e:
            raise DecodeFailure("Invalid sentAt value: {}".format(e)) from e
        if not math.isfinite(stamp):
            raise DecodeFailure("Invalid sentAt value {!r}".format(stamp))
        if not all(isinstance(item, dict) for item in items):
            raise DecodeFailure("Collection contains an entry which is not a reminder.")
        try:
            return ReminderCollection([Reminder.from_dict(item) for item in items], stamp)
        except ValidationFailure as e:
            raise DecodeFailure("Invalid collection: {}".format(e)) from e

    @staticmethod
    def _reject_constant(name: str) -> float:
        raise ValueError("{} is not a valid number".format(name))

    def __iter__(self) -> Iterator[Reminder]:
        return iter(self.reminders)

    def __len__(self):
        return len(self.reminders)

    def __contains__(self, item):
        if isinstance(item, Reminder):
            return item in self.reminders
        return self.get(item) is not None

    def __eq__(self, other):
        if not isinstance(other, ReminderCollection):
            return NotImplemented
        return self.encode() == other.encode()

    def __repr__(self):
        return 'ReminderCollection({}, stamp={})'.format(self.reminders, self.stamp)
