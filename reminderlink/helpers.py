"""
This is a helper file used by both reminder storage and reminder synchronisation.
"""

from __future__ import annotations

import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from decouple import config

DATA_LOCATION: Path = Path(config('REMINDERLINK_DATA_DIR', default=str(Path.home() / ".reminderlink")))  #: Location
# where application data is stored.


def get_uuid() -> str:
    """
    Generates a UUID.

    :return: a UUID.
    """
    return str(uuid.uuid4())


def now() -> datetime:
    """
    The current time as a timezone-aware UTC datetime.

    :return: the current time.
    """
    return datetime.now(timezone.utc)


def next_stamp(previous: float) -> float:
    """
    Get a send timestamp which is strictly greater than ``previous``. The wall clock is used unless it has not moved
    past the previous stamp (e.g. two mutations within the clock resolution, or a clock stepped backwards).

    :param previous: the last stamp issued or applied.

    :return: the new stamp in seconds since the epoch.
    """
    stamp = time.time()
    if stamp <= previous:
        stamp = previous + 0.001
    return stamp


def db_folder() -> Path:
    """
    Get the location of the SQLite database file.

    :return: path to the SQLite database file.
    """
    DATA_LOCATION.mkdir(parents=True, exist_ok=True)
    return DATA_LOCATION / "ReminderLink.db"


def log_folder() -> Path:
    """
    Get the location of the ``Logs`` folder within ReminderLink's data folder.

    :return: path to the ``Logs`` folder.
    """
    folder = DATA_LOCATION / 'Logs'
    folder.mkdir(parents=True, exist_ok=True)
    return folder


def settings_folder() -> Path:
    """
    Get the location of the data folder for ReminderLink

    :return: path to the data folder.
    """
    folder = DATA_LOCATION
    folder.mkdir(parents=True, exist_ok=True)
    return folder


class DateUtil:
    """
    Utility class for converting between datetimes and the formats used on the wire and in the CLI.
    """

    ISO_DATETIME = "iso"
    CLI_DATETIME = "%Y-%m-%d %H:%M"
    DISPLAY_DATETIME = "%A, %d %B %Y at %H:%M"

    @staticmethod
    def convert(source_format: str,
                obj: str | datetime,
                required_format: str = '') -> str | datetime | bool:
        """
        Convert one date/datetime format to another. Parsed datetimes without a timezone are assumed to be UTC.

        :param source_format: the format of the source date/datetime. Can be left empty if ``obj`` is a :py:class:`datetime`
        object.
        :param obj: what to convert from. Can either be a string, or a :py:class:`datetime` object.
        :param required_format: the format required if the required output is of type :py:class:`str`.

        """
        if isinstance(obj, str):
            try:
                if source_format == DateUtil.ISO_DATETIME:
                    parsed = datetime.fromisoformat(obj.replace("Z", "+00:00"))
                else:
                    parsed = datetime.strptime(obj, source_format)
            except ValueError:
                return False
            return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)
        if required_format == '':
            return obj
        try:
            if required_format == DateUtil.ISO_DATETIME:
                return obj.astimezone(timezone.utc).isoformat()
            return obj.strftime(required_format)
        except (ValueError, AttributeError):
            print('Could not convert date to specified format {}'.format(required_format), file=sys.stderr)
            return False


class FunctionHandler(logging.Handler):
    def __init__(self, func: Callable):
        logging.Handler.__init__(self)
        self.func = func

    def emit(self, record):
        msg = self.format(record)
        self.func(msg)
