"""
Contains the background refresh, which periodically wakes the sync endpoint: an idle session is reactivated, the
companion pulls the latest collection, and the host application is asked to refresh anything derived from the
reminders.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

import schedule

from reminderlink.reminders.model.collection import ReminderCollection
from reminderlink.sync.endpoint import SyncEndpoint


def run_continuously(scheduler: schedule.Scheduler, interval: float = 1) -> threading.Event:
    """
    Utility function which continuously calls ``scheduler`` to run any pending jobs.

    :param scheduler: the scheduler to run.
    :param interval: interval between cycles.

    :return: a threading event which can be used to stop the continuous run.
    """

    #: When set, the thread will be stopped
    cease_continuous_run = threading.Event()

    class ScheduleThread(threading.Thread):
        """
        Class to run continuous tasks
        """
        def run(self):
            """
            Keep tasks running until cancelled
            """
            while not cease_continuous_run.is_set():
                scheduler.run_pending()
                time.sleep(interval)

    continuous_thread = ScheduleThread(name='reminderlink-refresh', daemon=True)
    continuous_thread.start()
    return cease_continuous_run


class BackgroundRefresh:
    """
    Runs :py:meth:`SyncEndpoint.refresh` on a fixed interval.
    """

    def __init__(self,
                 endpoint: SyncEndpoint,
                 interval_minutes: int = 30,
                 on_refresh: Callable[[ReminderCollection], None] | None = None):
        """
        :param endpoint: the endpoint to refresh.
        :param interval_minutes: minutes between refreshes.
        :param on_refresh: called with the current collection after each refresh, e.g. to reload widgets.
        """
        self.endpoint: SyncEndpoint = endpoint
        self.interval_minutes: int = interval_minutes
        self.on_refresh: Callable[[ReminderCollection], None] | None = on_refresh
        self.scheduler: schedule.Scheduler = schedule.Scheduler()
        self._stop: threading.Event | None = None

    def refresh(self) -> tuple[bool, str]:
        """
        Carries out one refresh.

        :returns:

            -success (:py:class:`bool`) - true if the endpoint refreshed successfully.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        success, data = self.endpoint.refresh()
        if success:
            logging.debug('Background refresh: {}'.format(data))
        else:
            logging.warning('Background refresh: {}'.format(data))
        if self.on_refresh is not None:
            self.on_refresh(self.endpoint.reminders())
        return success, data

    def start(self) -> None:
        """
        Schedule the refresh and start the thread running it.
        """
        if self._stop is not None:
            return
        self.scheduler.every(self.interval_minutes).minutes.do(self.refresh)
        self._stop = run_continuously(self.scheduler)
        next_run = self.scheduler.next_run
        logging.info('Background refresh every {} minutes, next at {}'.format(
            self.interval_minutes, next_run.strftime('%H:%M:%S') if next_run else 'unknown'))

    def stop(self) -> None:
        if self._stop is None:
            return
        self._stop.set()
        self.scheduler.clear()
        self._stop = None
