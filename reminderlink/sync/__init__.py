"""
This is the synchronisation part of ReminderLink. Here, you'll find the following:

- ``endpoint.py`` - Contains the ``SyncEndpoint`` class, which runs identically on both devices.
- ``lifecycle.py`` - Contains the ``SessionLifecycle`` class, which handles activation and reachability.
- ``scheduler.py`` - Contains the ``BackgroundRefresh`` class, which periodically wakes the endpoint.

"""

from . import lifecycle, endpoint, scheduler

__all__ = ['lifecycle', 'endpoint', 'scheduler', ]
