"""
This is the transport part of ReminderLink. Here, you'll find the following:

- ``base.py`` - Contains the ``Transport`` base class with its three delivery tiers, the ``TransportDelegate``
callbacks and the ``ConnectionState`` enumeration.
- ``payload.py`` - Contains the wire format shared by all tiers.
- ``loopback.py`` - Contains ``LoopbackLink``, an in-process pair of transports with a persisted durable queue.

"""

from . import base, payload, loopback

__all__ = ['base', 'payload', 'loopback', ]
