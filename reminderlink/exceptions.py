"""
Exceptions raised by ReminderLink.

Transport failures (``NotActivated``, ``PeerUnreachable``, ``SendTimeout``) are transient and are recovered inside the
sync endpoint by falling back to the next delivery tier. ``TransportUnsupported`` is permanent and leaves the endpoint
in local-only mode. ``DecodeFailure`` is local to a single payload. ``ValidationFailure`` is raised to the caller when a
reminder or collection is built from invalid values.
"""


class ReminderLinkError(Exception):
    """
    Base class for all ReminderLink errors.
    """


class TransportUnsupported(ReminderLinkError):
    """
    The transport is not available on this device or pairing.
    """


class NotActivated(ReminderLinkError):
    """
    The transport session has not (yet) been activated.
    """


class PeerUnreachable(ReminderLinkError):
    """
    The peer cannot be reached on the live tier.
    """


class SendTimeout(ReminderLinkError):
    """
    The peer did not reply to a live request in time.
    """


class DecodeFailure(ReminderLinkError):
    """
    A payload or stored blob could not be decoded.
    """


class ValidationFailure(ReminderLinkError, ValueError):
    """
    A reminder or collection was built from invalid values.
    """
