"""
The wire format shared by all tiers.

A collection payload is a mapping with a single key, ``reminders``, whose value is the base64 text of the encoded
collection. Older senders may put the raw encoded bytes there instead, so decoding treats the value as a tagged union:
text is tried first, binary second.

An on-demand request is the mapping ``{"request": "reminders"}``. A reply to a request is a collection payload, or an
empty mapping if the replying device has nothing stored.
"""

from __future__ import annotations

import base64
import binascii

from reminderlink.exceptions import DecodeFailure
from reminderlink.reminders.model.collection import ReminderCollection

#: Key holding the encoded collection.
REMINDERS_KEY = "reminders"
#: Key holding a request token.
REQUEST_KEY = "request"
#: Token asking the peer for its current collection.
REQUEST_REMINDERS = "reminders"


def encode_collection(collection: ReminderCollection) -> dict:
    """
    Build a collection payload.

    :param collection: the collection to send.

    :return: the payload.
    """
    return encode_blob(collection.encode())


def encode_blob(data: bytes) -> dict:
    """
    Build a collection payload from an already encoded collection.

    :param data: the encoded collection.

    :return: the payload.
    """
    return {REMINDERS_KEY: base64.b64encode(data).decode('ascii')}


def request_payload() -> dict:
    return {REQUEST_KEY: REQUEST_REMINDERS}


def is_request(payload: dict) -> bool:
    return isinstance(payload, dict) and payload.get(REQUEST_KEY) == REQUEST_REMINDERS


def has_collection(payload: dict) -> bool:
    return isinstance(payload, dict) and payload.get(REMINDERS_KEY) is not None


def decode_collection(payload: dict) -> ReminderCollection:
    """
    Decode the collection carried by a payload, whichever tier delivered it.

    :param payload: the received payload.

    :raises DecodeFailure: if the payload carries no collection or it cannot be decoded.

    :return: the decoded collection.
    """
    if not isinstance(payload, dict):
        raise DecodeFailure("Payload is not a mapping: {!r}".format(type(payload)))
    value = payload.get(REMINDERS_KEY)
    if isinstance(value, str):
        try:
            data = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeFailure("Payload text is not valid base64: {}".format(e)) from e
        return ReminderCollection.decode(data)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ReminderCollection.decode(bytes(value))
    if value is None:
        raise DecodeFailure("Payload does not contain reminders.")
    raise DecodeFailure("Payload reminders field has an unrecognised type: {}".format(type(value).__name__))
