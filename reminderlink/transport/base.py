"""
Abstract base class for the transport between the two paired devices.

A transport offers three ways of sending a payload, from cheapest and least reliable to most reliable:

- ``send_request`` - live request/reply. Only available while the peer is reachable. Blocks up to a timeout and
  resolves exactly once.
- ``push`` - best-effort message. Only available while the peer is reachable. Never blocks; the outcome is reported
  through a callback and may be a failure.
- ``transfer`` - durable queued transfer. Available in any activated state. Delivered in FIFO order once the peer is
  activated, and survives the sending process restarting.

It also holds a one-slot *context*: the last state each side published, readable by the other side without a round
trip.

Events are reported to a :py:class:`TransportDelegate`, possibly from several threads at once.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable


class ConnectionState(Enum):
    """
    State of the transport session.
    """
    NOT_SUPPORTED = "not-supported"
    INACTIVE = "inactive"
    ACTIVATING = "activating"
    ACTIVATED_UNREACHABLE = "activated-unreachable"
    ACTIVATED_REACHABLE = "activated-reachable"

    @property
    def is_activated(self) -> bool:
        return self in (ConnectionState.ACTIVATED_UNREACHABLE, ConnectionState.ACTIVATED_REACHABLE)


class Tier(Enum):
    """
    The delivery tier an inbound payload arrived on.
    """
    LIVE = "live"
    PUSH = "push"
    DURABLE = "durable"
    CONTEXT = "context"


class TransportDelegate(ABC):
    """
    Receives transport events. Implementations must be safe to call from any thread.
    """

    @abstractmethod
    def on_activated(self, state: ConnectionState, error: Exception | None) -> None:
        """
        Activation finished.

        :param state: the state after activation.
        :param error: the error if activation failed, otherwise None.
        """

    @abstractmethod
    def on_reachability_changed(self, reachable: bool) -> None:
        """
        The peer became reachable or unreachable.
        """

    @abstractmethod
    def on_deactivated(self) -> None:
        """
        The session was deactivated by the transport.
        """

    @abstractmethod
    def on_receive(self, payload: dict, tier: Tier) -> None:
        """
        A payload arrived from the peer.

        :param payload: the payload as sent.
        :param tier: the tier it was delivered on.
        """

    @abstractmethod
    def on_request(self, payload: dict) -> dict:
        """
        The peer sent a live request and is waiting for a reply.

        :param payload: the request payload.

        :return: the reply payload.
        """


class Transport(ABC):
    """Abstract base class that all transports must implement."""

    def __init__(self, name: str = '') -> None:
        self.name: str = name if name else self.__class__.__name__
        self.logger = logging.getLogger(self.name)
        self.delegate: TransportDelegate | None = None

    def set_delegate(self, delegate: TransportDelegate) -> None:
        self.delegate = delegate

    @abstractmethod
    def is_supported(self) -> bool:
        """
        Whether this transport can be used on this device at all.
        """

    @property
    @abstractmethod
    def state(self) -> ConnectionState:
        """
        The current session state.
        """

    @abstractmethod
    def activate(self) -> None:
        """
        Request activation of the session. Completion is reported through
        :py:meth:`TransportDelegate.on_activated`.

        :raises TransportUnsupported: if the transport is not supported.
        """

    @abstractmethod
    def send_request(self, payload: dict, timeout: float) -> dict:
        """
        Send a live request and wait for the reply.

        :param payload: the request payload.
        :param timeout: the maximum number of seconds to wait.

        :raises NotActivated: if the session is not activated.
        :raises PeerUnreachable: if the peer is not reachable, or stops being reachable before replying.
        :raises SendTimeout: if no reply arrives within ``timeout`` seconds.

        :return: the reply payload.
        """

    @abstractmethod
    def push(self,
             payload: dict,
             on_delivered: Callable[[dict], Any] | None = None,
             on_error: Callable[[dict, Exception], Any] | None = None) -> None:
        """
        Send a best-effort message without waiting. Exactly one of the callbacks is called later, from a transport
        thread. Pushes carry no ordering guarantee and may be dropped.

        :param payload: the payload to send.
        :param on_delivered: called with the payload once the peer received it.
        :param on_error: called with the payload and the error if it could not be delivered.
        """

    @abstractmethod
    def transfer(self, payload: dict) -> None:
        """
        Queue a payload for durable delivery.

        :param payload: the payload to send.

        :raises NotActivated: if the session is not activated.
        """

    @abstractmethod
    def update_context(self, payload: dict) -> None:
        """
        Publish the latest state to the peer's context slot, replacing any earlier context.

        :param payload: the payload to publish.

        :raises NotActivated: if the session is not activated.
        """

    @property
    @abstractmethod
    def received_context(self) -> dict:
        """
        The last context published by the peer, or an empty dictionary.
        """

    @property
    @abstractmethod
    def last_transfer(self) -> dict:
        """
        The last durable transfer received from the peer, or an empty dictionary.
        """

    def __repr__(self) -> str:
        return "<{} ({})>".format(self.name, self.state.value)
