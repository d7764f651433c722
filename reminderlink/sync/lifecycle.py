"""
Contains the ``SessionLifecycle`` class, which wraps transport activation and tracks the endpoint's view of the session:

``Idle`` -> ``AwaitingActivation`` -> ``Active{unreachable}`` <-> ``Active{reachable}``

If the transport is not supported, the lifecycle moves to ``Degraded`` instead and stays there: reminders keep working
locally but are never synchronised. There is no terminal state otherwise; a deactivated session is reactivated.

The lifecycle is driven from the sync endpoint's worker thread only, so it needs no locking of its own.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, List

from reminderlink.exceptions import TransportUnsupported
from reminderlink.transport.base import ConnectionState, Transport


class LifecycleState(Enum):
    IDLE = "idle"
    AWAITING_ACTIVATION = "awaiting-activation"
    ACTIVE_UNREACHABLE = "active-unreachable"
    ACTIVE_REACHABLE = "active-reachable"
    DEGRADED = "degraded"

    @property
    def is_active(self) -> bool:
        return self in (LifecycleState.ACTIVE_UNREACHABLE, LifecycleState.ACTIVE_REACHABLE)


class SessionLifecycle:
    """
    Tracks activation and reachability of one endpoint's transport session.
    """

    def __init__(self, transport: Transport, name: str = 'endpoint'):
        """
        :param transport: the transport to activate.
        :param name: name used in log messages.
        """
        self.transport: Transport = transport
        self.name: str = name
        self.state: LifecycleState = LifecycleState.IDLE
        #: Called after activation completes successfully, with the new state.
        self.activated_hooks: List[Callable[[LifecycleState], None]] = []
        #: Called each time the session enters ``Active{reachable}``.
        self.reachable_hooks: List[Callable[[], None]] = []
        self.activation_attempts: int = 0

    def activate(self) -> tuple[bool, str]:
        """
        Request activation of the transport. Does nothing if activation is already in progress or complete, or if the
        transport is not supported.

        :returns:

            -success (:py:class:`bool`) - true if activation was requested or is already in progress or complete.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        if self.state == LifecycleState.DEGRADED:
            return False, '{}: transport not supported, running local only.'.format(self.name)
        if self.state != LifecycleState.IDLE:
            return True, '{}: activation already {}.'.format(self.name, self.state.value)

        try:
            if not self.transport.is_supported():
                raise TransportUnsupported('{} is not supported.'.format(self.transport))
            self.state = LifecycleState.AWAITING_ACTIVATION
            self.activation_attempts += 1
            self.transport.activate()
        except TransportUnsupported as e:
            self.state = LifecycleState.DEGRADED
            warning = '{}: {} Reminders will not be synchronised.'.format(self.name, e)
            logging.warning(warning)
            return False, warning
        logging.debug('{}: activation requested (attempt {}).'.format(self.name, self.activation_attempts))
        return True, '{}: activation requested.'.format(self.name)

    def handle_activated(self, state: ConnectionState, error: Exception | None) -> None:
        """
        Activation finished. On failure the lifecycle returns to ``Idle`` so a later :py:meth:`activate` retries.

        :param state: the transport state after activation.
        :param error: the activation error, if any.
        """
        if self.state == LifecycleState.DEGRADED:
            return
        if error is not None or not state.is_activated:
            logging.warning('{}: activation failed ({}): {}'.format(self.name, state.value, error))
            self.state = LifecycleState.IDLE
            return

        reachable = state == ConnectionState.ACTIVATED_REACHABLE
        logging.info('{}: activated, peer {}.'.format(self.name, 'reachable' if reachable else 'unreachable'))
        self._enter(LifecycleState.ACTIVE_REACHABLE if reachable else LifecycleState.ACTIVE_UNREACHABLE)
        for hook in self.activated_hooks:
            hook(self.state)

    def handle_reachability(self, reachable: bool) -> None:
        """
        The peer's reachability changed. Ignored unless the session is active.

        :param reachable: the new reachability.
        """
        if not self.state.is_active:
            logging.debug('{}: reachability change ignored while {}.'.format(self.name, self.state.value))
            return
        logging.info('{}: peer is now {}.'.format(self.name, 'reachable' if reachable else 'unreachable'))
        self._enter(LifecycleState.ACTIVE_REACHABLE if reachable else LifecycleState.ACTIVE_UNREACHABLE)

    def handle_deactivated(self) -> None:
        """
        The transport deactivated the session. This is not fatal: activation is requested again.
        """
        if self.state == LifecycleState.DEGRADED:
            return
        logging.warning('{}: session deactivated, reactivating.'.format(self.name))
        self.state = LifecycleState.IDLE
        self.activate()

    def _enter(self, new_state: LifecycleState) -> None:
        previous = self.state
        self.state = new_state
        if new_state == LifecycleState.ACTIVE_REACHABLE and previous != LifecycleState.ACTIVE_REACHABLE:
            for hook in self.reachable_hooks:
                hook()
