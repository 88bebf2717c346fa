"""ZeroMQ XSUB/XPUB relay unit.

A relay unit binds two endpoints. Publishers connect to the XSUB socket, and
subscribers connect to the XPUB socket. Published messages flow from XSUB to
XPUB; subscription requests flow from XPUB back to XSUB so that publishers
can filter at the source.

Neither direction ever blocks. Both sockets are lossy: the XPUB socket drops
messages for any subscriber whose queue has reached the high-water mark, and
the XSUB socket drops subscription requests for a publisher it cannot reach.
These drops happen inside libzmq and are not visible to, or counted by, the
relay.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import queue
import threading
from typing import Optional, Tuple

import zmq

from .config import PairSpec
from .errors import BindError, ForwardingError

logger = logging.getLogger("zrelay.Relay")


class RelayState(enum.Enum):
    UNBOUND = 0
    BINDING = 1
    RUNNING = 2
    TERMINATED = 3


class Reason(enum.Enum):
    """Why a relay unit reached :attr:`RelayState.TERMINATED`."""

    BIND_FAILURE = "bind failure"
    CANCELLED = "cancelled"
    FORWARDING_FAILURE = "forwarding failure"


@dataclasses.dataclass
class RelayStats:
    """Aggregate counters for one relay unit.

    A message counts as forwarded once it has been handed to the next socket,
    whether or not every subscriber receives it. Only the unit's worker thread
    updates these values.
    """

    messages_forwarded: int = 0
    subscriptions_forwarded: int = 0


@dataclasses.dataclass(frozen=True)
class Outcome:
    """Terminal report for a relay unit."""

    label: str
    state: RelayState
    reason: Reason
    detail: Optional[str] = None
    stats: RelayStats = dataclasses.field(default_factory=RelayStats)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.reason.value}: {self.detail}"
        return self.reason.value


class RelayUnit:
    """Bridge one XSUB endpoint and one XPUB endpoint.

    The unit owns both sockets; nothing else may touch them. Call
    :meth:`start` to run the unit in a background thread, or :meth:`run`
    to run it in the calling thread. Either way the unit runs until
    :meth:`stop` is called or a transport error occurs.

    If *events* is provided it must be a queue; the unit's :class:`Outcome`
    is put on it when the unit terminates. If *context* is not provided the
    unit creates, and later terminates, its own :class:`zmq.Context`.
    """

    def __init__(
        self,
        spec: PairSpec,
        label: Optional[str] = None,
        context: Optional[zmq.Context] = None,
        events: Optional[queue.SimpleQueue] = None,
    ):
        self.spec = spec
        self.label = label or spec.label(0)
        self.events = events

        self._own_context = context is None
        self.context = zmq.Context() if context is None else context

        self.state = RelayState.UNBOUND
        self.outcome: Optional[Outcome] = None
        self.stats = RelayStats()
        self.endpoints: Tuple[Optional[str], Optional[str]] = (None, None)

        self.publisher_socket: Optional[zmq.Socket] = None
        self.subscriber_socket: Optional[zmq.Socket] = None

        # Cancellation is delivered as a message on an internal PAIR socket,
        # so that it wakes up the poller like any other traffic.

        internal = f"inproc://zrelay.RelayUnit:signal:{id(self)}"
        self._sig_rx = self.context.socket(zmq.PAIR)
        self._sig_rx.setsockopt(zmq.LINGER, 0)
        self._sig_rx.bind(internal)
        self._sig_tx = self.context.socket(zmq.PAIR)
        self._sig_tx.setsockopt(zmq.LINGER, 0)
        self._sig_tx.connect(internal)
        # stop() may be re-entered from a signal handler on the same thread.
        self._sig_lock = threading.RLock()

        self.shutdown = False
        self._ready = threading.Event()
        self.thread: Optional[threading.Thread] = None

    def __repr__(self) -> str:
        return f"<RelayUnit {self.label} {self.state.name}>"

    # --- public interface ---

    def start(self) -> "RelayUnit":
        """Run the unit in a new daemon thread."""

        if self.thread is not None:
            raise RuntimeError(f"relay unit {self.label} already started")

        self.thread = threading.Thread(target=self.run, name=f"zrelay:{self.label}", daemon=True)
        self.thread.start()
        return self

    def stop(self) -> None:
        """Ask the unit to terminate. Safe to call from any thread, and more
        than once; the unit exits at its next wakeup.
        """

        with self._sig_lock:
            if self.shutdown:
                return
            self.shutdown = True
            if self._sig_tx is not None:
                self._sig_tx.send(b"", zmq.NOBLOCK)

    def join(self, timeout: Optional[float] = None) -> Optional[Outcome]:
        if self.thread is not None:
            self.thread.join(timeout)
        return self.outcome

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until the unit is either running or terminated."""
        return self._ready.wait(timeout)

    def run(self) -> Outcome:
        """Bind both endpoints and forward until stopped. Always returns the
        terminal :class:`Outcome`; per-unit failures are never raised.
        """

        if self.state is not RelayState.UNBOUND:
            raise RuntimeError(f"relay unit {self.label} already ran")

        if self.shutdown:
            return self._terminate(Reason.CANCELLED)

        try:
            self._bind()
        except BindError as e:
            return self._terminate(Reason.BIND_FAILURE, str(e))
        except Exception as e:
            logger.exception("[%s] unexpected error while binding", self.label)
            return self._terminate(Reason.BIND_FAILURE, repr(e))

        self._transition(RelayState.RUNNING)
        self._ready.set()
        logger.info("[%s] ready; XSUB %s | XPUB %s", self.label, *self.endpoints)

        try:
            self._forward()
        except ForwardingError as e:
            return self._terminate(Reason.FORWARDING_FAILURE, str(e))
        except Exception as e:
            logger.exception("[%s] unexpected error while forwarding", self.label)
            return self._terminate(Reason.FORWARDING_FAILURE, repr(e))

        return self._terminate(Reason.CANCELLED)

    # --- internal ---

    def _transition(self, state: RelayState) -> None:
        if state.value <= self.state.value:
            raise RuntimeError(
                f"invalid relay state transition: {self.state.name} -> {state.name}"
            )
        self.state = state

    def _bind(self) -> None:
        self._transition(RelayState.BINDING)
        spec = self.spec

        try:
            xsub = self.context.socket(zmq.XSUB)
            self.publisher_socket = xsub
            xpub = self.context.socket(zmq.XPUB)
            self.subscriber_socket = xpub

            # High-water marks must be set before bind() to apply to every
            # connection accepted afterwards.

            xsub.setsockopt(zmq.LINGER, 0)
            xsub.setsockopt(zmq.RCVHWM, spec.inbound_limit)
            xpub.setsockopt(zmq.LINGER, 0)
            xpub.setsockopt(zmq.SNDHWM, spec.outbound_limit)
        except zmq.ZMQError as e:
            self._close_sockets()
            raise BindError(f"cannot create sockets: {e}") from e

        for socket, endpoint in ((xsub, spec.publisher_endpoint), (xpub, spec.subscriber_endpoint)):
            try:
                socket.bind(endpoint)
            except zmq.ZMQError as e:
                self._close_sockets()
                raise BindError(f"cannot bind {endpoint!r}: {e}") from e

        self.endpoints = (
            xsub.getsockopt_string(zmq.LAST_ENDPOINT),
            xpub.getsockopt_string(zmq.LAST_ENDPOINT),
        )

    def _forward(self) -> None:
        xsub = self.publisher_socket
        xpub = self.subscriber_socket

        poller = zmq.Poller()
        poller.register(self._sig_rx, zmq.POLLIN)
        poller.register(xsub, zmq.POLLIN)
        poller.register(xpub, zmq.POLLIN)

        try:
            while True:
                for active, _flag in poller.poll():
                    if active is self._sig_rx:
                        self._sig_rx.recv(zmq.NOBLOCK)
                        return
                    elif active is xsub:
                        self._messages(xsub, xpub)
                    elif active is xpub:
                        self._subscriptions(xpub, xsub)
        except zmq.ContextTerminated:
            return
        except zmq.ZMQError as e:
            raise ForwardingError(str(e)) from e

    def _messages(self, xsub: zmq.Socket, xpub: zmq.Socket) -> None:
        if _relay_one(xsub, xpub):
            self.stats.messages_forwarded += 1

    def _subscriptions(self, xpub: zmq.Socket, xsub: zmq.Socket) -> None:
        if _relay_one(xpub, xsub):
            self.stats.subscriptions_forwarded += 1

    def _close_sockets(self) -> None:
        for socket in (self.publisher_socket, self.subscriber_socket):
            if socket is not None:
                socket.close(linger=0)
        self.publisher_socket = None
        self.subscriber_socket = None

    def _close(self) -> None:
        self._close_sockets()

        with self._sig_lock:
            self.shutdown = True
            self._sig_tx.close(linger=0)
            self._sig_tx = None
        self._sig_rx.close(linger=0)

        if self._own_context:
            self.context.term()

    def _terminate(self, reason: Reason, detail: Optional[str] = None) -> Outcome:
        self._close()
        self._transition(RelayState.TERMINATED)

        stats = dataclasses.replace(self.stats)
        outcome = Outcome(self.label, self.state, reason, detail, stats)
        self.outcome = outcome

        if reason is Reason.CANCELLED:
            logger.info("[%s] terminated: %s; %s", self.label, outcome, _describe(stats))
        else:
            logger.error("[%s] terminated: %s; %s", self.label, outcome, _describe(stats))

        self._ready.set()
        if self.events is not None:
            self.events.put(outcome)

        return outcome


def _relay_one(source: zmq.Socket, sink: zmq.Socket) -> bool:
    """Move one multipart message from *source* to *sink*. Returns False if
    there was nothing to receive.

    Neither XPUB nor XSUB blocks on send; a full subscriber queue is handled
    by dropping inside the socket, so there is no EAGAIN to handle here.
    """

    try:
        frames = source.recv_multipart(zmq.NOBLOCK)
    except zmq.Again:
        return False

    sink.send_multipart(frames, zmq.NOBLOCK)
    return True


def _describe(stats: RelayStats) -> str:
    return (
        f"messages forwarded={stats.messages_forwarded}, "
        f"subscriptions forwarded={stats.subscriptions_forwarded}"
    )


def start_unit(
    spec: PairSpec,
    label: Optional[str] = None,
    context: Optional[zmq.Context] = None,
    events: Optional[queue.SimpleQueue] = None,
) -> RelayUnit:
    """Create a :class:`RelayUnit` for *spec* and start it in the background."""

    unit = RelayUnit(spec, label=label, context=context, events=events)
    return unit.start()


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
