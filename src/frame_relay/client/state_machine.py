"""
Connection State Machine
========================

Client-side connection lifecycle shared by producers and consumers.

    DISCONNECTED → CONNECTING → CONNECTED → RECONNECTING → CONNECTED | FAILED
    stop() from anywhere → DISCONNECTED

Key Features:
    - Bounded exponential backoff via RetryPolicy
    - At most one retry timer and one connect attempt at any time
    - Duplicate transport events are absorbed
    - Epoch counter: every timer and attempt remembers the epoch it was
      scheduled in, and does nothing if a stop()/start() happened since
    - stop() cancels everything before its first await, so no transition
      can fire after it returns

Serialization:
    Every transition runs synchronously on the event loop; the only awaits
    are inside connect attempts, and their results are applied through the
    epoch check. Two transitions can therefore never interleave.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Protocol, Set, Tuple

from frame_relay.client.events import ClientEvent, EventBus
from frame_relay.client.retry import RetryPolicy
from frame_relay.errors import AdmissionError, FatalError
from frame_relay.models.state import ConnectionState, Role


logger = logging.getLogger(__name__)


class Connector(Protocol):
    """
    Transport seen by the state machine.

    connect() raises TransportError when the transport cannot be opened
    and AdmissionError when the relay refuses to admit us. Loss of an
    established connection is reported through
    ConnectionStateMachine.on_transport_lost().
    """

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]
StateListener = Callable[[ConnectionState, ConnectionState], None]


def loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class ConnectionStateMachine:
    """
    One connection's lifecycle.

    Attributes:
        connector: Transport to open and close
        retry: Backoff policy (reset on every successful connect)
        role: PRODUCER or CONSUMER capability flag
        events: UI event bus
        state: Current ConnectionState

    Example:
        machine = ConnectionStateMachine(transport, RetryPolicy(), Role.CONSUMER)
        transport.on_lost = machine.on_transport_lost

        machine.start()
        await machine.wait_connected(timeout=10)
        ...
        await machine.stop()
    """

    def __init__(
        self,
        connector: Connector,
        retry_policy: RetryPolicy,
        role: Role = Role.CONSUMER,
        events: Optional[EventBus] = None,
        call_later: Optional[CallLater] = None,
    ) -> None:
        self.connector = connector
        self.retry = retry_policy
        self.role = role
        self.events = events or EventBus()
        self._call_later = call_later or loop_call_later

        self.state = ConnectionState.DISCONNECTED
        self._epoch: int = 0
        self._retry_handle: Optional[TimerHandle] = None
        self._attempt_task: Optional[asyncio.Task] = None
        self._listeners: List[StateListener] = []
        self._waiters: List[Tuple[Set[ConnectionState], asyncio.Future]] = []

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def can_publish(self) -> bool:
        return self.role is Role.PRODUCER and self.is_connected

    @property
    def retry_count(self) -> int:
        return self.retry.attempts

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    @property
    def attempt_in_flight(self) -> bool:
        return self._attempt_task is not None and not self._attempt_task.done()

    def add_listener(self, listener: StateListener) -> None:
        """Register a synchronous (old_state, new_state) callback."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def wait_for(self, *states: ConnectionState, timeout: Optional[float] = None) -> ConnectionState:
        """Wait until the machine is in one of `states`."""
        if self.state in states:
            return self.state
        future = asyncio.get_running_loop().create_future()
        entry = (set(states), future)
        self._waiters.append(entry)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            if entry in self._waiters:
                self._waiters.remove(entry)

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        """
        Wait for CONNECTED.

        Raises:
            FatalError: If the machine ends up FAILED instead
            asyncio.TimeoutError: If neither happens within `timeout`
        """
        state = await self.wait_for(ConnectionState.CONNECTED, ConnectionState.FAILED, timeout=timeout)
        if state is ConnectionState.FAILED:
            raise FatalError("connection failed; call start() to retry")

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """
        Begin connecting. Only legal from DISCONNECTED or FAILED.

        Returns:
            True if a connect attempt was launched
        """
        if self.state not in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            logger.warning(f"start() ignored in state {self.state.value}")
            return False

        self._invalidate()
        self.retry.reset()
        self._set_state(ConnectionState.CONNECTING)
        self._launch_attempt()
        return True

    async def stop(self) -> None:
        """
        Stop from any state and release the transport.

        Timers, attempts and listeners' pending work are cancelled
        synchronously before the transport is closed.
        """
        self._invalidate()
        self.retry.reset()
        if self.state is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
            self.events.emit(ClientEvent.disconnected("stopped"))

        try:
            await self.connector.close()
        except Exception as e:
            logger.warning(f"Error closing transport: {e}")

    # -------------------------------------------------------------------------
    # Transport events
    # -------------------------------------------------------------------------

    def on_transport_lost(self, reason: str = "transport lost") -> bool:
        """
        Report loss of an established connection.

        Only acts while CONNECTED; duplicates are ignored.

        Returns:
            True if the event caused a transition
        """
        if self.state is not ConnectionState.CONNECTED:
            logger.debug(f"Transport loss ignored in state {self.state.value}: {reason}")
            return False

        logger.warning(f"Transport lost: {reason}")
        self._set_state(ConnectionState.RECONNECTING)
        self.events.emit(ClientEvent.disconnected(reason))
        self._schedule_retry()
        return True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _invalidate(self) -> None:
        """Make every outstanding timer and attempt stale."""
        self._epoch += 1
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        if self._attempt_task is not None and not self._attempt_task.done():
            self._attempt_task.cancel()
        self._attempt_task = None

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self.state
        if old_state is new_state:
            return
        self.state = new_state
        logger.info(f"[{self.role.value}] {old_state.value} -> {new_state.value}")

        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")

        for states, future in list(self._waiters):
            if new_state in states and not future.done():
                future.set_result(new_state)

    def _launch_attempt(self) -> None:
        if self.attempt_in_flight:
            return
        epoch = self._epoch
        self._attempt_task = asyncio.get_running_loop().create_task(
            self._attempt(epoch),
            name=f"{self.role.value}_connect",
        )

    async def _attempt(self, epoch: int) -> None:
        try:
            await self.connector.connect()
        except asyncio.CancelledError:
            raise
        except AdmissionError as e:
            if epoch != self._epoch:
                return
            self._attempt_task = None
            self._fail(f"admission denied: {e.reason.value}")
            return
        except Exception as e:
            if epoch != self._epoch:
                return
            self._attempt_task = None
            self._on_attempt_failed(str(e) or type(e).__name__)
            return

        if epoch != self._epoch:
            return

        self._attempt_task = None
        self.retry.reset()
        self._set_state(ConnectionState.CONNECTED)
        self.events.emit(ClientEvent.connected())

    def _on_attempt_failed(self, reason: str) -> None:
        if self.state is ConnectionState.CONNECTING:
            logger.warning(f"Initial connect failed: {reason}")
            self._set_state(ConnectionState.RECONNECTING)
            self.events.emit(ClientEvent.disconnected(reason))
        elif self.state is ConnectionState.RECONNECTING:
            logger.warning(f"Reconnect attempt {self.retry.attempts} failed: {reason}")
        else:
            return
        self._schedule_retry()

    def _schedule_retry(self) -> None:
        if self._retry_handle is not None:
            return

        if self.retry.exhausted:
            self._fail("retry budget exhausted")
            return

        delay = self.retry.next_delay()
        epoch = self._epoch
        self._retry_handle = self._call_later(delay, lambda: self._on_retry_timer(epoch))
        logger.info(
            f"Reconnecting in {delay:.2f}s "
            f"(attempt {self.retry.attempts}/{self.retry.max_attempts})"
        )
        self.events.emit(ClientEvent.reconnecting(self.retry.attempts, self.retry.max_attempts))

    def _on_retry_timer(self, epoch: int) -> None:
        if epoch != self._epoch or self.state is not ConnectionState.RECONNECTING:
            return
        self._retry_handle = None
        self._launch_attempt()

    def _fail(self, reason: str) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        logger.error(f"[{self.role.value}] connection failed: {reason}")
        self._set_state(ConnectionState.FAILED)
        self.events.emit(ClientEvent.failed(reason))
