"""
Sensor Connection Manager

Keeps exactly one live TCP stream to the sensor node.

State machine:
    SEARCHING -> CONNECTING -> CONNECTED -> DISCONNECTED -> (SEARCHING | CONNECTING)

Everything that changes state runs on one control thread, which consumes
a command queue fed by:
- discovery sources (propose)
- the session reader thread (connected / data / closed)
- the single cancelable timer (tick)

Discovery sources only ever propose an address. The first proposal made
while no address is held is adopted; the rest are ignored until that
address is invalidated.

Usage:
    manager = ConnectionManager(store, broadcaster, scanner)
    listener = PassiveListener(on_discovered=manager.propose)
    threading.Thread(target=manager.run, args=(stop_event,)).start()
"""

import errno
import logging
import queue
import socket
import threading
import time
from typing import Callable, Optional, Dict, Any

from relay.broadcaster import Broadcaster
from relay.data_store import DataStore
from relay.framing import FrameError, LineFramer, parse_sample
from relay.models import ConnectionState, DiscoveredAddress, SensorSample

logger = logging.getLogger(__name__)

RECV_SIZE = 4096

# Errors after which the known address is not worth retrying
INVALIDATING_ERRNOS = {
    errno.ECONNREFUSED,
    errno.ETIMEDOUT,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
}


def invalidates_address(error: Optional[BaseException]) -> bool:
    """True for refused, timed out and unreachable errors."""
    if error is None:
        return False
    if isinstance(error, (ConnectionRefusedError, socket.timeout, TimeoutError)):
        return True
    return isinstance(error, OSError) and error.errno in INVALIDATING_ERRNOS


class SensorSession:
    """One connection attempt to the sensor and its read loop.

    Runs on its own thread and reports back through notify():
        ('connected', session)
        ('data', session, chunk)
        ('closed', session, error_or_None)
    'closed' is always the last notification.
    """

    def __init__(
        self,
        address: DiscoveredAddress,
        port: int,
        timeout: float,
        notify: Callable[[tuple], None],
        connector: Callable = socket.create_connection,
    ):
        self.address = address
        self.port = port
        self.timeout = timeout
        self.framer = LineFramer()
        self._notify = notify
        self._connector = connector
        self._sock: Optional[socket.socket] = None
        self._closing = False
        self._lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._run, name=f"relay-session-{address.ip}", daemon=True
        )

    def start(self):
        self._thread.start()

    def close(self):
        """Abandon the session. Unblocks a pending read immediately."""
        with self._lock:
            self._closing = True
            sock = self._sock
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

    def _run(self):
        try:
            sock = self._connector((self.address.ip, self.port), self.timeout)
        except OSError as e:
            self._notify(('closed', self, e))
            return

        with self._lock:
            if self._closing:
                sock.close()
                self._notify(('closed', self, None))
                return
            self._sock = sock

        sock.settimeout(None)
        self._notify(('connected', self))

        error = None
        try:
            while True:
                chunk = sock.recv(RECV_SIZE)
                if not chunk:
                    break
                self._notify(('data', self, chunk))
        except OSError as e:
            if not self._closing:
                error = e
        finally:
            with self._lock:
                self._sock = None
            sock.close()

        self._notify(('closed', self, error))


class ConnectionManager:
    """
    Owns the connection state, the known sensor address and the session.

    Example:
        manager = ConnectionManager(store, broadcaster, scanner)
        manager.on_state_change = lambda state: print(state.value)
        manager.propose(DiscoveredAddress('192.168.1.42', DiscoveryMethod.BROADCAST))
    """

    def __init__(
        self,
        store: DataStore,
        broadcaster: Broadcaster,
        scanner=None,
        sensor_port: int = 12345,
        connect_timeout: float = 5.0,
        discovery_interval: float = 3.0,
        reconnect_delay: float = 3.0,
        scan_every: int = 3,
        session_factory: Callable = SensorSession,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.scanner = scanner
        self.sensor_port = sensor_port
        self.connect_timeout = connect_timeout
        self.discovery_interval = discovery_interval
        self.reconnect_delay = reconnect_delay
        self.scan_every = scan_every
        self._session_factory = session_factory
        self._clock = clock

        self._commands = queue.Queue()
        self._state = ConnectionState.SEARCHING
        self._address: Optional[DiscoveredAddress] = None
        self._session = None
        self._timer: Optional[threading.Timer] = None
        self._tick_generation = 0
        self._timer_lock = threading.Lock()

        self.discovery_attempts = 0
        self.scans_requested = 0
        self.samples_received = 0
        self.frames_dropped = 0
        self.connected_since: Optional[float] = None

        # Callbacks
        self.on_state_change: Optional[Callable[[ConnectionState], None]] = None

    @classmethod
    def from_config(cls, config, store: DataStore, broadcaster: Broadcaster, scanner=None) -> 'ConnectionManager':
        return cls(
            store,
            broadcaster,
            scanner=scanner,
            sensor_port=config.sensor_port,
            connect_timeout=config.connect_timeout,
            discovery_interval=config.discovery_interval,
            reconnect_delay=config.reconnect_delay,
            scan_every=config.scan_every,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def address(self) -> Optional[DiscoveredAddress]:
        """The adopted sensor address, if any"""
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState):
        if state == self._state:
            return
        logger.debug(f"Connection state {self._state.value} -> {state.value}")
        self._state = state
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.error(f"Error in state change callback: {e}")

    # -- Inputs (any thread) -------------------------------------------------

    def propose(self, address: DiscoveredAddress):
        """Offer a discovered address. The control thread decides."""
        self._commands.put(('propose', address))

    def _notify(self, command: tuple):
        self._commands.put(command)

    # -- Control loop ----------------------------------------------------------

    def run(self, stop_event: threading.Event):
        """Control loop. Starts discovery and runs until stop_event or stop()."""
        logger.info("Connection manager started")
        self.handle_tick()

        while not stop_event.is_set():
            try:
                command = self._commands.get(timeout=0.5)
            except queue.Empty:
                continue
            if command[0] == 'stop':
                break
            self.dispatch(command)

        self.shutdown()
        logger.info("Connection manager stopped")

    def stop(self):
        """Ask the control loop to exit."""
        self._cancel_timer()
        self._commands.put(('stop',))

    def process_pending(self, timeout: float = 0.0) -> int:
        """Dispatch queued commands without a running loop. Returns how many."""
        handled = 0
        while True:
            try:
                command = self._commands.get(timeout=timeout) if timeout else self._commands.get_nowait()
            except queue.Empty:
                return handled
            if command[0] != 'stop':
                self.dispatch(command)
                handled += 1

    def dispatch(self, command: tuple):
        kind, *args = command
        handler = {
            'propose': self.handle_proposal,
            'tick': self.handle_tick,
            'connected': self.handle_connected,
            'data': self.handle_data,
            'closed': self.handle_closed,
        }.get(kind)

        if handler is None:
            logger.warning(f"Unknown command: {kind}")
            return
        try:
            handler(*args)
        except Exception:
            logger.exception(f"Error handling {kind}")

    # -- Handlers (control thread) -------------------------------------------

    def handle_proposal(self, address: DiscoveredAddress) -> bool:
        """Adopt the address unless one is already held. Returns True if adopted."""
        if self._address is not None or self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug(f"Ignoring {address}, already have {self._address}")
            return False

        self._address = address
        logger.info(f"Sensor discovered: {address}")
        self._connect()
        return True

    def handle_tick(self, generation: Optional[int] = None):
        """Timer expiry: reconnect, or run one discovery cycle."""
        if generation is not None and generation != self._tick_generation:
            return
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return

        if self._address is not None:
            self._connect()
        else:
            self._set_state(ConnectionState.SEARCHING)
            self._discovery_cycle()

    def handle_connected(self, session):
        if session is not self._session:
            session.close()
            return

        self._set_state(ConnectionState.CONNECTED)
        self.discovery_attempts = 0
        self.connected_since = self._clock()
        logger.info(f"Connected to sensor at {session.address.ip}:{self.sensor_port}")
        self.broadcaster.publish_status(True)

    def handle_data(self, session, chunk: bytes):
        if session is not self._session:
            return
        for line in session.framer.feed(chunk):
            self._handle_line(line)

    def handle_closed(self, session, error: Optional[BaseException] = None):
        if session is not self._session:
            return

        self._session = None
        self.connected_since = None
        self._set_state(ConnectionState.DISCONNECTED)

        if error is not None:
            logger.warning(f"Sensor connection error: {error}")
        else:
            logger.info("Sensor connection closed")

        if invalidates_address(error):
            logger.info("Sensor is unreachable, will search again")
            self._address = None
            self.discovery_attempts = 0

        self.broadcaster.publish_status(False)
        self._schedule(self.reconnect_delay)

    # -- Internals -------------------------------------------------------------

    def _handle_line(self, line: str):
        try:
            sample = parse_sample(line, self._clock())
        except FrameError as e:
            self.frames_dropped += 1
            logger.warning(f"Discarding sensor frame: {e}")
            return

        if sample is None:
            if line.strip():
                logger.debug(f"Ignoring non-JSON line: {line[:60]!r}")
            return

        self._record(sample)

    def _record(self, sample: SensorSample):
        # Subscribers joining now see either the old view plus this event, or the new view
        with self.broadcaster.locked():
            self.store.record(sample)
            self.broadcaster.publish_sample(sample)
        self.samples_received += 1
        logger.debug(
            f"Data: T={sample.temperature}°C, "
            f"Accel=[{','.join(str(v) for v in sample.acceleration)}]"
        )

    def _connect(self):
        self._cancel_timer()
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to sensor: {self._address.ip}:{self.sensor_port}")

        session = self._session_factory(
            self._address, self.sensor_port, self.connect_timeout, self._notify
        )
        self._session = session
        session.start()

    def _discovery_cycle(self):
        self.discovery_attempts += 1
        logger.info(f"Discovery attempt {self.discovery_attempts}...")

        if self.scanner is not None and self.discovery_attempts % self.scan_every == 0:
            if self.scanner.start_scan(self.propose):
                self.scans_requested += 1
                logger.info("Started network scan")

        self._schedule(self.discovery_interval)

    def _schedule(self, delay: float):
        """Schedule the next tick, replacing any pending one."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._tick_generation += 1
            timer = threading.Timer(delay, self._commands.put, args=(('tick', self._tick_generation),))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _cancel_timer(self):
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            # Invalidate a tick that already fired but is still queued
            self._tick_generation += 1

    @property
    def reconnect_pending(self) -> bool:
        with self._timer_lock:
            return self._timer is not None and self._timer.is_alive()

    def shutdown(self):
        """Cancel the timer and drop the session."""
        self._cancel_timer()
        session, self._session = self._session, None
        if session is not None:
            session.close()
        if self._state == ConnectionState.CONNECTED:
            self.broadcaster.publish_status(False)
        self.connected_since = None
        self._set_state(ConnectionState.DISCONNECTED)

    def status(self) -> Dict[str, Any]:
        """Snapshot for status pages"""
        address = self._address
        return {
            'state': self._state.value,
            'connected': self.is_connected,
            'address': address.ip if address else None,
            'method': address.method.value if address else None,
            'port': self.sensor_port,
            'discovery_attempts': self.discovery_attempts,
            'scans_requested': self.scans_requested,
            'samples_received': self.samples_received,
            'frames_dropped': self.frames_dropped,
            'connected_since': self.connected_since,
            'subscribers': self.broadcaster.subscriber_count,
        }
