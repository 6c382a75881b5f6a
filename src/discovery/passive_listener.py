"""
Passive discovery - UDP broadcast listener

The sensor node periodically broadcasts its address as plain ASCII:

    ESP32_SENSOR:192.168.1.42

Every valid advertisement is proposed to the callback as a
DiscoveredAddress. Whether it is adopted is the connection manager's
decision, not ours. Anything else arriving on the port is dropped
silently.
"""

import logging
import socket
import threading
from typing import Callable, Optional, Tuple

from relay.models import DiscoveredAddress, DiscoveryMethod
from utils.network import is_ipv4

logger = logging.getLogger(__name__)

DEFAULT_PORT = 45454
DEFAULT_PREFIX = "ESP32_SENSOR:"
MAX_DATAGRAM = 1024


def parse_advertisement(data: bytes, prefix: str = DEFAULT_PREFIX) -> Optional[str]:
    """Extract the sensor IP from an advertisement datagram.

    Returns:
        The IPv4 address, or None if the datagram is not a valid advertisement
    """
    try:
        message = data.decode('ascii')
    except UnicodeDecodeError:
        return None

    if not message.startswith(prefix):
        return None

    ip = message[len(prefix):].strip()
    return ip if is_ipv4(ip) else None


class PassiveListener:
    """
    Listens for sensor broadcasts on a fixed UDP port.

    Example:
        listener = PassiveListener(on_discovered=manager.propose)
        if listener.bind():
            threading.Thread(target=listener.run, args=(stop_event,)).start()
    """

    def __init__(
        self,
        on_discovered: Callable[[DiscoveredAddress], None],
        port: int = DEFAULT_PORT,
        prefix: str = DEFAULT_PREFIX,
        bind_host: str = '',
        poll_interval: float = 1.0,
    ):
        self.on_discovered = on_discovered
        self.port = port
        self.prefix = prefix
        self.bind_host = bind_host
        self.poll_interval = poll_interval
        self._sock: Optional[socket.socket] = None
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        """True while the port is bound"""
        return self._sock is not None

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """Bound (host, port), useful when binding port 0"""
        sock = self._sock
        return sock.getsockname() if sock else None

    def bind(self) -> bool:
        """
        Bind the broadcast port.

        Returns:
            True if bound. On failure the error is logged once and discovery
            continues with active scanning only.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.settimeout(self.poll_interval)
            sock.bind((self.bind_host, self.port))
        except OSError as e:
            sock.close()
            logger.error(f"Cannot bind discovery port UDP {self.port}: {e} - falling back to network scan only")
            return False

        with self._lock:
            self._sock = sock
        host, port = sock.getsockname()
        logger.info(f"Discovery listener on UDP {host or '0.0.0.0'}:{port}")
        return True

    def run(self, stop_event: threading.Event):
        """Receive loop. Returns when stop_event is set or the socket is closed."""
        if self._sock is None and not self.bind():
            return

        try:
            while not stop_event.is_set():
                sock = self._sock
                if sock is None:
                    break
                try:
                    data, sender = sock.recvfrom(MAX_DATAGRAM)
                except socket.timeout:
                    continue
                except OSError as e:
                    if not stop_event.is_set() and self._sock is not None:
                        logger.error(f"Discovery listener error: {e}")
                    break
                self.handle_datagram(data, sender)
        finally:
            self.close()

    def handle_datagram(self, data: bytes, sender=None) -> Optional[DiscoveredAddress]:
        """Propose the address carried by one datagram, if it has one."""
        ip = parse_advertisement(data, self.prefix)
        if ip is None:
            logger.debug(f"Ignoring datagram from {sender}: {data[:40]!r}")
            return None

        discovered = DiscoveredAddress(ip=ip, method=DiscoveryMethod.BROADCAST)
        logger.debug(f"Sensor advertisement from {sender}: {ip}")
        try:
            self.on_discovered(discovered)
        except Exception as e:
            logger.error(f"Error in discovery callback: {e}")
        return discovered

    def close(self):
        with self._lock:
            sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()
            logger.info("Discovery listener closed")
