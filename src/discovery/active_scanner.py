"""
Active discovery - /24 subnet scan

Fallback for when broadcasts do not reach us. Tries a TCP connect to the
sensor port on every host of the local /24, in batches of concurrent
probes, and stops at the first host that accepts.
"""

import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

from relay.models import DiscoveredAddress, DiscoveryMethod
from utils.network import get_local_ipv4, subnet_hosts

logger = logging.getLogger(__name__)

DEFAULT_PORT = 12345
DEFAULT_TIMEOUT = 0.5
DEFAULT_BATCH_SIZE = 20


def tcp_probe(ip: str, port: int, timeout: float) -> bool:
    """True if ip:port accepts a TCP connection within timeout."""
    try:
        with socket.create_connection((ip, port), timeout=timeout):
            return True
    except OSError:
        return False


class ActiveScanner:
    """
    Scans the local /24 for the sensor's service port.

    Only one scan runs at a time; overlapping requests are refused.

    Example:
        scanner = ActiveScanner(port=12345)
        ip = scanner.scan()                   # blocking
        scanner.start_scan(manager.propose)   # background
    """

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        batch_size: int = DEFAULT_BATCH_SIZE,
        subnet: Optional[str] = None,
        probe: Optional[Callable[[str, int, float], bool]] = None,
    ):
        self.port = port
        self.timeout = timeout
        self.batch_size = batch_size
        self.subnet = subnet or None
        self._probe = probe or tcp_probe
        self._scan_lock = threading.Lock()
        self._stop_scan = threading.Event()
        self.scans_started = 0

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    def targets(self) -> List[str]:
        """Addresses to probe, or [] if no local network can be found."""
        base = self.subnet or get_local_ipv4()
        if not base:
            logger.warning("Cannot detect local network, skipping scan")
            return []
        try:
            return subnet_hosts(base)
        except ValueError as e:
            logger.warning(f"Invalid scan subnet {base}: {e}")
            return []

    def scan(self) -> Optional[str]:
        """
        Scan synchronously.

        Returns:
            First address that accepted a connection, or None if nothing
            answered or a scan is already running
        """
        if not self._scan_lock.acquire(blocking=False):
            logger.debug("Scan already in progress")
            return None
        self._stop_scan.clear()
        try:
            return self._scan()
        finally:
            self._scan_lock.release()

    def start_scan(self, on_found: Callable[[DiscoveredAddress], None]) -> bool:
        """
        Scan on a background thread and report a hit to on_found.

        Returns:
            False if a scan is already running
        """
        if not self._scan_lock.acquire(blocking=False):
            logger.debug("Scan already in progress")
            return False
        # Cleared before the worker starts so an early stop() is not lost
        self._stop_scan.clear()

        def worker():
            try:
                ip = self._scan()
            finally:
                self._scan_lock.release()
            if ip and not self._stop_scan.is_set():
                try:
                    on_found(DiscoveredAddress(ip=ip, method=DiscoveryMethod.SCAN))
                except Exception as e:
                    logger.error(f"Error in scan callback: {e}")

        threading.Thread(target=worker, name="relay-scanner", daemon=True).start()
        return True

    def stop(self):
        """Abort a running scan after its current batch."""
        self._stop_scan.set()

    def _scan(self) -> Optional[str]:
        self.scans_started += 1

        hosts = self.targets()
        if not hosts:
            return None

        logger.info(f"Scanning {len(hosts)} hosts for sensor port {self.port}...")

        with ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="relay-probe") as executor:
            for start in range(0, len(hosts), self.batch_size):
                if self._stop_scan.is_set():
                    logger.info("Scan aborted")
                    return None

                batch = hosts[start:start + self.batch_size]
                futures = {executor.submit(self._probe, ip, self.port, self.timeout): ip for ip in batch}

                for future in as_completed(futures):
                    try:
                        found = future.result()
                    except Exception as e:
                        logger.debug(f"Probe {futures[future]} failed: {e}")
                        continue
                    if found:
                        ip = futures[future]
                        logger.info(f"Found sensor at {ip}")
                        for other in futures:
                            other.cancel()
                        return ip

        logger.info("Sensor not found on network")
        return None
