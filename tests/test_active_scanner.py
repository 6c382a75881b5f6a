"""
Tests for active subnet scanning and network helpers.

Probes are faked; no packets leave the machine.

Run: python3 -m pytest tests/test_active_scanner.py -v
"""

import socket
import sys
import threading
import time
from collections import namedtuple
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from discovery.active_scanner import ActiveScanner, tcp_probe
from relay.models import DiscoveryMethod
from utils.network import get_local_ipv4, subnet_hosts, is_ipv4

Snic = namedtuple('Snic', ['family', 'address', 'netmask', 'broadcast', 'ptp'])


class FakeProbe:
    """Records probed addresses; answers for the given hosts."""

    def __init__(self, hits=()):
        self.hits = set(hits)
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, ip, port, timeout):
        with self._lock:
            self.calls.append((ip, port, timeout))
        return ip in self.hits


class TestSubnetHosts:
    """Tests for subnet expansion"""

    def test_plain_address(self):
        hosts = subnet_hosts('192.168.1.17')
        assert len(hosts) == 254
        assert hosts[0] == '192.168.1.1'
        assert hosts[-1] == '192.168.1.254'

    def test_network_notation(self):
        assert len(subnet_hosts('10.0.0.0/24')) == 254

    def test_wide_network_is_narrowed(self):
        hosts = subnet_hosts('10.0.0.0/16')
        assert len(hosts) == 254
        assert hosts[0] == '10.0.0.1'

    def test_invalid(self):
        with pytest.raises(ValueError):
            subnet_hosts('not-a-network')

    def test_is_ipv4(self):
        assert is_ipv4('192.168.1.1')
        assert not is_ipv4('192.168.1')
        assert not is_ipv4('::1')


class TestLocalAddress:
    """Tests for local interface detection"""

    def test_skips_loopback_and_link_local(self):
        interfaces = {
            'lo': [Snic(socket.AF_INET, '127.0.0.1', '255.0.0.0', None, None)],
            'eth1': [Snic(socket.AF_INET, '169.254.3.4', '255.255.0.0', None, None)],
            'wlan0': [Snic(socket.AF_INET6, 'fe80::1', None, None, None),
                      Snic(socket.AF_INET, '192.168.1.17', '255.255.255.0', None, None)],
        }
        with patch('utils.network.psutil.net_if_addrs', return_value=interfaces):
            assert get_local_ipv4() == '192.168.1.17'

    def test_no_usable_interface(self):
        interfaces = {'lo': [Snic(socket.AF_INET, '127.0.0.1', '255.0.0.0', None, None)]}
        with patch('utils.network.psutil.net_if_addrs', return_value=interfaces):
            assert get_local_ipv4() is None


class TestScan:
    """Tests for ActiveScanner.scan"""

    def test_finds_host(self):
        probe = FakeProbe(hits={'10.0.0.5'})
        scanner = ActiveScanner(port=12345, subnet='10.0.0.0/24', probe=probe)

        assert scanner.scan() == '10.0.0.5'
        assert scanner.scans_started == 1

    def test_probe_arguments(self):
        probe = FakeProbe(hits={'10.0.0.1'})
        scanner = ActiveScanner(port=4242, timeout=0.25, subnet='10.0.0.0/24', probe=probe)
        scanner.scan()

        assert all(port == 4242 and timeout == 0.25 for _, port, timeout in probe.calls)

    def test_stops_after_batch_with_hit(self):
        """A hit in the first batch means later batches are never probed."""
        probe = FakeProbe(hits={'10.0.0.5'})
        scanner = ActiveScanner(subnet='10.0.0.0/24', batch_size=20, probe=probe)
        scanner.scan()

        probed = {ip for ip, _, _ in probe.calls}
        assert len(probed) <= 20
        assert probed <= {f'10.0.0.{i}' for i in range(1, 21)}

    def test_nothing_found_probes_every_host(self):
        probe = FakeProbe()
        scanner = ActiveScanner(subnet='10.0.0.0/24', probe=probe)

        assert scanner.scan() is None
        assert len(probe.calls) == 254
        assert len({ip for ip, _, _ in probe.calls}) == 254

    def test_probe_exception_counts_as_miss(self):
        def probe(ip, port, timeout):
            if ip == '10.0.0.1':
                raise RuntimeError("boom")
            return ip == '10.0.0.2'

        scanner = ActiveScanner(subnet='10.0.0.0/24', probe=probe)
        assert scanner.scan() == '10.0.0.2'

    def test_no_local_network(self):
        probe = FakeProbe()
        scanner = ActiveScanner(probe=probe)
        with patch('discovery.active_scanner.get_local_ipv4', return_value=None):
            assert scanner.scan() is None
        assert probe.calls == []

    def test_invalid_subnet(self):
        scanner = ActiveScanner(subnet='bogus', probe=FakeProbe())
        assert scanner.targets() == []

    def test_uses_local_address(self):
        scanner = ActiveScanner(probe=FakeProbe())
        with patch('discovery.active_scanner.get_local_ipv4', return_value='192.168.7.9'):
            targets = scanner.targets()
        assert targets[0] == '192.168.7.1'
        assert len(targets) == 254

    def test_stop_aborts_before_next_batch(self):
        scanner = ActiveScanner(subnet='10.0.0.0/24', batch_size=20)

        def probe(ip, port, timeout):
            scanner.stop()
            return False

        scanner._probe = probe
        assert scanner.scan() is None


class TestStartScan:
    """Tests for background scans"""

    def test_reports_scan_hit(self):
        probe = FakeProbe(hits={'10.0.0.9'})
        scanner = ActiveScanner(subnet='10.0.0.0/24', probe=probe)
        found = threading.Event()
        on_found = MagicMock(side_effect=lambda address: found.set())

        assert scanner.start_scan(on_found) is True
        assert found.wait(2.0)

        address = on_found.call_args[0][0]
        assert address.ip == '10.0.0.9'
        assert address.method == DiscoveryMethod.SCAN

    def test_overlapping_scan_refused(self):
        release = threading.Event()
        started = threading.Event()

        def probe(ip, port, timeout):
            started.set()
            release.wait(2.0)
            return False

        scanner = ActiveScanner(subnet='10.0.0.0/30', probe=probe)
        assert scanner.start_scan(MagicMock()) is True
        assert started.wait(2.0)

        assert scanner.is_scanning
        assert scanner.start_scan(MagicMock()) is False
        assert scanner.scan() is None

        release.set()

    def test_stop_before_worker_runs_is_kept(self):
        """stop() between start_scan() and the worker starting aborts the scan."""
        probe = FakeProbe(hits={'10.0.0.9'})
        scanner = ActiveScanner(subnet='10.0.0.0/24', probe=probe)
        on_found = MagicMock()

        with patch('discovery.active_scanner.threading.Thread') as thread_cls:
            assert scanner.start_scan(on_found) is True
        worker = thread_cls.call_args.kwargs['target']

        scanner.stop()
        worker()

        assert probe.calls == []
        on_found.assert_not_called()
        assert not scanner.is_scanning

    def test_new_scan_clears_previous_stop(self):
        probe = FakeProbe(hits={'10.0.0.9'})
        scanner = ActiveScanner(subnet='10.0.0.0/24', probe=probe)
        scanner.stop()

        assert scanner.scan() == '10.0.0.9'

    def test_no_callback_when_nothing_found(self):
        scanner = ActiveScanner(subnet='10.0.0.0/30', probe=FakeProbe())
        on_found = MagicMock()
        done = threading.Event()

        scanner.start_scan(on_found)
        # Wait for the lock to be released
        for _ in range(200):
            if not scanner.is_scanning:
                done.set()
                break
            time.sleep(0.01)

        assert done.is_set()
        on_found.assert_not_called()


class TestTcpProbe:
    """Tests for the real probe against a loopback listener"""

    def test_open_port(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(('127.0.0.1', 0))
        server.listen(1)
        try:
            assert tcp_probe('127.0.0.1', server.getsockname()[1], 0.5) is True
        finally:
            server.close()

    def test_closed_port(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(('127.0.0.1', 0))
        port = server.getsockname()[1]
        server.close()

        assert tcp_probe('127.0.0.1', port, 0.5) is False
