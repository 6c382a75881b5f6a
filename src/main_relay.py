#!/usr/bin/env python3
"""
Sensor Relay - command line entry point

Finds the sensor node on the local network, keeps a connection to it and
serves its readings over HTTP.

Usage:
    python3 src/main_relay.py                     # API on 127.0.0.1:3000
    python3 src/main_relay.py --host 0.0.0.0      # Listen on all interfaces
    python3 src/main_relay.py --no-web            # Print samples to the console
    python3 src/main_relay.py --subnet 10.0.0.0/24
"""

import argparse
import signal
import sys
import threading
from pathlib import Path

from rich.console import Console
from rich.table import Table

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

from __version__ import __version__
from relay.config import RelayConfig, ConfigError
from relay.models import RelayEvent, STATUS_CHANGED, SAMPLE, HISTORY
from relay.service import RelayService
from utils.logging_config import setup_logging

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Sensor Relay - discover the sensor node and relay its telemetry',
        epilog='''
Environment variables:
  SENSOR_RELAY_HTTP_PORT=8080        # Set default HTTP port
  SENSOR_RELAY_SCAN_SUBNET=10.0.0.0/24
  SENSOR_RELAY_LOG_LEVEL=DEBUG
'''
    )
    parser.add_argument('--config', '-c', type=Path,
                        help=f'Config file (default: {RelayConfig.get_config_path()})')
    parser.add_argument('--host', help='HTTP bind address')
    parser.add_argument('--port', '-p', type=int, help='HTTP port')
    parser.add_argument('--sensor-port', type=int, help='Sensor TCP port')
    parser.add_argument('--discovery-port', type=int, help='Discovery UDP port')
    parser.add_argument('--subnet', help='Subnet to scan instead of the local /24')
    parser.add_argument('--no-web', action='store_true',
                        help='Do not start the HTTP server, print samples instead')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    parser.add_argument('--log-file', help='Also log to this file')
    parser.add_argument('--save-config', action='store_true',
                        help='Write the effective configuration and exit')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def apply_args(config: RelayConfig, args) -> RelayConfig:
    """Command line flags override file and environment."""
    overrides = {
        'http_host': args.host,
        'http_port': args.port,
        'sensor_port': args.sensor_port,
        'discovery_port': args.discovery_port,
        'scan_subnet': args.subnet,
        'log_file': args.log_file,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    if args.debug:
        config.log_level = 'DEBUG'
    return config.validate()


def print_banner(config: RelayConfig, web: bool):
    table = Table(title=f"Sensor Relay {__version__}", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Discovery", f"UDP {config.discovery_port} ({config.discovery_prefix}<ip>)")
    table.add_row("Sensor port", f"TCP {config.sensor_port}")
    table.add_row("Scan subnet", config.scan_subnet or "local /24")
    table.add_row("History", f"{config.history_size} samples")
    if web:
        table.add_row("API", f"http://{config.http_host}:{config.http_port}/api/current")
        table.add_row("Stream", f"http://{config.http_host}:{config.http_port}/api/stream")
    console.print(table)


def console_sink(event: RelayEvent):
    """Print relay events for --no-web mode."""
    if event.name == STATUS_CHANGED:
        if event.data['connected']:
            console.print("[green]Sensor connected[/green]")
        else:
            console.print("[yellow]Sensor disconnected[/yellow]")
    elif event.name == SAMPLE:
        d = event.data
        console.print(
            f"[cyan]T={d['temp']:.2f}°C[/cyan]  "
            f"accel=[{d['ax']:.2f}, {d['ay']:.2f}, {d['az']:.2f}]  "
            f"gyro=[{d['gx']:.2f}, {d['gy']:.2f}, {d['gz']:.2f}]"
        )
    elif event.name == HISTORY:
        console.print(f"[dim]{len(event.data)} samples in history[/dim]")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = apply_args(RelayConfig.load(args.config), args)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 2

    if args.save_config:
        return 0 if config.save(args.config) else 1

    setup_logging(level=config.log_level, log_file=config.log_file or None)
    print_banner(config, web=not args.no_web)

    service = RelayService(config)
    stop_event = threading.Event()

    def handle_signal(sig, frame):
        console.print("\nShutting down...")
        stop_event.set()
        if not args.no_web:
            # Unwinds app.run so the relay is stopped below
            raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, handle_signal)

    service.start()
    try:
        if args.no_web:
            signal.signal(signal.SIGINT, handle_signal)
            service.subscribe(console_sink, name="console")
            while not stop_event.wait(1.0):
                pass
        else:
            from web.app import create_app
            app = create_app(service)
            app.run(
                host=config.http_host,
                port=config.http_port,
                threaded=True,
                use_reloader=False,  # Prevent duplicate relays
            )
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()

    return 0


if __name__ == '__main__':
    sys.exit(main())
