"""
Sensor Relay Engine

Finds the sensor node on the local network, keeps one live stream to it
and fans its samples out to subscribers.

Usage:
    from relay.config import RelayConfig
    from relay.service import RelayService

    service = RelayService(RelayConfig.load())
    service.start()
    service.subscribe(lambda event: print(event.name, event.data))
"""

from .config import RelayConfig
from .models import ConnectionState, DiscoveredAddress, DiscoveryMethod, RelayEvent, SensorSample

__all__ = [
    'RelayConfig',
    'ConnectionState',
    'DiscoveredAddress',
    'DiscoveryMethod',
    'RelayEvent',
    'SensorSample',
]
