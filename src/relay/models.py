"""
Sensor Relay data model

Plain value types shared by discovery, the connection manager and the
broadcaster. Nothing in here does I/O.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple


class ConnectionState(Enum):
    """Connection manager states"""
    SEARCHING = "searching"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class DiscoveryMethod(Enum):
    """How a sensor address was found"""
    BROADCAST = "broadcast"
    SCAN = "scan"


@dataclass(frozen=True)
class DiscoveredAddress:
    """Candidate sensor address proposed by a discovery source"""
    ip: str
    method: DiscoveryMethod
    discovered_at: float = field(default_factory=time.time)

    def __str__(self) -> str:
        return f"{self.ip} (via {self.method.value})"


@dataclass(frozen=True)
class SensorSample:
    """One reading from the sensor node.

    The timestamp is the local receipt time in epoch seconds. The device
    clock is never used.
    """
    temperature: float                            # Celsius
    acceleration: Tuple[float, float, float]      # m/s^2
    angular_rate: Tuple[float, float, float]      # rad/s
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used by the event feed and the HTTP API"""
        ax, ay, az = self.acceleration
        gx, gy, gz = self.angular_rate
        return {
            'temp': self.temperature,
            'ax': ax, 'ay': ay, 'az': az,
            'gx': gx, 'gy': gy, 'gz': gz,
            'timestamp': int(self.timestamp * 1000),
        }


# Event names on the subscriber feed
STATUS_CHANGED = 'status-changed'
SAMPLE = 'sample'
HISTORY = 'history'


@dataclass(frozen=True)
class RelayEvent:
    """A state change delivered to subscribers. `data` is JSON-ready."""
    name: str
    data: Any

    @classmethod
    def status(cls, connected: bool) -> 'RelayEvent':
        return cls(STATUS_CHANGED, {'connected': connected})

    @classmethod
    def sample(cls, sample: SensorSample) -> 'RelayEvent':
        return cls(SAMPLE, sample.to_dict())

    @classmethod
    def history(cls, samples) -> 'RelayEvent':
        return cls(HISTORY, [s.to_dict() for s in samples])

    def to_dict(self) -> Dict[str, Any]:
        return {'event': self.name, 'data': self.data}
