"""
Sensor stream framing

The sensor writes one JSON object per line:

    {"temp":23.5,"ax":0.1,"ay":0.2,"az":9.8,"gx":0,"gy":0,"gz":0}\\n

LineFramer turns arbitrary TCP chunks into complete lines, and
parse_sample() turns a line into a SensorSample. Lines that do not start
with '{' are not sample candidates and are skipped without complaint.
Candidates that fail to parse raise FrameError.
"""

import json
import logging
import math
from typing import List, Optional

from relay.models import SensorSample

logger = logging.getLogger(__name__)

SAMPLE_FIELDS = ('temp', 'ax', 'ay', 'az', 'gx', 'gy', 'gz')

# Unterminated data beyond this is garbage, not a slow line
MAX_LINE_BYTES = 64 * 1024


class FrameError(Exception):
    """Raised when a sample candidate line cannot be parsed."""
    pass


class LineFramer:
    """Splits a byte stream on newlines, buffering partial lines."""

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES):
        self._buffer = b''
        self.max_line_bytes = max_line_bytes

    def feed(self, chunk: bytes) -> List[str]:
        """Add a chunk and return every line it completed."""
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b'\n')

        if len(self._buffer) > self.max_line_bytes:
            logger.warning(f"Dropping {len(self._buffer)} bytes of unterminated sensor data")
            self._buffer = b''

        return [line.decode('utf-8', errors='replace') for line in lines]

    def reset(self):
        self._buffer = b''

    @property
    def pending(self) -> int:
        """Bytes waiting for a newline"""
        return len(self._buffer)


def _number(data: dict, key: str) -> float:
    value = data.get(key)
    # bool is an int subclass but never a reading
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise FrameError(f"field '{key}' missing or not a finite number: {value!r}")
    return float(value)


def parse_sample(line: str, received_at: float) -> Optional[SensorSample]:
    """
    Parse one framed line.

    Args:
        line: A line from the sensor stream (newline already removed)
        received_at: Local receipt time in epoch seconds

    Returns:
        SensorSample, or None if the line is not a sample candidate

    Raises:
        FrameError: If the line looks like JSON but is not a valid sample
    """
    text = line.strip()
    if not text.startswith('{'):
        return None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise FrameError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise FrameError("not a JSON object")

    temp, ax, ay, az, gx, gy, gz = (_number(data, key) for key in SAMPLE_FIELDS)

    return SensorSample(
        temperature=temp,
        acceleration=(ax, ay, az),
        angular_rate=(gx, gy, gz),
        timestamp=received_at,
    )
