"""
Web Utilities - Pure Python helpers for the sensor blueprint

These functions don't depend on Flask and can be tested independently.
"""

import json
from typing import Any, Dict, Optional

from relay.framing import SAMPLE_FIELDS
from relay.models import RelayEvent, SensorSample

# Seconds of silence before a comment line keeps the stream open
STREAM_KEEPALIVE = 15.0


def format_sse(event: RelayEvent) -> str:
    """Render one relay event as a server-sent-events message.

    Args:
        event: Event from the broadcaster

    Returns:
        'event: <name>\\ndata: <json>\\n\\n'
    """
    data = json.dumps(event.data, separators=(',', ':'))
    return f"event: {event.name}\ndata: {data}\n\n"


def current_payload(sample: Optional[SensorSample], connected: bool) -> Dict[str, Any]:
    """Body of /api/current.

    Before the first sample every field is null, only `connected` is set.
    """
    if sample is None:
        payload = {key: None for key in SAMPLE_FIELDS}
        payload['timestamp'] = None
    else:
        payload = sample.to_dict()
    payload['connected'] = connected
    return payload
