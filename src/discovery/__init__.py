"""Sensor discovery: passive UDP broadcasts and active subnet scanning"""

from .active_scanner import ActiveScanner
from .passive_listener import PassiveListener, parse_advertisement

__all__ = ['ActiveScanner', 'PassiveListener', 'parse_advertisement']
