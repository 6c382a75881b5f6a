"""Version information for Sensor Relay"""

__version__ = "1.1.0"
__version_info__ = (1, 1, 0)
__release_date__ = "2026-10-12"

# Version history
VERSION_HISTORY = [
    {
        "version": "1.1.0",
        "date": "2026-10-12",
        "changes": [
            "Active subnet scan runs in batches of 20 probes",
            "Unreachable sensor address is dropped and discovery restarts",
            "Server-sent events stream at /api/stream",
            "Status endpoint with discovery counters",
        ]
    },
    {
        "version": "1.0.0",
        "date": "2026-09-28",
        "changes": [
            "Initial release",
            "UDP broadcast discovery",
            "Newline-delimited JSON sensor stream",
            "Current sample and history API",
        ]
    },
]


def get_version():
    """Get current version string"""
    return __version__
