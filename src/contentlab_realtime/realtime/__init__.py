"""Real-time client infrastructure — providers, history, reconnection.

Learn: Messages flow one way through this package:
1. A provider (Redis pub/sub, HTTP polling) delivers raw messages
2. RealtimeUpdateClient validates and stamps them
3. Consumers read frozen snapshots (history, job statuses, connection state)

Transports are swappable; the client only depends on the provider contract.
"""

from contentlab_realtime.realtime.client import (
    ClientHandlers,
    ClientOptions,
    RealtimeUpdateClient,
)

__all__ = ["ClientHandlers", "ClientOptions", "RealtimeUpdateClient"]
