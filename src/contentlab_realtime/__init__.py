"""ContentLab Realtime — live competitive-intelligence updates.

The client layer that dashboards and operator tools use to follow a
project's real-time stream: alerts, analysis progress, metrics, and
connection health, with reconnection handled for them.
"""

__version__ = "0.1.0"
