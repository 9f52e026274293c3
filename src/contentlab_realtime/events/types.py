"""Event kind constants.

Learn: Centralizing event kinds as constants prevents typos and makes it
easy to discover every kind the client understands. The set is closed per
deployment: anything not listed here is dropped at ingestion so an older
client survives a server that starts emitting something new.
"""

# ─── Normalized kinds ────────────────────────────────────

ALERT = "alert"
ANALYSIS_UPDATE = "analysis_update"
ANALYSIS_COMPLETE = "analysis_complete"
METRICS_UPDATE = "metrics_update"
CONNECTION_STATE = "connection_state"

EVENT_KINDS = frozenset({
    ALERT,
    ANALYSIS_UPDATE,
    ANALYSIS_COMPLETE,
    METRICS_UPDATE,
    CONNECTION_STATE,
})

# ─── Protocol-level messages (never stored) ──────────────

HEARTBEAT = "heartbeat"

# ─── Names used by older producers ───────────────────────

LEGACY_ALIASES = {
    "alert_created": ALERT,
    "competitor-alert": ALERT,
    "competitive-alert": ALERT,
    "job-progress": ANALYSIS_UPDATE,
    "analysis-complete": ANALYSIS_COMPLETE,
    "job-completed": ANALYSIS_COMPLETE,
    "metrics-update": METRICS_UPDATE,
}


def resolve_kind(name: str) -> str | None:
    """Map a raw message type to its normalized kind, or None if unknown."""
    if name in EVENT_KINDS:
        return name
    return LEGACY_ALIASES.get(name)
