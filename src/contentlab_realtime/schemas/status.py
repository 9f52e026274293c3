"""Pydantic schemas for connection and job status snapshots.

Learn: Every snapshot here is frozen. The client replaces them wholesale
instead of mutating, so a consumer holding an old snapshot never sees it
change underneath them.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from contentlab_realtime.schemas.events import JobState

# ─── Connection status values ────────────────────────────

CLOSED = "closed"
CONNECTING = "connecting"
CONNECTED = "connected"
ERROR = "error"
FAILED = "failed"


class ConnectionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = CLOSED
    reconnect_attempts: int = 0
    last_connected_at: Optional[float] = None
    last_error: Optional[str] = None
    last_heartbeat_at: Optional[float] = None

    @property
    def connected(self) -> bool:
        return self.status == CONNECTED

    @property
    def can_retry(self) -> bool:
        """True when a manual reconnect() is the expected next step."""
        return self.status in (ERROR, FAILED)


class LiveJobStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobState
    progress: float
    estimated_time_remaining: Optional[float] = None
    current_step: Optional[str] = None
    started_at: float
    completed_at: Optional[float] = None
    updated_at: float

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "failed")


class ConnectResult(BaseModel):
    """Outcome of a connect()/reconnect() call. Never raised, always returned."""
    model_config = ConfigDict(frozen=True)

    ok: bool
    status: str
    error: Optional[str] = None
