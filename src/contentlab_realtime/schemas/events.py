"""Pydantic schemas for pushed events.

Learn: One payload model per kind keeps the ingestion boundary honest:
a message either validates into the shape its kind promises or it is
dropped. Producers are JavaScript services, so camelCase keys
(jobId, competitorId) are accepted alongside snake_case.

Extra fields are kept (extra="allow"): the server may add fields before
the client knows about them.
"""

from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from contentlab_realtime.events.types import (
    ALERT,
    ANALYSIS_COMPLETE,
    ANALYSIS_UPDATE,
    CONNECTION_STATE,
    METRICS_UPDATE,
)

Severity = Literal["critical", "high", "medium", "low", "info"]
JobState = Literal["pending", "processing", "completed", "failed"]

_payload_config = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="allow",
    frozen=True,
)


# ─── Payloads ────────────────────────────────────────────

class AlertPayload(BaseModel):
    model_config = _payload_config

    severity: Severity = "info"
    title: str = Field(..., min_length=1)
    description: str = ""
    alert_id: Optional[str] = Field(default=None, alias="id")
    alert_type: Optional[str] = Field(default=None, alias="type")
    competitor_id: Optional[str] = None
    timestamp: Optional[datetime] = None


class AnalysisUpdatePayload(BaseModel):
    model_config = _payload_config

    job_id: str = Field(..., min_length=1)
    progress: float = Field(default=0, ge=0, le=100)
    status: JobState = "processing"
    estimated_time_remaining: Optional[float] = Field(default=None, ge=0)
    current_step: Optional[str] = None


class AnalysisCompletePayload(BaseModel):
    model_config = _payload_config

    job_id: str = Field(..., min_length=1)
    status: Literal["completed", "failed"] = "completed"
    summary: Optional[dict[str, Any]] = None
    result: Optional[dict[str, Any]] = None


class MetricsUpdatePayload(BaseModel):
    model_config = _payload_config

    competitor_id: Optional[str] = None
    metrics: dict[str, Any] = Field(default_factory=dict)


class ConnectionStatePayload(BaseModel):
    """Client-generated marker for connection transitions."""
    model_config = _payload_config

    state: str
    reason: Optional[str] = None
    gap: bool = False
    disconnected_at: Optional[float] = None
    reconnected_at: Optional[float] = None


EventPayload = Union[
    AlertPayload,
    AnalysisUpdatePayload,
    AnalysisCompletePayload,
    MetricsUpdatePayload,
    ConnectionStatePayload,
]

PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    ALERT: AlertPayload,
    ANALYSIS_UPDATE: AnalysisUpdatePayload,
    ANALYSIS_COMPLETE: AnalysisCompletePayload,
    METRICS_UPDATE: MetricsUpdatePayload,
    CONNECTION_STATE: ConnectionStatePayload,
}


# ─── Normalized event ────────────────────────────────────

class Event(BaseModel):
    """A normalized, client-stamped unit of state change."""
    model_config = ConfigDict(frozen=True)

    kind: str
    payload: EventPayload
    received_at: float  # client clock, epoch seconds
