"""Live analysis job tracking.

Learn: analysis_update events are upserts keyed by job id. The map holds
exactly one LiveJobStatus per job no matter how many progress events
arrive. analysis_complete finalizes an entry (or creates one if the
progress events were missed, e.g. during a reconnect gap).

The web dashboard never evicted entries. Here that is still the default;
passing cap=N drops finished jobs first (oldest completion first), then
the oldest-started running jobs.
"""

from typing import Optional

from contentlab_realtime.schemas.events import (
    AnalysisCompletePayload,
    AnalysisUpdatePayload,
)
from contentlab_realtime.schemas.status import LiveJobStatus


class JobTracker:
    def __init__(self, cap: Optional[int] = None):
        self.cap = cap
        self._jobs: dict[str, LiveJobStatus] = {}

    def apply_update(self, payload: AnalysisUpdatePayload, at: float) -> LiveJobStatus:
        current = self._jobs.get(payload.job_id)
        finished = payload.status in ("completed", "failed")
        if current is None:
            status = LiveJobStatus(
                job_id=payload.job_id,
                status=payload.status,
                progress=payload.progress,
                estimated_time_remaining=payload.estimated_time_remaining,
                current_step=payload.current_step,
                started_at=at,
                completed_at=at if finished else None,
                updated_at=at,
            )
        else:
            status = current.model_copy(update={
                "status": payload.status,
                "progress": payload.progress,
                "estimated_time_remaining": payload.estimated_time_remaining,
                "current_step": payload.current_step,
                "completed_at": (current.completed_at or at) if finished else None,
                "updated_at": at,
            })
        return self._store(status)

    def apply_complete(self, payload: AnalysisCompletePayload, at: float) -> LiveJobStatus:
        current = self._jobs.get(payload.job_id)
        progress = 100.0 if payload.status == "completed" else (current.progress if current else 0.0)
        if current is None:
            status = LiveJobStatus(
                job_id=payload.job_id,
                status=payload.status,
                progress=progress,
                started_at=at,
                completed_at=at,
                updated_at=at,
            )
        else:
            status = current.model_copy(update={
                "status": payload.status,
                "progress": progress,
                "estimated_time_remaining": None,
                "completed_at": at,
                "updated_at": at,
            })
        return self._store(status)

    def _store(self, status: LiveJobStatus) -> LiveJobStatus:
        self._jobs[status.job_id] = status
        self._evict()
        return status

    def _evict(self) -> None:
        if self.cap is None:
            return
        while len(self._jobs) > self.cap:
            finished = [j for j in self._jobs.values() if j.completed_at is not None]
            if finished:
                victim = min(finished, key=lambda j: j.completed_at)
            else:
                victim = min(self._jobs.values(), key=lambda j: j.started_at)
            del self._jobs[victim.job_id]

    def get(self, job_id: str) -> Optional[LiveJobStatus]:
        return self._jobs.get(job_id)

    def snapshot(self) -> dict[str, LiveJobStatus]:
        return dict(self._jobs)

    def clear(self) -> None:
        self._jobs.clear()

    def __len__(self) -> int:
        return len(self._jobs)
