"""
Event Service - In-memory run store for background pipeline runs

Provides:
- create_run(): Register a run and get its id
- emit_event() / progress_sink(): Record ProgressEvents (last 150 per run)
- complete_run(): Store the final PipelineResult (the newest 100 finished runs are kept)
- get_run(): Snapshot for polling

Runs live for the life of the process only; the pipeline never persists
events itself.
"""
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from forge.schemas import PipelineResult, ProgressEvent

MAX_EVENTS_PER_RUN = 150
MAX_COMPLETED_RUNS = 100

_runs: Dict[str, Dict[str, Any]] = {}
_runs_lock = threading.Lock()


class RunStatus:
    """Run lifecycle"""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def create_run(kind: str) -> str:
    run_id = uuid.uuid4().hex
    with _runs_lock:
        _runs[run_id] = {
            "runId": run_id,
            "kind": kind,
            "status": RunStatus.QUEUED,
            "createdAt": datetime.utcnow().isoformat(),
            "events": [],
            "result": None,
        }
    return run_id


def set_status(run_id: str, status: str) -> None:
    with _runs_lock:
        run = _runs.get(run_id)
        if run:
            run["status"] = status


def emit_event(run_id: str, event: ProgressEvent) -> None:
    """Append an event, keeping an upper bound. Unknown runs are ignored."""
    with _runs_lock:
        run = _runs.get(run_id)
        if not run:
            return
        events = run["events"]
        events.append(event.model_dump(mode="json"))
        if len(events) > MAX_EVENTS_PER_RUN:
            run["events"] = events[-MAX_EVENTS_PER_RUN:]
        if run["status"] == RunStatus.QUEUED:
            run["status"] = RunStatus.RUNNING


def progress_sink(run_id: str) -> Callable[[ProgressEvent], None]:
    """Progress callback bound to one run"""
    def sink(event: ProgressEvent) -> None:
        emit_event(run_id, event)
    return sink


def complete_run(run_id: str, result: PipelineResult) -> None:
    with _runs_lock:
        run = _runs.get(run_id)
        if not run:
            return
        run["result"] = result
        run["status"] = RunStatus.SUCCEEDED if result.success else RunStatus.FAILED
        _evict_completed()


def _evict_completed() -> None:
    """Drop the oldest finished runs beyond MAX_COMPLETED_RUNS; caller holds _runs_lock"""
    finished = [
        run_id for run_id, run in _runs.items()
        if run["status"] in (RunStatus.SUCCEEDED, RunStatus.FAILED)
    ]
    for run_id in finished[:max(0, len(finished) - MAX_COMPLETED_RUNS)]:
        del _runs[run_id]


def get_run(run_id: str) -> Optional[Dict[str, Any]]:
    with _runs_lock:
        run = _runs.get(run_id)
        if run is None:
            return None
        return {**run, "events": list(run["events"])}


def clear_runs() -> None:
    with _runs_lock:
        _runs.clear()
