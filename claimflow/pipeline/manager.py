"""
Run Manager — run triggers and the RQ job entrypoint.

start_extraction_run / start_submission_run create a pending Run and enqueue
execute_run on the RQ queue. execute_run looks up the flow for the run type
and hands it to the WorkflowEngine, which owns every status change from then on.
"""
import logging
from typing import Dict, List, Optional, Type

from redis.exceptions import RedisError

from claimflow.config import RUN_TIMEOUT_SECONDS, WORKFLOW_SAVE_DRAFT
from claimflow.errors import InvalidTransition
from claimflow.models.run import Run
from claimflow.pipeline.engine import CANCEL_MESSAGE, WorkflowEngine
from claimflow.pipeline.extraction import ExtractionFlow, date_range, parse_date
from claimflow.pipeline.submission import SubmissionFlow
from claimflow.services.run_store import RunStore

logger = logging.getLogger('pipeline.manager')


# ── Lazy RQ queue and store (avoid import-time Redis connection) ──────────

_queue = None
_store = None

def _get_queue():
    global _queue
    if _queue is None:
        from claimflow.extensions import redis_client
        from rq import Queue
        _queue = Queue(connection=redis_client)
    return _queue


def _get_store() -> RunStore:
    global _store
    if _store is None:
        from claimflow.extensions import redis_client
        try:
            redis_client.ping()
        except RedisError as e:
            logger.warning("Redis unreachable (%s); run writes use a process-local lock", e)
            _store = RunStore()
        else:
            _store = RunStore(redis=redis_client)
    return _store


def use_local_store() -> RunStore:
    """Switch to a store with a process-local run lock, for foreground runs that bypass RQ."""
    global _store
    _store = RunStore()
    return _store


# ── Flow registry ─────────────────────────────────────────────────────────────
# Maps run_type → flow class; a flow is called with the WorkflowEngine.

FLOWS: Dict[str, Type] = {
    'extraction': ExtractionFlow,
    'submission': SubmissionFlow,
}


# ── Public API ────────────────────────────────────────────────────────────────

def start_extraction_run(date_from, date_to=None, enqueue: bool = True) -> str:
    """
    Create an extraction run for one date or an inclusive date range.

    Raises ValueError for unparseable or inverted dates.
    """
    start = parse_date(date_from)
    end = parse_date(date_to) if date_to else start
    date_range(start, end)

    run = Run(run_type='extraction', metadata={
        'params': {'date_from': start.isoformat(), 'date_to': end.isoformat()},
    })
    _get_store().create_run(run)
    logger.info("Created extraction run %s for %s..%s", run.id, start, end)
    if enqueue:
        _get_queue().enqueue(execute_run, run.id, job_timeout=RUN_TIMEOUT_SECONDS)
    return run.id


def start_submission_run(
    record_ids: List[int],
    save_as_draft: bool = WORKFLOW_SAVE_DRAFT,
    leave_session_open: bool = False,
    enqueue: bool = True,
) -> str:
    """Create a submission run for the given visit ids. Raises ValueError for an empty or bad id list."""
    if not record_ids:
        raise ValueError("record_ids must not be empty")
    try:
        ids = [int(record_id) for record_id in record_ids]
    except (TypeError, ValueError):
        raise ValueError(f"record_ids must be integers, got {record_ids!r}")

    run = Run(run_type='submission', metadata={
        'params': {
            'record_ids': ids,
            'save_as_draft': bool(save_as_draft),
            'leave_session_open': bool(leave_session_open),
        },
    })
    _get_store().create_run(run)
    logger.info("Created submission run %s for %d visits (draft=%s)", run.id, len(ids), save_as_draft)
    if enqueue:
        _get_queue().enqueue(execute_run, run.id, job_timeout=RUN_TIMEOUT_SECONDS)
    return run.id


def cancel_run(run_id: str) -> bool:
    """
    Cancel a run. Pending runs are canceled at once; running runs get the
    cancel flag and stop at the next step or item. Returns False when there
    is nothing to cancel.

    The pending check is made on a fresh read under the run lock, so a worker
    that has just started the run keeps its progress and only sees the flag.
    """
    store = _get_store()
    if not store.request_cancel(run_id):
        return False
    with store.lock(run_id):
        run = store.load_run(run_id)
        if run is not None and run.status == 'pending':
            run.cancel(CANCEL_MESSAGE)
            store.save_run(run)
            logger.info("Canceled pending run %s", run_id)
            return True
    logger.info("Cancel requested for run %s", run_id)
    return True


def delete_run(run_id: str) -> bool:
    """Delete a run and its steps. A running run must be canceled first."""
    store = _get_store()
    run = store.load_run(run_id)
    if run is None:
        return False
    if run.status == 'running':
        raise InvalidTransition(f"Run {run_id} is running; cancel it before deleting")
    return store.delete_run(run_id)


def resume_run(run_id: str, enqueue: bool = True) -> Optional[str]:
    """
    Re-enqueue a run so it processes only items not yet completed.

    Failed and canceled runs cannot be resumed; start a new run for the same
    records instead (records already completed are skipped there too).
    """
    store = _get_store()
    run = store.load_run(run_id)
    if run is None:
        return None
    if run.status in ('failed', 'canceled'):
        raise InvalidTransition(f"Run {run_id} is {run.status}; start a new run instead")
    store.clear_cancel(run_id)
    logger.info("Resuming run %s (%d/%d completed)", run_id, run.completed_count, run.total_records)
    if enqueue:
        _get_queue().enqueue(execute_run, run.id, job_timeout=RUN_TIMEOUT_SECONDS)
    return run.id


def get_run_status(run_id: str) -> Optional[dict]:
    """Get the current status of a run."""
    run = _get_store().load_run(run_id)
    if not run:
        return None
    return run.to_dict()


def get_run_steps(run_id: str) -> List[dict]:
    return _get_store().list_steps(run_id)


def list_runs(limit: int = 20, run_type: str = None) -> List[dict]:
    return [run.to_dict() for run in _get_store().list_runs(limit=limit, run_type=run_type)]


# ── Runner (enqueued via RQ) ──────────────────────────────────────────────────

def execute_run(run_id: str, flow_options: dict = None) -> Optional[Run]:
    """Load the run and execute its flow to a settled status."""
    store = _get_store()
    run = store.load_run(run_id)
    if not run:
        logger.error("Run %s not found", run_id)
        return None
    if run.status in ('failed', 'canceled'):
        logger.info("Run %s is already %s — nothing to do", run_id, run.status)
        return run

    flow_cls = FLOWS[run.run_type]
    flow = flow_cls(store, **(flow_options or {}))
    return WorkflowEngine(run, store).execute(flow)
