"""
Workflow engine — numbered steps, batch accounting, cancellation, resume.

A flow is a callable taking the engine. It wraps each unit of work in
engine.step(label, payload) and iterates records with engine.run_batch().
The engine owns every status change of the Run:

    pending → running → completed | failed | canceled

Item failures are recorded and the batch moves on; AuthenticationError,
NetworkConfigurationError and RunCanceled end the run. The run row is saved
after every item so an interrupted run can be resumed, and resuming only
processes items whose ledger entry is not 'completed'.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from claimflow.errors import ClaimflowError, FATAL_ERRORS, InvalidTransition, RunCanceled
from claimflow.logging_config import run_logger
from claimflow.models.run import Run
from claimflow.services.notifications import notify_run_complete, notify_run_failed
from claimflow.services.run_store import RunStore

logger = logging.getLogger('pipeline.engine')

CANCEL_MESSAGE = 'Cancelled by user'


@dataclass
class ItemResult:
    """Outcome of one batch item. Raising from process_item is a failure too."""
    ok: bool = True
    reason: str = ''
    data: Dict[str, Any] = field(default_factory=dict)


class StepLog:
    """Append-only step log for one run; ordinals continue across resumes."""

    def __init__(self, run: Run, store: RunStore, start_at: int = 0, log=None):
        self.run = run
        self.store = store
        self.ordinal = start_at
        self.log = log or run_logger(logger, run.id)

    def begin(self, label: str, payload: Dict = None) -> int:
        self.ordinal += 1
        self.store.append_step(self.run.id, self.ordinal, label, 'start', payload or {})
        self.log.info("[%s STEP %02d] %s", self.run.run_type.upper(), self.ordinal, label)
        return self.ordinal

    def result(self, ordinal: int, label: str, payload: Dict = None):
        self.store.append_step(self.run.id, ordinal, label, 'result', payload or {})


class WorkflowEngine:

    def __init__(self, run: Run, store: RunStore, notify: bool = True):
        self.run = run
        self.store = store
        self.notify = notify
        self.log = run_logger(logger, run.id)
        existing = store.list_steps(run.id)
        self.steps = StepLog(run, store, start_at=max((s['ordinal'] for s in existing), default=0), log=self.log)
        self._resume_pass = False

    # ── Persistence ──────────────────────────────────────────────────────────

    def save(self):
        """Write the run row under the per-run lock."""
        with self.store.lock(self.run.id):
            self.store.save_run(self.run)

    def check_canceled(self):
        if self.store.is_cancel_requested(self.run.id):
            raise RunCanceled(CANCEL_MESSAGE)

    # ── Steps ────────────────────────────────────────────────────────────────

    @contextmanager
    def step(self, label: str, payload: Dict = None):
        """
        One numbered step. The body may put result details into the yielded dict.

        Cancellation is checked before the step starts. A body exception is
        logged as the step's result and re-raised.
        """
        self.check_canceled()
        ordinal = self.steps.begin(label, payload)
        result: Dict[str, Any] = {}
        try:
            yield result
        except Exception as e:
            self.steps.result(ordinal, label, {'ok': False, 'error': str(e), **result})
            raise
        self.steps.result(ordinal, label, {'ok': True, **result})

    # ── Batch ────────────────────────────────────────────────────────────────

    def run_batch(
        self,
        items: List[Dict[str, Any]],
        process_item: Callable[[Dict[str, Any]], Optional[ItemResult]],
        key: Callable[[Dict[str, Any]], Any] = lambda item: item['id'],
    ) -> Dict[str, int]:
        """
        Process items strictly in list order, one at a time.

        Items already completed in this run are skipped. Each outcome goes
        into the run ledger and the run is saved before the next item.
        Returns counts for this pass.
        """
        run = self.run
        pending = [item for item in items if not run.is_item_completed(key(item))]
        skipped = len(items) - len(pending)
        run.set_total(max(run.total_records, len(items)))
        self.save()
        if skipped:
            self.log.info("Skipping %d already completed items", skipped)

        passed = failed = 0
        for index, item in enumerate(pending, 1):
            self.check_canceled()
            item_key = key(item)
            try:
                outcome = process_item(item) or ItemResult()
            except FATAL_ERRORS:
                raise
            except Exception as e:
                self.log.warning("Item %s failed: %s", item_key, e)
                outcome = ItemResult(ok=False, reason=str(e) or type(e).__name__)

            run.record_item(item_key, outcome.ok, outcome.reason)
            if outcome.ok:
                passed += 1
            else:
                failed += 1
            self.log.info("Item %d/%d (%s): %s", index, len(pending), item_key,
                          'ok' if outcome.ok else f"failed — {outcome.reason}")
            self.save()

        return {'processed': passed + failed, 'completed': passed, 'failed': failed, 'skipped': skipped}

    # ── Run lifecycle ────────────────────────────────────────────────────────

    def execute(self, body: Callable[['WorkflowEngine'], Any]) -> Run:
        """
        Run body(engine) and settle the run status.

        pending runs start; running runs (an interrupted worker) continue in
        place; completed runs get a resume pass that leaves them completed.
        Failed and canceled runs are final, including a pending run that was
        canceled between being loaded here and being started.
        """
        run = self.run
        if run.status == 'pending':
            if self.store.is_cancel_requested(run.id):
                run.cancel(CANCEL_MESSAGE)
                self.save()
                return run
            run.start()
        elif run.status == 'completed':
            self._resume_pass = True
            run.metadata['resume_in_progress'] = True
        elif run.status != 'running':
            raise InvalidTransition(f"Run {run.id} is {run.status}; start a new run instead")
        try:
            self.save()
        except InvalidTransition as e:
            self.log.info("Not starting: %s", e)
            return self.store.load_run(run.id) or run

        self.log.info("Starting %s run%s", run.run_type, ' (resume)' if self._resume_pass else '')
        try:
            body(self)
        except RunCanceled as e:
            self._finish('canceled', str(e) or CANCEL_MESSAGE)
        except ClaimflowError as e:
            self.log.error("Run failed: %s", e)
            self._finish('failed', str(e))
        except Exception as e:
            self.log.error("Run failed unexpectedly", exc_info=True)
            self._finish('failed', f"{type(e).__name__}: {e}")
        else:
            self._finish('completed')
        return self.run

    def _finish(self, status: str, message: str = None):
        run = self.run
        if self._resume_pass:
            run.metadata.pop('resume_in_progress', None)
            if message:
                self.log.warning("Resume ended early: %s", message)
                run.error_message = message
        elif status == 'completed':
            run.complete()
        elif status == 'canceled':
            run.cancel(message)
        else:
            run.fail(message)
        if not self._settle():
            return

        self.log.info("Run %s: %d/%d completed, %d failed", run.status,
                      run.completed_count, run.total_records, run.failed_count)
        if not self.notify:
            return
        if run.status == 'failed':
            notify_run_failed(run)
        elif run.status == 'completed':
            notify_run_complete(run)

    def _settle(self) -> bool:
        """
        Write the final status. If the locked save fails the row is written
        without the lock; if that fails too the error propagates.

        Returns False when another writer already settled the run.
        """
        try:
            self.save()
        except InvalidTransition as e:
            self.log.warning("Final status %s not written: %s", self.run.status, e)
            self.run = self.store.load_run(self.run.id) or self.run
            return False
        except Exception:
            self.log.error("Locked save of final status %s failed; writing without the lock",
                           self.run.status, exc_info=True)
            self.store.save_run(self.run)
        return True
