"""
Run store — the narrow persistence interface used by the workflow engine.

Runs, their append-only step log and per-visit status fields all live in
Postgres. Run writes raise after rollback so a run never continues on state
that was not saved; step log writes are best-effort.
"""
import copy
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone, date
from typing import Dict, List, Optional

from redis.exceptions import ConnectionError as RedisConnectionError, LockError, RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from claimflow.config import TERMINAL_STATUSES, RUN_LOCK_TIMEOUT_SECONDS
from claimflow.database import get_session
from claimflow.errors import InvalidTransition
from claimflow.models.db_run import DbRun
from claimflow.models.run import Run
from claimflow.models.run_step import RunStep
from claimflow.models.visit import Visit

logger = logging.getLogger('services.run_store')


def _now():
    return datetime.now(timezone.utc)


class RunStore:
    """
    Read/write runs, steps and visit status through SQLAlchemy sessions.

    session_factory defaults to claimflow.database.get_session. When a Redis
    client is given, lock() serializes writers across processes; otherwise a
    process-local lock per run id is used.
    """

    def __init__(self, session_factory=None, redis=None, lock_timeout: int = RUN_LOCK_TIMEOUT_SECONDS):
        self._session_factory = session_factory or get_session
        self.redis = redis
        self.lock_timeout = lock_timeout
        self._local_locks: Dict[str, threading.Lock] = {}
        self._local_guard = threading.Lock()

    # ── Locking ──────────────────────────────────────────────────────────────

    @contextmanager
    def lock(self, run_id: str):
        """
        Hold the write lock for one run id.

        When Redis cannot be reached the process-local lock is used for this
        write. A lock held by another writer past lock_timeout still raises.
        """
        if self.redis is not None:
            redis_lock = self.redis.lock(f'run-lock:{run_id}', timeout=self.lock_timeout,
                                         blocking_timeout=self.lock_timeout)
            try:
                acquired = redis_lock.acquire()
            except (RedisConnectionError, RedisTimeoutError) as e:
                logger.warning("Redis lock for run %s unavailable (%s); using process-local lock", run_id, e)
            else:
                if not acquired:
                    raise LockError(f"Could not lock run {run_id} within {self.lock_timeout}s")
                try:
                    yield
                finally:
                    try:
                        redis_lock.release()
                    except RedisError as e:
                        logger.warning("Could not release lock for run %s: %s", run_id, e)
                return
        with self._local_guard:
            run_lock = self._local_locks.setdefault(run_id, threading.Lock())
        with run_lock:
            yield

    # ── Runs ─────────────────────────────────────────────────────────────────

    def create_run(self, run: Run) -> Run:
        """INSERT a new run row."""
        session = self._session_factory()
        try:
            session.add(DbRun(
                id=run.id,
                run_type=run.run_type,
                status=run.status,
                total_records=run.total_records,
                completed_count=run.completed_count,
                failed_count=run.failed_count,
                run_metadata=copy.deepcopy(run.metadata),
                cancel_requested=False,
                created_at=run.created_at,
            ))
            session.commit()
            return run
        except Exception:
            session.rollback()
            logger.error("Failed to create run %s", run.id, exc_info=True)
            raise
        finally:
            session.close()

    def save_run(self, run: Run) -> Run:
        """
        UPDATE the run row from the in-memory Run.

        Refuses to move a row out of a terminal status; the cancel flag is
        owned by request_cancel() and is read back, never overwritten.
        """
        session = self._session_factory()
        try:
            db_run = session.get(DbRun, run.id)
            if db_run is None:
                raise KeyError(f"Run {run.id} not found")
            if db_run.status in TERMINAL_STATUSES and run.status != db_run.status:
                raise InvalidTransition(f"Run {run.id} is already {db_run.status}")

            db_run.status = run.status
            db_run.started_at = run.started_at
            db_run.finished_at = run.finished_at
            db_run.total_records = run.total_records
            db_run.completed_count = run.completed_count
            db_run.failed_count = run.failed_count
            db_run.error_message = run.error_message
            db_run.run_metadata = copy.deepcopy(run.metadata)
            session.commit()
            run.cancel_requested = bool(db_run.cancel_requested)
            return run
        except Exception:
            session.rollback()
            logger.error("Failed to persist run %s", run.id, exc_info=True)
            raise
        finally:
            session.close()

    def load_run(self, run_id: str) -> Optional[Run]:
        session = self._session_factory()
        try:
            db_run = session.get(DbRun, run_id)
            return Run._from_db_run(db_run) if db_run else None
        finally:
            session.close()

    def list_runs(self, limit: int = 20, run_type: str = None) -> List[Run]:
        """Most recent runs first."""
        session = self._session_factory()
        try:
            query = session.query(DbRun)
            if run_type:
                query = query.filter(DbRun.run_type == run_type)
            rows = query.order_by(DbRun.created_at.desc()).limit(limit).all()
            return [Run._from_db_run(row) for row in rows]
        finally:
            session.close()

    def delete_run(self, run_id: str) -> bool:
        """Delete a run and its step log. Returns False when it did not exist."""
        session = self._session_factory()
        try:
            db_run = session.get(DbRun, run_id)
            if db_run is None:
                return False
            session.query(RunStep).filter(RunStep.run_id == run_id).delete(synchronize_session=False)
            session.delete(db_run)
            session.commit()
            return True
        except Exception:
            session.rollback()
            logger.error("Failed to delete run %s", run_id, exc_info=True)
            raise
        finally:
            session.close()

    def request_cancel(self, run_id: str) -> bool:
        """
        Set the persisted cancel flag. Returns False for unknown or finished runs.

        A completed run that is being resumed still accepts the flag.
        """
        session = self._session_factory()
        try:
            db_run = session.get(DbRun, run_id)
            if db_run is None:
                return False
            resuming = (db_run.run_metadata or {}).get('resume_in_progress')
            if db_run.status in TERMINAL_STATUSES and not (db_run.status == 'completed' and resuming):
                return False
            db_run.cancel_requested = True
            session.commit()
            return True
        except Exception:
            session.rollback()
            logger.error("Failed to flag run %s for cancellation", run_id, exc_info=True)
            raise
        finally:
            session.close()

    def clear_cancel(self, run_id: str):
        """Reset the cancel flag before a resume pass."""
        session = self._session_factory()
        try:
            db_run = session.get(DbRun, run_id)
            if db_run is not None and db_run.cancel_requested:
                db_run.cancel_requested = False
                session.commit()
        except Exception:
            session.rollback()
            logger.error("Failed to clear cancel flag on run %s", run_id, exc_info=True)
            raise
        finally:
            session.close()

    def is_cancel_requested(self, run_id: str) -> bool:
        session = self._session_factory()
        try:
            flag = session.query(DbRun.cancel_requested).filter(DbRun.id == run_id).scalar()
            return bool(flag)
        finally:
            session.close()

    # ── Step log ─────────────────────────────────────────────────────────────

    def append_step(self, run_id: str, ordinal: int, label: str, phase: str = 'start', payload: Dict = None):
        """INSERT one step log row. Failure is logged, never raised."""
        session = self._session_factory()
        try:
            session.add(RunStep(
                run_id=run_id,
                ordinal=ordinal,
                label=label,
                phase=phase,
                payload=copy.deepcopy(payload) if payload else None,
            ))
            session.commit()
        except Exception:
            session.rollback()
            logger.error("Failed to log step %d (%s) for run %s", ordinal, label, run_id, exc_info=True)
        finally:
            session.close()

    def list_steps(self, run_id: str) -> List[Dict]:
        session = self._session_factory()
        try:
            rows = (
                session.query(RunStep)
                .filter(RunStep.run_id == run_id)
                .order_by(RunStep.ordinal, RunStep.id)
                .all()
            )
            return [row.to_dict() for row in rows]
        finally:
            session.close()

    # ── Visits ───────────────────────────────────────────────────────────────

    def get_visit(self, visit_id: int) -> Optional[Dict]:
        session = self._session_factory()
        try:
            visit = session.get(Visit, visit_id)
            return visit.to_dict() if visit else None
        finally:
            session.close()

    def pending_extraction(
        self,
        date_from: date = None,
        date_to: date = None,
        ids: List[int] = None,
        max_attempts: int = None,
    ) -> List[Dict]:
        """Visits whose extraction_status is not completed, oldest first."""
        session = self._session_factory()
        try:
            query = session.query(Visit).filter(
                (Visit.extraction_status.is_(None)) | (Visit.extraction_status != 'completed')
            )
            if ids is not None:
                query = query.filter(Visit.id.in_(ids))
            if date_from is not None:
                query = query.filter(Visit.visit_date >= date_from)
            if date_to is not None:
                query = query.filter(Visit.visit_date <= date_to)
            if max_attempts is not None:
                query = query.filter(
                    (Visit.extraction_attempts.is_(None)) | (Visit.extraction_attempts < max_attempts)
                )
            return [v.to_dict() for v in query.order_by(Visit.visit_date, Visit.id).all()]
        finally:
            session.close()

    def pending_submission(self, ids: List[int]) -> List[Dict]:
        """Extracted visits among ids that are not yet drafted or submitted, in id order."""
        session = self._session_factory()
        try:
            rows = (
                session.query(Visit)
                .filter(Visit.id.in_(ids))
                .filter(Visit.extraction_status == 'completed')
                .filter((Visit.submission_status.is_(None)) | (Visit.submission_status == 'error'))
                .order_by(Visit.id)
                .all()
            )
            return [v.to_dict() for v in rows]
        finally:
            session.close()

    def upsert_visits(self, rows: List[Dict]) -> int:
        """Insert visits not already known by (source, date, pcno, name). Returns the count inserted."""
        session = self._session_factory()
        try:
            inserted = 0
            for row in rows:
                existing = session.query(Visit.id).filter_by(
                    source=row.get('source', 'clinic_assist'),
                    visit_date=row['visit_date'],
                    pcno=row.get('pcno'),
                    patient_name=row.get('patient_name', ''),
                ).first()
                if existing:
                    continue
                session.add(Visit(**row))
                inserted += 1
            session.commit()
            logger.info("%d visits in, %d new", len(rows), inserted)
            return inserted
        except Exception:
            session.rollback()
            logger.error("Failed to save %d visits", len(rows), exc_info=True)
            raise
        finally:
            session.close()

    def mark_extraction(self, visit_id: int, status: str, fields: Dict = None, metadata: Dict = None):
        """
        Write extraction status for one visit.

        in_progress bumps the attempt counter and last_attempt_at; completed
        stamps extracted_at and stores the cleaned fields.
        """
        session = self._session_factory()
        try:
            visit = session.get(Visit, visit_id)
            if visit is None:
                raise KeyError(f"Visit {visit_id} not found")
            visit.extraction_status = status
            if status == 'in_progress':
                visit.last_attempt_at = _now()
                visit.extraction_attempts = (visit.extraction_attempts or 0) + 1
            elif status == 'completed':
                visit.extracted_at = _now()
            for name, value in (fields or {}).items():
                setattr(visit, name, value)
            if metadata is not None:
                visit.extraction_metadata = copy.deepcopy(metadata)
            session.commit()
        except Exception:
            session.rollback()
            logger.error("Failed to mark visit %s extraction=%s", visit_id, status, exc_info=True)
            raise
        finally:
            session.close()

    def mark_submission(self, visit_id: int, status: str, metadata: Dict = None):
        """Write submission status (draft, submitted or error) for one visit."""
        session = self._session_factory()
        try:
            visit = session.get(Visit, visit_id)
            if visit is None:
                raise KeyError(f"Visit {visit_id} not found")
            visit.submission_status = status
            if status in ('draft', 'submitted'):
                visit.submitted_at = _now()
            visit.submission_metadata = copy.deepcopy(metadata or {})
            session.commit()
        except Exception:
            session.rollback()
            logger.error("Failed to mark visit %s submission=%s", visit_id, status, exc_info=True)
            raise
        finally:
            session.close()
