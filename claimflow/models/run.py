"""
Run model — in-memory workflow run state and its state machine.

A Run represents one batch of visits flowing through an extraction or
submission flow. The RunStore persists it to the rpa_extraction_runs table.

    pending → running → completed | failed | canceled

Per-item outcomes are kept in metadata['items'] (key → 'completed' | 'failed');
completed_count and failed_count are always derived from that ledger, so an
item is counted exactly once even when a resume pass flips it to completed.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

from claimflow.config import RUN_TYPES, TERMINAL_STATUSES
from claimflow.errors import InvalidTransition


_TRANSITIONS = {
    'pending': ('running', 'failed', 'canceled'),
    'running': TERMINAL_STATUSES,
}


def _now():
    return datetime.now(timezone.utc)


class Run:

    def __init__(
        self,
        id: str = None,
        run_type: str = 'extraction',
        status: str = 'pending',
        metadata: Dict = None,
    ):
        if run_type not in RUN_TYPES:
            raise ValueError(f"Unknown run type: {run_type}")
        self.id = id or str(uuid.uuid4())
        self.run_type = run_type
        self.status = status
        self.created_at = _now()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.total_records = 0
        self.completed_count = 0
        self.failed_count = 0
        self.error_message: Optional[str] = None
        self.metadata = dict(metadata or {})
        self.metadata.setdefault('items', {})
        self.cancel_requested = False

    # ── State machine ────────────────────────────────────────────────────────

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _transition(self, status: str):
        if status not in _TRANSITIONS.get(self.status, ()):
            raise InvalidTransition(f"Run {self.id}: {self.status} → {status} is not allowed")
        self.status = status

    def start(self):
        """Move a pending run to running."""
        self._transition('running')
        self.started_at = _now()

    def complete(self):
        """Mark run as completed."""
        self._transition('completed')
        self.finished_at = _now()

    def fail(self, reason: str = ''):
        """Mark run as failed."""
        self._transition('failed')
        self.error_message = reason or self.error_message
        self.finished_at = _now()

    def cancel(self, reason: str = 'Cancelled by user'):
        """Mark run as canceled."""
        self._transition('canceled')
        self.error_message = reason
        self.finished_at = _now()

    # ── Item ledger ──────────────────────────────────────────────────────────

    @property
    def items(self) -> Dict[str, str]:
        return self.metadata.setdefault('items', {})

    def set_total(self, total: int):
        """Set total_records, never below the number of items already recorded."""
        self.total_records = max(int(total), len(self.items))

    def item_status(self, key) -> Optional[str]:
        return self.items.get(str(key))

    def is_item_completed(self, key) -> bool:
        return self.item_status(key) == 'completed'

    def record_item(self, key, ok: bool, reason: str = ''):
        """Record one item outcome and recount."""
        key = str(key)
        self.items[key] = 'completed' if ok else 'failed'
        if ok:
            self.metadata.get('item_errors', {}).pop(key, None)
        else:
            self.metadata.setdefault('item_errors', {})[key] = reason or 'failed'
        if len(self.items) > self.total_records:
            self.total_records = len(self.items)
        self._recount()

    def _recount(self):
        values = list(self.items.values())
        self.completed_count = values.count('completed')
        self.failed_count = values.count('failed')

    # ── Serialization ────────────────────────────────────────────────────────

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'run_type': self.run_type,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'total_records': self.total_records,
            'completed_count': self.completed_count,
            'failed_count': self.failed_count,
            'error_message': self.error_message,
            'cancel_requested': self.cancel_requested,
            'metadata': self.metadata,
        }

    @classmethod
    def _from_db_run(cls, db_run) -> 'Run':
        """Build a Run from a DbRun row."""
        run = cls.__new__(cls)
        run.id = db_run.id
        run.run_type = db_run.run_type
        run.status = db_run.status
        run.created_at = db_run.created_at
        run.started_at = db_run.started_at
        run.finished_at = db_run.finished_at
        run.total_records = db_run.total_records or 0
        run.completed_count = db_run.completed_count or 0
        run.failed_count = db_run.failed_count or 0
        run.error_message = db_run.error_message
        run.metadata = dict(db_run.run_metadata or {})
        run.metadata['items'] = dict(run.metadata.get('items') or {})
        if 'item_errors' in run.metadata:
            run.metadata['item_errors'] = dict(run.metadata['item_errors'])
        run.cancel_requested = bool(db_run.cancel_requested)
        return run
