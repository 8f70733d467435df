"""
Extraction flow — clinic visits from Clinic Assist into the visits table.

Steps:
  1. Launch browser
  2. Authenticate source
  3. Collect visits   (pending visits in the store; the queue report when there are none)
  4. Extract visits   (batch: open each visit, scrape, validate, save)

The visit ids chosen in step 3 are stored on the run so a resume works on
exactly the same records.
"""
from contextlib import ExitStack
from datetime import date, timedelta
from typing import Any, Callable, Dict, List

from claimflow.config import MAX_EXTRACTION_ATTEMPTS
from claimflow.errors import FATAL_ERRORS
from claimflow.pipeline.engine import ItemResult, WorkflowEngine
from claimflow.pipeline.source import ClinicSourceAgent
from claimflow.services.browser import BrowserSessionManager, default_session_manager
from claimflow.services.run_store import RunStore
from claimflow.services.validation import validate_record

MAX_RANGE_DAYS = 31


def parse_date(value) -> date:
    """date or YYYY-MM-DD → date. Raises ValueError."""
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def date_range(date_from: date, date_to: date = None) -> List[date]:
    """Every day from date_from through date_to inclusive."""
    date_to = date_to or date_from
    if date_to < date_from:
        raise ValueError(f"date_to {date_to} is before date_from {date_from}")
    days = (date_to - date_from).days + 1
    if days > MAX_RANGE_DAYS:
        raise ValueError(f"Date range of {days} days exceeds {MAX_RANGE_DAYS}")
    return [date_from + timedelta(days=i) for i in range(days)]


def source_key(visit: Dict[str, Any]) -> str:
    return f"{visit.get('visit_date') or ''}:{visit.get('pcno') or visit.get('patient_name') or ''}"


class ExtractionFlow:

    def __init__(
        self,
        store: RunStore,
        browser_factory: Callable[[], BrowserSessionManager] = default_session_manager,
        agent_cls=ClinicSourceAgent,
        max_attempts: int = MAX_EXTRACTION_ATTEMPTS,
    ):
        self.store = store
        self.browser_factory = browser_factory
        self.agent_cls = agent_cls
        self.max_attempts = max_attempts

    def __call__(self, engine: WorkflowEngine):
        run = engine.run
        params = run.metadata.get('params') or {}
        date_from = parse_date(params['date_from'])
        date_to = parse_date(params.get('date_to') or params['date_from'])

        with ExitStack() as stack:
            with engine.step('Launch browser') as result:
                browser = stack.enter_context(self.browser_factory())
                page = browser.root_session.new_page()
                result['proxy'] = browser.proxy.server if browser.proxy else 'direct'

            agent = self.agent_cls(page, run_id=run.id)
            with engine.step('Authenticate source', {'portal': agent.portal}):
                agent.authenticate()

            with engine.step('Collect visits', {'date_from': str(date_from), 'date_to': str(date_to)}) as result:
                visits = self._collect(agent, run, date_from, date_to)
                result['count'] = len(visits)
            engine.save()

            if not visits:
                engine.log.info("No visits to extract for %s..%s", date_from, date_to)
                return

            with engine.step('Extract visits', {'count': len(visits)}) as result:
                result.update(engine.run_batch(
                    visits,
                    lambda visit: self._extract_one(agent, visit, run.id),
                    key=lambda visit: visit['id'],
                ))

    # ── Steps ────────────────────────────────────────────────────────────────

    def _collect(self, agent, run, date_from: date, date_to: date) -> List[Dict[str, Any]]:
        record_ids = run.metadata.get('record_ids')
        if record_ids is not None:
            return self.store.pending_extraction(ids=record_ids, max_attempts=self.max_attempts)

        visits = self.store.pending_extraction(date_from, date_to, max_attempts=self.max_attempts)
        if not visits:
            for day in date_range(date_from, date_to):
                self.store.upsert_visits(agent.list_visits(day))
            visits = self.store.pending_extraction(date_from, date_to, max_attempts=self.max_attempts)

        run.metadata['record_ids'] = [visit['id'] for visit in visits]
        return visits

    def _extract_one(self, agent, visit: Dict[str, Any], run_id: str) -> ItemResult:
        key = source_key(visit)
        self.store.mark_extraction(visit['id'], 'in_progress')
        try:
            agent.locate_record(visit)
            raw = agent.extract_visit(visit)
        except FATAL_ERRORS:
            self.store.mark_extraction(visit['id'], 'failed', metadata={'run_id': run_id, 'error': 'run aborted'})
            raise
        except Exception as e:
            agent.screenshot(f"extract-failed-{visit['id']}")
            self.store.mark_extraction(visit['id'], 'failed', metadata={'run_id': run_id, 'error': str(e)})
            raise

        record = validate_record(key, raw)
        metadata = {'run_id': run_id, **record.to_dict()}
        if not record.usable:
            self.store.mark_extraction(visit['id'], 'failed', metadata=metadata)
            return ItemResult(ok=False, reason='no_usable_fields', data=record.errors)

        self.store.mark_extraction(visit['id'], 'completed', fields={
            'diagnosis_description': record.cleaned('diagnosis'),
            'treatment_detail': record.cleaned('items', []),
            'nric': record.cleaned('nric', visit.get('nric')),
            'total_amount': record.cleaned('amount', visit.get('total_amount')),
            'referral_clinic': record.cleaned('referral_clinic'),
            'mc_days': record.mc_days,
        }, metadata=metadata)
        return ItemResult(ok=True, data=record.errors)
