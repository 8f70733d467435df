"""
Submission flow — extracted visits into insurer portals.

Steps:
  1. Load records     (extracted visits among the requested ids, not yet drafted/submitted)
  2. Launch browser
  3. Submit claims    (batch: route by pay type, search member, fill, draft/submit)
  4. Hold session open  (only with leave_session_open)

Each portal gets its own isolated, authenticated session, created the first
time a record routes to it.
"""
import time
from contextlib import ExitStack
from typing import Any, Callable, Dict

from claimflow.config import SESSION_KEEP_OPEN_SECONDS, WORKFLOW_SAVE_DRAFT
from claimflow.errors import ClaimflowError, FATAL_ERRORS, UnsupportedPortalError
from claimflow.pipeline.base import PortalAgent, get_agent
from claimflow.pipeline.engine import ItemResult, WorkflowEngine
from claimflow.pipeline.targets import ADAPTERS, portal_for_pay_type
from claimflow.services.browser import BrowserSessionManager, default_session_manager
from claimflow.services.run_store import RunStore

HOLD_POLL_SECONDS = 5


class PortalSessions:
    """
    One isolated, authenticated agent per portal for the length of a run.

    A portal whose session could not be opened is remembered, so later records
    routed to it fail at once instead of opening another session each.
    """

    def __init__(self, browser, agents: Dict[str, type], run_id: str):
        self.browser = browser
        self.agents = agents
        self.run_id = run_id
        self.active: Dict[str, PortalAgent] = {}
        self.unavailable: Dict[str, str] = {}

    def agent_for(self, portal: str) -> PortalAgent:
        if portal in self.unavailable:
            raise ClaimflowError(f"{portal} session unavailable: {self.unavailable[portal]}")
        agent = self.active.get(portal)
        if agent is not None:
            return agent
        try:
            session = self.browser.new_isolated_session()
            agent = get_agent(self.agents, portal, session.new_page(), run_id=self.run_id)
            agent.authenticate()
        except FATAL_ERRORS:
            raise
        except Exception as e:
            self.unavailable[portal] = str(e) or type(e).__name__
            raise
        self.active[portal] = agent
        return agent


class SubmissionFlow:

    def __init__(
        self,
        store: RunStore,
        browser_factory: Callable[[], BrowserSessionManager] = default_session_manager,
        agents: Dict[str, type] = None,
        keep_open_seconds: int = SESSION_KEEP_OPEN_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.browser_factory = browser_factory
        self.agents = agents or ADAPTERS
        self.keep_open_seconds = keep_open_seconds
        self.sleep = sleep

    def __call__(self, engine: WorkflowEngine):
        run = engine.run
        params = run.metadata.get('params') or {}
        record_ids = params.get('record_ids') or []
        save_as_draft = params.get('save_as_draft', WORKFLOW_SAVE_DRAFT)

        with engine.step('Load records', {'record_ids': record_ids}) as result:
            records = self.store.pending_submission(record_ids)
            result['count'] = len(records)
        if not records:
            engine.log.info("Nothing to submit")
            return

        with ExitStack() as stack:
            with engine.step('Launch browser') as result:
                browser = stack.enter_context(self.browser_factory())
                result['proxy'] = browser.proxy.server if browser.proxy else 'direct'

            sessions = PortalSessions(browser, self.agents, run.id)
            with engine.step('Submit claims', {'count': len(records), 'save_as_draft': save_as_draft}) as result:
                result.update(engine.run_batch(
                    records,
                    lambda visit: self._submit_one(sessions, visit, save_as_draft, run.id),
                    key=lambda visit: visit['id'],
                ))
                result['portals'] = sorted(sessions.active)
                if sessions.unavailable:
                    result['unavailable'] = dict(sessions.unavailable)

            if params.get('leave_session_open'):
                with engine.step('Hold session open', {'seconds': self.keep_open_seconds}):
                    self._hold_open(engine)

    # ── Per record ───────────────────────────────────────────────────────────

    def _submit_one(self, sessions: PortalSessions, visit: Dict[str, Any], save_as_draft: bool,
                    run_id: str) -> ItemResult:
        pay_type = (visit.get('pay_type') or '').upper()
        try:
            portal = portal_for_pay_type(pay_type)
        except UnsupportedPortalError as e:
            self.store.mark_submission(visit['id'], 'error', {
                'run_id': run_id, 'pay_type': pay_type, 'reason': 'unsupported_pay_type', 'error': str(e),
            })
            return ItemResult(ok=False, reason='unsupported_pay_type')

        agent = None
        try:
            agent = sessions.agent_for(portal)
            agent.pay_type = pay_type
            agent.locate_record(visit.get('nric'))
            filled = agent.fill_claim(visit)
            outcome = agent.submit(save_as_draft=save_as_draft)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            if agent is not None:
                agent.screenshot(f"submit-failed-{visit['id']}")
            self.store.mark_submission(visit['id'], 'error', {
                'run_id': run_id, 'portal': portal, 'pay_type': pay_type, 'error': str(e),
            })
            raise

        self.store.mark_submission(visit['id'], outcome['status'], {
            'run_id': run_id,
            'portal': portal,
            'pay_type': pay_type,
            'fields': filled,
            'dialogs': outcome.get('dialogs', []),
        })
        return ItemResult(ok=True, data=outcome)

    def _hold_open(self, engine: WorkflowEngine):
        """Keep the browser up for manual review, stopping early on cancel."""
        engine.log.info("Leaving portal sessions open for %ds", self.keep_open_seconds)
        waited = 0
        while waited < self.keep_open_seconds:
            engine.check_canceled()
            step = min(HOLD_POLL_SECONDS, self.keep_open_seconds - waited)
            self.sleep(step)
            waited += step
