"""Tests for claimflow.pipeline.submission — routing, per-portal sessions, draft mode, hold-open."""
from unittest.mock import MagicMock

from playwright.sync_api import Error as PlaywrightError

from claimflow.errors import AuthenticationError, LocatorNotFoundError, NetworkConfigurationError
from claimflow.models.run import Run
from claimflow.pipeline.engine import WorkflowEngine
from claimflow.pipeline.submission import SubmissionFlow


# ── Helpers ──────────────────────────────────────────────────────────────────

class _FakeTarget:
    """Target agent stand-in; instances are collected on the class for inspection."""
    instances = []
    fail_nrics = set()
    auth_error = None

    def __init__(self, page, run_id=None):
        self.page = page
        self.run_id = run_id
        self.pay_type = ''
        self.submitted = []
        self.screenshots = []
        type(self).instances.append(self)

    def authenticate(self):
        if self.auth_error:
            raise self.auth_error

    def locate_record(self, nric):
        if nric in self.fail_nrics:
            raise LocatorNotFoundError(f'member:{nric}')

    def fill_claim(self, visit):
        return {'diagnosis': 'primary', 'total_amount': 'primary'}

    def submit(self, save_as_draft=True):
        status = 'draft' if save_as_draft else 'submitted'
        self.submitted.append(status)
        return {'status': status, 'dialogs': ['Claim saved']}

    def screenshot(self, label):
        self.screenshots.append(label)


def _agents(fail_nrics=(), auth_error=None):
    mhc = type('MhcFake', (_FakeTarget,), {'instances': [], 'fail_nrics': set(fail_nrics), 'auth_error': auth_error})
    alliance = type('AllianceFake', (_FakeTarget,), {'instances': [], 'fail_nrics': set(fail_nrics)})
    return {'mhc_asia': mhc, 'alliance_medinet': alliance}


def _fake_browser():
    browser = MagicMock(name='browser')
    browser.__enter__.return_value = browser
    browser.__exit__.return_value = False
    browser.proxy = None
    return browser


def _extracted(store, make_visits, count=3, **overrides):
    visits = make_visits(count=count, **overrides)
    for visit in visits:
        store.mark_extraction(visit['id'], 'completed', fields={'diagnosis_description': 'Fever and cough'})
    return [v['id'] for v in visits]


def _run(store, ids, **params):
    params = {'record_ids': ids, 'save_as_draft': True, **params}
    return store.create_run(Run(run_type='submission', metadata={'params': params}))


def _execute(store, run, flow):
    return WorkflowEngine(store.load_run(run.id), store, notify=False).execute(flow)


# ── Flow ─────────────────────────────────────────────────────────────────────

class TestSubmissionFlow:
    """SubmissionFlow drafts each extracted visit in the portal for its pay type."""

    def test_drafts_every_record(self, store, make_visits):
        ids = _extracted(store, make_visits)
        agents = _agents()
        browser = _fake_browser()
        result = _execute(store, _run(store, ids), SubmissionFlow(store, lambda: browser, agents))

        assert result.status == 'completed'
        assert (result.total_records, result.completed_count) == (3, 3)
        agent = agents['mhc_asia'].instances[0]
        assert agent.submitted == ['draft', 'draft', 'draft']
        assert agent.pay_type == 'MHC'
        for visit_id in ids:
            saved = store.get_visit(visit_id)
            assert saved['submission_status'] == 'draft'
            assert saved['submission_metadata']['portal'] == 'mhc_asia'
            assert saved['submission_metadata']['dialogs'] == ['Claim saved']

    def test_one_session_per_portal(self, store, make_visits):
        ids = _extracted(store, make_visits, count=2)
        ids += _extracted(store, make_visits, count=1, pay_type='ALLIANCE', patient_name='ALLIANCE PATIENT')
        agents = _agents()
        browser = _fake_browser()
        run = _run(store, ids)
        _execute(store, run, SubmissionFlow(store, lambda: browser, agents))

        assert len(agents['mhc_asia'].instances) == 1
        assert len(agents['alliance_medinet'].instances) == 1
        assert browser.new_isolated_session.call_count == 2
        steps = store.list_steps(run.id)
        submit_result = [s for s in steps if s['label'] == 'Submit claims' and s['phase'] == 'result'][0]
        assert submit_result['payload']['portals'] == ['alliance_medinet', 'mhc_asia']

    def test_submit_mode(self, store, make_visits):
        ids = _extracted(store, make_visits, count=1)
        agents = _agents()
        _execute(store, _run(store, ids, save_as_draft=False),
                 SubmissionFlow(store, _fake_browser, agents))
        assert agents['mhc_asia'].instances[0].submitted == ['submitted']
        assert store.get_visit(ids[0])['submission_status'] == 'submitted'

    def test_unsupported_pay_type(self, store, make_visits):
        ids = _extracted(store, make_visits, count=1, pay_type='CASH')
        agents = _agents()
        result = _execute(store, _run(store, ids), SubmissionFlow(store, _fake_browser, agents))

        assert result.status == 'completed'
        assert result.metadata['item_errors'] == {str(ids[0]): 'unsupported_pay_type'}
        saved = store.get_visit(ids[0])
        assert saved['submission_status'] == 'error'
        assert saved['submission_metadata']['reason'] == 'unsupported_pay_type'
        assert agents['mhc_asia'].instances == []

    def test_member_not_found_fails_item(self, store, make_visits):
        ids = _extracted(store, make_visits, count=2)
        agents = _agents(fail_nrics={'S1234560A'})
        result = _execute(store, _run(store, ids), SubmissionFlow(store, _fake_browser, agents))

        assert (result.completed_count, result.failed_count) == (1, 1)
        assert agents['mhc_asia'].instances[0].screenshots == [f'submit-failed-{ids[0]}']
        assert store.get_visit(ids[0])['submission_status'] == 'error'
        assert store.get_visit(ids[1])['submission_status'] == 'draft'

    def test_portal_login_failure_fails_run(self, store, make_visits):
        ids = _extracted(store, make_visits, count=2)
        agents = _agents(auth_error=AuthenticationError('MHC Asia', 'invalid password'))
        result = _execute(store, _run(store, ids), SubmissionFlow(store, _fake_browser, agents))
        assert result.status == 'failed'
        assert result.error_message == 'MHC Asia: invalid password'

    def test_portal_login_error_fails_records_once(self, store, make_visits):
        ids = _extracted(store, make_visits, count=2)
        agents = _agents(auth_error=PlaywrightError('Timeout 30000ms exceeded'))
        browser = _fake_browser()
        run = _run(store, ids)
        result = _execute(store, run, SubmissionFlow(store, lambda: browser, agents))

        assert result.status == 'completed'
        assert (result.completed_count, result.failed_count) == (0, 2)
        assert browser.new_isolated_session.call_count == 1
        assert len(agents['mhc_asia'].instances) == 1
        assert 'session unavailable' in result.metadata['item_errors'][str(ids[1])]
        for visit_id in ids:
            saved = store.get_visit(visit_id)
            assert saved['submission_status'] == 'error'
            assert saved['submission_metadata']['portal'] == 'mhc_asia'
        submit_result = [s for s in store.list_steps(run.id)
                         if s['label'] == 'Submit claims' and s['phase'] == 'result'][0]
        assert submit_result['payload']['portals'] == []
        assert 'mhc_asia' in submit_result['payload']['unavailable']

    def test_proxy_failure_logged_as_launch_step(self, store, make_visits):
        ids = _extracted(store, make_visits, count=1)
        browser = _fake_browser()
        browser.__enter__.side_effect = NetworkConfigurationError('No valid SG proxy after 3 attempts')
        run = _run(store, ids)
        result = _execute(store, run, SubmissionFlow(store, lambda: browser, _agents()))

        assert result.status == 'failed'
        launch = [s for s in store.list_steps(run.id) if s['label'] == 'Launch browser']
        assert [s['phase'] for s in launch] == ['start', 'result']
        assert launch[1]['payload']['ok'] is False

    def test_nothing_to_submit_skips_browser(self, store, make_visits):
        ids = [v['id'] for v in make_visits(count=2)]
        factory = MagicMock()
        result = _execute(store, _run(store, ids), SubmissionFlow(store, factory, _agents()))
        assert result.status == 'completed'
        factory.assert_not_called()

    def test_already_drafted_records_skipped(self, store, make_visits):
        ids = _extracted(store, make_visits, count=2)
        store.mark_submission(ids[0], 'draft', {'portal': 'mhc_asia'})
        agents = _agents()
        result = _execute(store, _run(store, ids), SubmissionFlow(store, _fake_browser, agents))
        assert result.total_records == 1
        assert agents['mhc_asia'].instances[0].submitted == ['draft']


class TestHoldOpen:
    """leave_session_open keeps the browser up, polling the cancel flag."""

    def test_waits_in_polls(self, store, make_visits):
        ids = _extracted(store, make_visits, count=1)
        sleeps = []
        flow = SubmissionFlow(store, _fake_browser, _agents(), keep_open_seconds=12, sleep=sleeps.append)
        result = _execute(store, _run(store, ids, leave_session_open=True), flow)

        assert result.status == 'completed'
        assert sleeps == [5, 5, 2]
        labels = [s['label'] for s in store.list_steps(result.id) if s['phase'] == 'start']
        assert labels == ['Load records', 'Launch browser', 'Submit claims', 'Hold session open']

    def test_cancel_ends_hold(self, store, make_visits):
        ids = _extracted(store, make_visits, count=1)
        run = _run(store, ids, leave_session_open=True)
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            store.request_cancel(run.id)

        flow = SubmissionFlow(store, _fake_browser, _agents(), keep_open_seconds=600, sleep=sleep)
        result = _execute(store, run, flow)

        assert result.status == 'canceled'
        assert sleeps == [5]
        assert result.completed_count == 1
