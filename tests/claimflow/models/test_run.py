"""Tests for claimflow.models.run — state machine and item ledger."""
import pytest

from claimflow.errors import InvalidTransition
from claimflow.models.run import Run


class TestStateMachine:
    """pending → running → completed | failed | canceled, nothing back out."""

    def test_defaults(self):
        run = Run()
        assert run.status == 'pending'
        assert run.id
        assert run.metadata == {'items': {}}
        assert (run.total_records, run.completed_count, run.failed_count) == (0, 0, 0)

    def test_happy_path(self):
        run = Run()
        run.start()
        assert run.started_at is not None
        run.complete()
        assert run.status == 'completed'
        assert run.finished_at is not None
        assert run.is_terminal

    def test_fail_sets_message(self):
        run = Run()
        run.start()
        run.fail('MHC Asia: invalid password')
        assert run.error_message == 'MHC Asia: invalid password'

    def test_pending_can_cancel(self):
        run = Run()
        run.cancel()
        assert run.status == 'canceled'
        assert run.error_message == 'Cancelled by user'

    @pytest.mark.parametrize('final', ['completed', 'failed', 'canceled'])
    def test_terminal_is_final(self, final):
        run = Run()
        run.start()
        getattr(run, {'completed': 'complete', 'failed': 'fail', 'canceled': 'cancel'}[final])()
        with pytest.raises(InvalidTransition):
            run.start()
        with pytest.raises(InvalidTransition):
            run.complete()

    def test_pending_cannot_complete(self):
        with pytest.raises(InvalidTransition):
            Run().complete()

    def test_unknown_run_type(self):
        with pytest.raises(ValueError):
            Run(run_type='billing')


class TestItemLedger:
    """Counts always come from the ledger, so each item counts once."""

    def test_record_items(self):
        run = Run()
        run.set_total(3)
        run.record_item(1, True)
        run.record_item(2, False, 'member not found')
        assert (run.completed_count, run.failed_count) == (1, 1)
        assert run.metadata['item_errors'] == {'2': 'member not found'}
        assert run.item_status(2) == 'failed'

    def test_failed_then_completed_counted_once(self):
        run = Run()
        run.set_total(2)
        run.record_item(1, False, 'timeout')
        run.record_item(1, True)
        assert (run.completed_count, run.failed_count) == (1, 0)
        assert run.metadata['item_errors'] == {}
        assert run.is_item_completed('1')

    def test_total_grows_with_ledger(self):
        run = Run()
        run.set_total(1)
        run.record_item('a', True)
        run.record_item('b', True)
        assert run.total_records == 2

    def test_set_total_never_below_ledger(self):
        run = Run()
        run.record_item(1, True)
        run.record_item(2, True)
        run.set_total(0)
        assert run.total_records == 2

    def test_to_dict(self):
        run = Run(run_type='submission', metadata={'params': {'record_ids': [1]}})
        data = run.to_dict()
        assert data['run_type'] == 'submission'
        assert data['started_at'] is None
        assert data['metadata']['params'] == {'record_ids': [1]}
        assert data['cancel_requested'] is False
