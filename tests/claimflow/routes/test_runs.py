"""Tests for claimflow.routes.runs — trigger, inspect, cancel, resume and delete runs."""
import pytest
from unittest.mock import patch

from claimflow.models.run import Run


def _running(store):
    run = store.create_run(Run())
    run.start()
    store.save_run(run)
    return run


def _completed(store):
    run = _running(store)
    run.complete()
    store.save_run(run)
    return run


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------

class TestHealthCheck:
    """GET /health returns a simple health status."""

    def test_returns_200_with_healthy_status(self, client):
        resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.json == {"status": "healthy"}


# ---------------------------------------------------------------------------
# Bearer token
# ---------------------------------------------------------------------------

class TestBearerToken:
    """API_TOKEN, when set, guards everything except /health."""

    @pytest.fixture
    def secured_client(self):
        with patch('claimflow.config.API_TOKEN', 'secret'):
            from claimflow import create_app
            app = create_app()
            app.config['TESTING'] = True
            with app.test_client() as c:
                yield c

    def test_missing_token_401(self, secured_client, manager_store):
        resp = secured_client.get('/api/runs')
        assert resp.status_code == 401
        assert resp.json == {'error': 'Unauthorized'}

    def test_valid_token(self, secured_client, manager_store):
        resp = secured_client.get('/api/runs', headers={'Authorization': 'Bearer secret'})
        assert resp.status_code == 200

    def test_health_open(self, secured_client):
        assert secured_client.get('/health').status_code == 200


# ---------------------------------------------------------------------------
# POST /api/runs/extraction
# ---------------------------------------------------------------------------

class TestCreateExtractionRun:

    def test_single_date_202(self, client, manager_store):
        resp = client.post('/api/runs/extraction', json={'date': '2026-10-16'})
        assert resp.status_code == 202
        assert resp.json['status'] == 'pending'
        assert resp.json['metadata']['params']['date_from'] == '2026-10-16'
        manager_store.queue.enqueue.assert_called_once()

    def test_date_range(self, client, manager_store):
        resp = client.post('/api/runs/extraction', json={'date_from': '2026-10-01', 'date_to': '2026-10-16'})
        assert resp.status_code == 202
        assert resp.json['metadata']['params']['date_to'] == '2026-10-16'

    def test_missing_date_400(self, client, manager_store):
        resp = client.post('/api/runs/extraction', json={})
        assert resp.status_code == 400

    def test_bad_date_400(self, client, manager_store):
        resp = client.post('/api/runs/extraction', json={'date': '16/10/2026'})
        assert resp.status_code == 400
        manager_store.queue.enqueue.assert_not_called()


# ---------------------------------------------------------------------------
# POST /api/runs/submission
# ---------------------------------------------------------------------------

class TestCreateSubmissionRun:

    def test_202(self, client, manager_store):
        resp = client.post('/api/runs/submission', json={'record_ids': [1, 2], 'save_as_draft': True})
        assert resp.status_code == 202
        assert resp.json['run_type'] == 'submission'
        assert resp.json['metadata']['params']['record_ids'] == [1, 2]

    @pytest.mark.parametrize('body', [{}, {'record_ids': []}, {'record_ids': 5}, {'record_ids': ['x']}])
    def test_bad_ids_400(self, client, manager_store, body):
        resp = client.post('/api/runs/submission', json=body)
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# GET /api/runs, /api/runs/<id>, /api/runs/<id>/steps
# ---------------------------------------------------------------------------

class TestRunQueries:

    def test_list(self, client, manager_store):
        manager_store.create_run(Run(run_type='extraction'))
        manager_store.create_run(Run(run_type='submission'))
        assert len(client.get('/api/runs').json) == 2
        assert len(client.get('/api/runs?run_type=extraction').json) == 1

    def test_get(self, client, manager_store):
        run = _running(manager_store)
        resp = client.get(f'/api/runs/{run.id}')
        assert resp.status_code == 200
        assert resp.json['status'] == 'running'

    def test_get_missing_404(self, client, manager_store):
        assert client.get('/api/runs/missing').status_code == 404

    def test_steps(self, client, manager_store):
        run = _running(manager_store)
        manager_store.append_step(run.id, 1, 'Launch browser', 'start')
        manager_store.append_step(run.id, 1, 'Launch browser', 'result', {'ok': True})
        resp = client.get(f'/api/runs/{run.id}/steps')
        assert resp.status_code == 200
        assert [s['phase'] for s in resp.json] == ['start', 'result']

    def test_steps_missing_404(self, client, manager_store):
        assert client.get('/api/runs/missing/steps').status_code == 404


# ---------------------------------------------------------------------------
# Cancel / resume / delete
# ---------------------------------------------------------------------------

class TestCancel:

    def test_running_202(self, client, manager_store):
        run = _running(manager_store)
        resp = client.post(f'/api/runs/{run.id}/cancel')
        assert resp.status_code == 202
        assert resp.json['cancel_requested'] is True

    def test_finished_409(self, client, manager_store):
        run = _completed(manager_store)
        assert client.post(f'/api/runs/{run.id}/cancel').status_code == 409

    def test_missing_404(self, client, manager_store):
        assert client.post('/api/runs/missing/cancel').status_code == 404


class TestResume:

    def test_completed_202(self, client, manager_store):
        run = _completed(manager_store)
        assert client.post(f'/api/runs/{run.id}/resume').status_code == 202
        manager_store.queue.enqueue.assert_called_once()

    def test_failed_409(self, client, manager_store):
        run = _running(manager_store)
        run.fail('auth')
        manager_store.save_run(run)
        assert client.post(f'/api/runs/{run.id}/resume').status_code == 409

    def test_missing_404(self, client, manager_store):
        assert client.post('/api/runs/missing/resume').status_code == 404


class TestDelete:

    def test_deleted(self, client, manager_store):
        run = _completed(manager_store)
        resp = client.delete(f'/api/runs/{run.id}')
        assert resp.status_code == 200
        assert resp.json == {'status': 'deleted', 'id': run.id}

    def test_running_409(self, client, manager_store):
        run = _running(manager_store)
        assert client.delete(f'/api/runs/{run.id}').status_code == 409

    def test_missing_404(self, client, manager_store):
        assert client.delete('/api/runs/missing').status_code == 404
