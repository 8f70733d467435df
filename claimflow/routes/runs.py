"""
Run routes — JSON API to trigger, inspect, cancel, resume and delete runs.
"""
import logging
from flask import Blueprint, request, jsonify

from claimflow.errors import InvalidTransition
from claimflow.pipeline.manager import (
    start_extraction_run, start_submission_run, cancel_run, delete_run,
    resume_run, get_run_status, get_run_steps, list_runs,
)

logger = logging.getLogger(__name__)

bp = Blueprint('runs', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


# ── Triggers ─────────────────────────────────────────────────────────────────

@bp.route('/api/runs/extraction', methods=['POST'])
def create_extraction_run():
    """Start an extraction run for a date or date range."""
    data = request.json or {}
    date_from = data.get('date') or data.get('date_from')
    if not date_from:
        return jsonify({'error': 'date is required (YYYY-MM-DD)'}), 400
    try:
        run_id = start_extraction_run(date_from, data.get('date_to'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("Failed to start extraction run", exc_info=True)
        return jsonify({'error': str(e)}), 500
    return jsonify(get_run_status(run_id)), 202


@bp.route('/api/runs/submission', methods=['POST'])
def create_submission_run():
    """Start a submission run for a list of visit ids."""
    data = request.json or {}
    record_ids = data.get('record_ids')
    if not isinstance(record_ids, list) or not record_ids:
        return jsonify({'error': 'record_ids must be a non-empty list'}), 400
    kwargs = {'leave_session_open': bool(data.get('leave_session_open', False))}
    if 'save_as_draft' in data:
        kwargs['save_as_draft'] = bool(data['save_as_draft'])
    try:
        run_id = start_submission_run(record_ids, **kwargs)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("Failed to start submission run", exc_info=True)
        return jsonify({'error': str(e)}), 500
    return jsonify(get_run_status(run_id)), 202


# ── Run API ──────────────────────────────────────────────────────────────────

@bp.route('/api/runs')
def list_recent_runs():
    """List recent runs, newest first."""
    limit = request.args.get('limit', 20, type=int)
    run_type = request.args.get('run_type')
    return jsonify(list_runs(limit=limit, run_type=run_type))


@bp.route('/api/runs/<run_id>')
def get_run(run_id):
    """Get a single run's status."""
    status = get_run_status(run_id)
    if not status:
        return jsonify({'error': 'Run not found'}), 404
    return jsonify(status)


@bp.route('/api/runs/<run_id>/steps')
def get_steps(run_id):
    """Step log of a run in ordinal order."""
    if not get_run_status(run_id):
        return jsonify({'error': 'Run not found'}), 404
    return jsonify(get_run_steps(run_id))


@bp.route('/api/runs/<run_id>/cancel', methods=['POST'])
def cancel(run_id):
    if not get_run_status(run_id):
        return jsonify({'error': 'Run not found'}), 404
    if not cancel_run(run_id):
        return jsonify({'error': 'Run is already finished'}), 409
    return jsonify(get_run_status(run_id)), 202


@bp.route('/api/runs/<run_id>/resume', methods=['POST'])
def resume(run_id):
    """Re-enqueue a run; only items not yet completed are processed."""
    try:
        if resume_run(run_id) is None:
            return jsonify({'error': 'Run not found'}), 404
    except InvalidTransition as e:
        return jsonify({'error': str(e)}), 409
    except Exception as e:
        logger.error("Failed to resume run %s", run_id, exc_info=True)
        return jsonify({'error': str(e)}), 500
    return jsonify(get_run_status(run_id)), 202


@bp.route('/api/runs/<run_id>', methods=['DELETE'])
def remove(run_id):
    try:
        if not delete_run(run_id):
            return jsonify({'error': 'Run not found'}), 404
    except InvalidTransition as e:
        return jsonify({'error': str(e)}), 409
    except Exception as e:
        logger.error("Failed to delete run %s", run_id, exc_info=True)
        return jsonify({'error': str(e)}), 500
    return jsonify({'status': 'deleted', 'id': run_id}), 200
