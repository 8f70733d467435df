"""
Command-line entry point for scheduled (cron) runs.

Usage:
    claimflow extract --date 2026-10-16 [--to 2026-10-17]
    claimflow submit --ids 12 13 14 [--submit] [--leave-open]
    claimflow cancel RUN_ID
    claimflow status RUN_ID

extract and submit run in the foreground rather than through RQ, with a
process-local run lock so they work without Redis. Exit code is
0 when the run completes (including when there was no work) and 1 otherwise.
"""
import argparse
import json
import logging
import sys

from claimflow.config import WORKFLOW_SAVE_DRAFT
from claimflow.logging_config import configure_logging
from claimflow.pipeline import manager
from claimflow.services.browser import default_session_manager, install_signal_handlers

logger = logging.getLogger('claimflow.cli')


def _browser_factory():
    browser = default_session_manager()
    install_signal_handlers(browser)
    return browser


def _run_foreground(run_id: str) -> int:
    run = manager.execute_run(run_id, flow_options={'browser_factory': _browser_factory})
    if run is None:
        return 1
    print(json.dumps(run.to_dict(), indent=2, default=str))
    return 0 if run.status == 'completed' else 1


def cmd_extract(args) -> int:
    manager.use_local_store()
    run_id = manager.start_extraction_run(args.date, args.to, enqueue=False)
    return _run_foreground(run_id)


def cmd_submit(args) -> int:
    manager.use_local_store()
    save_as_draft = False if args.submit else WORKFLOW_SAVE_DRAFT
    run_id = manager.start_submission_run(
        args.ids, save_as_draft=save_as_draft, leave_session_open=args.leave_open, enqueue=False,
    )
    return _run_foreground(run_id)


def cmd_cancel(args) -> int:
    if not manager.cancel_run(args.run_id):
        print(f"Run {args.run_id} not found or already finished", file=sys.stderr)
        return 1
    print(f"Cancel requested for {args.run_id}")
    return 0


def cmd_status(args) -> int:
    status = manager.get_run_status(args.run_id)
    if status is None:
        print(f"Run {args.run_id} not found", file=sys.stderr)
        return 1
    print(json.dumps(status, indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='claimflow', description='Clinic claim extraction and submission runs')
    sub = parser.add_subparsers(dest='command', required=True)

    extract = sub.add_parser('extract', help='Extract visits for a date or date range')
    extract.add_argument('--date', required=True, help='Visit date (YYYY-MM-DD)')
    extract.add_argument('--to', default=None, help='Inclusive end date (YYYY-MM-DD)')
    extract.set_defaults(func=cmd_extract)

    submit = sub.add_parser('submit', help='Submit extracted visits to insurer portals')
    submit.add_argument('--ids', required=True, nargs='+', type=int, help='Visit ids')
    submit.add_argument('--submit', action='store_true', help='Submit instead of saving as draft')
    submit.add_argument('--leave-open', action='store_true', help='Keep the browser open for review')
    submit.set_defaults(func=cmd_submit)

    cancel = sub.add_parser('cancel', help='Cancel a run')
    cancel.add_argument('run_id')
    cancel.set_defaults(func=cmd_cancel)

    status = sub.add_parser('status', help='Show a run')
    status.add_argument('run_id')
    status.set_defaults(func=cmd_status)

    return parser


def main(argv=None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception:
        logger.error("Command %s failed", args.command, exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
