"""
Notifications — Slack webhook integration for run events.

Notification failure never blocks a run.
"""
import logging
import requests

from claimflow.config import SLACK_WEBHOOK_URL

logger = logging.getLogger('services.notifications')


def notify_run_complete(run):
    """Post run completion summary to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"Claim Run Completed — {run.run_type.capitalize()}",
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Records:* {run.total_records or 0}"},
                    {"type": "mrkdwn", "text": f"*Completed:* {run.completed_count or 0}"},
                    {"type": "mrkdwn", "text": f"*Failed:* {run.failed_count or 0}"},
                ]
            },
        ]

        item_errors = run.metadata.get('item_errors') or {}
        if item_errors:
            lines = [f"• {key}: {reason}" for key, reason in list(item_errors.items())[:5]]
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": "*Failed records:*\n" + "\n".join(lines)}
            })

        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Run %s completion notification sent", run.id[:8])

    except Exception:
        logger.error("Failed to send notification for run %s", run.id[:8], exc_info=True)


def notify_run_failed(run):
    """Post run failure alert to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"Claim Run FAILED — {run.run_type.capitalize()}",
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Completed so far:* {run.completed_count or 0}"},
                    {"type": "mrkdwn", "text": f"*Records:* {run.total_records or 0}"},
                ]
            },
        ]

        if run.error_message:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Error:* ```{run.error_message[:500]}```"}
            })

        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Run %s failure notification sent", run.id[:8])

    except Exception:
        logger.error("Failed to send failure notification for run %s", run.id[:8], exc_info=True)
