"""
Debug artifacts — screenshots keyed by run id and step label.

Written for post-mortem debugging only; nothing in the workflow reads them back.
Capture failures are logged and swallowed so a broken page never fails a run.
"""
import logging
import os
import re
from typing import Optional

from claimflow.config import ARTIFACT_DIR

logger = logging.getLogger('services.artifacts')

_UNSAFE_RE = re.compile(r'[^A-Za-z0-9._-]+')


def artifact_path(run_id: str, label: str, base_dir: str = None, ext: str = 'png') -> str:
    """<base_dir>/<run_id>/<label>.<ext> with the label made filesystem-safe."""
    safe_label = _UNSAFE_RE.sub('-', label).strip('-').lower() or 'screenshot'
    return os.path.join(base_dir or ARTIFACT_DIR, run_id or 'adhoc', f"{safe_label}.{ext}")


def capture_screenshot(page, run_id: str, label: str, base_dir: str = None, full_page: bool = True) -> Optional[str]:
    """Save a screenshot of page. Returns the path, or None when capture failed."""
    path = artifact_path(run_id, label, base_dir=base_dir)
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        page.screenshot(path=path, full_page=full_page)
        logger.info("Screenshot saved: %s", path)
        return path
    except Exception as e:
        logger.warning("Screenshot %s failed: %s", path, e)
        return None
