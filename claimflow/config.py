"""
Centralized configuration — all env vars, constants, portal routing.
"""
import os


def _flag(name, default='false'):
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Source system (Clinic Assist) ─────────────────────────────────────────────
CLINIC_ASSIST_URL = os.getenv('CLINIC_ASSIST_URL', 'https://clinicassist.sg:1080/')
CLINIC_ASSIST_USERNAME = os.getenv('CLINIC_ASSIST_USERNAME')
CLINIC_ASSIST_PASSWORD = os.getenv('CLINIC_ASSIST_PASSWORD')
CLINIC_ASSIST_CLINIC_GROUP = os.getenv('CLINIC_ASSIST_CLINIC_GROUP', '')

# ── Target portals ────────────────────────────────────────────────────────────
MHC_ASIA_URL = os.getenv('MHC_ASIA_URL', 'https://www.mhcasia.net/mhc/')
MHC_ASIA_USERNAME = os.getenv('MHC_ASIA_USERNAME')
MHC_ASIA_PASSWORD = os.getenv('MHC_ASIA_PASSWORD')

ALLIANCE_MEDINET_URL = os.getenv('ALLIANCE_MEDINET_URL', 'https://connect.alliancemedinet.com/login')
ALLIANCE_MEDINET_USERNAME = os.getenv('ALLIANCE_MEDINET_USERNAME')
ALLIANCE_MEDINET_PASSWORD = os.getenv('ALLIANCE_MEDINET_PASSWORD')

# ── Egress proxy ──────────────────────────────────────────────────────────────
PROXY_ENABLED = _flag('PROXY_ENABLED')
PROXY_SERVER = os.getenv('PROXY_SERVER')
PROXY_USERNAME = os.getenv('PROXY_USERNAME')
PROXY_PASSWORD = os.getenv('PROXY_PASSWORD')
PROXY_BYPASS = os.getenv('PROXY_BYPASS', 'localhost,127.0.0.1')
PROXY_AUTO_DISCOVER = _flag('PROXY_AUTO_DISCOVER', 'true')
PROXY_REGION = os.getenv('PROXY_REGION', 'SG')
PROXY_MAX_RETRIES = int(os.getenv('PROXY_MAX_RETRIES', 3))
PROXY_ALLOW_DIRECT = _flag('PROXY_ALLOW_DIRECT')
PROXY_CACHE_TTL_SECONDS = int(os.getenv('PROXY_CACHE_TTL_SECONDS', 300))
PROXY_SOURCE_TIMEOUT = int(os.getenv('PROXY_SOURCE_TIMEOUT', 10))
PROXY_VALIDATION_TIMEOUT = int(os.getenv('PROXY_VALIDATION_TIMEOUT', 15))
PROXY_IP_CHECK_URL = os.getenv('PROXY_IP_CHECK_URL', 'https://ipinfo.io/json')
PROXY_TARGET_URL = os.getenv('PROXY_TARGET_URL', MHC_ASIA_URL)

# ── Browser ───────────────────────────────────────────────────────────────────
HEADLESS = _flag('HEADLESS', 'true')
SLOW_MO = int(os.getenv('SLOW_MO', 0))
UI_TIMEOUT_MS = int(os.getenv('UI_TIMEOUT_MS', 30000))
VIEWPORT = {
    'width': int(os.getenv('VIEWPORT_WIDTH', 1920)),
    'height': int(os.getenv('VIEWPORT_HEIGHT', 1080)),
}
SESSION_KEEP_OPEN_SECONDS = int(os.getenv('SESSION_KEEP_OPEN_SECONDS', 600))

# ── Artifacts ─────────────────────────────────────────────────────────────────
ARTIFACT_DIR = os.getenv('ARTIFACT_DIR', 'screenshots')

# ── Workflow ──────────────────────────────────────────────────────────────────
RUN_TIMEOUT_SECONDS = int(os.getenv('RUN_TIMEOUT_SECONDS', 14400))
MAX_EXTRACTION_ATTEMPTS = int(os.getenv('MAX_EXTRACTION_ATTEMPTS', 3))
WORKFLOW_SAVE_DRAFT = _flag('WORKFLOW_SAVE_DRAFT', 'true')
RUN_LOCK_TIMEOUT_SECONDS = int(os.getenv('RUN_LOCK_TIMEOUT_SECONDS', 30))

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Auth ─────────────────────────────────────────────────────────────────────
API_TOKEN = os.getenv('API_TOKEN')

# ── Run kinds and status values ───────────────────────────────────────────────
RUN_TYPES = [
    'extraction',
    'submission',
]

RUN_STATUSES = [
    'pending',
    'running',
    'completed',
    'failed',
    'canceled',
]

TERMINAL_STATUSES = ('completed', 'failed', 'canceled')

# ── Pay type → target portal ──────────────────────────────────────────────────
# Pay types without a portal here fail the item as unsupported.
PAY_TYPE_PORTALS = {
    'MHC':       'mhc_asia',
    'AIA':       'mhc_asia',
    'AIACLIENT': 'mhc_asia',
    'ALLIANCE':  'alliance_medinet',
    'ALLIMED':   'alliance_medinet',
}
