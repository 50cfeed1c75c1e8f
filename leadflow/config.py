"""
Centralized configuration — env vars, provider keys, pipeline constants.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis / RQ ────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
RQ_QUEUE_NAME = os.getenv('RQ_QUEUE_NAME', 'leadflow-events')
EVENT_JOB_TIMEOUT = int(os.getenv('EVENT_JOB_TIMEOUT', 1800))
EVENT_MAX_RETRIES = int(os.getenv('EVENT_MAX_RETRIES', 3))
EVENT_RETRY_INTERVALS = [10, 30, 60]

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── OpenAI ────────────────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
OPENAI_DEEP_MODEL = os.getenv('OPENAI_DEEP_MODEL', 'gpt-4o')

# ── Scrapingdog (Google Maps + Google Search) ─────────────────────────────────
SCRAPINGDOG_API_KEY = os.getenv('SCRAPINGDOG_API_KEY')
SCRAPINGDOG_API_URL = 'https://api.scrapingdog.com'
SEARCH_COUNTRY = os.getenv('SEARCH_COUNTRY', 'au')
SEARCH_DOMAIN = os.getenv('SEARCH_DOMAIN', 'google.com.au')

# ── Website scraping ─────────────────────────────────────────────────────────
WEBSITE_TIMEOUT = int(os.getenv('WEBSITE_TIMEOUT', 30))
WEBSITE_USER_AGENT = os.getenv(
    'WEBSITE_USER_AGENT',
    'Mozilla/5.0 (compatible; LeadflowBot/1.0; +https://example.com/bot)',
)

# ── Email enrichment providers ───────────────────────────────────────────────
HUNTER_API_KEY = os.getenv('HUNTER_API_KEY')
HUNTER_API_URL = 'https://api.hunter.io/v2'
TOMBA_API_KEY = os.getenv('TOMBA_API_KEY')
TOMBA_SECRET = os.getenv('TOMBA_SECRET')
TOMBA_API_URL = 'https://api.tomba.io/v1'

# ── SendGrid (read-only suppression sync) ─────────────────────────────────────
SENDGRID_API_KEY = os.getenv('SENDGRID_API_KEY')
SENDGRID_API_URL = 'https://api.sendgrid.com/v3'

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Local development ────────────────────────────────────────────────────────
MOCK_PIPELINE = bool(os.getenv('MOCK_PIPELINE'))

# ── Run sizing ────────────────────────────────────────────────────────────────
MIN_TARGET_COUNT = 5
MAX_TARGET_COUNT = 2000
DEFAULT_TARGET_COUNT = 50

# Max events per dispatch call when fanning out research triggers
EVENT_BATCH_SIZE = 100

# ── Contact cadence ───────────────────────────────────────────────────────────
CONTACT_CADENCE_MONTHS = 6

# ── Run status values ─────────────────────────────────────────────────────────
RUN_STATUSES = [
    'pending',
    'scraping',
    'prescreening',
    'ready',
    'researching',
    'completed',
    'failed',
    'archived',
]

# ── Lead research status values ───────────────────────────────────────────────
LEAD_STATUSES = [
    'pending',
    'prescreening',
    'scraping',
    'analyzing',
    'completed',
    'failed',
    'skipped',
]

TERMINAL_LEAD_STATUSES = ('completed', 'failed', 'skipped')
IN_FLIGHT_LEAD_STATUSES = ('prescreening', 'scraping', 'analyzing')

GRADES = ('A', 'B', 'C', 'D', 'F')
PRESCREEN_CONFIDENCES = ('high', 'medium', 'low')
EMAIL_PROVIDERS = ('hunter', 'tomba', 'ai')

MANUAL_F_REASONING = 'Manually marked as not interested'
