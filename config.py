"""Runtime settings for the lab schedule admin, read from the environment."""
import os
import secrets

# ── Upstream REST API ──────────────────────────────────────────────────────────
API_BASE_URL = os.environ.get('LAB_API_BASE_URL', 'http://localhost:3000/api').rstrip('/')

# Request budgets in milliseconds
READ_TIMEOUT_MS  = 10000
WRITE_TIMEOUT_MS = 15000
SLOW_TIMEOUT_MS  = 30000
WRITE_METHODS     = ('POST', 'PUT', 'DELETE')
SLOW_URL_SEGMENTS = ('/seed',)

# Free/busy summary refetch is held back until drag activity settles
SUMMARY_DEBOUNCE_MS = int(os.environ.get('SUMMARY_DEBOUNCE_MS', '500'))

# A schedule view with no open push stream is dropped after this long untouched
VIEW_IDLE_SECONDS = int(os.environ.get('VIEW_IDLE_SECONDS', '1800'))

# ── Web app ────────────────────────────────────────────────────────────────────
SECRET_KEY = os.environ.get('FLASK_SECRET_KEY', secrets.token_hex(32))
HOST  = os.environ.get('HOST', '127.0.0.1')
PORT  = int(os.environ.get('PORT', '5000'))
DEBUG = os.environ.get('FLASK_DEBUG', '') == '1'
SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', '') == '1'

ALLOWED_ORIGINS = [
    "http://localhost:5173",          # Vite dev
    "http://localhost:3000",
]
_extra = os.environ.get('CORS_ORIGINS', '')
if _extra:
    ALLOWED_ORIGINS += [o.strip() for o in _extra.split(',') if o.strip()]

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
