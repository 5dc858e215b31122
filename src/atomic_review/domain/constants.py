"""Centralized constants for atomic-review.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Schema ----------
CURRENT_SCHEMA_VERSION = 2
SNAPSHOT_VERSION = 1

# ---------- Persistence ----------
SAVE_DEBOUNCE = 1.0  # seconds
MIN_SAVE_INTERVAL = 0.5  # seconds
SAVE_MAX_ATTEMPTS = 3
SAVE_RETRY_BASE_DELAY = 0.1  # seconds, doubled after each failed attempt
MAX_BACKUPS = 5
BACKUP_INTERVAL = 300.0  # seconds between rotating backups
REVIEW_LOG_CAP = 10000
REVIEW_LOG_SLACK = 0.10  # compaction starts once the log exceeds cap by this share

DATA_FILE = "data.json"
BACKUPS_FILE = "backups.json"
SESSION_FILE = "session.json"

# ---------- FSRS ----------
DEFAULT_REQUEST_RETENTION = 0.9
MIN_REQUEST_RETENTION = 0.70
MAX_REQUEST_RETENTION = 0.97
DEFAULT_MAXIMUM_INTERVAL = 36500
MIN_MAXIMUM_INTERVAL = 1
MAX_MAXIMUM_INTERVAL = 36500

# ---------- Queues ----------
DEFAULT_QUEUE_ID = "default"
DEFAULT_QUEUE_NAME = "Default"
STATS_CACHE_TTL = 30.0  # seconds
DEFAULT_NEW_CARDS_PER_DAY = 20
DEFAULT_MAX_REVIEWS_PER_DAY = 200
MIN_DAILY_LIMIT = 1
MAX_DAILY_LIMIT = 1000

# ---------- Orphans ----------
MAX_ORPHAN_MATCHES = 5
MIN_ORPHAN_MATCH_SCORE = 0.2

# ---------- Vault ----------
NOTE_SUFFIX = ".md"
