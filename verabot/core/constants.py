"""
VeraBot - Centralized Constants
===============================

All magic numbers and constants are defined here for maintainability.
Import from this module instead of hardcoding values.
"""

# =============================================================================
# Time Constants (in seconds)
# =============================================================================

SECONDS_PER_MINUTE = 60

# =============================================================================
# Database Constants
# =============================================================================

ROOT_GUILD_ID = "root"                # Shared bot-wide database
GUILDS_DIR_NAME = "guilds"            # <data_dir>/guilds/<guild_id>/
DB_FILENAME = "quotes.db"             # Per-guild database file name

DB_CONNECTION_TIMEOUT = 30.0          # sqlite3.connect timeout
SQLITE_BUSY_TIMEOUT = 5000            # PRAGMA busy_timeout (ms)

MAX_GUILD_CONNECTIONS = 50            # Open handles before LRU eviction
DB_IDLE_TIMEOUT = 15 * SECONDS_PER_MINUTE  # Close handles idle this long
IDLE_REAPER_INTERVAL = SECONDS_PER_MINUTE  # How often the reaper runs

# =============================================================================
# Quote Constants
# =============================================================================

DEFAULT_QUOTE_AUTHOR = "Anonymous"
DEFAULT_QUOTE_CATEGORY = "General"
MIN_RATING = 1
MAX_RATING = 5

# =============================================================================
# Reminder Constants
# =============================================================================

REMINDER_STATUS_ACTIVE = "active"
REMINDER_STATUS_COMPLETED = "completed"
REMINDER_STATUS_DELETED = "deleted"
REMINDER_STATUSES = (
    REMINDER_STATUS_ACTIVE,
    REMINDER_STATUS_COMPLETED,
    REMINDER_STATUS_DELETED,
)

ASSIGNEE_TYPE_USER = "user"
ASSIGNEE_TYPE_ROLE = "role"
ASSIGNEE_TYPES = (ASSIGNEE_TYPE_USER, ASSIGNEE_TYPE_ROLE)

NOTIFICATION_METHOD_DM = "dm"
NOTIFICATION_METHOD_CHANNEL = "channel"
NOTIFICATION_METHODS = (NOTIFICATION_METHOD_DM, NOTIFICATION_METHOD_CHANNEL)

NOTIFICATION_SENT = "sent"
NOTIFICATION_FAILED = "failed"
NOTIFICATION_SKIPPED = "skipped"

DEFAULT_REMINDER_CATEGORY = "General"

# Validation limits
REMINDER_SUBJECT_MIN_LENGTH = 3
REMINDER_SUBJECT_MAX_LENGTH = 200
REMINDER_CONTENT_MAX_LENGTH = 2000
REMINDER_CATEGORY_MAX_LENGTH = 50
REMINDER_URL_MAX_LENGTH = 500

# Scheduler
REMINDER_CHECK_INTERVAL = SECONDS_PER_MINUTE
REMINDER_GUILD_BATCH_SIZE = 10        # Guilds processed concurrently
REMINDER_BATCH_DELAY = 0.1            # Pause between guild batches

# =============================================================================
# Text Length Limits
# =============================================================================

DM_MESSAGE_LIMIT = 2000               # Discord message length limit

# =============================================================================
# Data Retention Constants
# =============================================================================

LOG_RETENTION_DAYS = 7                # Dated log directories kept
