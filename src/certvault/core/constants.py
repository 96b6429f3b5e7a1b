"""Constants and default values for certvault.

This module centralizes the magic numbers and environment variable names
used by the storage and locking layers.
"""

# ==================== LOCKING DEFAULTS ====================

# Age after which an unreleased lock marker is presumed abandoned
DEFAULT_STALE_LOCK_SECONDS: int = 2 * 60 * 60  # 2 hours
# Sleep between disk polls while a lock is contended
DEFAULT_LOCK_POLL_INTERVAL: float = 1.0
LOCK_FILE_SUFFIX: str = ".lock"
LOCKS_DIR_NAME: str = "locks"

# Marker basenames longer than this are truncated and suffixed with a digest
MAX_LOCK_NAME_LENGTH: int = 200
LOCK_NAME_DIGEST_CHARS: int = 16

# ==================== FILESYSTEM MODES ====================

DIR_MODE: int = 0o700
FILE_MODE: int = 0o600
LOCK_FILE_MODE: int = 0o644

# ==================== LOGGING DEFAULTS ====================

LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024  # 10MB max per log file
LOG_FILE_BACKUP_COUNT: int = 5  # Number of backup log files to keep
VALID_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_LOG_FORMATS: tuple[str, ...] = ("text", "json")

# ==================== ENVIRONMENT VARIABLES ====================

ENV_HOME = "CERTVAULT_HOME"
ENV_STALE_LOCK_SECONDS = "CERTVAULT_STALE_LOCK_SECONDS"
ENV_LOCK_POLL_SECONDS = "CERTVAULT_LOCK_POLL_SECONDS"
ENV_LOCK_TIMEOUT_SECONDS = "CERTVAULT_LOCK_TIMEOUT_SECONDS"
ENV_LOG_LEVEL = "LOG_LEVEL"
