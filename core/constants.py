"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Defines all system-wide constants.

- Single source of truth for default values
- Exit statuses shared by every fatal path
- Environment variable names

============================================================
"""

# ============================================================
# SYSTEM IDENTIFICATION
# ============================================================

APPLICATION_NAME = "fqd"
VERSION = "0.1.0"

# ============================================================
# EXIT STATUSES
# ============================================================

EXIT_SUCCESS = 0
# exit(-1) as seen by the parent process
EXIT_FAILURE = 255

# ============================================================
# STARTUP DEFAULTS
# ============================================================

DEFAULT_LISTEN_PORT = 8765
DEFAULT_WORKER_THREADS = 1
DEFAULT_MODULE_SEARCH_DIR = "/usr/local/libexec/fq"
DEFAULT_CONFIG_STORE_PATH = "/var/lib/fq/fqd.sqlite"
DEFAULT_QUEUE_STORAGE_PATH = "/var/lib/fq/queues"
MODULE_SUFFIX = ".py"

NULL_DEVICE = "/dev/null"

# ============================================================
# ENVIRONMENT VARIABLES
# ============================================================

ENV_DEBUG_FLAGS = "FQ_DEBUG"
ENV_LOG_LEVEL = "FQD_LOG_LEVEL"
ENV_LOG_FORMAT = "FQD_LOG_FORMAT"
ENV_LOG_FILE = "FQD_LOG_FILE"
ENV_CRASH_DIR = "FQD_CRASH_DIR"
