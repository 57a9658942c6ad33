"""
Constants and configuration values for modlock.

This module contains all hardcoded values, URLs, timeouts, and other constants
used throughout the application.
"""

# Shared module proxy
DEFAULT_PROXY = "https://proxy.golang.org"
PROXY_DISABLED_VALUES = ("direct", "off")

# Version-control hosts whose archive URL scheme is understood
DEFAULT_VCS_HOSTS = ("github.com",)

# Path infix identifying a schema-registry generated module (buf.build)
SCHEMA_REGISTRY_INFIX = "/gen/go/"

# Version classification
SNAPSHOT_PREFIX = "v0.0.0-"
INCOMPATIBLE_SUFFIX = "+incompatible"
FULL_COMMIT_HASH_LENGTH = 40

# Characters kept verbatim when escaping a version as a URL path segment
VERSION_SAFE_CHARS = "$&+:=@"

# Character placed before each uppercase letter in an escaped module path
CASE_ESCAPE_CHAR = "!"

# Network timeouts (in seconds)
DEFAULT_REQUEST_TIMEOUT = 30
METADATA_REQUEST_TIMEOUT = 10
GO_LIST_TIMEOUT = 60
DEFAULT_CHUNK_SIZE = 65536
DEFAULT_MAX_REDIRECTS = 10

# Worker pool
DEFAULT_MAX_WORKERS = 8

# Cache layout
CACHE_TMP_DIR_NAME = ".tmp"
# Leftovers in the temporary directory older than this are removed at startup
STALE_TMP_MAX_AGE = 24 * 60 * 60
HASH_SIDECAR_SUFFIX = ".hash"
URL_SIDECAR_SUFFIX = ".url"
REV_SIDECAR_SUFFIX = ".rev"
ZIP_EXTENSION = ".zip"

# Hashing
HASH_ALGORITHM = "sha256"
NAR_MAGIC = "nix-archive-1"
SRI_DIGEST_SIZES = {"sha256": 32, "sha512": 64}

# Lockfile
LOCKFILE_NAME = "modlock.lock.yaml"
LOCKFILE_SCHEMA_VERSION = 1

# Manifest files
GO_MOD_FILE = "go.mod"
GO_SUM_FILE = "go.sum"

# Configuration file names
APP_NAME = "modlock"
CONFIG_FILE_NAME = "modlock.yaml"
NETRC_FILE_NAME = ".netrc"

# Environment variable names
LOG_LEVEL_ENV_VAR = "MODLOCK_LOG_LEVEL"
CACHE_DIR_ENV_VAR = "MODLOCK_CACHE_DIR"
PROXY_ENV_VAR = "GOPROXY"
PRIVATE_ENV_VAR = "GOPRIVATE"
NOPROXY_ENV_VAR = "GONOPROXY"
NETRC_ENV_VAR = "NETRC"

# Logging configuration
LOGGER_NAME = "modlock"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5

# Executable bits applied to extracted files whose zip entry records any
EXECUTABLE_PERMISSIONS = 0o755
REGULAR_FILE_PERMISSIONS = 0o644
