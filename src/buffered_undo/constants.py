"""Constants for buffered-undo."""

# Per-project config directory (inside the real working root)
PROJECT_CONFIG_DIR = ".buffered-undo"
CONFIG_FILE = "config.yaml"

# Environment override for the cache root
CACHE_DIR_ENV = "BUFFERED_UNDO_CACHE_DIR"

# Session cache layout (inside <cache_root>/<session_id>)
BLOBS_DIR = "blobs"
LEAVES_DIR = "leaves"
BASE_FILE = "base.json"
SANDBOX_DIR = "sandbox"
TOOL_OUTPUT_DIR = "diffs"
BLOB_LOCK_FILE = "blobs.lock"

# Sandbox marker recording which real root it mirrors
SANDBOX_META_FILE = ".undo-redo-meta.json"

# Manifest serialization format
MANIFEST_VERSION = 1

# Diff rendering
DEFAULT_CONTEXT_LINES = 4

# Tool output truncation
DEFAULT_MAX_LINES = 2000
DEFAULT_MAX_BYTES = 50 * 1024
