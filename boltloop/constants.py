"""Constants and default values for boltloop."""

import re

# Default model configuration
DEFAULT_MODEL = "anthropic:claude-sonnet-4-5"

# Agent loop defaults
DEFAULT_MAX_TURNS = 3
DEFAULT_MODE = "build"

# Task modes; the first four expect file or tool output every turn
TASK_MODES = ("build", "fix", "refactor", "ui", "deploy")
MATERIAL_OUTPUT_MODES = frozenset({"build", "fix", "refactor", "ui"})

# Execution defaults
DEFAULT_EXEC_TIMEOUT = 45  # seconds

# File size limits (in MB)
DEFAULT_MAX_READ_MB = 8
DEFAULT_MAX_WRITE_MB = 2

# Web tool defaults
DEFAULT_WEB_TIMEOUT = 15  # seconds
DEFAULT_WEB_MAX_CHARS = 8000
DEFAULT_SEARCH_ENDPOINT = "https://api.duckduckgo.com/"
WEB_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
SEARCH_RESULT_LIMIT = 3

# Workspace index truncation (characters)
INDEX_CORE_LIMIT = 5000
INDEX_FILE_LIMIT = 2500

# Checkpoint naming
PRE_TASK_PREFIX = "Pre-Task: "
PRE_TASK_OBJECTIVE_CHARS = 30

# Built-in ignore patterns
BUILTIN_IGNORES = [
    # Version control and project metadata
    ".git/",
    ".github/",

    # boltloop internal
    ".bolt/",

    # Python
    "__pycache__/",
    "*.pyc",
    "*.pyo",
    ".pytest_cache/",
    ".mypy_cache/",
    ".venv/",
    "venv/",

    # JavaScript/Node
    "node_modules/",
    "dist/",
    "build/",
    ".next/",
    "package-lock.json",
    "yarn.lock",

    # IDE and editor files
    ".DS_Store",
    "*.swp",
    ".vscode/",
    ".idea/",

    # Logs and databases
    "*.log",
    "*.sqlite",
    "*.db",
]

# Dangerous command patterns (for sandbox safety checks)
DANGEROUS_PATTERNS = [
    (re.compile(r'\bsudo\b'), "Use of sudo detected"),
    (re.compile(r'\brm\s+-rf\s+/'), "Recursive delete of root directory"),
    (re.compile(r':\(\)\{.*\|.*\&.*\}'), "Fork bomb pattern detected"),
    (re.compile(r'curl.*\|.*sh'), "Piping curl to shell"),
    (re.compile(r'wget.*\|.*sh'), "Piping wget to shell"),
    (re.compile(r'\bchmod\s+777'), "chmod 777 detected"),
    (re.compile(r'>\s*/dev/sd[a-z]'), "Writing to block device"),
    (re.compile(r'\bdd\s+.*of=/dev/'), "dd to block device"),
]

# Model descriptors - Anthropic Claude models only
SUPPORTED_MODELS = {
    "anthropic:claude-sonnet-4-5": {
        "provider": "anthropic",
        "name": "claude-sonnet-4-5-20250929",
        "max_output_tokens": 8192,
    },
    "anthropic:claude-haiku-4-5": {
        "provider": "anthropic",
        "name": "claude-haiku-4-5-20251001",
        "max_output_tokens": 8192,
    },
    "anthropic:claude-opus-4-1": {
        "provider": "anthropic",
        "name": "claude-opus-4-1-20250805",
        "max_output_tokens": 8192,
    },
}

# Error body fragments that identify an exhausted usage quota
QUOTA_MARKERS = ("usage limit", "quota", "credit balance")
