"""Shared constants for the loop engine."""

import re

# Rolling run log cap (characters). Oldest content is dropped first.
MAX_LOG_LENGTH = 10_000

# Delay between SIGTERM and SIGKILL when stopping a run
KILL_GRACE_SECONDS = 0.5

# Workspace directory names derived from ticket titles
MAX_SLUG_LENGTH = 50
SLUG_PATTERN = re.compile(r'^[a-z0-9]+(-[a-z0-9]+)*$')

# Ticket store write debounce
FLUSH_DEBOUNCE_SECONDS = 0.5

# Output lines that count as agent progress (checked after strip())
ITERATION_MARKERS = ("```", "## ")

# Workspace layout
PRD_FILE = ".claude/prd.md"
MANIFEST_FILE = "README.md"
