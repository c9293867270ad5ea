"""
PRD gate for tickets.

Generates PRDs through an external agent command and holds execution until
a human approves them.
"""

from loopengine.pm.claude_utils import run_claude, strip_markdown_fences
from loopengine.pm.prd import (
    GateError,
    PRDGate,
    PRDGenerationError,
    build_prd_prompt,
    can_execute,
)

__all__ = [
    "run_claude",
    "strip_markdown_fences",
    "GateError",
    "PRDGate",
    "PRDGenerationError",
    "build_prd_prompt",
    "can_execute",
]
