"""
Agent command configuration.

Loads agents.yaml to determine which CLI commands to run for each stage.
If no config file exists, returns the built-in defaults.

STAGE COMMAND TEMPLATES
=======================

- execute:      the long-running agent run against a ticket workspace
- prd_generate: one-shot PRD generation for a ticket

The prompt is always written to the process's stdin, never passed as an
argument, so PRDs of any size and content survive intact.

Variables:
- {worktree}: Path to the ticket workspace (execute only)
"""

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILE = "agents.yaml"

DEFAULT_STAGE_COMMANDS = {
    "execute": "claude --print --dangerously-skip-permissions",
    # Runs in the ticket workspace (cwd), reads the PRD on stdin

    "prd_generate": "claude --print",
    # Ticket summary on stdin -> PRD markdown on stdout
}


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    stages: dict[str, str] = field(default_factory=lambda: DEFAULT_STAGE_COMMANDS.copy())


def load_agents_config(home: Optional[Path]) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If home is None or the file doesn't exist, returns defaults.
    """
    if home is None:
        return AgentsConfig()

    config_path = home / CONFIG_FILE
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
        stages = DEFAULT_STAGE_COMMANDS.copy()
        if data and "stages" in data:
            stages.update({k: str(v) for k, v in data["stages"].items()})
        return AgentsConfig(stages=stages)
    except (yaml.YAMLError, KeyError, AttributeError, TypeError) as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()


def get_stage_command(
    config: AgentsConfig,
    stage: str,
    context: dict[str, str] | None = None,
) -> list[str]:
    """Build the argv list for a stage with variable substitution.

    Raises:
        ValueError: If stage is unknown or the template is empty.

    Example:
        >>> get_stage_command(AgentsConfig(), "execute")
        ['claude', '--print', '--dangerously-skip-permissions']
    """
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    cmd_template = config.stages[stage]

    # Split first so substituted paths with spaces stay one argument
    parts = shlex.split(cmd_template)
    if not parts:
        raise ValueError(f"Stage '{stage}' has an empty command")

    if context:
        for key, value in context.items():
            parts = [part.replace(f"{{{key}}}", str(value)) for part in parts]

    remaining_vars = [v for part in parts for v in re.findall(r'\{(\w+)\}', part)]
    if remaining_vars:
        logger.error(
            f"Stage '{stage}' has unsubstituted variables: {remaining_vars}. "
            f"Template: {cmd_template}"
        )

    return parts


def get_stage_binary(config: AgentsConfig, stage: str) -> str:
    """Get the binary name for a stage (first element of command)."""
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    parts = shlex.split(config.stages[stage])
    return parts[0] if parts else ""


@dataclass
class BinaryCheckResult:
    """Result of checking stage binaries."""
    ok: bool
    missing_binary: str | None = None
    stages_affected: list[str] = field(default_factory=list)
    error_message: str | None = None


def validate_stage_binaries(config: AgentsConfig, stages: list[str]) -> BinaryCheckResult:
    """Check that binaries for the given stages are on PATH.

    Returns BinaryCheckResult with ok=True if all binaries are available,
    or ok=False with details about what's missing and how to fix it.
    """
    binary_to_stages: dict[str, list[str]] = {}
    for stage in stages:
        if stage not in config.stages:
            continue
        binary = get_stage_binary(config, stage)
        binary_to_stages.setdefault(binary, []).append(stage)

    for binary, affected_stages in binary_to_stages.items():
        if shutil.which(binary) is None:
            error_lines = [
                f"Required tool '{binary}' is not installed.",
                "",
                f"Stages that need it: {', '.join(affected_stages)}",
                "",
                "To fix this, either:",
                f"  1. Install {binary}",
                f"  2. Create {CONFIG_FILE} in the engine home to use a different tool:",
                "",
                "     stages:",
            ]
            for stage in affected_stages:
                error_lines.append(f"       {stage}: <command reading the prompt on stdin>")

            return BinaryCheckResult(
                ok=False,
                missing_binary=binary,
                stages_affected=affected_stages,
                error_message="\n".join(error_lines),
            )

    return BinaryCheckResult(ok=True)
