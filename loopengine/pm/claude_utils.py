"""
Agent CLI invocation for one-shot text generation (PRDs).
"""

import os
import subprocess


def run_claude(cmd: list[str], prompt: str, timeout: int = 300) -> tuple[bool, str]:
    """Run a generation command with the prompt on stdin.

    Args:
        cmd: argv for the generation command (e.g. ["claude", "--print"])
        prompt: Text written to the command's stdin
        timeout: Timeout in seconds (default 300)

    Returns:
        Tuple of (success, response_text or error message)
    """
    # Remove ANTHROPIC_API_KEY so Claude uses OAuth
    env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}

    try:
        result = subprocess.run(
            cmd,
            input=prompt,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired:
        return False, f"{cmd[0]} timed out after {timeout}s"
    except FileNotFoundError:
        return False, f"{cmd[0]} not found on PATH"

    if result.returncode != 0:
        error_msg = result.stderr.strip() or result.stdout.strip()
        if not error_msg:
            error_msg = f"(no output - check '{cmd[0]} --version' and auth status)"
        return False, f"{cmd[0]} failed (exit {result.returncode}): {error_msg}"

    return True, result.stdout


def strip_markdown_fences(text: str) -> str:
    """Strip a code fence wrapping the whole text, if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines and lines[0].strip().startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text.strip()
