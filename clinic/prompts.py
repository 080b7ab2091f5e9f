from __future__ import annotations

import os
from pathlib import Path


class PromptLoadError(RuntimeError):
    pass


def project_root() -> Path:
    # clinic/prompts.py -> clinic/ -> project root
    return Path(__file__).resolve().parents[1]


def prompts_dir() -> Path:
    """`CLINIC_PROMPTS_DIR` if set, else the repo `prompts/` directory."""

    override = os.environ.get("CLINIC_PROMPTS_DIR")
    return Path(override).expanduser() if override else project_root() / "prompts"


def load_prompt(name: str) -> str:
    path = prompts_dir() / name
    try:
        return path.read_text(encoding="utf-8").strip() + "\n"
    except FileNotFoundError as e:
        raise PromptLoadError(f"Prompt not found: {path}") from e


def render_prompt(name: str, /, **values: object) -> str:
    """Load a prompt and fill its `{placeholders}`.

    Example:
        render_prompt("follow_up_case.txt", name="Mochi", age=34, ...)
    """

    template = load_prompt(name)
    try:
        return template.format(**values)
    except KeyError as e:
        raise PromptLoadError(f"Prompt {name} is missing a value for {e}") from e
