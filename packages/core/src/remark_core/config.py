import os
from pathlib import Path
from typing import Optional

import yaml

from remark_core.diff import DEFAULT_CONTEXT, clamp_context
from remark_store.errors import ArgumentError
from remark_store.git import GitRepo

DEFAULT_CONFIG: dict = {
    "notes_ref": None,  # None = remark.notesRef from git config, else refs/notes/remark
    "base_ref": None,  # ref the base view compares against
    "fetch_notes": True,  # fetch the notes ref from `remote` once when it is missing locally
    "remote": "origin",
    "diff_context": None,  # None = remark.diffContext from git config, else 3
    "prompt_context": 0,  # diff lines shown around each comment in `remark prompt`
    "include_resolved": False,  # LSP: publish resolved comments as hints
}

# Environment variables and the config key each one sets.
ENV_VARS = {
    "REMARK_NOTES_REF": "notes_ref",
    "REMARK_BASE_REF": "base_ref",
    "REMARK_FETCH_NOTES": "fetch_notes",
    "REMARK_REMOTE": "remote",
}

DIFF_CONTEXT_KEY = "remark.diffContext"
DIFF_VIEW_KEY = "remark.diffView"
LAYOUTS = ("unified", "side-by-side")

_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _env_value(key: str, raw: str):
    if isinstance(DEFAULT_CONFIG.get(key), bool):
        return raw.strip().lower() not in _FALSE_VALUES
    return raw


def load_config(config_path: str = ".remark.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .remark.yml in the current directory (or the repository root)
      3. REMARK_* environment variables
      4. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ArgumentError(f"{config_path} must contain a mapping, not {type(file_config).__name__}")
        config.update(file_config)

    for env_var, key in ENV_VARS.items():
        raw = os.environ.get(env_var)
        if raw is not None:
            config[key] = _env_value(key, raw)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    return config


def diff_context(repo: GitRepo, config: dict) -> int:
    """Unified diff context: config, then ``remark.diffContext``, clamped to 0..20."""
    value = config.get("diff_context")
    if value is None:
        value = repo.config_get(DIFF_CONTEXT_KEY)
    if value is None:
        return DEFAULT_CONTEXT
    return clamp_context(value)


def diff_layout(repo: GitRepo) -> str:
    """The persisted diff layout; anything unrecognised reads as unified."""
    value = (repo.config_get(DIFF_VIEW_KEY) or "").strip().lower()
    if value in ("side-by-side", "sidebyside", "split"):
        return "side-by-side"
    return "unified"


def set_diff_layout(repo: GitRepo, layout: str) -> str:
    if layout not in LAYOUTS:
        raise ArgumentError(f"unknown layout {layout!r} (expected {' or '.join(LAYOUTS)})")
    repo.config_set(DIFF_VIEW_KEY, layout)
    return layout


def toggle_diff_layout(repo: GitRepo) -> str:
    current = diff_layout(repo)
    return set_diff_layout(repo, "side-by-side" if current == "unified" else "unified")
