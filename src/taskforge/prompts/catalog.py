"""Prompt catalog: every prompt the pipeline sends lives in ``templates.yaml``.

A user-override file at ``~/.taskforge/prompt_overrides.yaml`` (or the file
named by ``TASKFORGE_PROMPT_OVERRIDES``) is deep-merged on top of the
built-in defaults, so single prompts can be tuned without forking the
package.

Templates use ``$name`` placeholders (:class:`string.Template`) so JSON
examples inside prompts need no escaping.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from string import Template
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_BUILTIN_YAML = Path(__file__).resolve().parent / "templates.yaml"
_USER_OVERRIDE = Path.home() / ".taskforge" / "prompt_overrides.yaml"
_OVERRIDE_ENV = "TASKFORGE_PROMPT_OVERRIDES"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping, returning an empty dict when the file is unusable."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to load %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top level is not a mapping", path)
        return {}
    return data


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (override wins)."""
    merged = dict(base)
    for k, v in override.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


class PromptCatalog:
    """Loads and serves phase prompts.

    Usage::

        catalog = PromptCatalog()
        text = catalog.render("plan", title="Add retries", description="...")
        revise = catalog.render("plan", "revise", feedback="1. ...")
    """

    def __init__(self, extra_path: Path | None = None) -> None:
        self._data: dict[str, Any] = {}
        self._load(extra_path)

    def _load(self, extra_path: Path | None = None) -> None:
        """Load built-in templates, then merge user and extra overrides."""
        self._data = _load_yaml(_BUILTIN_YAML)

        override_paths = [_USER_OVERRIDE]
        env_override = os.getenv(_OVERRIDE_ENV, "").strip()
        if env_override:
            override_paths.append(Path(env_override).expanduser())
        if extra_path is not None:
            override_paths.append(extra_path)

        for path in override_paths:
            if not path.is_file():
                continue
            overrides = _load_yaml(path)
            if overrides:
                self._data = _deep_merge(self._data, overrides)
                logger.info("Loaded prompt overrides from %s", path)

    def template(self, phase: str, variant: str = "prompt") -> str:
        """Return the raw template text for *phase* / *variant*."""
        entry = self._data.get("phases", {}).get(phase, {})
        text = entry.get(variant) if isinstance(entry, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise KeyError(f"No prompt template for phase '{phase}' ({variant})")
        return text.strip()

    def render(self, phase: str, variant: str = "prompt", **values: Any) -> str:
        """Substitute *values* into a template; unknown placeholders are left intact."""
        rendered = Template(self.template(phase, variant)).safe_substitute(
            {key: "" if value is None else str(value) for key, value in values.items()}
        )
        return rendered.strip()

    def system(self, role: str) -> str | None:
        """Return the appended system prompt for an agent role, if any."""
        text = self._data.get("system", {}).get(role)
        return text.strip() if isinstance(text, str) and text.strip() else None

    def list_phases(self) -> list[str]:
        return list(self._data.get("phases", {}).keys())
