"""Persistent user preferences stored in ~/.aic/config.json."""

import json
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from aiconnect.config import STATE_DIR, config

DEFAULT_TOOL = "claude"


class ToolPreference(BaseModel):
    """Per-tool overrides for how the executable is launched."""

    command: Optional[str] = None
    args: list[str] = Field(default_factory=list)


class Preferences(BaseModel):
    default_tool: str = DEFAULT_TOOL
    tools: dict[str, ToolPreference] = Field(default_factory=dict)


class PreferenceStore:
    """Loads and saves ``Preferences`` as JSON.

    A missing or unreadable file yields defaults; the next save rewrites it.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path else STATE_DIR / "config.json"

    def load(self) -> Preferences:
        if not self.path.exists():
            return Preferences()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return Preferences.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Failed to load preferences from {self.path}, using defaults: {e}")
            return Preferences()

    def save(self, prefs: Preferences) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(prefs.model_dump_json(indent=2), encoding="utf-8")

    def get_default_tool(self, valid: Sequence[str] = ()) -> str:
        """Default tool: AIC_DEFAULT_TOOL (environment or .env) wins, then the file, then claude."""
        configured = (config.AIC_DEFAULT_TOOL or "").strip().lower()
        if configured and (not valid or configured in valid):
            return configured
        return self.load().default_tool or DEFAULT_TOOL

    def set_default_tool(self, tool: str, valid: Sequence[str]) -> tuple[bool, str]:
        """Persist a new default tool.

        Returns:
            (success, message to show the operator)
        """
        normalized = tool.strip().lower()
        if normalized not in valid:
            return False, f'Invalid tool "{tool}". Valid options: {", ".join(valid)}'

        prefs = self.load()
        prefs.default_tool = normalized
        self.save(prefs)
        return True, f'Default tool set to "{normalized}". Will be used on next launch.'

    def tool_overrides(self) -> dict[str, ToolPreference]:
        return self.load().tools
