"""Built-in tool definitions.

Each tool is described entirely by a ``SpawnSpec``: executable, resume
arguments, prompt pattern, idle window and output sanitizer.
"""

import dataclasses
import shutil
from typing import Mapping, Optional, Sequence

from aiconnect.errors import UnknownToolError
from aiconnect.preferences import ToolPreference
from aiconnect.pty.process import ToolProcess
from aiconnect.pty.registry import SessionRegistry
from aiconnect.pty.session import ProcessFactory
from aiconnect.pty.types import PTYSessionConfig, SpawnSpec

from .claude import CLAUDE
from .gemini import GEMINI

AVAILABLE_TOOLS: dict[str, SpawnSpec] = {spec.name: spec for spec in (CLAUDE, GEMINI)}


def tool_names() -> list[str]:
    return list(AVAILABLE_TOOLS.keys())


def get_tool(name: str) -> SpawnSpec:
    spec = AVAILABLE_TOOLS.get(name.lower())
    if spec is None:
        raise UnknownToolError(name, tool_names())
    return spec


def is_installed(spec: SpawnSpec) -> bool:
    """Check whether the tool's executable resolves on PATH."""
    return shutil.which(spec.command) is not None


def apply_overrides(spec: SpawnSpec, override: Optional[ToolPreference]) -> SpawnSpec:
    if override is None:
        return spec
    return dataclasses.replace(
        spec,
        command=override.command or spec.command,
        args=list(spec.args) + list(override.args),
    )


def build_registry(
    names: Optional[Sequence[str]] = None,
    config: Optional[PTYSessionConfig] = None,
    overrides: Optional[Mapping[str, ToolPreference]] = None,
    process_factory: ProcessFactory = ToolProcess,
) -> SessionRegistry:
    """Create a registry holding the given built-in tools (all by default)."""
    overrides = overrides or {}
    registry = SessionRegistry(config=config, process_factory=process_factory)
    for name in names or tool_names():
        spec = get_tool(name)
        registry.register(apply_overrides(spec, overrides.get(spec.name)))
    return registry


__all__ = [
    "AVAILABLE_TOOLS",
    "CLAUDE",
    "GEMINI",
    "apply_overrides",
    "build_registry",
    "get_tool",
    "is_installed",
    "tool_names",
]
