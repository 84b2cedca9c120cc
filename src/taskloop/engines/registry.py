"""Engine lookup by CLI name."""

from __future__ import annotations

from taskloop.engines.base import EngineBase
from taskloop.engines.claude import ClaudeEngine
from taskloop.engines.opencode import OpenCodeEngine

ENGINES: dict[str, type[EngineBase]] = {
    ClaudeEngine.name: ClaudeEngine,
    OpenCodeEngine.name: OpenCodeEngine,
}
ENGINE_NAMES = tuple(ENGINES)


def get_engine(name: str, *, model: str = "") -> EngineBase:
    """Adapter for *name*; an empty *model* keeps the engine's own default."""
    try:
        cls = ENGINES[name]
    except KeyError:
        raise ValueError(f"Unknown engine: {name} (expected one of: {', '.join(ENGINE_NAMES)})") from None
    return cls(model=model)
