"""Runtime configuration for the registry, extension manager and engine."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Mapping, Sequence, Tuple

MIB = 1024 * 1024


class TieBreakPolicy(str, Enum):
    """How equal-priority extensions are ranked against each other."""

    MOST_RECENT = "most_recent"
    EARLIEST = "earliest"


@dataclass(frozen=True)
class LayerDefaults:
    """Default timeout and resource envelope for one tier."""

    timeout_ms: int
    max_memory: int
    max_cpu_ms: int
    max_file_size: int = 10 * MIB


def _default_layers() -> Dict[int, LayerDefaults]:
    return {
        1: LayerDefaults(timeout_ms=10_000, max_memory=256 * MIB, max_cpu_ms=5_000),
        2: LayerDefaults(timeout_ms=30_000, max_memory=512 * MIB, max_cpu_ms=5_000),
        3: LayerDefaults(timeout_ms=60_000, max_memory=1024 * MIB, max_cpu_ms=10_000),
    }


@dataclass
class RuntimeConfig:
    """Configuration for SkillRuntime and its components."""

    layer_defaults: Dict[int, LayerDefaults] = field(default_factory=_default_layers)
    # Commands a tier-2 sandbox allows when the skill declares no allow-list.
    default_allowed_commands: Sequence[str] = (
        "ls",
        "cat",
        "echo",
        "grep",
        "awk",
        "sed",
        "pwd",
        "sleep",
        "wc",
    )
    sandbox_root: str = "/tmp"
    tie_break: TieBreakPolicy = TieBreakPolicy.MOST_RECENT
    # Simulated latency of one tier-3 api_call step.
    api_latency_ms: int = 10
    validate_examples: bool = True
    discover_default_limit: int = 100

    def defaults_for(self, layer: int) -> LayerDefaults:
        try:
            return self.layer_defaults[int(layer)]
        except KeyError:
            raise ValueError(f"No defaults configured for layer {layer}") from None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuntimeConfig":
        """Build a config from a plain mapping (e.g. parsed YAML/JSON)."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")

        kwargs: Dict[str, Any] = dict(data)
        if "layer_defaults" in kwargs:
            merged = _default_layers()
            for layer, values in kwargs["layer_defaults"].items():
                merged[int(layer)] = (
                    values
                    if isinstance(values, LayerDefaults)
                    else LayerDefaults(**values)
                )
            kwargs["layer_defaults"] = merged
        if "tie_break" in kwargs:
            kwargs["tie_break"] = TieBreakPolicy(kwargs["tie_break"])
        if "default_allowed_commands" in kwargs:
            kwargs["default_allowed_commands"] = tuple(
                kwargs["default_allowed_commands"]
            )
        return cls(**kwargs)

    @property
    def allowed_commands(self) -> Tuple[str, ...]:
        return tuple(self.default_allowed_commands)
