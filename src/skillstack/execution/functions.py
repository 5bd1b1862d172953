"""
Tier-1 function registry and the built-in atomic functions.

Functions are keyed by skill name and called with the validated parameter
mapping. Both plain and async callables are accepted.
"""

from __future__ import annotations

import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

AtomicFunction = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class FunctionRegistry:
    """Maps skill names to tier-1 implementations."""

    def __init__(self) -> None:
        self._functions: Dict[str, AtomicFunction] = {}

    def register(self, name: str, fn: AtomicFunction) -> None:
        if not callable(fn):
            raise TypeError(f"Function for '{name}' is not callable")
        if name in self._functions:
            logger.info("Replacing atomic function %s", name)
        self._functions[name] = fn

    def unregister(self, name: str) -> bool:
        return self._functions.pop(name, None) is not None

    def get(self, name: str) -> Optional[AtomicFunction]:
        return self._functions.get(name)

    def names(self) -> List[str]:
        return sorted(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions


async def call_function(fn: Callable[..., Any], params: Mapping[str, Any]) -> Any:
    """Call ``fn(params)`` and await the result if needed."""
    result = fn(dict(params))
    if inspect.isawaitable(result):
        result = await result
    return result


# ---------------------------------------------------------------------------
# Built-ins
# ---------------------------------------------------------------------------


def _divide(p: Dict[str, Any]) -> float:
    if p["b"] == 0:
        raise ZeroDivisionError("Division by zero")
    return p["a"] / p["b"]


def _split(p: Dict[str, Any]) -> List[str]:
    separator = p.get("separator")
    return str(p["text"]).split(separator) if separator else str(p["text"]).split()


BUILTIN_FUNCTIONS: Dict[str, AtomicFunction] = {
    "add": lambda p: p["a"] + p["b"],
    "subtract": lambda p: p["a"] - p["b"],
    "multiply": lambda p: p["a"] * p["b"],
    "divide": _divide,
    "concat": lambda p: "".join(str(v) for v in p.get("values", [])),
    "upper": lambda p: str(p["text"]).upper(),
    "lower": lambda p: str(p["text"]).lower(),
    "trim": lambda p: str(p["text"]).strip(),
    "split": _split,
    "length": lambda p: len(p["value"]),
    "parse_json": lambda p: json.loads(p["text"]),
    "stringify_json": lambda p: json.dumps(p["value"], sort_keys=True),
}


def register_builtin_functions(registry: FunctionRegistry) -> None:
    for name, fn in BUILTIN_FUNCTIONS.items():
        registry.register(name, fn)
