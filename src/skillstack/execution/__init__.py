"""
Layered execution: atomic functions, sandboxed commands and workflows.
"""

from .engine import ExecutionEngine
from .functions import BUILTIN_FUNCTIONS, FunctionRegistry, register_builtin_functions
from .models import (
    CommandResult,
    ExecutionError,
    ExecutionErrorType,
    ExecutionMetadata,
    ExecutionResult,
    InvocationContext,
    ResourceUsage,
    SandboxConfig,
)
from .sandbox import Sandbox, SandboxManager
from .workflow import WorkflowResult, WorkflowRunner, WorkflowStep

__all__ = [
    "ExecutionEngine",
    "ExecutionResult",
    "ExecutionError",
    "ExecutionErrorType",
    "ExecutionMetadata",
    "InvocationContext",
    "ResourceUsage",
    "CommandResult",
    "SandboxConfig",
    "Sandbox",
    "SandboxManager",
    "FunctionRegistry",
    "BUILTIN_FUNCTIONS",
    "register_builtin_functions",
    "WorkflowRunner",
    "WorkflowStep",
    "WorkflowResult",
]
