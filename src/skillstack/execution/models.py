"""
Pydantic models for execution requests, results and sandboxes.

Execution failures are data: every outcome of ``ExecutionEngine.execute``
is an ExecutionResult with either ``output`` or ``error`` set.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# Baseline footprint attributed to any simulated command or workflow.
BASE_MEMORY_BYTES = 1024 * 1024


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionErrorType(str, Enum):
    VALIDATION_ERROR = "validation_error"
    RUNTIME_ERROR = "runtime_error"
    TIMEOUT_ERROR = "timeout_error"
    RESOURCE_ERROR = "resource_error"
    PERMISSION_ERROR = "permission_error"
    DEPENDENCY_ERROR = "dependency_error"


class ExecutionError(BaseModel):
    type: ExecutionErrorType
    message: str
    code: str
    details: Dict[str, Any] = Field(default_factory=dict)
    suggestions: List[str] = Field(default_factory=list)


class ExecutionFailure(Exception):
    """Raised inside the engine pipeline and turned into an ExecutionResult."""

    def __init__(
        self,
        error_type: ExecutionErrorType,
        code: str,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.error = ExecutionError(
            type=error_type,
            code=code,
            message=message,
            details=dict(details or {}),
            suggestions=list(suggestions or []),
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ResourceUsage(BaseModel):
    """Approximate resources consumed by one execution."""

    memory_used: int = Field(default=0, description="Bytes")
    cpu_time: int = Field(default=0, description="ms")
    network_requests: int = 0
    files_accessed: List[str] = Field(default_factory=list)

    def add(self, other: "ResourceUsage") -> None:
        self.memory_used = max(self.memory_used, other.memory_used)
        self.cpu_time += other.cpu_time
        self.network_requests += other.network_requests
        for path in other.files_accessed:
            if path not in self.files_accessed:
                self.files_accessed.append(path)


class ExecutionMetadata(BaseModel):
    skill_id: str
    execution_id: str
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    duration_ms: float = 0.0
    layer: Optional[int] = None
    resource_usage: ResourceUsage = Field(default_factory=ResourceUsage)
    extension_id: Optional[str] = Field(
        default=None, description="The routed extension that handled the call"
    )


class ExecutionResult(BaseModel):
    success: bool
    output: Any = None
    error: Optional[ExecutionError] = None
    metadata: ExecutionMetadata


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class InvocationContext(BaseModel):
    """Per-call overrides supplied by the caller."""

    timeout_ms: Optional[int] = Field(default=None, description="Overrides the skill timeout")
    command: Optional[str] = Field(default=None, description="Tier-2 command to run")
    args: List[str] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)
    user_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Sandboxes
# ---------------------------------------------------------------------------


class SandboxConfig(BaseModel):
    working_directory: str
    allowed_commands: List[str] = Field(default_factory=list)
    allowed_paths: List[str] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)
    max_memory: Optional[int] = None
    max_cpu: Optional[int] = Field(default=None, description="ms")
    max_duration: Optional[int] = Field(default=None, description="ms")
    max_file_size: Optional[int] = Field(default=None, description="Bytes")


class CommandResult(BaseModel):
    command: str
    args: List[str] = Field(default_factory=list)
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: float = 0.0
    resource_usage: ResourceUsage = Field(default_factory=ResourceUsage)
