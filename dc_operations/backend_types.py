from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing_extensions import Self

from .errors import OperationFailedError


class OperationStatus(str, Enum):
    UNSPECIFIED = "STATUS_UNSPECIFIED"
    PENDING = "STATUS_PENDING"
    RUNNING = "STATUS_RUNNING"
    DONE = "STATUS_DONE"
    INVALID = "STATUS_INVALID"

    def is_terminal(self) -> bool:
        return self in (OperationStatus.DONE, OperationStatus.INVALID)


class Code(IntEnum):
    """Canonical RPC status codes reported by the backend."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16

    @classmethod
    def _missing_(cls, value: object) -> Code:
        return cls.UNKNOWN


class Status(BaseModel):
    """Structured error recorded on a finished operation."""

    model_config = ConfigDict(frozen=True)

    code: Code = Field(default=Code.UNKNOWN, description="Machine-readable status code")
    message: str = Field(default="", description="Human-readable error message")
    details: list[dict[str, Any]] = Field(default_factory=list, description="Opaque error details")

    @property
    def ok(self) -> bool:
        return self.code == Code.OK

    def err(self, operation_id: str | None = None) -> OperationFailedError | None:
        if self.ok:
            return None
        return OperationFailedError(self, operation_id=operation_id)


class Operation(BaseModel):
    """Point-in-time snapshot of a remote operation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(description="Operation identifier")
    description: str = Field(default="")
    created_by: str = Field(default="", alias="createdBy")
    resource_id: str = Field(default="", alias="resourceId")
    create_time: datetime | None = Field(default=None, alias="createTime")
    metadata: dict[str, str] = Field(default_factory=dict)
    status: OperationStatus = Field(default=OperationStatus.UNSPECIFIED)
    error: Status | None = Field(default=None, description="Present only on a failed finished operation")

    @model_validator(mode="after")
    def _check_error_only_when_terminal(self) -> Self:
        if self.error is not None and not self.status.is_terminal():
            raise ValueError(f"operation {self.id!r} has an error but status is {self.status.value}")
        return self

    @property
    def done(self) -> bool:
        return self.status.is_terminal()
