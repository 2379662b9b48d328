from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .backend_types import Code, Status


class OperationsError(Exception):
    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class UnknownOperationTypeError(OperationsError):
    def __init__(self, operation_id: str, cause: BaseException | None = None):
        super().__init__(f"operation (id={operation_id}) unknown type", cause=cause)
        self.operation_id = operation_id


class QueryError(OperationsError):
    """The status query itself failed (transport or backend)."""

    def __init__(
        self,
        operation_id: str,
        code: Code,
        message: str,
        *,
        cause: BaseException | None = None,
    ):
        super().__init__(f"get operation (id={operation_id}): {code.name}: {message}", cause=cause)
        self.operation_id = operation_id
        self.code = code
        self.detail = message

    @property
    def not_found(self) -> bool:
        from .backend_types import Code

        return self.code == Code.NOT_FOUND


class OperationFailedError(OperationsError):
    """The operation finished with a recorded error."""

    def __init__(self, status: Status, *, operation_id: str | None = None):
        if operation_id:
            message = f"operation (id={operation_id}) failed: {status.code.name}: {status.message}"
        else:
            message = f"{status.code.name}: {status.message}"
        super().__init__(message)
        self.status = status
        self.operation_id = operation_id

    @property
    def code(self) -> Code:
        return self.status.code


class PollError(OperationsError):
    """The wait loop could not observe the operation status."""

    def __init__(self, operation_id: str, cause: BaseException):
        super().__init__(f"operation (id={operation_id}) poll fail: {cause}", cause=cause)
        self.operation_id = operation_id


class WaitCancelledError(OperationsError):
    def __init__(self, operation_id: str, cause: BaseException):
        super().__init__(f"operation (id={operation_id}) wait context done", cause=cause)
        self.operation_id = operation_id


def is_not_found(err: BaseException | None) -> bool:
    """True when ``err`` is, or was caused by, a not-found status query."""
    while err is not None:
        if isinstance(err, QueryError):
            return err.not_found
        err = err.cause if isinstance(err, OperationsError) else None
    return False
