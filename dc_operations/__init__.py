from .backend_types import Code, Operation, OperationStatus, Status
from .errors import (
    OperationFailedError,
    OperationsError,
    PollError,
    QueryError,
    UnknownOperationTypeError,
    WaitCancelledError,
)
from .operation import DEFAULT_POLL_INTERVAL, POLL_INTERVAL_HEADER, OperationHandle, new
from .routing import OperationFamily, OperationRouter, OperationServiceClient, QueryResult, classify

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "POLL_INTERVAL_HEADER",
    "Code",
    "Operation",
    "OperationFailedError",
    "OperationFamily",
    "OperationHandle",
    "OperationRouter",
    "OperationServiceClient",
    "OperationStatus",
    "OperationsError",
    "PollError",
    "QueryError",
    "QueryResult",
    "Status",
    "UnknownOperationTypeError",
    "WaitCancelledError",
    "classify",
    "new",
]
