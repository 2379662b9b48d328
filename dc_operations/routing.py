from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol

from httpx import Headers
from typing_extensions import Self

from .backend_types import Operation
from .errors import UnknownOperationTypeError

if TYPE_CHECKING:
    import httpx

log = logging.getLogger(__name__)

CLICKHOUSE_OPERATION_PREFIX = "cho"
KAFKA_OPERATION_PREFIX = "kfo"
TRANSFER_OPERATION_PREFIX = "dtj"
TRANSFER_ENDPOINTS_OPERATION_PREFIX = "dte"


class OperationFamily(str, Enum):
    CLICKHOUSE = "clickhouse"
    KAFKA = "kafka"
    TRANSFER = "transfer"
    NETWORK = "network"
    UNKNOWN = "unknown"


_HEX = "[0-9a-fA-F]"
UUID_PATTERN = re.compile(f"{_HEX}{{8}}-{_HEX}{{4}}-{_HEX}{{4}}-{_HEX}{{4}}-{_HEX}{{12}}")
UUID_HEX_PATTERN = re.compile(f"{_HEX}{{32}}")


def _is_uuid(value: str) -> bool:
    """Accept the canonical, braced, urn:uuid: and plain hex UUID forms only."""
    if len(value) == 32:
        return UUID_HEX_PATTERN.fullmatch(value) is not None
    if len(value) == 38 and value.startswith("{") and value.endswith("}"):
        value = value[1:-1]
    elif len(value) == 45 and value[:9].lower() == "urn:uuid:":
        value = value[9:]
    return UUID_PATTERN.fullmatch(value) is not None


# Evaluated in order, first match wins
CLASSIFIERS: tuple[tuple[Callable[[str], bool], OperationFamily], ...] = (
    (lambda op_id: op_id.startswith(CLICKHOUSE_OPERATION_PREFIX), OperationFamily.CLICKHOUSE),
    (lambda op_id: op_id.startswith(KAFKA_OPERATION_PREFIX), OperationFamily.KAFKA),
    (
        lambda op_id: op_id.startswith((TRANSFER_OPERATION_PREFIX, TRANSFER_ENDPOINTS_OPERATION_PREFIX)),
        OperationFamily.TRANSFER,
    ),
    (_is_uuid, OperationFamily.NETWORK),
)


def classify(operation_id: str) -> OperationFamily:
    for predicate, family in CLASSIFIERS:
        if predicate(operation_id):
            return family
    return OperationFamily.UNKNOWN


class QueryResult:
    __slots__ = ("operation", "headers")

    operation: Operation
    headers: Headers

    def __init__(self, operation: Operation, headers: Headers | Mapping[str, str] | None = None):
        self.operation = operation
        self.headers = Headers(headers or {})


class OperationServiceClient(Protocol):
    async def get_operation(self, operation_id: str) -> QueryResult: ...


@dataclass
class OperationRouter:
    """Family-specific status query clients, selected by operation id."""

    clickhouse: OperationServiceClient | None = None
    kafka: OperationServiceClient | None = None
    transfer: OperationServiceClient | None = None
    network: OperationServiceClient | None = None
    _exit_stack: AsyncExitStack = field(default_factory=AsyncExitStack, repr=False)

    @classmethod
    def from_endpoint(
        cls,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        session: httpx.AsyncClient | None = None,
    ) -> OperationRouter:
        """Router with an HTTP client for every family sharing one session.

        When ``session`` is not given the router creates one and closes it
        on ``aclose()``.
        """
        from .client import HttpOperationClient, make_session

        router = cls()
        if session is None:
            session = make_session(token=token, timeout=timeout)
            router._exit_stack.push_async_callback(session.aclose)

        for family in cls.families():
            setattr(router, family.value, HttpOperationClient(base_url, family, session=session))
        return router

    @staticmethod
    def families() -> tuple[OperationFamily, ...]:
        return tuple(family for _, family in CLASSIFIERS)

    @property
    def clients(self) -> Mapping[OperationFamily, OperationServiceClient | None]:
        return MappingProxyType({family: getattr(self, family.value) for family in self.families()})

    def client_for(self, operation_id: str) -> OperationServiceClient:
        family = classify(operation_id)
        client = self.clients.get(family)
        if client is None:
            log.debug("No client for operation %s (family=%s)", operation_id, family.value)
            raise UnknownOperationTypeError(operation_id)
        return client

    async def get_operation(self, operation_id: str) -> QueryResult:
        client = self.client_for(operation_id)
        try:
            return await client.get_operation(operation_id)
        except Exception as e:
            # Any client failure is carried as the cause, is_not_found() walks it
            raise UnknownOperationTypeError(operation_id, cause=e) from e

    async def aclose(self) -> None:
        await self._exit_stack.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
