import importlib.metadata
import json
import logging
import platform
import sys
from collections.abc import Mapping
from http import HTTPStatus
from types import MappingProxyType

import httpx
from pydantic import ValidationError

from .backend_types import Code, Operation
from .errors import QueryError
from .routing import OperationFamily, QueryResult

log = logging.getLogger(__name__)

PYTHON_VERSION = f"{'.'.join(map(str, sys.version_info))}"
try:
    LIBRARY_VERSION = importlib.metadata.version("dc-operations")
except Exception:
    LIBRARY_VERSION = "unknown"

HEADERS = (
    ("Accept", "application/json"),
    (
        "User-Agent",
        " ".join(
            (
                f"dc-operations/{LIBRARY_VERSION}",
                f"python/{PYTHON_VERSION}",
                f"{platform.system()}/{platform.release()}",
            )
        ),
    ),
)

HTTP_STATUS_CODES: Mapping[int, Code] = MappingProxyType(
    {
        HTTPStatus.BAD_REQUEST: Code.INVALID_ARGUMENT,
        HTTPStatus.UNAUTHORIZED: Code.UNAUTHENTICATED,
        HTTPStatus.FORBIDDEN: Code.PERMISSION_DENIED,
        HTTPStatus.NOT_FOUND: Code.NOT_FOUND,
        HTTPStatus.CONFLICT: Code.ABORTED,
        HTTPStatus.PRECONDITION_FAILED: Code.FAILED_PRECONDITION,
        HTTPStatus.TOO_MANY_REQUESTS: Code.RESOURCE_EXHAUSTED,
        HTTPStatus.NOT_IMPLEMENTED: Code.UNIMPLEMENTED,
        HTTPStatus.SERVICE_UNAVAILABLE: Code.UNAVAILABLE,
        HTTPStatus.GATEWAY_TIMEOUT: Code.DEADLINE_EXCEEDED,
    }
)


def code_from_http_status(status_code: int) -> Code:
    if status_code in HTTP_STATUS_CODES:
        return HTTP_STATUS_CODES[status_code]
    if status_code >= 500:
        return Code.INTERNAL
    return Code.UNKNOWN


def make_session(token: str, timeout: float = 30.0) -> httpx.AsyncClient:
    headers = dict(HEADERS)
    headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(headers=headers, timeout=httpx.Timeout(timeout))


class HttpOperationClient:
    """Status query client for one operation family over the REST gateway."""

    def __init__(self, base_url: str, family: OperationFamily, session: httpx.AsyncClient):
        if family == OperationFamily.UNKNOWN:
            raise ValueError("Cannot build a client for an unknown operation family")
        self.base_url = base_url.rstrip("/") + f"/{family.value}/v1"
        self.family = family
        self.session = session

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.base_url}>"

    async def get_operation(self, operation_id: str) -> QueryResult:
        url = f"{self.base_url}/operations/{operation_id}"
        log.debug("GET %s", url)
        try:
            response = await self.session.get(url)
        except httpx.HTTPError as e:
            raise QueryError(operation_id, Code.UNAVAILABLE, str(e) or type(e).__name__, cause=e) from e

        log.debug("GET %s -> %d", url, response.status_code)
        if response.status_code >= 400:
            raise QueryError(
                operation_id,
                code_from_http_status(response.status_code),
                self._error_message(response),
            )

        try:
            operation = Operation.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise QueryError(operation_id, Code.INTERNAL, f"invalid operation payload: {e}", cause=e) from e
        return QueryResult(operation, response.headers)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except json.JSONDecodeError:
            return response.text or response.reason_phrase
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return response.text
