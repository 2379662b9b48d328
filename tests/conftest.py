"""Test fixtures for dc-operations."""

import asyncio
import json
import re
import socket
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

import pytest
import uvicorn
from pydantic import BaseModel
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from dc_operations.backend_types import Code, Operation, OperationStatus, Status
from dc_operations.errors import QueryError
from dc_operations.routing import OperationFamily, OperationRouter, QueryResult

CLICKHOUSE_OP_ID = "cho1a2b3c4d5e6f7g8h9"
KAFKA_OP_ID = "kfo1a2b3c4d5e6f7g8h9"
TRANSFER_OP_ID = "dtj1a2b3c4d5e6f7g8h9"
TRANSFER_ENDPOINT_OP_ID = "dte1a2b3c4d5e6f7g8h9"
NETWORK_OP_ID = "8c6d8a4e-5b0b-4c3e-9a51-1f0e3d2c7b6a"

# =============================================================================
# Default test data factories
# =============================================================================


def make_operation(
    id: str = CLICKHOUSE_OP_ID,
    status: OperationStatus = OperationStatus.RUNNING,
    error: Status | None = None,
    description: str = "Create cluster",
    created_by: str = "user-1",
    resource_id: str = "chcresource1",
    create_time: str | None = "2024-01-01T00:00:00Z",
    metadata: dict[str, str] | None = None,
) -> Operation:
    """Create a test Operation snapshot."""
    return Operation.model_validate(
        {
            "id": id,
            "status": status,
            "error": error,
            "description": description,
            "createdBy": created_by,
            "resourceId": resource_id,
            "createTime": create_time,
            "metadata": metadata or {},
        }
    )


def make_error(code: Code = Code.INTERNAL, message: str = "cluster creation failed") -> Status:
    return Status(code=code, message=message)


def not_found(operation_id: str = CLICKHOUSE_OP_ID) -> QueryError:
    return QueryError(operation_id, Code.NOT_FOUND, "operation not found")


# =============================================================================
# FakeOperationClient - scripted status query capability
# =============================================================================


Step = QueryResult | Operation | BaseException


@dataclass
class FakeOperationClient:
    """Returns scripted results in order; the last step repeats forever.

    A step is an ``Operation`` (returned without headers), a ``QueryResult``
    or an exception to raise.
    """

    steps: Sequence[Step] = ()
    calls: list[str] = field(default_factory=list)
    on_call: Any = None

    async def get_operation(self, operation_id: str) -> QueryResult:
        self.calls.append(operation_id)
        if self.on_call is not None:
            self.on_call(len(self.calls))
        if not self.steps:
            raise AssertionError(f"Unexpected status query for {operation_id}")
        step = self.steps[min(len(self.calls), len(self.steps)) - 1]
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, Operation):
            return QueryResult(step)
        return step


def make_router(**clients: FakeOperationClient) -> OperationRouter:
    return OperationRouter(**clients)


@pytest.fixture
def fake_client() -> FakeOperationClient:
    return FakeOperationClient()


@pytest.fixture
def router(fake_client: FakeOperationClient) -> OperationRouter:
    """Router sending every family to ``fake_client``."""
    return OperationRouter(**{family.value: fake_client for family in OperationRouter.families()})


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Make waits between polls instant, recording requested intervals."""
    from dc_operations.operation import OperationHandle

    intervals: list[float] = []

    async def wait_cancel(cancel: asyncio.Event | None, timeout: float) -> bool:
        intervals.append(timeout)
        return cancel is not None and cancel.is_set()

    monkeypatch.setattr(OperationHandle, "_wait_cancel", staticmethod(wait_cancel))
    return intervals


# =============================================================================
# FakeResponse - HTTP-like response configuration
# =============================================================================


@dataclass
class FakeResponse:
    """HTTP-like response for fake server.

    Attributes:
        http_status: HTTP status code
        body: Response body (BaseModel, dict, str, or None)
        headers: Response headers as tuple of (name, value) pairs
    """

    http_status: HTTPStatus = HTTPStatus.OK
    body: BaseModel | dict | str | None = None
    headers: tuple[tuple[str, str], ...] = ()


# A route maps to one response, or to a sequence served in order with the
# last one repeating.
FakeResponses = dict[str, FakeResponse | list[FakeResponse]]


class RouteMatcher:
    """Match request URIs against fake_responses patterns.

    Converts patterns like "GET /clickhouse/v1/operations/{id}" to a regex that
    matches "GET /clickhouse/v1/operations/cho123".
    """

    _PARAM_PATTERN = re.compile(r"\{([^}]+)\}")

    def __init__(self, responses: FakeResponses):
        self._responses = responses
        self._compiled: list[tuple[re.Pattern[str], str]] = []
        self.hits: dict[str, int] = {}
        for pattern in self._responses:
            method, path = pattern.split(" ", 1)
            self._compiled.append((re.compile(f"^{re.escape(method)} {self._path_to_regex(path)}$"), pattern))

    def _path_to_regex(self, path: str) -> str:
        result = ""
        last_end = 0
        for match in self._PARAM_PATTERN.finditer(path):
            result += re.escape(path[last_end : match.start()])
            result += "([^/]+)"
            last_end = match.end()
        result += re.escape(path[last_end:])
        return result

    def match(self, method: str, path: str) -> FakeResponse | None:
        uri = f"{method} {path}"
        for regex, pattern in self._compiled:
            if regex.match(uri):
                self.hits[uri] = self.hits.get(uri, 0) + 1
                configured = self._responses[pattern]
                if isinstance(configured, list):
                    return configured[min(self.hits[uri], len(configured)) - 1]
                return configured
        return None


# =============================================================================
# Fixtures - Real HTTP fake server
# =============================================================================


@pytest.fixture
def fake_server_socket() -> socket.socket:
    """Create a bound socket for the fake server."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    return sock


@pytest.fixture
def fake_server_url(fake_server_socket: socket.socket) -> str:
    _, port = fake_server_socket.getsockname()
    return f"http://127.0.0.1:{port}"


def _serialize_body(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, BaseModel):
        return body.model_dump_json(by_alias=True)
    if isinstance(body, dict):
        return json.dumps(body)
    return str(body)


@pytest.fixture
def route_matcher(fake_responses: FakeResponses) -> RouteMatcher:
    return RouteMatcher(fake_responses)


@pytest.fixture
async def http_fake_server(
    route_matcher: RouteMatcher,
    fake_server_socket: socket.socket,
) -> AsyncIterator[list[Request]]:
    """Real HTTP server returning configured fake responses.

    Yields the list of received requests.
    """
    requests: list[Request] = []

    async def handle_request(request: Request) -> Response:
        requests.append(request)
        fake_response = route_matcher.match(request.method, request.url.path)

        if fake_response is None:
            return Response(
                content=json.dumps({"code": 5, "message": f"No fake response for {request.url.path}"}),
                status_code=404,
                media_type="application/json",
            )

        headers = dict(fake_response.headers)
        if "content-type" not in {k.lower() for k in headers}:
            if isinstance(fake_response.body, str) and not fake_response.body.startswith("{"):
                headers["Content-Type"] = "text/plain"
            else:
                headers["Content-Type"] = "application/json"

        return Response(
            content=_serialize_body(fake_response.body),
            status_code=fake_response.http_status.value,
            headers=headers,
        )

    app = Starlette(routes=[Route("/{path:path}", endpoint=handle_request, methods=["GET"])])

    config = uvicorn.Config(app, log_level="error")
    server = uvicorn.Server(config)
    server_task = asyncio.create_task(server.serve(sockets=[fake_server_socket]))

    yield requests

    server.should_exit = True
    await server_task


@pytest.fixture
async def http_router(http_fake_server: list[Request], fake_server_url: str) -> AsyncIterator[OperationRouter]:
    """Real HTTP router pointing to the fake server."""
    async with OperationRouter.from_endpoint(fake_server_url, token="test-token") as router:
        yield router


@pytest.fixture
def fake_responses() -> FakeResponses:
    """Default empty fake responses."""
    return {}


def operation_route(family: OperationFamily) -> str:
    return f"GET /{family.value}/v1/operations/{{id}}"
