import asyncio
import logging
import re
from collections.abc import Mapping
from datetime import datetime
from types import MappingProxyType

from httpx import Headers

from .backend_types import Operation, OperationStatus, Status
from .errors import OperationFailedError, OperationsError, PollError, WaitCancelledError, is_not_found
from .routing import OperationRouter

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
POLL_INTERVAL_HEADER = "x-operation-poll-interval"

# Sometimes the returned operation is not on all replicas yet,
# so the first couple of not found errors are ignored.
MAX_NOT_FOUND_RETRIES = 3

INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")


def poll_interval_from_headers(headers: Headers, default: float) -> float:
    """Whole seconds from the first poll interval header, else ``default``."""
    values = headers.get_list(POLL_INTERVAL_HEADER)
    if not values:
        return default
    value = values[0]
    if INTEGER_PATTERN.fullmatch(value) is None:
        log.debug("Ignoring malformed %s header: %r", POLL_INTERVAL_HEADER, value)
        return default
    return float(int(value))


class OperationHandle:
    """Latest known state of a remote operation.

    The snapshot is replaced as a whole by :meth:`refresh`, so readers never
    observe a partially updated operation. A single handle must not be
    refreshed by two tasks at once.
    """

    def __init__(self, router: OperationRouter, snapshot: Operation):
        if snapshot is None:
            raise TypeError("operation snapshot must not be None")
        self._router = router
        self._snapshot = snapshot
        self._headers = Headers()

    @classmethod
    async def fetch(cls, router: OperationRouter, operation_id: str) -> "OperationHandle":
        """Build a handle from a first status query.

        A freshly created operation may not be visible yet, so not-found
        results are retried like in the wait loop.
        """
        not_found_count = 0
        while True:
            try:
                result = await router.get_operation(operation_id)
            except OperationsError as e:
                if not_found_count < MAX_NOT_FOUND_RETRIES and is_not_found(e):
                    not_found_count += 1
                    log.debug(
                        "Operation %s not found yet, retry %d of %d", operation_id, not_found_count, MAX_NOT_FOUND_RETRIES
                    )
                    continue
                raise
            break
        handle = cls(router, result.operation)
        handle._headers = result.headers
        return handle

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.id} status={self.status.value}>"

    @property
    def snapshot(self) -> Operation:
        return self._snapshot

    @property
    def router(self) -> OperationRouter:
        return self._router

    @property
    def id(self) -> str:
        return self._snapshot.id

    @property
    def description(self) -> str:
        return self._snapshot.description

    @property
    def created_by(self) -> str:
        return self._snapshot.created_by

    @property
    def resource_id(self) -> str:
        return self._snapshot.resource_id

    @property
    def created_at(self) -> datetime | None:
        return self._snapshot.create_time

    @property
    def metadata(self) -> Mapping[str, str]:
        return MappingProxyType(self._snapshot.metadata)

    @property
    def status(self) -> OperationStatus:
        return self._snapshot.status

    @property
    def error_status(self) -> Status | None:
        return self._snapshot.error

    @property
    def error(self) -> OperationFailedError | None:
        status = self.error_status
        if status is None:
            return None
        return status.err(operation_id=self.id)

    @property
    def done(self) -> bool:
        return self._snapshot.done

    @property
    def ok(self) -> bool:
        return self.done and self._snapshot.error is None

    @property
    def failed(self) -> bool:
        return self.done and self._snapshot.error is not None

    async def refresh(self) -> None:
        """Query the current state once and replace the snapshot.

        Raises :class:`UnknownOperationTypeError` when the id matches no
        known operation family or the status query fails.
        """
        result = await self._router.get_operation(self.id)
        self._snapshot = result.operation
        self._headers = result.headers

    async def wait(self, *, cancel: asyncio.Event | None = None, timeout: float | None = None) -> None:
        await self.wait_interval(DEFAULT_POLL_INTERVAL, cancel=cancel, timeout=timeout)

    async def wait_interval(
        self,
        poll_interval: float,
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> None:
        """Poll until the operation is done.

        Returns ``None`` when the operation finished without an error and
        raises :class:`OperationFailedError` when it recorded one.
        :class:`PollError` means the status could not be queried,
        :class:`WaitCancelledError` means ``cancel`` was set or ``timeout``
        elapsed while waiting between polls.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        not_found_count = 0

        while not self.done:
            self._headers = Headers()
            try:
                await self.refresh()
            except Exception as e:
                if not_found_count < MAX_NOT_FOUND_RETRIES and is_not_found(e):
                    not_found_count += 1
                    log.debug(
                        "Operation %s not found yet, retry %d of %d", self.id, not_found_count, MAX_NOT_FOUND_RETRIES
                    )
                    continue
                raise PollError(self.id, e) from e

            if self.done:
                break

            interval = poll_interval_from_headers(self._headers, poll_interval)
            log.debug("Operation %s still %s, next poll in %ss", self.id, self.status.value, interval)
            if interval <= 0:
                await asyncio.sleep(0)
                self._check_cancelled(cancel, deadline)
                continue
            await self._sleep(interval, cancel, deadline)

        log.debug("Operation %s finished: %s", self.id, self.status.value)
        error = self.error
        if error is not None:
            raise error

    def _check_cancelled(self, cancel: asyncio.Event | None, deadline: float | None) -> None:
        if cancel is not None and cancel.is_set():
            raise WaitCancelledError(self.id, asyncio.CancelledError("wait cancelled"))
        if deadline is not None and asyncio.get_running_loop().time() >= deadline:
            raise WaitCancelledError(self.id, TimeoutError(f"wait deadline exceeded for operation {self.id}"))

    async def _sleep(self, interval: float, cancel: asyncio.Event | None, deadline: float | None) -> None:
        """Wait for ``interval`` seconds unless cancelled or past ``deadline``."""
        expires = False
        if deadline is not None:
            remaining = max(deadline - asyncio.get_running_loop().time(), 0)
            if remaining <= interval:
                interval, expires = remaining, True

        if await self._wait_cancel(cancel, interval):
            raise WaitCancelledError(self.id, asyncio.CancelledError("wait cancelled"))
        if expires:
            raise WaitCancelledError(self.id, TimeoutError(f"wait deadline exceeded for operation {self.id}"))

    @staticmethod
    async def _wait_cancel(cancel: asyncio.Event | None, timeout: float) -> bool:
        """Return ``True`` if ``cancel`` was set before ``timeout`` expired."""
        if cancel is None:
            await asyncio.sleep(timeout)
            return False
        if cancel.is_set():
            return True
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({waiter}, timeout=timeout)
        finally:
            # Release the pending waiter on every exit path
            waiter.cancel()
        return bool(done)


def new(router: OperationRouter, snapshot: Operation) -> OperationHandle:
    return OperationHandle(router, snapshot)
