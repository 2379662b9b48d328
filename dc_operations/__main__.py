import asyncio
import contextlib
import logging
import os
import signal
import sys

from dc_operations.arguments import Parser
from dc_operations.errors import OperationFailedError, OperationsError, WaitCancelledError
from dc_operations.operation import OperationHandle
from dc_operations.routing import OperationRouter

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_OPERATION_FAILED = 1
EXIT_POLL_FAILED = 2
EXIT_INTERRUPTED = 130


async def amain(parser: Parser, cancel: asyncio.Event | None = None) -> int:
    async with OperationRouter.from_endpoint(parser.url, parser.token, timeout=parser.request_timeout) as router:
        try:
            handle = await OperationHandle.fetch(router, parser.operation_id)
            log.info("Waiting for operation %s (%s)", handle.id, handle.description or "no description")
            await handle.wait_interval(parser.poll_interval, cancel=cancel, timeout=parser.timeout or None)
        except OperationFailedError as e:
            log.error("%s", e)
            print(handle.snapshot.model_dump_json(indent=2, by_alias=True))
            return EXIT_OPERATION_FAILED
        except WaitCancelledError as e:
            log.error("%s", e)
            return EXIT_INTERRUPTED
        except OperationsError as e:
            log.error("%s", e)
            return EXIT_POLL_FAILED

    print(handle.snapshot.model_dump_json(indent=2, by_alias=True))
    return EXIT_OK


async def run(parser: Parser) -> int:
    cancel = asyncio.Event()
    # SIGTERM stops waiting between polls, an in-flight query still completes
    with contextlib.suppress(NotImplementedError):
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, cancel.set)
    return await amain(parser, cancel=cancel)


def main() -> None:
    parser = Parser(
        config_files=[os.getenv("DC_OPERATIONS_CONFIG", "~/.config/doublecloud/operations.ini")],
        auto_env_var_prefix="DC_OPERATIONS_",
    )
    parser.parse_args()

    logging.basicConfig(level=parser.log_level, format="[%(levelname)s] %(message)s", stream=sys.stderr)
    try:
        sys.exit(asyncio.run(run(parser)))
    except KeyboardInterrupt:
        logging.info("Gracefully exited on keyboard interrupt")
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    main()
