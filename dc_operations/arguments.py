import argclass


class Parser(argclass.Parser):
    url: str = argclass.Argument(default="https://api.double.cloud", help="DoubleCloud API base URL")
    token: str = argclass.Argument(secret=True, help="DoubleCloud API authentication token", required=True)
    operation_id: str = argclass.Argument(help="Operation identifier to wait for", required=True)
    poll_interval: float = argclass.Argument(
        default=1.0,
        help="Seconds between status queries unless the server suggests otherwise",
    )
    timeout: float = argclass.Argument(default=0.0, help="Give up waiting after this many seconds, 0 waits forever")
    request_timeout: float = argclass.Argument(default=30.0, help="HTTP request timeout in seconds")

    log_level: int = argclass.LogLevel
