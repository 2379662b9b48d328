import pytest


@pytest.mark.usefixtures("http_fake_server")
class TestCase:
    """Base class for tests talking to the fake HTTP server."""
