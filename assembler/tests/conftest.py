import pytest


@pytest.fixture
def anyio_backend():
    # The pipeline relies on asyncio.to_thread / wait_for
    return "asyncio"
