"""
Pytest configuration for the relaybot test suite.

Async tests are marked ``@pytest.mark.anyio`` and run on asyncio only.
"""

import pytest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
