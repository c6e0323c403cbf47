from __future__ import annotations

import pytest

from fakes import build_memory


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def memory():
    return build_memory()
