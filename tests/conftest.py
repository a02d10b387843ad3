from __future__ import annotations

import pytest

from tests.fakes import FakeMemoryService


@pytest.fixture
def memory_service() -> FakeMemoryService:
    return FakeMemoryService()
