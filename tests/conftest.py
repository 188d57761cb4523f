"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest
import pytest_asyncio

from ide_bridge.backend import ProcessSupervisor
from ide_bridge.config import Config
from tests.utils import FakeBackend, make_project

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
def project(tmp_path):
    return make_project(tmp_path, "demo")


@pytest.fixture
def backend() -> FakeBackend:
    """A fake backend with no scripted replies; tests emit output by hand."""
    return FakeBackend()


@pytest_asyncio.fixture
async def supervisor(backend: FakeBackend):
    sv = ProcessSupervisor(Config().backend_argv, spawn=backend, stop_timeout=0.5)
    yield sv
    await sv.stop_all()
