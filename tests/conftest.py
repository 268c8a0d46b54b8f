"""Shared fixtures: a wired in-memory pipeline and a test client bound to it."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from src.api.dependencies import get_pipeline, get_repository
from src.api.main import app
from tests.fakes import PipelineHarness


@pytest.fixture
def harness() -> PipelineHarness:
    return PipelineHarness()


@pytest.fixture
def client(harness: PipelineHarness) -> Iterator[TestClient]:
    """TestClient bound to a fresh in-memory pipeline.

    The context manager keeps every request on one event loop, which the
    cache's asyncio locks require.
    """
    app.dependency_overrides[get_pipeline] = lambda: harness.pipeline
    app.dependency_overrides[get_repository] = lambda: harness.repository
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
