"""Pytest fixtures for the document converter tests."""

from pathlib import Path

import pytest

from doc_converter.conversion import ConversionService, LocalWorkspace, ObserverRegistry, SqlJobStore
from stubs import FakeConverter


@pytest.fixture
def store(tmp_path: Path):
    """SQLite-backed job store in a temporary directory."""
    job_store = SqlJobStore(f"sqlite:///{tmp_path / 'jobs.db'}")
    job_store.init()
    try:
        yield job_store
    finally:
        job_store.close()


@pytest.fixture
def workspace(tmp_path: Path) -> LocalWorkspace:
    ws = LocalWorkspace(tmp_path / "work")
    ws.ensure_root()
    return ws


@pytest.fixture
def registry() -> ObserverRegistry:
    return ObserverRegistry()


@pytest.fixture
def converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture
def service(store, workspace, converter, registry) -> ConversionService:
    return ConversionService(store=store, workspace=workspace, converter=converter, registry=registry)
