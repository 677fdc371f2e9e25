from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine, event

from rewind_alchemy.config import RewinderConfig
from rewind_alchemy.registry import CleanerRegistry
from tests.integration.models import FirstBase, SecondBase


def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def test_url(tmp_path: Path) -> str:
    url = f"sqlite:///{tmp_path / 'test.sqlite3'}"
    engine = create_engine(url)
    FirstBase.metadata.create_all(engine)
    engine.dispose()
    return url


@pytest.fixture
def test2_url(tmp_path: Path) -> str:
    url = f"sqlite:///{tmp_path / 'test2.sqlite3'}"
    engine = create_engine(url)
    SecondBase.metadata.create_all(engine)
    engine.dispose()
    return url


@pytest.fixture
def fk_engine(test_url: str) -> Generator[Engine, None, None]:
    """Engine on the ``test`` database enforcing foreign keys."""
    engine = create_engine(test_url)
    event.listen(engine, "connect", _enable_foreign_keys)
    yield engine
    engine.dispose()


@pytest.fixture
def config(test_url: str, test2_url: str) -> RewinderConfig:
    return RewinderConfig(database_configuration={"test": test_url, "test2": test2_url})


@pytest.fixture
def registry(config: RewinderConfig) -> Generator[CleanerRegistry, None, None]:
    registry = CleanerRegistry(config)
    yield registry
    registry.reset()
