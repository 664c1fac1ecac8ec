from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from typing import Any, Final

import pytest
import sqlalchemy as sa

from sqla_records import EngineExecutor, Settings, override_settings

from .models import Article, metadata, registry


FROZEN_NOW: Final[datetime] = datetime(2024, 1, 2, 3, 4, 5)


class QueryCounter:
    """Collect every statement a SQLAlchemy engine sends to the driver."""

    def __init__(self) -> None:
        self.statements: list[tuple[str, Any]] = []

    def __call__(  # noqa: PLR0913
        self,
        conn: Any,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,  # noqa: FBT001
    ) -> None:
        self.statements.append((statement, parameters))

    def __len__(self) -> int:
        return len(self.statements)

    @property
    def sql(self) -> list[str]:
        return [statement for statement, _ in self.statements]

    def reset(self) -> None:
        self.statements.clear()


@pytest.fixture
def engine() -> Iterator[sa.Engine]:
    engine = sa.create_engine(
        "sqlite://",
        poolclass=sa.pool.StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def executor(engine: sa.Engine) -> EngineExecutor:
    return EngineExecutor(engine)


@pytest.fixture
def db(executor: EngineExecutor) -> Iterator[EngineExecutor]:
    """Configure the model registry against a fresh in-memory database."""
    registry.configure(executor)
    Article.events.clear()
    yield executor
    registry.reset()


@pytest.fixture
def frozen_clock() -> Iterator[Settings]:
    with override_settings(clock=lambda: FROZEN_NOW) as settings:
        yield settings


@pytest.fixture
def development() -> Iterator[Settings]:
    with override_settings(development=True) as settings:
        yield settings


@pytest.fixture
def seed_data(engine: sa.Engine, db: EngineExecutor) -> dict[str, list[dict[str, Any]]]:
    data: dict[str, list[dict[str, Any]]] = {
        "users": [
            {"id": 1, "name": "alice", "email": "alice@example.com", "active": True, "age": 30},
            {"id": 2, "name": "bob", "email": "bob@example.com", "active": True, "age": 17},
            {"id": 3, "name": "charlie", "email": "charlie@example.com", "active": False, "age": 45},
            {"id": 4, "name": "dave", "email": "dave@example.com", "active": True, "age": 22},
        ],
        "categories": [
            {"id": 1, "name": "root", "parent_id": None},
            {"id": 2, "name": "child_1", "parent_id": 1},
            {"id": 3, "name": "child_2", "parent_id": 1},
            {"id": 4, "name": "grandchild", "parent_id": 2},
        ],
        "posts": [
            {"id": 1, "title": "Alice Post 1", "body": "body1", "user_id": 1, "category_id": 1},
            {"id": 2, "title": "Alice Post 2", "body": "body2", "user_id": 1, "category_id": None},
            {"id": 3, "title": "Alice Post 3", "body": "body3", "user_id": 1, "category_id": 2},
            {"id": 4, "title": "Bob Post 1", "body": "body4", "user_id": 2, "category_id": 2},
        ],
        "comments": [
            {"id": 1, "text": "Great post!", "post_id": 1, "user_id": 2},
            {"id": 2, "text": "Nice work", "post_id": 1, "user_id": 3},
            {"id": 3, "text": "Thanks", "post_id": 4, "user_id": 1},
        ],
        "profiles": [
            {"id": 1, "bio": "Alice bio", "user_id": 1},
            {"id": 2, "bio": "Bob bio", "user_id": 2},
        ],
        "tags": [
            {"id": 1, "name": "python"},
            {"id": 2, "name": "sql"},
        ],
    }

    with engine.begin() as conn:
        for table in metadata.sorted_tables:
            if rows := data.get(table.name):
                conn.execute(table.insert(), rows)

    return data


@pytest.fixture
def queries(engine: sa.Engine, seed_data: dict[str, list[dict[str, Any]]]) -> Iterator[QueryCounter]:
    """Count statements issued after the database has been seeded."""
    counter = QueryCounter()
    sa.event.listen(engine, "before_cursor_execute", counter)
    yield counter
    sa.event.remove(engine, "before_cursor_execute", counter)
