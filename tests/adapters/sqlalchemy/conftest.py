from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.orm import Session, sessionmaker

from stagedwork.adapters.sqlalchemy import shutdown

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine


@pytest.fixture(autouse=True)
def reset_adapter_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


@pytest.fixture
def session(mapped_engine: Engine) -> Iterator[Session]:
    factory = sessionmaker(bind=mapped_engine, expire_on_commit=False)
    with factory() as session:
        yield session
