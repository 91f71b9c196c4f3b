from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import models  # noqa: F401
from cache import derived_views
from database import Base


@pytest.fixture(autouse=True)
def _clear_derived_views() -> Iterator[None]:
    # Every in-memory database starts its owners at id 1.
    derived_views.clear()
    yield
    derived_views.clear()


@pytest.fixture()
def session() -> Iterator[Session]:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as db:
        yield db
    engine.dispose()
