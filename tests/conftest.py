# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("VOTE_STORE_BACKEND", "local")

from vote_gallery.db.session import Base
from vote_gallery.main import app as fastapi_app
from vote_gallery.services.feedback import FeedbackService, LocalFeedbackStore
from vote_gallery.services.rating_sync import RatingSync
from vote_gallery.services.store import LocalVoteStore

from tests.fakes import FakeVoteStore

TEST_DB_URL = "sqlite://"
TEST_STORAGE_KEY = "testRatings"
TEST_FAVORITES_KEY = "testFavorites"
TEST_COMMENTS_KEY = "testComments"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[sessionmaker[Session]]:
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def local_store(session_factory: sessionmaker[Session]) -> LocalVoteStore:
    return LocalVoteStore(session_factory, storage_key=TEST_STORAGE_KEY)


@pytest.fixture()
def fake_store() -> FakeVoteStore:
    return FakeVoteStore()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI,
    local_store: LocalVoteStore,
    session_factory: sessionmaker[Session],
) -> Iterator[TestClient]:
    rating_sync = RatingSync(local_store, fallback_voter="Guest")
    app.state.rating_sync = rating_sync
    app.state.feedback = FeedbackService(
        LocalFeedbackStore(
            session_factory,
            favorites_key=TEST_FAVORITES_KEY,
            comments_key=TEST_COMMENTS_KEY,
        ),
        resolve_voter=rating_sync.resolve_voter,
    )
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.state.rating_sync = None
        app.state.feedback = None
