"""Shared test fixtures."""
import pytest
from datetime import date
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from claimflow.database import Base


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import claimflow.models.db_run
    import claimflow.models.run_step
    import claimflow.models.visit
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that store methods calling session.close()
    in their finally blocks don't invalidate the shared test session.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('claimflow.database.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


@pytest.fixture
def store(db_session):
    """RunStore on the test session with a process-local lock (no Redis)."""
    from claimflow.services.run_store import RunStore
    return RunStore(session_factory=lambda: db_session)


@pytest.fixture
def manager_store(store):
    """Point the manager at the test store and a mock RQ queue."""
    queue = MagicMock()
    with patch('claimflow.pipeline.manager._get_store', return_value=store), \
         patch('claimflow.pipeline.manager._get_queue', return_value=queue):
        store.queue = queue
        yield store


@pytest.fixture
def mock_redis():
    """Mock Redis client. Returns a MagicMock with common Redis methods."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.lock.return_value = MagicMock()
    with patch('claimflow.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def app():
    """Flask test app."""
    from claimflow import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def make_run():
    """Factory fixture — builds a Run-like MagicMock without touching the database."""
    def _make(**overrides):
        defaults = dict(
            id='run-test-001',
            run_type='extraction',
            status='running',
            total_records=10,
            completed_count=8,
            failed_count=2,
            error_message=None,
            metadata={'items': {}, 'item_errors': {}},
        )
        defaults.update(overrides)
        run = MagicMock()
        for k, v in defaults.items():
            setattr(run, k, v)
        return run
    return _make


@pytest.fixture
def make_visits(store):
    """Factory fixture — inserts visits and returns their dicts in id order."""
    def _make(count=3, visit_date=date(2026, 10, 16), **overrides):
        rows = []
        for i in range(count):
            row = dict(
                source='clinic_assist',
                visit_date=visit_date,
                patient_name=f'PATIENT {i + 1}',
                pcno=f'{1000 + i}',
                nric=f'S123456{i}A',
                pay_type='MHC',
                total_amount=45.0,
            )
            row.update(overrides)
            rows.append(row)
        store.upsert_visits(rows)
        return store.pending_extraction(visit_date, visit_date)
    return _make
