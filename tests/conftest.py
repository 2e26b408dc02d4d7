import pytest
from base64 import b64encode
from services.config_service import ConfigManager
from services.database import create_db_manager, init_db
from app import create_app


@pytest.fixture(scope="session")
def config_manager():
    """Fixture for initializing ConfigManager."""
    return ConfigManager()


@pytest.fixture
def app_context(tmp_path, monkeypatch):
    """Fixture for a Flask app on a throwaway database file, inside an app context."""
    # Point the app at the test database before create_app initialises it
    monkeypatch.setenv("CURTAIN_DATABASE", str(tmp_path / "test.db"))
    app = create_app('Testing')
    app.config["USERS"] = {"testuser": "testpassword"}

    with app.app_context():
        yield app


@pytest.fixture
def client(app_context):
    """Fixture for the Flask test client."""
    return app_context.test_client()


@pytest.fixture
def app_db(app_context):
    """Direct handle on the database the app under test uses."""
    db_manager = create_db_manager(app_context.config["database"])
    yield db_manager
    db_manager.close()


@pytest.fixture
def get_db_manager():
    """Fixture for database manager with per-test isolation."""
    db_manager = create_db_manager(":memory:")  # Use an in-memory database for isolation
    init_db(db_manager=db_manager)
    yield db_manager
    db_manager.close()  # Ensure database connection is closed after the test


@pytest.fixture
def auth_headers():
    """Fixture for authorization headers."""
    credentials = b64encode(b"testuser:testpassword").decode("utf-8")
    return {
        'Authorization': f'Basic {credentials}'
    }
