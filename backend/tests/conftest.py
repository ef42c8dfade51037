import os, sys, pytest
# Ensure the backend directory is on path so 'backoffice' can be imported without installing
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from backoffice import create_app, get_db
from backoffice.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import backoffice.models.ledger  # noqa: F401
import backoffice.models.exchange_rate  # noqa: F401
import backoffice.models.audit  # noqa: F401

TEST_CONFIG = {
    'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
    'JWT_SECRET_KEY': 'test-secret-key-long-enough-for-hs256-signing',
}


@pytest.fixture()
def app_instance():
    # fresh in-memory database per test; bootstrap state must not leak between tests
    app = create_app(dict(TEST_CONFIG))
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app
    get_db().close()


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def session(app_instance):
    return get_db()


@pytest.fixture()
def authz(app_instance):
    return app_instance.extensions['authz']
