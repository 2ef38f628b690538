import os, sys, pytest
# Ensure backend directory is on path so 'shopadmin' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from shopadmin import create_app, get_db
from shopadmin.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import shopadmin.models.product  # noqa: F401
import shopadmin.models.order  # noqa: F401
import shopadmin.models.notification  # noqa: F401
import shopadmin.models.audit  # noqa: F401
from shopadmin.services.roles import initialize_permissions, initialize_roles


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app({'SCHEDULER_ENABLED': False, 'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-123'})
    with app.app_context():
        session = get_db()
        Base.metadata.create_all(session.get_bind())
        # Catalog and system roles are shared by every test
        initialize_permissions(session)
        initialize_roles(session)
        session.commit()
    yield app


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def session(app_instance):
    s = get_db()
    s.rollback()
    yield s
    s.rollback()
