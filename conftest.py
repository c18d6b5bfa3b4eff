"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.cache import caches
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'opsdesk-tests',
        }
    }
    settings.CELERY_TASK_ALWAYS_EAGER = True
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database; rbac and tenants tables are created by syncdb."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_permission_cache():
    """Every test starts with an empty permission cache."""
    caches['default'].clear()
    yield
    caches['default'].clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def company(db):
    """Create a test company."""
    from apps.tenants.models import Company
    return Company.objects.create(name='Acme Works', slug='acme-works')


@pytest.fixture
def other_company(db):
    """Create another company for isolation tests."""
    from apps.tenants.models import Company
    return Company.objects.create(name='Other Works', slug='other-works')


@pytest.fixture
def system_roles(db):
    """Provision the global system roles; returns them by name."""
    from apps.rbac.engine import get_engine
    from apps.rbac.models import Role

    get_engine().role_store.provision_system_roles()
    return {role.name: role for role in Role.objects.system_roles()}


@pytest.fixture
def make_user(db):
    """
    Factory for users.

    Users created after ``system_roles`` receive their default role through
    the post_save signal.
    """
    from apps.rbac.models import User, UserRole

    counter = {'n': 0}

    def _make_user(company, role=UserRole.TECHNICIAN, email=None, name=None, **extra):
        counter['n'] += 1
        return User.objects.create_user(
            email=email or f"user{counter['n']}@{company.slug if company else 'platform'}.test",
            password='test-password-123',
            name=name or f"User {counter['n']}",
            company=company,
            role=role,
            **extra
        )

    return _make_user


@pytest.fixture
def engine(db):
    """
    Install an engine whose identity is set explicitly by the test.

    Use ``act_as`` to switch the current identity.
    """
    from apps.rbac.engine import RBACEngine, set_engine
    from apps.rbac.identity import StaticIdentityProvider

    test_engine = RBACEngine.build(identity_provider=StaticIdentityProvider())
    previous = set_engine(test_engine)
    yield test_engine
    set_engine(previous)


@pytest.fixture
def act_as(engine):
    """Make ``user`` (or None) the current identity of the test engine."""
    from apps.rbac.identity import Identity

    def _act_as(user):
        engine.authorizer.identity_provider.identity = (
            Identity.from_user(user) if user is not None else None
        )
        return user

    return _act_as


@pytest.fixture
def request_engine(db):
    """Install an engine that reads the identity from the current request."""
    from apps.rbac.engine import RBACEngine, set_engine

    test_engine = RBACEngine.build()
    previous = set_engine(test_engine)
    yield test_engine
    set_engine(previous)
