import pytest

from ufo_keyserver.codec import SignedKeyCodec
from ufo_keyserver.identity import Identity
from ufo_keyserver.registry import KeyRegistry, SignedKeyRegistry
from ufo_keyserver.server import create_app
from ufo_keyserver.settings import Settings
from ufo_keyserver.stores import MemoryStore

T0 = 1_700_000_000


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry(store, clock):
    return KeyRegistry(store=store, allow_list=["JJJMAX"], clock=clock)


@pytest.fixture
def signed_registry(clock):
    return SignedKeyRegistry(SignedKeyCodec("test-secret"), allow_list=["JJJMAX"], clock=clock)


@pytest.fixture
def alice():
    return Identity(uid="42", place="100")


@pytest.fixture
def bob():
    return Identity(uid="99", place="100")


@pytest.fixture
def settings():
    return Settings(admin_token="admin-secret", sweep_interval=0)


@pytest.fixture
def client(settings, registry):
    app = create_app(settings, registry)
    app.config['TESTING'] = True
    return app.test_client()
