import pytest

from tests.fakes import FakeChannelFactory, FakePlatform
from voicelink.characters import get_character
from voicelink.config import AppConfig
from voicelink.core.models import ConnectionState, SessionState


async def _probe_ok():
    return None


@pytest.fixture
def app_config():
    config = AppConfig()
    config.audio.noise_gate_threshold = 0.25
    return config


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def channel_factory():
    return FakeChannelFactory()


@pytest.fixture
def network_probe():
    return _probe_ok


@pytest.fixture
def session():
    return SessionState(get_character("shinchan"))


@pytest.fixture
def live_session(session):
    """A session in the connected, greeting-finished, unmuted state."""
    session.alive.set()
    session.state = ConnectionState.CONNECTED
    session.greeting_open.trip()
    return session
