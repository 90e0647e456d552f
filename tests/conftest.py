import asyncio
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from translate_gateway.core.config import TranslatorConfig, settings

# Override settings for tests
settings.app_env = "development"

from translate_gateway.gateway.gateway import TranslationGateway  # noqa: E402
from translate_gateway.main import app  # noqa: E402

# Fast limits so scheduler-driven tests finish in milliseconds
FAST_CONFIG = {
    "provider": {
        "limits": {
            "max_concurrent": 4,
            "rps": 1000,
            "burst": 100,
            "jitter_ms": [0, 0],
            "throttle_window_ms": 10,
        },
        "retry": {"max_retries": 3, "base_delay_ms": 1, "max_delay_ms": 5, "jitter": False},
    },
}


class FakeClock:
    """Monotonic clock under test control; ``sleep`` advances it instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_config() -> TranslatorConfig:
    return TranslatorConfig.model_validate(FAST_CONFIG)


@pytest.fixture
def gateway(fast_config: TranslatorConfig) -> TranslationGateway:
    gw = TranslationGateway(fast_config)
    yield gw
    gw.close()


@pytest.fixture
async def client(gateway: TranslationGateway) -> AsyncGenerator[AsyncClient, None]:
    # ASGITransport does not run the lifespan; install the gateway directly
    app.state.gateway = gateway
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
