import sys
import os
import asyncio
from pathlib import Path
from typing import Optional
import logging

import pytest
import pytest_asyncio

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Module-level session and limiter objects read these on import
os.environ.setdefault('SESSION_SECRET_KEY', 'test-secret-key')
os.environ.setdefault('SESSION_BACKEND', 'memory')
os.environ.setdefault('STORAGE_BACKEND', 'memory')
os.environ.setdefault('SECURE_COOKIES', 'false')
os.environ.setdefault('GLOBAL_RATE_LIMIT', '10000/minute')
os.environ.setdefault('COMPARE_RATE_LIMIT', '10000/minute')
os.environ.setdefault('AUTH_BASE_URL', 'https://auth.test.example.com')
os.environ.setdefault('AUTH_API_KEY', 'test-anon-key')
os.environ.pop('REDIS_URL', None)

from httpx import AsyncClient, ASGITransport
from asgi_lifespan import LifespanManager

from auth.auth import AuthConfig, BaseAuth
from auth.usage_tracking.models import UserProfile, UserRole, UserTier
from providers.clients import ProviderCallError, ProviderClient
from providers.models import ApiSettings, ProviderFamily
from service.config import BEARER_AUTH_STRATEGY
from service.container import ServiceContainer, build_container
from storage.memory_backend import InMemoryStorage


class FakeProviderClient(ProviderClient):
    """
    Answers from a canned table keyed by provider id.

    A value may be a string (the answer), an exception (raised), or a
    ``(delay_seconds, answer)`` tuple.
    """

    def __init__(self, vendor_name: str = "Fake", answers: Optional[dict] = None, default: str = "fake answer"):
        super().__init__(session=None)
        self.vendor_name = vendor_name
        self.answers = answers or {}
        self.default = default
        self.calls: list[dict] = []

    async def generate(self, config, messages, images, api_key):
        self.calls.append({"provider": config.provider_id, "messages": messages, "images": images, "api_key": api_key})
        answer = self.answers.get(config.provider_id, self.default)
        if isinstance(answer, tuple):
            delay, answer = answer
            await asyncio.sleep(delay)
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeAuth(BaseAuth):
    """Accepts the tokens it was given and nothing else."""

    def __init__(self, identities: dict[str, dict]):
        super().__init__()
        self.identities = identities

    async def get_current_user(self, token: Optional[str] = None) -> Optional[dict]:
        return self.identities.get(token)

    async def acheck_auth(self, token: Optional[str] = None) -> bool:
        return token in self.identities


IDENTITIES = {
    "alice-token": {"id": "alice", "email": "alice@example.com", "full_name": "Alice"},
    "bob-token": {"id": "bob", "email": "bob@example.com", "full_name": "Bob"},
    "admin-token": {"id": "admin", "email": "admin@example.com", "full_name": "Admin"},
}


def fake_clients(answers: Optional[dict] = None) -> dict[ProviderFamily, ProviderClient]:
    client = FakeProviderClient(answers=answers)
    return {
        ProviderFamily.OPENAI: client,
        ProviderFamily.GEMINI: client,
        ProviderFamily.DEEPSEEK: client,
        ProviderFamily.OPENROUTER: client,
    }


def make_container(storage, answers: Optional[dict] = None, timeout_seconds: float = 5.0) -> ServiceContainer:
    auth_config = AuthConfig()
    auth_config.register_auth_strategy(BEARER_AUTH_STRATEGY, FakeAuth(IDENTITIES))
    return build_container(
        storage=storage,
        auth_config=auth_config,
        clients=fake_clients(answers),
        provider_timeout_seconds=timeout_seconds,
    )


async def create_user(storage, user_id: str, tier: UserTier = UserTier.FREE, role: UserRole = UserRole.MEMBER,
                      used: int = 0, with_keys: bool = True) -> UserProfile:
    profile = await storage.create_user_if_missing(UserProfile(id=user_id, email=f"{user_id}@example.com"))
    if role != UserRole.MEMBER:
        profile = await storage.set_user_role(user_id, role)
    for _ in range(used):
        await storage.increment_usage(user_id)
    if with_keys:
        await storage.save_api_settings(user_id, ApiSettings(openai="sk-alice-openai", gemini="gm-alice", deepseek="ds-alice", openrouter="or-alice"))
    return await storage.get_user(user_id)


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging for tests."""
    logging.basicConfig(level=logging.INFO)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def answers():
    """Override in a test module to change what the fake providers say."""
    return {}


@pytest.fixture
def services(storage, answers) -> ServiceContainer:
    return make_container(storage, answers)


@pytest_asyncio.fixture
async def client(services):
    from service.service import create_app

    async def container_factory():
        return services

    app = create_app(container_factory=container_factory)
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost:5000") as client:
            yield client


async def login(client: AsyncClient, token: str = "alice-token"):
    response = await client.post("/create-session", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200, response.text
    return response
