"""pytest fixtures for try-on gateway tests.

Provides:
- FakeClock / fake_sleep: Deterministic time for limiters, ownership and retries
- InMemoryCacheBackend: Dict-backed CacheBackend
- FakeFalClient: Scriptable stand-in for FalQueueClient that records calls
- FakeSessionVerifier: Returns a fixed user (or None) without HTTP
- gateway / service / test_client: App wiring with everything injected via app.state

ASGITransport does not run the application lifespan, so test_client populates
app.state itself, the same way lifespan does in production.
"""

import os
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tryon.core.state import GatewayState
from tryon.services.auth import AuthUser
from tryon.services.cache import CacheBackend, NullCache
from tryon.services.exceptions import FalApiError
from tryon.services.fal.retry import FalRetryExecutor
from tryon.services.generation import GenerationService
from tryon.services.ownership import JobOwnershipTracker
from tryon.services.rate_limit import FixedWindowRateLimiter
from tryon.services.try_on_cache import TryOnCache

# Settings() skips production validation in tests
os.environ.setdefault("APP_ENV", "test")

MODEL_ID = "fal-ai/nano-banana/edit"
QUEUE_BASE = "https://queue.fal.run/fal-ai/nano-banana/requests"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def fake_sleep(seconds: float) -> None:
    return None


class InMemoryCacheBackend(CacheBackend):
    """Dict-backed cache; TTLs are recorded but never enforced."""

    name = "memory"

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.deleted: list[str] = []

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.values[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self.values.pop(key, None)
            self.ttls.pop(key, None)
            self.deleted.append(key)

    async def ping(self) -> bool:
        return True


def queue_status(request_id: str, status: str = "IN_QUEUE", **extra: Any) -> dict[str, Any]:
    """Raw provider queue status payload."""
    payload = {
        "request_id": request_id,
        "status": status,
        "status_url": f"{QUEUE_BASE}/{request_id}/status",
        "response_url": f"{QUEUE_BASE}/{request_id}",
        "cancel_url": f"{QUEUE_BASE}/{request_id}/cancel",
    }
    payload.update(extra)
    return payload


class FakeFalClient:
    """Records every call; answers are scripted per request id.

    Errors queued in `submit_errors` / `status_errors` are raised (in order)
    before any successful answer is produced.
    """

    def __init__(self):
        self.submit_calls: list[dict[str, Any]] = []
        self.status_calls: list[dict[str, Any]] = []
        self.result_calls: list[str] = []
        self.submit_errors: list[Exception] = []
        self.status_errors: list[Exception] = []
        self.statuses: dict[str, dict[str, Any]] = {}
        self.results: dict[str, dict[str, Any]] = {}
        self._counter = 0

    @property
    def call_count(self) -> int:
        return len(self.submit_calls) + len(self.status_calls) + len(self.result_calls)

    async def submit(self, model_id, input, priority=None, webhook_url=None, hint=None):
        self.submit_calls.append(
            {
                "model_id": model_id,
                "input": input,
                "priority": priority,
                "webhook_url": webhook_url,
                "hint": hint,
            }
        )
        if self.submit_errors:
            raise self.submit_errors.pop(0)

        self._counter += 1
        return queue_status(f"req_{self._counter}", queue_position=0)

    async def status(self, model_id, request_id, logs=False):
        self.status_calls.append({"model_id": model_id, "request_id": request_id, "logs": logs})
        if self.status_errors:
            raise self.status_errors.pop(0)
        return self.statuses.get(request_id, queue_status(request_id))

    async def result(self, model_id, request_id):
        self.result_calls.append(request_id)
        if request_id not in self.results:
            raise FalApiError(404, {"detail": "Request not found"})
        return self.results[request_id]


class FakeSessionVerifier:
    def __init__(self, user: AuthUser | None = None):
        self.user = user

    async def get_user(self, headers) -> AuthUser | None:
        return self.user


class FakeSessionFactory:
    """Stands in for async_sessionmaker in health check tests."""

    def __init__(self, error: Exception | None = None):
        self.error = error

    def __call__(self):
        return self

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, statement):
        return self

    def scalar(self):
        return 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor() -> FalRetryExecutor:
    """Executor with real monotonic time but no waiting between attempts."""
    return FalRetryExecutor(
        max_attempts=3,
        base_delay=0.5,
        max_delay=5.0,
        failure_threshold=5,
        open_duration=30.0,
        sleep=fake_sleep,
    )


@pytest.fixture
def gateway(executor) -> GatewayState:
    return GatewayState(
        general_rate_limiter=FixedWindowRateLimiter(
            window_seconds=900, max_requests=100, name="general"
        ),
        try_on_rate_limiter=FixedWindowRateLimiter(
            window_seconds=60, max_requests=20, name="try_on"
        ),
        ownership=JobOwnershipTracker(max_active_jobs=5, ttl_seconds=1800),
        fal_executor=executor,
        max_request_body_bytes=1024,
    )


@pytest.fixture
def fal_client() -> FakeFalClient:
    return FakeFalClient()


@pytest.fixture
def cache_backend() -> InMemoryCacheBackend:
    return InMemoryCacheBackend()


@pytest.fixture
def service(fal_client, executor, cache_backend) -> GenerationService:
    return GenerationService(
        client_factory=lambda: fal_client,
        executor=executor,
        cache=TryOnCache(cache_backend),
        model_id=MODEL_ID,
    )


@pytest.fixture
def session_verifier() -> FakeSessionVerifier:
    return FakeSessionVerifier(AuthUser(id="user-1", email="user@example.com"))


@pytest_asyncio.fixture
async def test_client(gateway, fal_client, executor, session_verifier):
    """Provide AsyncClient for the API with state injected into app.state.

    Routes get a cache-less GenerationService so every poll reaches the
    fake provider.
    """
    from tryon.app import app

    app.state.gateway = gateway
    app.state.session_verifier = session_verifier
    app.state.cache_backend = NullCache()
    app.state.session_factory = FakeSessionFactory()
    app.state.generation_service = GenerationService(
        client_factory=lambda: fal_client,
        executor=executor,
        cache=TryOnCache(NullCache()),
        model_id=MODEL_ID,
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield
