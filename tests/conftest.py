"""Shared fixtures: isolated sqlite database and a fake HTTP session."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from studysync.config.sync_config import (
    ManifestConfig,
    MirrorConfig,
    SyncConfig,
    clear_config_cache,
)
from studysync.core.sync_orchestrator import SyncOrchestrator, reset_orchestrator
from studysync.db.database import init_db

MIRROR_A = "https://mirror-a.test/"
MIRROR_B = "https://raw.mirror-b.test"


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, body: bytes | str | Any = b""):
        self.status_code = status_code
        if isinstance(body, bytes):
            self.content = body
        elif isinstance(body, str):
            self.content = body.encode("utf-8")
        else:
            self.content = json.dumps(body).encode("utf-8")

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def json(self) -> Any:
        return json.loads(self.content.decode("utf-8"))


class FakeSession:
    """Routes URLs to canned responses, exceptions or callables.

    Unrouted URLs answer 404. Every requested URL is recorded in `calls`.
    """

    def __init__(self):
        self.routes: dict[str, Any] = {}
        self.calls: list[str] = []
        self.headers: dict[str, str] = {}

    def route(self, url: str, result: Any, status: int = 200) -> None:
        """Register a body (str/bytes/JSON-able), an exception, or a callable."""
        if isinstance(result, BaseException) or (
            isinstance(result, type) and issubclass(result, BaseException)
        ):
            self.routes[url] = result
        elif callable(result):
            self.routes[url] = result
        else:
            self.routes[url] = FakeResponse(status, result)

    def fail(self, url: str, status: int) -> None:
        self.routes[url] = FakeResponse(status, b"error")

    def get(self, url: str, timeout: float | None = None, **kwargs: Any) -> FakeResponse:
        self.calls.append(url)
        result = self.routes.get(url)
        if result is None:
            return FakeResponse(404, b"not found")
        if isinstance(result, type) and issubclass(result, BaseException):
            raise result(f"simulated failure for {url}")
        if isinstance(result, BaseException):
            raise result
        if callable(result) and not isinstance(result, FakeResponse):
            return result()
        return result


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def mirror_a(url: str) -> str:
    return MIRROR_A + url


def mirror_b(url: str) -> str:
    return url.replace("https://raw.githubusercontent.com", MIRROR_B).replace(
        "https://gist.githubusercontent.com", MIRROR_B
    )


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Fresh sqlite database for each test."""
    return init_db(tmp_path / "db" / "test.db")


@pytest.fixture
def sync_config(db_path) -> SyncConfig:
    """Config with two test mirrors (one prefix, one host style)."""
    return SyncConfig(
        fetch_timeout=1.0,
        max_candidates=6,
        listing_attempts=2,
        listing_retry_delay=0.5,
        cooldown_seconds=3600,
        db_path=db_path,
        mirrors=[
            MirrorConfig(base=MIRROR_A, style="prefix", hosts=["*"]),
            MirrorConfig(
                base=MIRROR_B,
                style="host",
                hosts=["raw.githubusercontent.com", "gist.githubusercontent.com"],
            ),
        ],
        manifest=ManifestConfig(repo="acme/banks", branch="main", path="manifest.json"),
    )


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def orchestrator(sync_config, session, clock, sleeps) -> SyncOrchestrator:
    """Orchestrator wired to the fake session, clock and sleep."""
    return SyncOrchestrator(
        sync_config,
        session=session,
        clock=clock,
        sleep=sleeps.append,
    )


@pytest.fixture(autouse=True)
def _reset_globals():
    """Drop cached config and the global orchestrator between tests."""
    clear_config_cache()
    reset_orchestrator()
    yield
    clear_config_cache()
    reset_orchestrator()


@pytest.fixture
def algebra_csv() -> str:
    return (
        "content,type,A,B,C,D,answer,explanation\n"
        "1+1=?,single,1,2,3,4,B,basic sum\n"
        "2*3=?,single,5,6,7,8,B,\n"
        "Pick primes,multi,2,4,5,9,\"C, A\",\n"
        "Zero is even,true_false,,,,,true,\n"
    )


RAW_ALGEBRA_URL = "https://raw.githubusercontent.com/acme/banks/main/algebra.csv"

