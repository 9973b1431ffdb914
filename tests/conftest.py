"""Global pytest configuration."""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncGenerator

import inspect

import pytest

from pagesentry.metrics import metrics

# Keep a developer's .env from redirecting rule files during tests.
os.environ.setdefault("CONFIG_DIR", "./config")


@pytest.fixture(scope="session")
def event_loop() -> AsyncGenerator[asyncio.AbstractEventLoop, None]:
    """Provide a shared event loop for async tests and fixtures."""

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        loop.close()


def _get_loop(request: pytest.FixtureRequest) -> asyncio.AbstractEventLoop:
    try:
        loop = request.getfixturevalue("event_loop")
    except pytest.FixtureLookupError:
        loop = asyncio.new_event_loop()
    if loop.is_closed():
        loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    return loop


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):  # type: ignore[override]
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        testargs = {
            name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
        }
        loop = testargs.get("event_loop") or _get_loop(pyfuncitem._request)
        asyncio.set_event_loop(loop)
        loop.run_until_complete(pyfuncitem.obj(**testargs))
        return True
    return None


@pytest.hookimpl(tryfirst=True)
def pytest_fixture_setup(fixturedef, request):  # type: ignore[override]
    func = fixturedef.func
    if inspect.iscoroutinefunction(func):
        loop = _get_loop(request)
        kwargs = {arg: request.getfixturevalue(arg) for arg in fixturedef.argnames}
        return loop.run_until_complete(func(**kwargs))

    if inspect.isasyncgenfunction(func):
        loop = _get_loop(request)
        kwargs = {arg: request.getfixturevalue(arg) for arg in fixturedef.argnames}
        agen = func(**kwargs)
        value = loop.run_until_complete(agen.__anext__())

        def finalize() -> None:
            try:
                loop.run_until_complete(agen.__anext__())
            except StopAsyncIteration:
                pass

        request.addfinalizer(finalize)
        return value

    return None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: mark test as requiring asyncio support")


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are a process-wide singleton; start every test from zero."""
    metrics.reset()
    yield
    metrics.reset()


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingVerdictSink:
    def __init__(self):
        self.results = []

    def deliver(self, result) -> None:
        self.results.append(result)

    @property
    def actions(self) -> list[str]:
        return [r.action.value for r in self.results]


class RecordingTelemetrySink:
    def __init__(self):
        self.events = []

    def emit(self, event: dict) -> None:
        self.events.append(event)


class FakeMutationSource:
    def __init__(self):
        self.callback = None
        self.arm_calls = 0
        self.disarm_calls = 0

    def arm(self, callback) -> None:
        self.callback = callback
        self.arm_calls += 1

    def disarm(self) -> None:
        self.callback = None
        self.disarm_calls += 1

    @property
    def armed(self) -> bool:
        return self.callback is not None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def verdict_sink():
    return RecordingVerdictSink()


@pytest.fixture
def telemetry_sink():
    return RecordingTelemetrySink()


@pytest.fixture
def mutation_source():
    return FakeMutationSource()


@pytest.fixture
def rules_document() -> dict:
    """A small rule document exercising every strategy type."""
    return {
        "version": "test",
        "trusted_login_patterns": ["login.microsoftonline.com", "*.okta.com"],
        "trusted_domain_patterns": ["*.microsoft.com"],
        "exclusion_patterns": ["^https://intranet\\.example\\.org$"],
        "domain_squatting": {
            "enabled": True,
            "deviation_threshold": 2,
            "protected_domains": ["microsoft.com", "okta.com"],
        },
        "indicators": [
            {
                "id": "login_form_clone",
                "severity": "critical",
                "action": "block",
                "code_logic": {
                    "type": "substring_with_exclusions",
                    "exclude_if_contains": ["legit-sso-marker"],
                    "match_all_groups": [["loginfmt", "i0116"], ["passwd"], ["microsoft", "office"]],
                },
            },
            {
                "id": "password_prompt",
                "severity": "medium",
                "action": "warn",
                "applies_to": "page_text",
                "code_logic": {
                    "type": "substring_all",
                    "substrings": ["verify your account", "password"],
                },
            },
            {
                "id": "telegram_exfil",
                "severity": "high",
                "action": "block",
                "code_logic": {
                    "type": "allowlist_gated",
                    "allowlist": ["telegram-widget"],
                    "pattern": "api\\.telegram\\.org/bot\\d+",
                },
            },
        ],
    }
