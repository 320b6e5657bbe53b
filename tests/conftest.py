"""Shared fixtures for ai-dispatch tests."""

import pytest

from ai_dispatch.core.dispatch import AIServiceDispatcher, reset_dispatcher
from ai_dispatch.core.llm_config import DispatchConfig, RoleModelConfig, reset_dispatch_config
from ai_dispatch.core.providers.base import AIProvider, ProviderResponse, TokenUsage
from ai_dispatch.core.providers.registry import ProviderRegistry
from ai_dispatch.core.tags import TagInfo
from ai_dispatch.core.telemetry import CostTable

_ISOLATED_ENV_VARS = (
    "AI_DISPATCH_DEBUG",
    "AI_DISPATCH_LOG_LEVEL",
    "AI_DISPATCH_RESPONSE_LANGUAGE",
    "AI_DISPATCH_USER_ID",
    "AI_DISPATCH_MAIN_PROVIDER",
    "AI_DISPATCH_MAIN_MODEL",
    "AI_DISPATCH_RESEARCH_PROVIDER",
    "AI_DISPATCH_RESEARCH_MODEL",
    "AI_DISPATCH_FALLBACK_PROVIDER",
    "AI_DISPATCH_FALLBACK_MODEL",
    "AI_DISPATCH_OLLAMA_BASE_URL",
    "AI_DISPATCH_AZURE_BASE_URL",
    "AI_DISPATCH_BEDROCK_BASE_URL",
    "OPENAI_API_KEY",
    "PERPLEXITY_API_KEY",
    "OPENROUTER_API_KEY",
    "FAKE_API_KEY",
    "VERTEX_PROJECT_ID",
    "VERTEX_LOCATION",
    "GOOGLE_APPLICATION_CREDENTIALS",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep host credentials, config overrides and module globals out of tests."""
    for name in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    reset_dispatch_config()
    reset_dispatcher()
    yield
    reset_dispatch_config()
    reset_dispatcher()


class FakeProvider(AIProvider):
    """Scripted provider that records every invocation.

    ``errors`` are raised in order, one per call, before the provider starts
    succeeding; ``always_raise`` is raised on every call.
    """

    def __init__(
        self,
        name,
        *,
        text="ok",
        obj=None,
        usage=TokenUsage(input_tokens=100, output_tokens=50),
        errors=None,
        always_raise=None,
        api_key_env=None,
        api_key_required=True,
    ):
        self.name = name
        self.text = text
        self.obj = obj
        self.usage = usage
        self.errors = list(errors or [])
        self.always_raise = always_raise
        self._api_key_env = api_key_env
        self._api_key_required = api_key_required
        self.calls = []
        self.successes = 0

    def get_required_api_key_name(self):
        return self._api_key_env

    def is_required_api_key(self):
        return self._api_key_required

    def _respond(self, service, params):
        self.calls.append((service, params))
        if self.always_raise is not None:
            raise self.always_raise
        if self.errors:
            raise self.errors.pop(0)
        self.successes += 1
        return ProviderResponse(text=self.text, object=self.obj, usage=self.usage)

    async def generate_text(self, params):
        return self._respond("generate_text", params)

    async def stream_text(self, params):
        response = self._respond("stream_text", params)

        async def _chunks():
            for chunk in self.text.split(" "):
                yield chunk

        response.stream = _chunks()
        return response

    async def generate_object(self, params):
        return self._respond("generate_object", params)

    async def stream_object(self, params):
        response = self._respond("stream_object", params)

        async def _partials():
            yield self.obj

        response.stream = _partials()
        return response


class RecordingSleep:
    """Sleep replacement that records requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def make_provider():
    """Factory for scripted providers: ``make_provider("name", errors=[...])``."""
    return FakeProvider


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def providers():
    """One fake provider per role, keyed by role name."""
    return {
        "main": FakeProvider("fake-main", text="from main"),
        "research": FakeProvider("fake-research", text="from research"),
        "fallback": FakeProvider("fake-fallback", text="from fallback"),
    }


@pytest.fixture
def registry(providers):
    return ProviderRegistry(builtin={p.name: p for p in providers.values()})


@pytest.fixture
def dispatch_config():
    return DispatchConfig(
        roles={
            "main": RoleModelConfig(
                provider="fake-main", model_id="main-model", max_tokens=1000, temperature=0.2
            ),
            "research": RoleModelConfig(
                provider="fake-research", model_id="research-model", max_tokens=2000, temperature=0.1
            ),
            "fallback": RoleModelConfig(
                provider="fake-fallback", model_id="fallback-model", max_tokens=3000, temperature=0.3
            ),
        },
        user_id="tester",
    )


@pytest.fixture
def cost_table():
    return CostTable(
        {
            "fake-main": [
                {"id": "main-model", "cost_per_1m_tokens": {"input": 3, "output": 15}},
            ],
            "fake-research": [
                {"id": "research-model", "cost_per_1m_tokens": {"input": 1, "output": 1}},
            ],
        }
    )


@pytest.fixture
def dispatcher(registry, dispatch_config, recording_sleep, cost_table):
    return AIServiceDispatcher(
        registry=registry,
        config=dispatch_config,
        sleep_func=recording_sleep,
        cost_table=cost_table,
        tag_provider=lambda root: TagInfo(),
    )
