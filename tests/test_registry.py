"""Tests for provider registration, factory resolution and initialization."""

import asyncio

import pytest

from ai_failover.config import ProviderConfig
from ai_failover.executor import ExecutorSettings
from ai_failover.providers.base import AIError, AIErrorType, ProviderState
from ai_failover.registry import ProviderRegistry


def _config(provider, priority=None, enabled=True):
    return ProviderConfig(provider=provider, name=provider.title(), priority=priority, enabled=enabled)


@pytest.fixture
def registry():
    return ProviderRegistry(executor_settings=ExecutorSettings(base_delay=0))


def test_chain_sorted_by_priority_without_disabled(registry, fake_factory_cls):
    registry.register_factory("fake", fake_factory_cls(kinds={"a", "b", "c", "d", "e"}))
    registry.register_provider(_config("c", priority=30))
    registry.register_provider(_config("a", priority=10))
    registry.register_provider(_config("d", priority=5, enabled=False))
    registry.register_provider(_config("b", priority=20))

    assert registry.fallback_chain == ("a", "b", "c")


def test_chain_ties_and_missing_priority_follow_registration_order(registry, fake_factory_cls):
    registry.register_factory("fake", fake_factory_cls(kinds={"x", "y", "z", "w"}))
    registry.register_provider(_config("x"))
    registry.register_provider(_config("y", priority=1))
    registry.register_provider(_config("z", priority=1))
    registry.register_provider(_config("w", priority=998))

    assert registry.fallback_chain == ("y", "z", "w", "x")


def test_direct_factory_match_preferred(registry, fake_factory_cls):
    generic = fake_factory_cls(kinds={"claude", "other"})
    direct = fake_factory_cls(kinds={"claude"})
    registry.register_factory("generic", generic)
    registry.register_factory("claude", direct)

    assert registry.register_provider(_config("claude")).factory is direct
    assert registry.register_provider(_config("other")).factory is generic


def test_direct_factory_must_accept_config(registry, fake_factory_cls):
    picky = fake_factory_cls(kinds=set())
    fallback = fake_factory_cls(kinds={"claude"})
    registry.register_factory("claude", picky)
    registry.register_factory("any", fallback)

    assert registry.register_provider(_config("claude")).factory is fallback


def test_register_factory_last_wins(registry, fake_factory_cls):
    first = fake_factory_cls(kinds={"fake"})
    second = fake_factory_cls(kinds={"fake"})
    registry.register_factory("fake", first)
    registry.register_factory("fake", second)

    assert registry.register_provider(_config("fake")).factory is second


def test_unknown_kind_raises_provider_not_found(registry):
    with pytest.raises(AIError) as exc:
        registry.register_provider(_config("nobody"))

    assert exc.value.type is AIErrorType.PROVIDER_NOT_FOUND
    assert registry.fallback_chain == ()


@pytest.mark.asyncio
async def test_initialize_returns_existing_and_promotes_first(registry, fake_factory_cls):
    factory = fake_factory_cls(kinds={"a", "b"})
    registry.register_factory("fake", factory)
    registry.register_provider(_config("a", priority=1))
    registry.register_provider(_config("b", priority=2))

    first = await registry.initialize_provider("b")
    again = await registry.initialize_provider("b")
    await registry.initialize_provider("a")

    assert first is again
    assert len(factory.created) == 2
    assert registry.active_provider == "b"
    assert first.executor.settings.base_delay == 0


@pytest.mark.asyncio
async def test_initialize_unknown_provider(registry):
    with pytest.raises(AIError) as exc:
        await registry.initialize_provider("ghost")

    assert exc.value.type is AIErrorType.PROVIDER_NOT_FOUND


@pytest.mark.asyncio
async def test_failed_initialization_leaves_no_instance(registry, fake_factory_cls):
    boom = AIError("missing key", AIErrorType.CONFIGURATION, "a")
    factory = fake_factory_cls(kinds={"a"}, behaviours={"a": {"init_error": boom}})
    registry.register_factory("fake", factory)
    registry.register_provider(_config("a"))

    with pytest.raises(AIError) as exc:
        await registry.initialize_provider("a")

    assert exc.value is boom
    assert registry.get_provider("a") is None
    assert registry.get_registration("a").last_error == "missing key"
    assert registry.active_provider is None

    factory.behaviours.clear()
    adapter = await registry.initialize_provider("a")
    assert adapter.get_status().state is ProviderState.AVAILABLE
    assert registry.get_registration("a").last_error is None


@pytest.mark.asyncio
async def test_concurrent_initialization_builds_one_adapter(registry, fake_factory_cls):
    factory = fake_factory_cls(kinds={"a"})
    registry.register_factory("fake", factory)
    registry.register_provider(_config("a"))

    first, second = await asyncio.gather(
        registry.initialize_provider("a"),
        registry.initialize_provider("a"),
    )

    assert first is second
    assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_update_provider_disposes_instance_and_rebuilds_chain(registry, fake_factory_cls):
    registry.register_factory("fake", fake_factory_cls(kinds={"a", "b"}))
    registry.register_provider(_config("a", priority=1))
    registry.register_provider(_config("b", priority=2))
    old = await registry.initialize_provider("a")

    registry.update_provider("a", priority=3)

    assert old.get_status().state is ProviderState.DISPOSED
    assert registry.get_provider("a") is None
    assert registry.fallback_chain == ("b", "a")

    registry.update_provider("a", enabled=False)
    assert registry.fallback_chain == ("b",)
    assert registry.active_provider is None

    with pytest.raises(AIError) as exc:
        registry.update_provider("a", colour="blue")
    assert exc.value.type is AIErrorType.CONFIGURATION


@pytest.mark.asyncio
async def test_update_during_initialization_installs_only_fresh_adapter(registry, fake_provider_cls):
    gate = asyncio.Event()
    created = []

    class _Gated(fake_provider_cls):
        async def _perform_initialization(self):
            if self is created[0]:
                await gate.wait()

    class _GatedFactory:
        def create(self, config):
            adapter = _Gated(config)
            created.append(adapter)
            return adapter

        def supports(self, config):
            return config.provider == "a"

    registry.register_factory("a", _GatedFactory())
    registry.register_provider(ProviderConfig(provider="a", name="A", model="old"))

    stale = asyncio.ensure_future(registry.initialize_provider("a"))
    while not created:
        await asyncio.sleep(0)
    registry.update_provider("a", model="new")
    fresh = await registry.initialize_provider("a")
    gate.set()

    with pytest.raises(AIError) as exc:
        await stale

    assert exc.value.type is AIErrorType.INITIALIZATION
    assert len(created) == 2
    assert fresh is created[1]
    assert registry.get_provider("a") is fresh
    assert created[0].get_status().state is ProviderState.DISPOSED
    assert created[0] in registry.dispose_all()


@pytest.mark.asyncio
async def test_update_before_initialization_starts_is_not_installed(registry, fake_factory_cls):
    factory = fake_factory_cls(kinds={"a"})
    registry.register_factory("fake", factory)
    registry.register_provider(_config("a"))

    stale = asyncio.ensure_future(registry.initialize_provider("a"))
    await asyncio.sleep(0)
    registry.update_provider("a", priority=5)

    with pytest.raises(AIError) as exc:
        await stale

    assert exc.value.type is AIErrorType.INITIALIZATION
    assert factory.created == []
    assert registry.get_provider("a") is None


@pytest.mark.asyncio
async def test_update_settings_reaches_live_adapters(registry, fake_factory_cls):
    registry.register_factory("fake", fake_factory_cls(kinds={"a"}))
    registry.register_provider(_config("a"))
    adapter = await registry.initialize_provider("a")

    registry.update_settings(ExecutorSettings(max_attempts=7, cache_enabled=False))

    assert adapter.executor.settings.max_attempts == 7
    assert adapter.executor.settings.cache_enabled is False


@pytest.mark.asyncio
async def test_reregistering_disposes_previous_instance(registry, fake_factory_cls):
    registry.register_factory("fake", fake_factory_cls(kinds={"a", "b"}))
    registry.register_provider(_config("a", priority=1))
    registry.register_provider(_config("b", priority=1))
    old = await registry.initialize_provider("a")

    registry.register_provider(_config("a", priority=1))

    assert old.get_status().state is ProviderState.DISPOSED
    assert registry.fallback_chain == ("a", "b")


@pytest.mark.asyncio
async def test_unregister_and_dispose_all(registry, fake_factory_cls):
    registry.register_factory("fake", fake_factory_cls(kinds={"a", "b"}))
    registry.register_provider(_config("a", priority=1))
    registry.register_provider(_config("b", priority=2))
    a = await registry.initialize_provider("a")
    b = await registry.initialize_provider("b")

    assert registry.unregister_provider("a") is a
    assert registry.active_provider is None
    assert registry.fallback_chain == ("b",)

    disposed = registry.dispose_all()

    assert disposed == [a, b]
    assert registry.registrations() == {}
    assert registry.fallback_chain == ()
    with pytest.raises(AIError):
        registry.unregister_provider("b")


@pytest.mark.asyncio
async def test_reset_all_clears_adapter_state(registry, fake_factory_cls):
    registry.register_factory("fake", fake_factory_cls(kinds={"a"}))
    registry.register_provider(_config("a"))
    adapter = await registry.initialize_provider("a")
    adapter.record_success()

    registry.reset_all()

    assert adapter.get_status().request_count == 0
    assert adapter.available is True
