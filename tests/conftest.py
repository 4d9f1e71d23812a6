"""Shared fixtures for flowengine tests."""

import pytest

import flowengine.persistence as persistence
from flowengine.persistence import InMemoryExecutionRepository
from flowengine.registry import HandlerRegistry


def classify(context, config):
    text = context.get("text", "")
    return {"category": "politics" if "vote" in text else "other", "classified": True}


async def notify(context, config):
    return {"notified": True, "channel": config.get("channel", "email")}


def explode(context, config):
    raise RuntimeError("boom")


@pytest.fixture
def repository():
    return InMemoryExecutionRepository()


@pytest.fixture
def registry():
    registry = HandlerRegistry.with_builtins()
    registry.register("classify", classify)
    registry.register("notify", notify)
    registry.register("explode", explode)
    return registry


@pytest.fixture(autouse=True)
def _reset_repository_cache(monkeypatch):
    monkeypatch.setattr(persistence, "_repository_instance", None)
    monkeypatch.delenv("FLOWENGINE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("FLOWENGINE_TRANSPORT", raising=False)
    monkeypatch.delenv("FLOWENGINE_CONFIG", raising=False)
