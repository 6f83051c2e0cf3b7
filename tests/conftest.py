"""Shared fixtures for the frecency test suite."""

from dataclasses import dataclass

import pytest

from frecency import Frecency, InMemoryStore

NOW = 1_700_000_000.0


@dataclass(frozen=True)
class Emoji:
    """A search result identified by its emoji field."""

    emoji: str


def emojis(*values: str) -> list[Emoji]:
    return [Emoji(value) for value in values]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def make_frecency(store):
    """Factory for engines sharing the test store and a fixed clock."""
    engines = []

    def make(**kwargs) -> Frecency:
        kwargs.setdefault("identifier", "emoji")
        kwargs.setdefault("store", store)
        kwargs.setdefault("clock", lambda: NOW)
        engine = Frecency("emoji", **kwargs)
        engines.append(engine)
        return engine

    yield make

    for engine in engines:
        engine.close()


@pytest.fixture
def frecency(make_frecency):
    return make_frecency()
