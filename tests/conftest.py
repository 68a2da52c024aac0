"""Shared fixtures: in-memory storage and scripted backends."""

from __future__ import annotations

import pytest

from khet.services.translation import TranslationResilienceClient
from khet.services.translation_cache import TranslationCache
from khet.storage.kv_store import InMemoryKeyValueStore
from tests.fakes import FakeTranslationBackend


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
  return InMemoryKeyValueStore()


@pytest.fixture
def translation_backend() -> FakeTranslationBackend:
  return FakeTranslationBackend()


@pytest.fixture
def translation_cache(kv_store: InMemoryKeyValueStore) -> TranslationCache:
  return TranslationCache(kv_store, max_items=300)


@pytest.fixture
def translator(translation_backend: FakeTranslationBackend, translation_cache: TranslationCache) -> TranslationResilienceClient:
  return TranslationResilienceClient(translation_backend, translation_cache)
