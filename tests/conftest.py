"""Shared fixtures for helixconnect tests."""

from __future__ import annotations

import pytest

from helixconnect.client.keywrap import KeyWrapClient
from helixconnect.client.retry import RetryPolicy
from helixconnect.client.transfers import TransferEngine
from helixconnect.core.codec import EnvelopeCodec
from tests.fakes import FakeKeyService, FakeQueue, FakeStorage


@pytest.fixture
def retry_policy() -> RetryPolicy:
    """A retry policy that never sleeps."""
    return RetryPolicy(max_retries=3, backoff_base=0.0, backoff_cap=0.0)


@pytest.fixture
def key_service() -> FakeKeyService:
    return FakeKeyService()


@pytest.fixture
def key_wrap(key_service: FakeKeyService, retry_policy: RetryPolicy) -> KeyWrapClient:
    return KeyWrapClient(key_service, retry_policy)


@pytest.fixture
def codec(key_wrap: KeyWrapClient) -> EnvelopeCodec:
    return EnvelopeCodec(key_wrap)


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def engine(storage: FakeStorage, codec: EnvelopeCodec, retry_policy: RetryPolicy) -> TransferEngine:
    """Engine with 1 KB chunks so small payloads span several chunks."""
    return TransferEngine(storage, codec, retry_policy, chunk_size=1024, max_workers=4)
