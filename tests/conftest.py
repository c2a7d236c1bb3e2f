"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from peertrace.interceptor import Instrumentation
from peertrace.tracer import Tracer
from tests.fakes import FakePeerConnection, RecordingChannel


@pytest.fixture
def advance():
    """Yield control so scheduled tasks get to run."""

    async def _advance(n: int = 5) -> None:
        for _ in range(n):
            await asyncio.sleep(0)

    return _advance


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def namespace() -> SimpleNamespace:
    return SimpleNamespace(RTCPeerConnection=FakePeerConnection)


@pytest.fixture
def instrumentation(channel: RecordingChannel, namespace: SimpleNamespace) -> Instrumentation:
    return Instrumentation(Tracer(channel), namespace=namespace, stats_interval=3600)
