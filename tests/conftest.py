"""Shared fixtures for queue worker tests."""

import asyncio
from typing import Any, Callable

import pytest

from amqp_worker.core.config import Config
from amqp_worker.messaging.memory import InMemoryBrokerClient
from amqp_worker.messaging.worker import QueueWorker


@pytest.fixture
def config() -> Config:
    """Default configuration, independent of the test environment."""
    return Config()


@pytest.fixture
def client() -> InMemoryBrokerClient:
    """In-memory broker client that journals every call."""
    return InMemoryBrokerClient()


@pytest.fixture
def make_worker(client: InMemoryBrokerClient, config: Config) -> Callable[..., QueueWorker]:
    """Factory for workers wired to the in-memory client."""

    def factory(**kwargs: Any) -> QueueWorker:
        kwargs.setdefault("client", client)
        kwargs.setdefault("config", config)
        return QueueWorker(**kwargs)

    return factory


@pytest.fixture
def eventually() -> Callable[..., Any]:
    """Poll a predicate until it holds or the timeout expires."""

    async def wait(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return wait
