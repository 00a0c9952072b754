"""Shared fixtures."""

import mongomock
import pytest

from helpers import InMemoryTarget


@pytest.fixture
def mock_client():
    """In-memory MongoDB client."""
    client = mongomock.MongoClient()
    yield client
    client.close()


@pytest.fixture
def target(mock_client):
    """Target store backed by ``mock_client``."""
    return InMemoryTarget(mock_client)
