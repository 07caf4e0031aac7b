import pytest

from fakes import FakeClusterClient, FakeTarget


@pytest.fixture
def client():
    return FakeClusterClient()


@pytest.fixture
def target():
    return FakeTarget()
