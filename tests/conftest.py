import pytest

from fakes import FakeBuilder, FakeClock, make_strategy


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def strategy():
    return make_strategy()


@pytest.fixture
def builder():
    return FakeBuilder()
