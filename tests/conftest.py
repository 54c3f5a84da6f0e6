from __future__ import annotations

import pytest

from fakes import FakeDialer, ScaledClock
from switchpool.config import SessionConfig, create_config


@pytest.fixture
def clock() -> ScaledClock:
    return ScaledClock()


@pytest.fixture
def dialer() -> FakeDialer:
    return FakeDialer()


@pytest.fixture
def config() -> SessionConfig:
    return create_config("gpmadmin", "s3cret", "10.3.1.10", "22", vendor="cisco")
