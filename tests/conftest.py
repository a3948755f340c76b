"""
Global pytest configuration and fixtures.
"""

import json
import os

import pytest
from fakes import FakeClock, FakeOp

from opbroker.config import BrokerConfigModel
from opbroker.keepalive import KeepAliveRegistry


@pytest.fixture(autouse=True)
def clean_op_environment():
    """Run every test without 1Password variables from the outer environment.

    Sign-in writes the session token into ``os.environ``; the environment is
    restored after each test.
    """
    saved = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("OP_") or key.startswith("OPBROKER_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(saved)


@pytest.fixture
def config() -> BrokerConfigModel:
    return BrokerConfigModel(account="acme")


@pytest.fixture
def fake_op() -> FakeOp:
    op = FakeOp()
    op.respond("account", "get", stdout=json.dumps({"name": "acme", "domain": "acme"}))
    return op


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def registry():
    registry = KeepAliveRegistry()
    yield registry
    await registry.stop_all()
