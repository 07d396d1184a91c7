"""
Shared fixtures. The database and latency settings are pinned through the
environment before any project module is imported.
"""
import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="iso8583-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'test.db')}"
os.environ["SIMULATED_LATENCY_MS"] = "0"
os.environ["NETWORK_ENABLED"] = "false"

import random
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from app_models import Transaction
from emv import DEFAULT_EMV_TAGS


@pytest.fixture
def transaction():
    return Transaction(
        timestamp=datetime(2024, 3, 7, 14, 5, 9),
        entry_mode="051",
        emv_tags=DEFAULT_EMV_TAGS,
    )


@pytest.fixture
def rng():
    return random.Random(8583)


@pytest.fixture
def app_module():
    import main
    from db import reset_db
    from simulator import Iso8583Simulator
    from terminal import TerminalRegistry

    reset_db()
    main.simulator = Iso8583Simulator(latency=0, approval_rate=1.0, rng=random.Random(1))
    main.terminals = TerminalRegistry()
    return main


@pytest.fixture
def client(app_module):
    with TestClient(app_module.app) as c:
        yield c
