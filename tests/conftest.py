"""Shared fixtures for relay-core tests."""

import pytest

from relay_core.testing import ScriptedModel
from relay_core.testing import build_engine
from relay_core.testing import make_config
from relay_core.testing import make_profile


@pytest.fixture
def team_config():
    """coordinator -> (tester, writer); writer may delegate back to anyone."""
    return make_config(
        make_profile("coordinator", delegation="all", use_for="Task orchestration"),
        make_profile("tester", delegation="none", use_for="Writing unit tests"),
        make_profile("writer", delegation="all", use_for="Writing documentation"),
        entry_agent="coordinator",
    )


@pytest.fixture
def model():
    return ScriptedModel()


@pytest.fixture
def harness(team_config, model):
    return build_engine(team_config, model, tool_results={"search": "3 results"})
