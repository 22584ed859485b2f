"""
Tests for configuration loading and validation.
"""

import logging

import pytest

from relay_core.config import DEFAULT_CONFIGURATION
from relay_core.config import FileConfigurationProvider
from relay_core.config import StaticConfigurationProvider
from relay_core.config import load_configuration
from relay_core.config import parse_configuration
from relay_core.config import resolve_entry_agent
from relay_core.config import validate_configuration
from relay_core.errors import ConfigurationError
from relay_core.models import AgentProfile
from relay_core.models import RelayConfiguration
from relay_core.testing import make_config
from relay_core.testing import make_profile

TEAM_YAML = """\
entry_agent: coordinator
agents:
  - name: coordinator
    system_prompt: You coordinate work.
    description: Coordinates work between specialized agents
    use_for: Task orchestration and delegation
    delegation_permissions: {type: specific, names: [tester]}
    tool_permissions: {type: all}
  - name: tester
    system_prompt: You write tests.
    description: Writes tests
    use_for: Writing unit tests
    tool_permissions: {type: specific, names: [reportOut]}
"""

CAMEL_CASE_JSON = """\
{
  "entryAgent": "lead",
  "agents": [
    {
      "name": "lead",
      "systemPrompt": "You lead.",
      "description": "Leads the team",
      "useFor": "Planning",
      "delegationPermissions": {"type": "specific", "agents": ["helper"]},
      "toolPermissions": {"type": "all"}
    },
    {
      "name": "helper",
      "systemPrompt": "You help.",
      "description": "Helps out",
      "useFor": "Small tasks",
      "delegationPermissions": {"type": "none"},
      "toolPermissions": {"type": "specific", "tools": ["reportOut"]}
    }
  ]
}
"""


def agent_data(name: str, **overrides) -> dict:
    data = {
        "name": name,
        "system_prompt": f"You are {name}.",
        "description": f"The {name} agent",
        "use_for": f"Work suited to {name}",
    }
    data.update(overrides)
    return data


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadConfiguration:
    def test_loads_yaml(self, tmp_path) -> None:
        path = tmp_path / "agents.yaml"
        path.write_text(TEAM_YAML)

        config = load_configuration(path)

        assert config.entry_agent == "coordinator"
        assert config.agent_names() == ["coordinator", "tester"]
        assert config.get_agent("coordinator").delegation_permissions.names == ("tester",)
        assert config.get_agent("tester").delegation_permissions.type == "none"

    def test_loads_camel_case_json(self, tmp_path) -> None:
        path = tmp_path / "agents.json"
        path.write_text(CAMEL_CASE_JSON)

        config = load_configuration(str(path))

        assert config.entry_agent == "lead"
        assert config.get_agent("lead").delegation_permissions.names == ("helper",)
        assert config.get_agent("helper").tool_permissions.names == ("reportOut",)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_configuration(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("agents: [unterminated\n")

        with pytest.raises(ConfigurationError, match="Could not parse"):
            load_configuration(path)

    def test_empty_file_has_no_agents(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")

        with pytest.raises(ConfigurationError) as exc_info:
            load_configuration(path)
        assert "At least one agent" in exc_info.value.details["errors"][0]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseConfiguration:
    def test_rejects_non_mapping(self) -> None:
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            parse_configuration(["not", "a", "mapping"])

    def test_structural_errors_carry_locations(self) -> None:
        data = {"agents": [{"name": "lead", "delegation_permissions": {"type": "some"}}]}

        with pytest.raises(ConfigurationError) as exc_info:
            parse_configuration(data)

        errors = exc_info.value.details["errors"]
        assert any(error.startswith("agents.0.delegation_permissions") for error in errors)
        assert exc_info.value.__cause__ is not None

    def test_entry_agent_defaults_to_first(self) -> None:
        config = parse_configuration({"agents": [agent_data("first"), agent_data("second")]})
        assert config.entry_agent == "first"

    def test_cycles_are_warnings_only(self, caplog) -> None:
        data = {
            "agents": [
                agent_data("lead", delegation_permissions={"type": "all"}),
                agent_data("helper", delegation_permissions={"type": "all"}),
            ]
        }

        with caplog.at_level(logging.WARNING, logger="relay_core.config"):
            config = parse_configuration(data)

        assert config.agent_names() == ["lead", "helper"]
        assert "Potential circular delegation" in caplog.text


# ---------------------------------------------------------------------------
# Semantic validation
# ---------------------------------------------------------------------------


class TestValidateConfiguration:
    def test_valid_team(self) -> None:
        config = make_config(
            make_profile("coordinator", delegation=["tester"]),
            make_profile("tester"),
        )

        result = validate_configuration(config)

        assert result.valid
        assert result.errors == []
        assert result.warnings == []

    def test_no_agents(self) -> None:
        result = validate_configuration(RelayConfiguration())
        assert not result.valid
        assert result.errors == ["agents: At least one agent must be configured"]

    def test_bad_names(self) -> None:
        config = make_config(
            make_profile("has space"),
            make_profile("x" * 51),
        )

        result = validate_configuration(config)

        assert any("agents[0].name: Can only contain" in e for e in result.errors)
        assert any("agents[1].name: Too long (51 characters)" in e for e in result.errors)

    def test_blank_fields(self) -> None:
        config = make_config(AgentProfile(name="bare"))

        result = validate_configuration(config)

        assert "agents[0].system_prompt: Cannot be empty or whitespace only" in result.errors
        assert "agents[0].description: Cannot be empty or whitespace only" in result.errors
        assert "agents[0].use_for: Cannot be empty or whitespace only" in result.errors

    def test_prompt_too_long(self) -> None:
        config = make_config(make_profile("wordy", system_prompt="x" * 5001))

        result = validate_configuration(config)

        assert result.errors == [
            "agents[0].system_prompt: Too long (5001 characters), maximum is 5000"
        ]

    def test_duplicate_names(self) -> None:
        config = make_config(make_profile("twin"), make_profile("twin"))

        result = validate_configuration(config)

        assert 'agents[1].name: Duplicate agent name "twin"' in result.errors

    def test_specific_permissions_need_names(self) -> None:
        config = make_config(make_profile("lead", tools=[]))

        result = validate_configuration(config)

        assert result.errors == [
            "agents[0].tool_permissions.names: Cannot be empty for specific permissions"
        ]

    def test_duplicate_permission_names(self) -> None:
        config = make_config(
            make_profile("lead", delegation=["helper", "helper"]),
            make_profile("helper"),
        )

        result = validate_configuration(config)

        assert "agents[0].delegation_permissions.names: Contains duplicate names" in result.errors

    def test_dangling_delegation_reference(self) -> None:
        config = make_config(make_profile("lead", delegation=["ghost"]))

        result = validate_configuration(config)

        assert result.errors == [
            'agents[0].delegation_permissions.names[0]: References non-existent agent "ghost"'
        ]

    def test_missing_entry_agent(self) -> None:
        config = make_config(make_profile("lead"), entry_agent="ghost")

        result = validate_configuration(config)

        assert any(e.startswith('entry_agent: Entry agent "ghost"') for e in result.errors)

    def test_cycle_warning_reported_once(self) -> None:
        config = make_config(
            make_profile("lead", delegation=["helper"]),
            make_profile("helper", delegation=["lead"]),
        )

        result = validate_configuration(config)

        assert result.valid
        assert len(result.warnings) == 1
        assert "lead -> helper -> lead" in result.warnings[0]


# ---------------------------------------------------------------------------
# Entry agent and providers
# ---------------------------------------------------------------------------


def test_resolve_entry_agent(team_config) -> None:
    assert resolve_entry_agent(team_config).name == "coordinator"


def test_resolve_entry_agent_falls_back_to_first() -> None:
    config = make_config(make_profile("first"), make_profile("second"), entry_agent="ghost")
    assert resolve_entry_agent(config).name == "first"


def test_resolve_entry_agent_without_agents() -> None:
    with pytest.raises(ConfigurationError):
        resolve_entry_agent(RelayConfiguration())


def test_default_configuration_is_valid() -> None:
    result = validate_configuration(DEFAULT_CONFIGURATION)

    assert result.valid
    assert DEFAULT_CONFIGURATION.entry_agent == "coordinator"


@pytest.mark.asyncio
async def test_static_provider(team_config) -> None:
    assert await StaticConfigurationProvider(team_config).load_configuration() is team_config
    assert await StaticConfigurationProvider().load_configuration() is DEFAULT_CONFIGURATION


@pytest.mark.asyncio
async def test_file_provider_rereads(tmp_path) -> None:
    path = tmp_path / "agents.yaml"
    path.write_text(TEAM_YAML)
    provider = FileConfigurationProvider(path)

    first = await provider.load_configuration()
    path.write_text(TEAM_YAML.replace("entry_agent: coordinator", "entry_agent: tester"))
    second = await provider.load_configuration()

    assert first.entry_agent == "coordinator"
    assert second.entry_agent == "tester"
