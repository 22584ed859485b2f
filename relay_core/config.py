"""
Configuration loading and validation.

A configuration file is YAML (JSON is accepted too, being a YAML subset)::

    entry_agent: coordinator
    agents:
      - name: coordinator
        system_prompt: You coordinate work.
        description: Coordinates work between specialized agents
        use_for: Task orchestration and delegation
        delegation_permissions: {type: all}
        tool_permissions: {type: specific, names: [delegateWork, reportOut]}

The camelCase keys (``entryAgent``, ``systemPrompt``, ``useFor``,
``delegationPermissions`` / ``agents``, ``toolPermissions`` / ``tools``) are
accepted as well.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .errors import ConfigurationError
from .models import DELEGATE_WORK_TOOL
from .models import REPORT_OUT_TOOL
from .models import AgentProfile
from .models import Permissions
from .models import RelayConfiguration

logger = logging.getLogger(__name__)

AGENT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
MAX_NAME_LENGTH = 50
MAX_PROMPT_LENGTH = 5000
MAX_DESCRIPTION_LENGTH = 500

DEFAULT_COORDINATOR = AgentProfile(
    name="coordinator",
    system_prompt=(
        "You are a coordinator agent responsible for orchestrating tasks and "
        "delegating work to specialized agents. Analyze the user's request and "
        "determine if it can be handled directly or if it should be delegated "
        "to a more specialized agent."
    ),
    description="Coordinates work between specialized agents",
    use_for="Task orchestration and delegation",
    delegation_permissions=Permissions.allow_all(),
    tool_permissions=Permissions.only(DELEGATE_WORK_TOOL, REPORT_OUT_TOOL),
)

DEFAULT_CONFIGURATION = RelayConfiguration(
    entry_agent=DEFAULT_COORDINATOR.name,
    agents=[DEFAULT_COORDINATOR],
)


@dataclass
class ValidationResult:
    """Result of configuration validation.

    Attributes:
        valid: Whether the configuration is valid.
        errors: List of validation errors.
        warnings: List of validation warnings.
    """

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)


def validate_configuration(config: RelayConfiguration) -> ValidationResult:
    """Check the semantic rules pydantic cannot express on a single field."""
    result = ValidationResult()

    if not config.agents:
        result.add_error("agents: At least one agent must be configured")
        return result

    seen: set[str] = set()
    for index, agent in enumerate(config.agents):
        _validate_agent(agent, f"agents[{index}]", result)
        if agent.name in seen:
            result.add_error(
                f"agents[{index}].name: Duplicate agent name \"{agent.name}\""
            )
        seen.add(agent.name)

    for index, agent in enumerate(config.agents):
        permissions = agent.delegation_permissions
        if permissions.type != "specific":
            continue
        for target_index, target in enumerate(permissions.names):
            if target not in seen:
                result.add_error(
                    f"agents[{index}].delegation_permissions.names[{target_index}]: "
                    f"References non-existent agent \"{target}\""
                )

    if config.entry_agent and config.get_agent(config.entry_agent) is None:
        result.add_error(
            f"entry_agent: Entry agent \"{config.entry_agent}\" does not exist "
            f"in the agents configuration"
        )

    for cycle in _find_delegation_cycles(config):
        result.add_warning(
            f"Potential circular delegation: {' -> '.join(cycle)} "
            f"(blocked at runtime)"
        )

    return result


def _validate_agent(agent: AgentProfile, context: str, result: ValidationResult) -> None:
    name = agent.name.strip()
    if not name:
        result.add_error(f"{context}.name: Cannot be empty or whitespace only")
    elif len(name) > MAX_NAME_LENGTH:
        result.add_error(
            f"{context}.name: Too long ({len(name)} characters), maximum is {MAX_NAME_LENGTH}"
        )
    elif not AGENT_NAME_PATTERN.match(name):
        result.add_error(
            f"{context}.name: Can only contain letters, numbers, hyphens, and "
            f"underscores. Got \"{name}\""
        )

    for field_name, value, limit in (
        ("system_prompt", agent.system_prompt, MAX_PROMPT_LENGTH),
        ("description", agent.description, MAX_DESCRIPTION_LENGTH),
        ("use_for", agent.use_for, MAX_DESCRIPTION_LENGTH),
    ):
        stripped = value.strip()
        if not stripped:
            result.add_error(f"{context}.{field_name}: Cannot be empty or whitespace only")
        elif len(stripped) > limit:
            result.add_error(
                f"{context}.{field_name}: Too long ({len(stripped)} characters), "
                f"maximum is {limit}"
            )

    for field_name, permissions in (
        ("delegation_permissions", agent.delegation_permissions),
        ("tool_permissions", agent.tool_permissions),
    ):
        if permissions.type != "specific":
            continue
        if not permissions.names:
            result.add_error(
                f"{context}.{field_name}.names: Cannot be empty for specific permissions"
            )
        elif len(set(permissions.names)) != len(permissions.names):
            result.add_error(f"{context}.{field_name}.names: Contains duplicate names")


def _find_delegation_cycles(config: RelayConfiguration) -> list[list[str]]:
    """Cycles in the static "may delegate to" graph, each reported once."""
    names = config.agent_names()
    graph = {
        agent.name: [
            other
            for other in names
            if other != agent.name and agent.delegation_permissions.allows(other)
        ]
        for agent in config.agents
    }

    cycles: list[list[str]] = []
    reported: set[frozenset[str]] = set()

    def visit(node: str, path: list[str]) -> None:
        for neighbour in graph.get(node, []):
            if neighbour in path:
                cycle = path[path.index(neighbour):] + [neighbour]
                key = frozenset(cycle)
                if key not in reported:
                    reported.add(key)
                    cycles.append(cycle)
            else:
                visit(neighbour, path + [neighbour])

    for name in names:
        visit(name, [name])
    return cycles


def parse_configuration(data: Any) -> RelayConfiguration:
    """
    Build and validate a configuration from an in-memory mapping.

    Raises:
        ConfigurationError: Structural or semantic validation failed; the
            messages are in ``details["errors"]``.
    """
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration must be a mapping, got {type(data).__name__}",
            details={"errors": ["configuration must be a valid configuration object"]},
        )

    try:
        config = RelayConfiguration.model_validate(data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigurationError(
            f"Invalid configuration: {len(errors)} error(s)",
            details={"errors": errors},
        ) from e

    result = validate_configuration(config)
    for warning in result.warnings:
        logger.warning(warning)
    if not result.valid:
        raise ConfigurationError(
            f"Invalid configuration: {len(result.errors)} error(s)",
            details={"errors": result.errors, "warnings": result.warnings},
        )
    return config


def load_configuration(path: str | Path) -> RelayConfiguration:
    """
    Load and validate a YAML (or JSON) configuration file.

    Raises:
        ConfigurationError: The file is missing, unparsable or invalid.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            details={"errors": [f"{path}: file not found"]},
        ) from e

    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Could not parse configuration file {path}: {e}",
            details={"errors": [f"{path}: {e}"]},
        ) from e

    config = parse_configuration(data)
    logger.debug(f"Loaded {len(config.agents)} agents from {path}")
    return config


def resolve_entry_agent(config: RelayConfiguration) -> AgentProfile:
    """
    Profile of the entry agent, falling back to the first agent.

    Raises:
        ConfigurationError: The configuration has no agents.
    """
    if not config.agents:
        raise ConfigurationError("No agents configured")
    agent = config.get_agent(config.entry_agent)
    if agent is None:
        logger.warning(
            f"Entry agent '{config.entry_agent}' not found, "
            f"falling back to '{config.agents[0].name}'"
        )
        return config.agents[0]
    return agent


class StaticConfigurationProvider:
    """Serves one in-memory configuration."""

    def __init__(self, config: RelayConfiguration = DEFAULT_CONFIGURATION):
        self.config = config

    async def load_configuration(self) -> RelayConfiguration:
        return self.config


class FileConfigurationProvider:
    """Re-reads a configuration file on every call, so edits apply to new agents."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def load_configuration(self) -> RelayConfiguration:
        return load_configuration(self.path)
