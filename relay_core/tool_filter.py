"""Tool availability driven by each agent's ``tool_permissions``."""

import logging
from typing import TYPE_CHECKING

from .errors import ToolAccessError
from .models import Permissions
from .models import ToolDescriptor
from .tools import BUILTIN_TOOLS

if TYPE_CHECKING:
    from .interfaces import ConfigurationProvider

logger = logging.getLogger(__name__)


class PermissionToolFilter:
    """
    Filters a tool catalogue by agent permissions.

    The catalogue always holds the built-in ``delegateWork`` and ``reportOut``
    descriptors; other tools are added with ``add_tool``.
    """

    def __init__(
        self,
        config_provider: "ConfigurationProvider",
        tools: list[ToolDescriptor] | None = None,
    ):
        self.config_provider = config_provider
        self._tools: dict[str, ToolDescriptor] = {}
        for tool in (*(tools or []), *BUILTIN_TOOLS):
            self._tools[tool.name] = tool

    def add_tool(self, tool: ToolDescriptor) -> None:
        self._tools[tool.name] = tool

    def remove_tool(self, name: str) -> None:
        self._tools.pop(name, None)

    def all_tool_names(self) -> list[str]:
        return list(self._tools)

    @staticmethod
    def filter_tools(
        tools: list[ToolDescriptor], permissions: Permissions
    ) -> list[ToolDescriptor]:
        return [tool for tool in tools if permissions.allows(tool.name)]

    async def get_available_tools(self, agent_name: str) -> list[ToolDescriptor]:
        """
        Raises:
            ToolAccessError: The agent is unknown or the configuration could
                not be loaded.
        """
        try:
            config = await self.config_provider.load_configuration()
        except Exception as e:
            raise ToolAccessError(
                f"Failed to get available tools for agent '{agent_name}': {e}",
                agent_name=agent_name,
            ) from e

        profile = config.get_agent(agent_name)
        if profile is None:
            raise ToolAccessError(
                f"Agent '{agent_name}' not found in configuration",
                agent_name=agent_name,
            )

        available = self.filter_tools(list(self._tools.values()), profile.tool_permissions)
        logger.debug(
            f"Agent '{agent_name}' has {len(available)} tools: "
            f"{[tool.name for tool in available]}"
        )
        return available

    async def has_tool_access(self, agent_name: str, tool_name: str) -> bool:
        try:
            tools = await self.get_available_tools(agent_name)
        except ToolAccessError:
            return False
        return any(tool.name == tool_name for tool in tools)
