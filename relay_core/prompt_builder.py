"""System prompt extension with the agents an agent may delegate to."""

from .models import DELEGATE_WORK_TOOL
from .models import DelegationTarget
from .models import RelayConfiguration


class SystemPromptBuilder:
    """Appends an "Available Agents for Delegation" section to base prompts."""

    def build_system_prompt(
        self, base_prompt: str, agent_name: str, config: RelayConfiguration
    ) -> str:
        targets = self.get_delegation_targets(agent_name, config)
        if not targets:
            return base_prompt
        return f"{base_prompt}\n\n{self.format_delegation_section(targets)}"

    def get_delegation_targets(
        self, agent_name: str, config: RelayConfiguration
    ) -> list[DelegationTarget]:
        """
        Agents ``agent_name`` may delegate to, in configuration order for
        ``all`` and in listed order for ``specific``. Unknown names are skipped.
        """
        profile = config.get_agent(agent_name)
        if profile is None:
            return []

        permissions = profile.delegation_permissions
        if permissions.type == "all":
            return [
                DelegationTarget(name=agent.name, use_for=agent.use_for)
                for agent in config.agents
                if agent.name != agent_name
            ]
        if permissions.type == "specific":
            targets = []
            for name in permissions.names:
                agent = config.get_agent(name)
                if agent is not None:
                    targets.append(DelegationTarget(name=agent.name, use_for=agent.use_for))
            return targets
        return []

    def format_delegation_section(self, targets: list[DelegationTarget]) -> str:
        if not targets:
            return ""
        target_list = "\n".join(f"- **{t.name}**: {t.use_for}" for t in targets)
        agent_names = ", ".join(t.name for t in targets)
        return (
            "## Available Agents for Delegation\n\n"
            f"You can delegate work to the following agents using the {DELEGATE_WORK_TOOL} tool:\n\n"
            f"{target_list}\n\n"
            f"When using the {DELEGATE_WORK_TOOL} tool, use one of these agent names: {agent_names}"
        )

    def get_enumerated_agent_names(
        self, agent_name: str, config: RelayConfiguration
    ) -> list[str]:
        """Names for the ``agentName`` enum of the delegateWork tool schema."""
        return [t.name for t in self.get_delegation_targets(agent_name, config)]
