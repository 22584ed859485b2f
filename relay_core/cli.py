"""
CLI for relay-core configuration checks.

Provides `relay-core validate` to check an agent configuration file and
`relay-core agents` to show who may delegate to whom.
"""

import logging
import sys

import click

from . import __version__
from .config import load_configuration
from .config import validate_configuration
from .errors import ConfigurationError
from .prompt_builder import SystemPromptBuilder


@click.group()
@click.version_option(version=__version__, prog_name="relay-core")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Relay Core - agent delegation configuration tools."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Only show summary, not individual messages",
)
def validate(config_path: str, quiet: bool) -> None:
    """Validate an agent configuration file.

    CONFIG_PATH is a YAML or JSON configuration file.

    Examples:

        relay-core validate agents.yaml
    """
    click.echo(f"Validating configuration: {config_path}")
    click.echo()

    try:
        config = load_configuration(config_path)
    except ConfigurationError as e:
        click.secho(f"✗ {e}", fg="red", bold=True)
        if not quiet:
            for message in e.details.get("errors", []):
                click.echo(f"  {click.style('✗', fg='red')} {message}")
            for message in e.details.get("warnings", []):
                click.echo(f"  {click.style('!', fg='yellow')} {message}")
        sys.exit(1)

    result = validate_configuration(config)
    click.secho(
        f"✓ Configuration is valid ({len(config.agents)} agents, "
        f"entry agent '{config.entry_agent}')",
        fg="green",
        bold=True,
    )
    if not quiet:
        for message in result.warnings:
            click.echo(f"  {click.style('!', fg='yellow')} {message}")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
def agents(config_path: str) -> None:
    """List configured agents and their delegation targets."""
    try:
        config = load_configuration(config_path)
    except ConfigurationError as e:
        click.secho(f"✗ {e}", fg="red", bold=True)
        sys.exit(1)

    builder = SystemPromptBuilder()
    for agent in config.agents:
        marker = click.style(" (entry)", fg="green") if agent.name == config.entry_agent else ""
        click.echo(f"{click.style(agent.name, fg='cyan', bold=True)}{marker}")
        click.echo(f"  {agent.description}")
        targets = builder.get_enumerated_agent_names(agent.name, config)
        click.echo(f"  delegates to: {', '.join(targets) if targets else '-'}")
        tools = agent.tool_permissions
        tool_text = ", ".join(tools.names) if tools.type == "specific" else tools.type
        click.echo(f"  tools: {tool_text}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
