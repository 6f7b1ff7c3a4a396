"""Command-line entry point for Gravity Claw."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from gravity_claw.agent import Agent
from gravity_claw.config import Config, get_config, set_config
from gravity_claw.cron import parse_schedule
from gravity_claw.llm import get_provider
from gravity_claw.logging import configure_logging

cli = typer.Typer(help="Gravity Claw - a memory-aware personal AI agent")
console = Console()


def _load_config(config_path: str, model: str, verbose: bool) -> Config:
    cfg = Config.from_yaml(config_path or None)
    if model:
        cfg.model.model = model
    if verbose:
        cfg.logging.level = "DEBUG"
    set_config(cfg)
    configure_logging()
    return cfg


async def _ask(prompt: str, user_id: str, image: str | None) -> None:
    agent = Agent(config=get_config())
    try:
        result = await agent.run(prompt, user_id, image=image)
        await agent.background.drain(timeout=30.0)
    finally:
        await get_provider().close()

    console.print(result.response)
    stats = Table(show_header=False, box=None)
    stats.add_row("iterations", str(result.iteration_count))
    stats.add_row("tool calls", str(result.tool_call_count))
    stats.add_row("tokens", f"{result.input_tokens} in / {result.output_tokens} out")
    stats.add_row("latency", f"{result.latency_ms} ms")
    console.print(stats, style="dim")


@cli.command()
def ask(
    prompt: str = typer.Argument(..., help="Message to send to the agent"),
    user_id: str = typer.Option("cli", "-u", "--user", help="User id for memory scoping"),
    image: str = typer.Option("", "-i", "--image", help="Image URL or data URL"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Run one prompt through the agent loop."""
    _load_config(config, model, verbose)
    asyncio.run(_ask(prompt, user_id, image or None))


@cli.command()
def schedule(text: str = typer.Argument(..., help='Phrase such as "every day at 6pm"')) -> None:
    """Translate a schedule phrase into a cron expression."""
    expression = parse_schedule(text)
    if expression is None:
        console.print(f"[red]Could not understand schedule:[/red] {text}")
        raise typer.Exit(code=1)
    console.print(expression)


@cli.command()
def version() -> None:
    """Show version information."""
    from gravity_claw import __version__

    console.print(f"Gravity Claw v{__version__}")


if __name__ == "__main__":
    cli()
