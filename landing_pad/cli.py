"""Command line interface for running a single agent.

Usage::

    agent <agent_name> start|stop|status|interactive

Exit codes: 0 success, 1 startup failure, 2 invalid agent name.
"""

import asyncio
import json
import os
import signal
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from .app import Application
from .config import KNOWN_AGENTS, PID_DIR, PROJECT_ROOT
from .errors import AgentError, ConfigurationError
from .logging_config import get_logger, setup_logging
from .models import Message

logger = get_logger(__name__)

ACTIONS = ("start", "stop", "status", "interactive")

# How long interactive mode waits for a command's outcome events
OUTCOME_WAIT_SECONDS = 30.0


def pid_file(agent_name: str) -> Path:
    return PID_DIR / f"{agent_name}.pid"


def read_pid(agent_name: str) -> int | None:
    path = pid_file(agent_name)
    try:
        return int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


async def _boot(agent_name: str) -> Application:
    app = Application(agents=[agent_name])
    try:
        await app.start()
    except (AgentError, ConfigurationError) as e:
        await app.stop()
        raise click.ClickException(f"Failed to start {agent_name}: {e}") from e
    return app


async def _run(agent_name: str) -> None:
    app = await _boot(agent_name)
    path = pid_file(agent_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(os.getpid()), encoding="utf-8")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    click.echo(f"Agent {agent_name} running (pid {os.getpid()})")
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down agent %s", agent_name)
        await app.stop()
        path.unlink(missing_ok=True)
    click.echo(f"Agent {agent_name} stopped")


async def _status(agent_name: str) -> dict:
    pid = read_pid(agent_name)
    app = await _boot(agent_name)
    try:
        snapshot = app.agent(agent_name).snapshot().to_dict()
    finally:
        await app.stop()
    return {
        "agent": agent_name,
        "pid": pid,
        "running": pid is not None and is_alive(pid),
        "snapshot": snapshot,
    }


def _related(events: list[Message], root_id: str) -> list[Message]:
    """Events correlated with a cli_request, following the commands it submitted."""
    ids = {root_id}
    related: list[Message] = []
    changed = True
    while changed:
        changed = False
        for event in events:
            if event in related or event.metadata.correlation_id not in ids:
                continue
            related.append(event)
            changed = True
            submitted = event.payload.get("message_id")
            if event.type == "cli_request.success" and submitted:
                ids.add(submitted)
    return related


async def _interactive(agent_name: str) -> None:
    app = await _boot(agent_name)
    events: list[Message] = []

    async def collect(event: Message) -> None:
        events.append(event)

    subscription = await app.message_bus.subscribe_event("#", collect, owner="cli")
    click.echo(f"Connected to {agent_name}. Type 'help' for commands, an empty line to exit.")
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            text = line.strip()
            if not text:
                break
            events.clear()
            message_id = await app.submit_command(agent_name, "cli_request", {"text": text}, {"source": "cli"})
            try:
                await app.message_bus.drain(timeout=OUTCOME_WAIT_SECONDS)
            except TimeoutError:
                click.echo("Still running, outcome not yet available")
            for event in _related(events, message_id):
                click.echo(json.dumps({"event": event.routing_key, "payload": event.payload}, default=str))
    finally:
        await subscription.unsubscribe()
        await app.stop()


def _stop(agent_name: str) -> None:
    pid = read_pid(agent_name)
    if pid is None or not is_alive(pid):
        pid_file(agent_name).unlink(missing_ok=True)
        click.echo(f"Agent {agent_name} is not running")
        return
    os.kill(pid, signal.SIGTERM)
    click.echo(f"Sent SIGTERM to {agent_name} (pid {pid})")


@click.command()
@click.argument("agent_name", type=click.Choice(KNOWN_AGENTS))
@click.argument("action", type=click.Choice(ACTIONS))
@click.option("--log-level", default=None, help="Log level (defaults to LOG_LEVEL or INFO)")
def cli(agent_name: str, action: str, log_level: str | None) -> None:
    """Run, stop or inspect a single content agent."""
    load_dotenv(PROJECT_ROOT / ".env")
    setup_logging(log_level, console=action == "start")

    if action == "start":
        asyncio.run(_run(agent_name))
    elif action == "stop":
        _stop(agent_name)
    elif action == "status":
        click.echo(json.dumps(asyncio.run(_status(agent_name)), indent=2, default=str))
    else:
        asyncio.run(_interactive(agent_name))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
