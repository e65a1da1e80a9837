#!/usr/bin/env python3

from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from wasession.config import SessionConfig, load_config
from wasession.errors import (
    ConfigError,
    ConnectError,
    InvalidRecipient,
    NotPaired,
    PairingFailed,
    RequestFailed,
    SessionExpired,
    StorageUnavailable,
)
from wasession.lifecycle import LoginOutcome, SessionLifecycleManager
from wasession.render import QRRenderer
from wasession.shared.log import configure_root_logging, get_logger
from wasession.storage import CredentialStore
from wasession.ws_engine import WebSocketEngine

app = typer.Typer(help="Pair once, send a text message, log out.", add_completion=False)
console = Console()
logger = get_logger(__name__)

USAGE = "Usage: wasession --login | --send --phone=<number> --message=<msg> | --logout"


def build_manager(config: SessionConfig, store: CredentialStore) -> SessionLifecycleManager:
    def engine_factory() -> WebSocketEngine:
        return WebSocketEngine(
            store,
            config.gateway_url,
            connect_timeout=config.connect_timeout,
            request_timeout=config.request_timeout,
        )

    return SessionLifecycleManager(
        store,
        engine_factory,
        QRRenderer(),
        grace_period=config.grace_period,
        pairing_timeout=config.pairing_timeout,
    )


async def _login(manager: SessionLifecycleManager) -> int:
    try:
        outcome = await manager.login()
    except PairingFailed as e:
        if e.expired:
            console.print("[yellow]Login timed out; run --login again[/]")
        else:
            console.print(f"[red]Login failed[/]: {e}")
        return 0
    if outcome is LoginOutcome.ALREADY_AUTHENTICATED:
        console.print("Already logged in")
    else:
        console.print("[bold green]Login successful[/]")
    return 0


async def _send(manager: SessionLifecycleManager, phone: str, message: str) -> int:
    try:
        await manager.send_message(phone, message)
    except NotPaired:
        console.print("Not logged in")
        return 0
    except InvalidRecipient as e:
        console.print(f"[red]Invalid recipient[/]: {e}")
        return 0
    except RequestFailed as e:
        console.print(f"[red]Error sending message[/]: {e}")
        return 0
    console.print("[bold green]Message sent![/]")
    return 0


async def _logout(manager: SessionLifecycleManager) -> int:
    try:
        await manager.logout()
    except NotPaired:
        console.print("Not logged in")
        return 0
    except RequestFailed as e:
        console.print(f"[red]Error logging out[/]: {e}; treat this device as logged out and run --login again")
        return 0
    console.print("[bold green]Logged out successfully[/]")
    return 0


async def run_command(command: str, manager: SessionLifecycleManager,
                      phone: str = "", message: str = "") -> int:
    """Run one command and return the process exit code."""
    try:
        if command == "login":
            return await _login(manager)
        if command == "send":
            return await _send(manager, phone, message)
        return await _logout(manager)
    except StorageUnavailable as e:
        console.print(f"[red]Cannot open session store[/]: {e}")
        return 1
    except SessionExpired:
        console.print("[red]Session expired[/]: run --login again")
        return 1
    except ConnectError as e:
        console.print(f"[red]Cannot connect[/]: {e}")
        return 1


@app.command()
def run(
    login: bool = typer.Option(False, "--login", help="Pair this device, or confirm it is still paired"),
    send: bool = typer.Option(False, "--send", help="Send one text message"),
    logout: bool = typer.Option(False, "--logout", help="Log this device out"),
    phone: str = typer.Option("", "--phone", help="Recipient phone number (without @s.whatsapp.net)"),
    message: str = typer.Option("", "--message", help="Message to send"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="YAML config file (default ./wasession.yaml if present)"),
    session_dir: Optional[Path] = typer.Option(None, "--session-dir", help="Directory holding the session database"),
    gateway: Optional[str] = typer.Option(None, "--gateway", help="WebSocket URL of the messaging gateway"),
    grace_period: Optional[float] = typer.Option(None, "--grace-period", help="Seconds to wait after pairing succeeds"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    """Run exactly one of --login, --send or --logout."""
    selected = [name for name, flag in (("login", login), ("send", send), ("logout", logout)) if flag]
    if len(selected) != 1:
        console.print(USAGE)
        return
    command = selected[0]
    if command == "send" and (not phone or not message):
        console.print("Phone and message are required for send")
        return

    try:
        config = load_config(
            config_file,
            session_dir=session_dir,
            gateway_url=gateway,
            grace_period=grace_period,
            log_level=log_level,
        )
    except ConfigError as e:
        console.print(f"[red]Invalid configuration[/]: {e}")
        raise typer.Exit(code=1)
    configure_root_logging(config.log_level)

    store = CredentialStore(config.session_dir, config.db_name)
    try:
        exit_code = asyncio.run(run_command(command, build_manager(config, store), phone, message))
    finally:
        store.close()
    if exit_code:
        raise typer.Exit(code=exit_code)


def main() -> None:
    app()


if __name__ == "__main__":
    app()
