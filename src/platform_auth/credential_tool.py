# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/credential_tool.py

import asyncio
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .credential_store import Credential, CredentialStore
from .provider_registry import PROVIDER_MAP
from .token_refresh_service import RefreshCycleSummary, TokenRefreshOrchestrator

console = Console()


def _credential_status(store: CredentialStore, credential: Credential) -> Text:
    if credential.needs_reconnection:
        return Text("needs reconnection", style="red")
    if store.is_expired(credential):
        return Text("expired", style="red")
    if store.needs_refresh(credential):
        return Text("needs refresh", style="yellow")
    return Text("ok", style="green")


def build_credentials_table(
    store: CredentialStore, credentials: List[Credential], title: str
) -> Table:
    table = Table(title=title, box=None, padding=(0, 2), title_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Provider", style="yellow", no_wrap=True)
    table.add_column("Account", style="cyan")
    table.add_column("Expires", style="dim")
    table.add_column("Last Sync", style="dim")
    table.add_column("Status", no_wrap=True)

    for i, credential in enumerate(credentials, 1):
        config = PROVIDER_MAP.get(credential.provider)
        provider_name = config.display_name if config else credential.provider
        account = credential.account_name or credential.account_id
        expires = (
            credential.expires_at.strftime("%Y-%m-%d %H:%M UTC")
            if credential.expires_at
            else "never"
        )
        last_sync = (
            credential.last_sync_at.strftime("%Y-%m-%d %H:%M UTC")
            if credential.last_sync_at
            else "-"
        )
        table.add_row(
            str(i), provider_name, account, expires, last_sync, _credential_status(store, credential)
        )
    return table


async def display_team_credentials(
    store: CredentialStore, team_id: str, out: Optional[Console] = None
) -> List[Credential]:
    """Print a team's active credentials, flagging those needing reconnection."""
    out = out or console
    credentials = await store.list_active(team_id)
    if not credentials:
        out.print(f"[dim]No active credentials for team {team_id}.[/dim]\n")
        return credentials

    out.print(build_credentials_table(store, credentials, f"Credentials for team {team_id}"))
    for credential in credentials:
        if credential.needs_reconnection:
            out.print(
                f"  [red]✗[/red] {credential.provider} / {credential.account_id}: "
                f"[dim]{credential.error_message}[/dim]"
            )
    out.print()
    return credentials


def display_refresh_summary(
    summary: RefreshCycleSummary, out: Optional[Console] = None
) -> None:
    out = out or console
    style = "green" if summary.failed == 0 else "yellow"
    out.print(
        Panel.fit(
            f"[bold]Refreshed:[/bold] {summary.successful}   [bold]Failed:[/bold] {summary.failed}",
            title="Token refresh cycle",
            border_style=style,
        )
    )
    if summary.errors:
        table = Table(box=None, padding=(0, 2))
        table.add_column("Credential", style="yellow")
        table.add_column("Error", style="red")
        for entry in summary.errors:
            table.add_row(entry["credential_id"], entry["error"])
        out.print(table)


async def refresh_now(
    orchestrator: TokenRefreshOrchestrator,
    team_id: Optional[str] = None,
    out: Optional[Console] = None,
) -> RefreshCycleSummary:
    summary = await orchestrator.refresh_expired_tokens(team_id)
    display_refresh_summary(summary, out)
    return summary


def run_credential_tool(
    store: CredentialStore,
    orchestrator: TokenRefreshOrchestrator,
    list_team: Optional[str] = None,
    refresh: bool = False,
    refresh_team: Optional[str] = None,
) -> None:
    """Entry point for the --list-credentials / --refresh-now command line modes."""

    async def _run():
        if list_team:
            await display_team_credentials(store, list_team)
        if refresh:
            await refresh_now(orchestrator, refresh_team)

    asyncio.run(_run())
