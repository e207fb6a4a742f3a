"""Status and cancel-rekey commands."""

import asyncio

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vaultkeeper.cluster.client import VaultSysClient
from vaultkeeper.cluster.models import InitStatus, RekeyStatus
from vaultkeeper.cluster.probe import ClusterStateProbe
from vaultkeeper.cli.run_cmd import build_config
from vaultkeeper.config.schema import VaultkeeperConfig
from vaultkeeper.errors import VaultkeeperError
from vaultkeeper.orchestrator import QuorumOrchestrator

console = Console()


async def _probe(config: VaultkeeperConfig) -> tuple[InitStatus, RekeyStatus | None]:
    async with VaultSysClient(
        vault_addr=config.vault.address,
        vault_token=config.vault.token,
        vault_namespace=config.vault.namespace,
        timeout=config.vault.timeout,
    ) as client:
        probe = ClusterStateProbe(client)
        init_status = await probe.status()
        if not init_status.initialized:
            return init_status, None
        return init_status, await probe.rekey_status()


def status_command(config_path: str | None = None, vault_url: str | None = None) -> None:
    """Print cluster initialization and rekey state.

    Args:
        config_path: Optional path to config file
        vault_url: Override the configured Vault address
    """
    try:
        config = build_config(config_path, vault_url=vault_url)
        init_status, rekey_status = asyncio.run(_probe(config))
    except VaultkeeperError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(e.exit_code) from e

    table = Table(title=f"Vault {config.vault.address}", show_header=True, header_style="bold cyan")
    table.add_column("Check", style="white", width=20)
    table.add_column("Value")

    table.add_row(
        "Initialized",
        "[green]yes[/green]" if init_status.initialized else "[yellow]no[/yellow]",
    )
    if rekey_status is not None:
        if rekey_status.started:
            table.add_row("Rekey", "[yellow]in progress[/yellow]")
            table.add_row("Nonce", rekey_status.nonce)
            table.add_row("Progress", f"{rekey_status.progress}/{rekey_status.required}")
            table.add_row("New layout", f"{rekey_status.threshold} of {rekey_status.shares}")
        else:
            table.add_row("Rekey", "not started")

    console.print(table)


async def _cancel(config: VaultkeeperConfig, nonce: str | None) -> str:
    async with QuorumOrchestrator.from_config(config, with_mailer=False) as orchestrator:
        return await orchestrator.cancel_rekey(nonce)


def cancel_command(
    config_path: str | None = None, vault_url: str | None = None, nonce: str | None = None
) -> None:
    """Cancel the running rekey session.

    Args:
        config_path: Optional path to config file
        vault_url: Override the configured Vault address
        nonce: Only cancel if this is the running session
    """
    try:
        config = build_config(config_path, vault_url=vault_url)
        cancelled = asyncio.run(_cancel(config, nonce))
    except VaultkeeperError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(e.exit_code) from e

    console.print(f"[green]✓[/green] Rekey session {cancelled} cancelled")
