"""Init and rekey commands."""

import asyncio
import sys
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from vaultkeeper.cluster.models import RootCredential
from vaultkeeper.cluster.rekey import RekeySession
from vaultkeeper.config.loader import DEFAULT_CONFIG_PATH, apply_overrides, load_config, save_config
from vaultkeeper.config.schema import VaultkeeperConfig
from vaultkeeper.errors import ConfigurationError, VaultkeeperError
from vaultkeeper.orchestrator import QuorumOrchestrator, RunMode, RunOutcome, RunReport

console = Console()

# Exit code when shares were issued but some recipients were not reached
PARTIAL_DELIVERY_EXIT = 2


def parse_smtp_host(value: str) -> tuple[str, int | None]:
    """Split ``host:port`` (port optional).

    Raises:
        ConfigurationError: If the port is not a number
    """
    host, sep, port = value.strip().rpartition(":")
    if not sep:
        return value.strip(), None
    if not port.isdigit():
        raise ConfigurationError(f"Invalid SMTP host {value!r}, expected <host>:<port>")
    return host, int(port)


def build_config(
    config_path: str | None = None,
    *,
    trustees: str | None = None,
    threshold: int | None = None,
    vault_url: str | None = None,
    smtp_from: str | None = None,
    smtp_host: str | None = None,
    cluster_name: str | None = None,
    key_provider: str | None = None,
    skip_relay_check: bool = False,
) -> VaultkeeperConfig:
    """Load the config file and apply command-line overrides."""
    config = load_config(Path(config_path) if config_path else None)

    smtp: dict[str, Any] = {"from_address": smtp_from}
    if smtp_host:
        host, port = parse_smtp_host(smtp_host)
        smtp.update(host=host, port=port)
    if skip_relay_check:
        smtp["verify_relay"] = False

    return apply_overrides(
        config,
        {
            "vault": {"address": vault_url},
            "smtp": smtp,
            "keys": {"provider": key_provider},
            "cluster": {"trustees": trustees, "threshold": threshold, "name": cluster_name},
        },
    )


def _prompt_unseal_key(session: RekeySession) -> str:
    console.print(
        f"Rekey in progress (nonce [bold]{session.nonce}[/bold], "
        f"{session.progress}/{session.required} keys submitted)"
    )
    return typer.prompt("Please enter your unseal key", hide_input=True)


def _read_unseal_key(session: RekeySession) -> str:
    return sys.stdin.readline().strip()


def _show_credential(credential: RootCredential) -> None:
    console.print(
        Panel.fit(
            f"root token: [bold]{credential.token.get_secret_value()}[/bold]\n"
            "Store it now; it is not shown again.",
            title="Cluster initialized",
            border_style="green",
        )
    )


def _show_report(report: RunReport) -> None:
    if report.outcome == RunOutcome.NOTHING_TO_DO:
        console.print(f"[yellow]{report.message}[/yellow]")
        return

    console.print(f"[green]✓[/green] {report.message}")

    if report.outcome == RunOutcome.REKEY_IN_PROGRESS:
        console.print(
            f"Next trustee: re-run [bold]vaultkeeper rekey --nonce {report.nonce}[/bold] "
            "with their unseal key."
        )
        return

    distribution = report.distribution
    if distribution is None:
        return

    if distribution.failures:
        table = Table(title="Undelivered shares", show_header=True, header_style="bold red")
        table.add_column("Share", width=6)
        table.add_column("Trustee")
        table.add_column("Recipient")
        table.add_column("Reason", style="dim")
        for failure in distribution.failures:
            table.add_row(str(failure.index), failure.identifier, failure.recipient, failure.reason)
        console.print(table)
        console.print("Resend these manually; the encrypted shares are:")
        for failure in distribution.failures:
            console.print(f"  share {failure.index} ({failure.recipient}): {failure.share}")

    style = "green" if distribution.ok else "yellow"
    console.print(
        f"[{style}]{distribution.summary()}[/{style}] "
        f"({distribution.notified} recipients notified)"
    )


async def _run(config: VaultkeeperConfig, mode: RunMode, nonce: str | None, unseal_key_stdin: bool) -> RunReport:
    provider = None
    if mode == RunMode.REKEY:
        provider = _read_unseal_key if unseal_key_stdin else _prompt_unseal_key

    orchestrator = QuorumOrchestrator.from_config(config)
    async with orchestrator:
        return await orchestrator.run(
            mode, unseal_key=provider, nonce=nonce, on_credential=_show_credential
        )


def run_command(
    mode: str,
    config_path: str | None = None,
    trustees: str | None = None,
    threshold: int | None = None,
    nonce: str | None = None,
    unseal_key_stdin: bool = False,
    vault_url: str | None = None,
    smtp_from: str | None = None,
    smtp_host: str | None = None,
    cluster_name: str | None = None,
    key_provider: str | None = None,
    skip_relay_check: bool = False,
) -> None:
    """Run an init or rekey step and report the outcome.

    Args:
        mode: "init" or "rekey"
        config_path: Optional path to config file
        nonce: Rekey session to resume
        unseal_key_stdin: Read the unseal key from stdin
    """
    run_mode = RunMode(mode)
    try:
        config = build_config(
            config_path,
            trustees=trustees,
            threshold=threshold,
            vault_url=vault_url,
            smtp_from=smtp_from,
            smtp_host=smtp_host,
            cluster_name=cluster_name,
            key_provider=key_provider,
            skip_relay_check=skip_relay_check,
        )
        console.print(
            f"[cyan]{run_mode.value}[/cyan] on {config.vault.address} "
            f"({len(config.cluster.trustees)} trustees, threshold {config.cluster.threshold})"
        )
        report = asyncio.run(_run(config, run_mode, nonce, unseal_key_stdin))
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        raise typer.Exit(130) from None
    except VaultkeeperError as e:
        console.print(f"[red]✗ {type(e).__name__}: {escape(str(e))}[/red]")
        raise typer.Exit(e.exit_code) from e

    _show_report(report)
    if not report.ok:
        raise typer.Exit(PARTIAL_DELIVERY_EXIT)


def configure_command(
    config_path: str | None = None,
    trustees: str | None = None,
    threshold: int | None = None,
    vault_url: str | None = None,
    smtp_from: str | None = None,
    smtp_host: str | None = None,
    force: bool = False,
) -> None:
    """Write the merged configuration to disk.

    Args:
        config_path: Destination (default: ~/.vaultkeeper/vaultkeeper.yaml)
        force: Overwrite an existing file
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}[/yellow]")
        console.print("Use [bold]--force[/bold] to overwrite.")
        raise typer.Exit(0)

    try:
        config = build_config(
            str(path),
            trustees=trustees,
            threshold=threshold,
            vault_url=vault_url,
            smtp_from=smtp_from,
            smtp_host=smtp_host,
        )
    except VaultkeeperError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(e.exit_code) from e

    save_config(config, path)
    console.print(f"[green]✓ Configuration saved to {path}[/green]")
