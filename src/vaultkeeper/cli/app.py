"""Main CLI application using Typer."""

import logging

import typer
from rich.console import Console

from vaultkeeper import __version__

app = typer.Typer(
    name="vaultkeeper",
    help="Vaultkeeper - Initialize or rekey a Vault cluster and mail encrypted key shares to trustees",
    no_args_is_help=True,
)

console = Console()

CONFIG_HELP = "Path to config file (default: ~/.vaultkeeper/vaultkeeper.yaml)"
TRUSTEES_HELP = "Comma-separated list of trustee identifiers (Keybase users or key files)"


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING", "--log-level", "-l", help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version():
    """Show vaultkeeper version."""
    console.print(f"vaultkeeper version {__version__}")


@app.command()
def init(
    config_path: str = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    trustees: str = typer.Option(None, "--trustees", "-k", help=TRUSTEES_HELP),
    threshold: int = typer.Option(None, "--threshold", "-t", help="Secret threshold for unsealing the vault"),
    vault_url: str = typer.Option(None, "--vault-url", help="Vault cluster url in http(s)://<host>:<port> format"),
    smtp_from: str = typer.Option(None, "--smtp-from", help="From email address"),
    smtp_host: str = typer.Option(None, "--smtp-host", help="SMTP host to use in <host>:<port> format"),
    cluster_name: str = typer.Option(None, "--cluster-name", help="Cluster name shown in messages"),
    key_provider: str = typer.Option(None, "--key-provider", help="Key lookup: 'keybase' or 'file'"),
    skip_relay_check: bool = typer.Option(False, "--skip-relay-check", help="Don't probe the SMTP relay first"),
):
    """Initialize an uninitialized cluster and mail the encrypted shares."""
    from vaultkeeper.cli.run_cmd import run_command

    run_command(
        mode="init",
        config_path=config_path,
        trustees=trustees,
        threshold=threshold,
        vault_url=vault_url,
        smtp_from=smtp_from,
        smtp_host=smtp_host,
        cluster_name=cluster_name,
        key_provider=key_provider,
        skip_relay_check=skip_relay_check,
    )


@app.command()
def rekey(
    config_path: str = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    trustees: str = typer.Option(None, "--trustees", "-k", help=TRUSTEES_HELP),
    threshold: int = typer.Option(None, "--threshold", "-t", help="Secret threshold for the new shares"),
    nonce: str = typer.Option(None, "--nonce", "-n", help="Nonce of the rekey session to resume"),
    unseal_key_stdin: bool = typer.Option(
        False, "--unseal-key-stdin", help="Read the unseal key from stdin instead of prompting"
    ),
    vault_url: str = typer.Option(None, "--vault-url", help="Vault cluster url in http(s)://<host>:<port> format"),
    smtp_from: str = typer.Option(None, "--smtp-from", help="From email address"),
    smtp_host: str = typer.Option(None, "--smtp-host", help="SMTP host to use in <host>:<port> format"),
    cluster_name: str = typer.Option(None, "--cluster-name", help="Cluster name shown in messages"),
    key_provider: str = typer.Option(None, "--key-provider", help="Key lookup: 'keybase' or 'file'"),
    skip_relay_check: bool = typer.Option(False, "--skip-relay-check", help="Don't probe the SMTP relay first"),
):
    """Start or continue a rekey, submitting one unseal key per run."""
    from vaultkeeper.cli.run_cmd import run_command

    run_command(
        mode="rekey",
        config_path=config_path,
        trustees=trustees,
        threshold=threshold,
        nonce=nonce,
        unseal_key_stdin=unseal_key_stdin,
        vault_url=vault_url,
        smtp_from=smtp_from,
        smtp_host=smtp_host,
        cluster_name=cluster_name,
        key_provider=key_provider,
        skip_relay_check=skip_relay_check,
    )


@app.command()
def status(
    config_path: str = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    vault_url: str = typer.Option(None, "--vault-url", help="Vault cluster url"),
):
    """Show cluster initialization and rekey state."""
    from vaultkeeper.cli.status_cmd import status_command

    status_command(config_path=config_path, vault_url=vault_url)


@app.command("cancel-rekey")
def cancel_rekey(
    config_path: str = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    vault_url: str = typer.Option(None, "--vault-url", help="Vault cluster url"),
    nonce: str = typer.Option(None, "--nonce", "-n", help="Only cancel if this is the running session"),
):
    """Cancel the running rekey session."""
    from vaultkeeper.cli.status_cmd import cancel_command

    cancel_command(config_path=config_path, vault_url=vault_url, nonce=nonce)


@app.command()
def configure(
    config_path: str = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    trustees: str = typer.Option(None, "--trustees", "-k", help=TRUSTEES_HELP),
    threshold: int = typer.Option(None, "--threshold", "-t", help="Secret threshold"),
    vault_url: str = typer.Option(None, "--vault-url", help="Vault cluster url"),
    smtp_from: str = typer.Option(None, "--smtp-from", help="From email address"),
    smtp_host: str = typer.Option(None, "--smtp-host", help="SMTP host in <host>:<port> format"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing config"),
):
    """Write a config file so later runs need fewer options."""
    from vaultkeeper.cli.run_cmd import configure_command

    configure_command(
        config_path=config_path,
        trustees=trustees,
        threshold=threshold,
        vault_url=vault_url,
        smtp_from=smtp_from,
        smtp_host=smtp_host,
        force=force,
    )


if __name__ == "__main__":
    app()
