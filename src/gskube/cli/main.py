"""Main CLI entry point for gskube."""

from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.markup import escape

from gskube import __version__
from gskube.core.config import DEFAULT_ACCOUNT, DEFAULT_CONFIG_PATH
from gskube.core.exceptions import GsKubeError
from gskube.utils.logging import get_logger, log_error, setup_logging

if TYPE_CHECKING:
    from gskube.clients.provider_client import ProviderClient
    from gskube.core.config import AccountConfig, GsKubeConfig
    from gskube.utils.exec_credential import CredentialCache, CredentialCacheManager
    from gskube.utils.kubeconfig import ExecPluginOptions

# stdout is reserved for the exec-credential document
console = Console(stderr=True)

logger = get_logger(__name__)


def cli_path() -> str:
    """Absolute path of the running gskube executable."""
    argv0 = sys.argv[0]
    if os.sep in argv0:
        return str(Path(argv0).absolute())
    return shutil.which(argv0) or argv0


class GsKubeContext:
    """Shared context for CLI commands with lazy initialization."""

    def __init__(self, config_path: str, account_name: str, debug: bool = False):
        """Initialize context.

        Args:
            config_path: Path to configuration file
            account_name: Name of the account to use from the configuration
            debug: Force DEBUG logging regardless of configuration
        """
        self.config_path = str(Path(config_path).expanduser().absolute())
        self.account_name = account_name
        self.debug = debug
        self._config: GsKubeConfig | None = None
        self._provider_client: ProviderClient | None = None
        self._credential_cache: CredentialCache | None = None
        self._credential_cache_manager: CredentialCacheManager | None = None

    @property
    def config(self) -> GsKubeConfig:
        """Get or create config lazily."""
        if self._config is None:
            from gskube.core.config import GsKubeConfig

            self._config = GsKubeConfig.from_file(self.config_path)
            if not self.debug:
                setup_logging(
                    level=self._config.logging.level, format=self._config.logging.format
                )
        return self._config

    @property
    def account(self) -> AccountConfig:
        """Get the selected account."""
        return self.config.get_account(self.account_name)

    @property
    def provider_client(self) -> ProviderClient:
        """Get or create provider client lazily."""
        if self._provider_client is None:
            from gskube.clients.provider_client import ProviderClient

            self._provider_client = ProviderClient(
                account=self.account, timeout=self.config.http_timeout
            )
        return self._provider_client

    @property
    def credential_cache(self) -> CredentialCache:
        """Get or create the exec-credential cache lazily."""
        if self._credential_cache is None:
            from gskube.utils.exec_credential import CredentialCache, cache_dir_for

            self._credential_cache = CredentialCache(cache_dir_for(self.config_path))
        return self._credential_cache

    @property
    def credential_cache_manager(self) -> CredentialCacheManager:
        """Get or create credential cache manager lazily."""
        if self._credential_cache_manager is None:
            from gskube.utils.exec_credential import CredentialCacheManager

            self._credential_cache_manager = CredentialCacheManager(
                provider=self.provider_client,
                cache=self.credential_cache,
                account_name=self.account_name,
            )
        return self._credential_cache_manager

    @property
    def exec_plugin_options(self) -> ExecPluginOptions:
        """Exec-plugin reference reproducing this invocation's config and account."""
        from gskube.utils.kubeconfig import ExecPluginOptions

        return ExecPluginOptions(
            command=cli_path(), config_path=self.config_path, account=self.account_name
        )

    def close(self) -> None:
        """Release network resources."""
        if self._provider_client is not None:
            self._provider_client.close()
            self._provider_client = None


def _report(error: GsKubeError, operation: str, **kwargs: str) -> None:
    console.print(f"[red]Error: {escape(str(error))}[/red]")
    log_error(logger, error, operation=operation, **kwargs)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Path to configuration file",
)
@click.option(
    "--account",
    default=DEFAULT_ACCOUNT,
    show_default=True,
    help="Account from the configuration file to use",
)
@click.option("--debug", is_flag=True, help="Enable debug logging on stderr")
@click.pass_context
def cli(ctx: click.Context, config: str, account: str, debug: bool) -> None:
    """gskube - Kubernetes credentials for gridscale managed clusters."""
    setup_logging(level="DEBUG" if debug else "WARNING")

    ctx.obj = GsKubeContext(config_path=config, account_name=account, debug=debug)
    ctx.call_on_close(ctx.obj.close)


@cli.group()
def kubernetes() -> None:
    """Actions performed on the managed Kubernetes service."""


@kubernetes.group()
def cluster() -> None:
    """Actions performed on a Kubernetes cluster."""


@cluster.command(name="save-kubeconfig")
@click.option("--cluster", "cluster_id", required=True, help="The cluster's UUID")
@click.option("--kubeconfig", default=None, help="(optional) path to the kubeconfig file")
@click.option(
    "--credential-plugin",
    is_flag=True,
    help="Use the exec-credential plugin instead of embedding the client certificate",
)
@click.pass_obj
def save_kubeconfig(
    gs_ctx: GsKubeContext, cluster_id: str, kubeconfig: str | None, credential_plugin: bool
) -> None:
    """Save the configuration of a cluster into a kubeconfig file.

    Uses --kubeconfig, else $KUBECONFIG, else ~/.kube/config.
    """
    from gskube.utils.kubeconfig import (
        KubeconfigManager,
        ensure_kubeconfig_exists,
        merge_credential_bundle,
        resolve_kubeconfig_path,
    )

    try:
        path = resolve_kubeconfig_path(kubeconfig)
        ensure_kubeconfig_exists(path)
        manager = KubeconfigManager(path)
        state = manager.load()

        bundle = gs_ctx.provider_client.fetch_credential_bundle(cluster_id)
        exec_plugin = gs_ctx.exec_plugin_options if credential_plugin else None
        merged = merge_credential_bundle(state, bundle, cluster_id, exec_plugin)
        manager.save(merged)
    except GsKubeError as e:
        _report(e, "save_kubeconfig", cluster_id=cluster_id)
        sys.exit(1)

    console.print(
        f"[green]✓ Context {escape(merged.current_context)} saved to {escape(str(path))}[/green]"
    )


@cluster.command(name="exec-credential")
@click.option("--cluster", "cluster_id", required=True, help="The cluster's UUID")
@click.option("--kubeconfig", default=None, help="(optional) path to the kubeconfig file")
@click.pass_obj
def exec_credential(gs_ctx: GsKubeContext, cluster_id: str, kubeconfig: str | None) -> None:
    """Provide client credentials to kubectl.

    Meant to be run by kubectl. On failure nothing is written to stdout.
    """
    from gskube.utils.kubeconfig import KubeconfigManager, resolve_kubeconfig_path

    path = resolve_kubeconfig_path(kubeconfig)
    if path.is_file():
        try:
            KubeconfigManager(path).load()
        except GsKubeError as e:
            logger.warning("kubeconfig_unreadable", path=str(path), error=str(e))

    try:
        credential = gs_ctx.credential_cache_manager.get_exec_credential(cluster_id)
    except GsKubeError as e:
        _report(e, "exec_credential", cluster_id=cluster_id)
        return

    # this output is read by kubectl
    click.echo(credential.to_json())


if __name__ == "__main__":
    cli()
