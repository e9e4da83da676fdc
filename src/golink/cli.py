"""golink CLI — go links backed by a JSON file.

Commands:
    golink add ALIAS URL           create a link
    golink list                    show all links
    golink update ALIAS            change a link's url/description/category
    golink delete ALIAS            remove a link
    golink open ALIAS              open go/ALIAS (or the target URL) in a browser
    golink serve                   run the redirect server
    golink config view             show configuration
    golink config storage-dir PATH move link storage
"""

from __future__ import annotations

import contextlib
import logging
import webbrowser
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

import click

from golink.config import ConfigError, GolinkConfig, load_config, set_storage_dir
from golink.models import check_url, new_link
from golink.store import JSONStore, StoreError

if TYPE_CHECKING:
    from collections.abc import Iterator

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _App:
    """Per-invocation state: config is loaded and the store opened on first use."""

    def __init__(self, config_dir: Path | None) -> None:
        self.config_dir = config_dir
        self._cfg: GolinkConfig | None = None

    @property
    def cfg(self) -> GolinkConfig:
        if self._cfg is None:
            try:
                self._cfg = load_config(self.config_dir)
            except ConfigError as exc:
                raise click.ClickException(str(exc)) from exc
        return self._cfg

    def open_store(self, *, watch: bool = False) -> JSONStore:
        cfg = self.cfg
        with _store_errors():
            cfg.ensure_dirs()
            store = JSONStore(cfg.links_path, watch=watch)
        click.get_current_context().call_on_close(store.close)
        return store


pass_app = click.make_pass_decorator(_App)


@contextlib.contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except (StoreError, OSError) as exc:
        raise click.ClickException(str(exc)) from exc


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="golink")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Config directory (default: $GOLINK_CONFIG_DIR or ~/.config/golink)",
)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, config_dir: str | None, verbose: bool) -> None:
    """golink — go/links for quick navigation to frequently used URLs.

    \b
    go/meeting -> https://zoom.us/...
    go/drive   -> https://docs.google.com/...
    go/gh      -> https://github.com/...
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(message)s")
    ctx.obj = _App(Path(config_dir) if config_dir else None)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


def _checked_url(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return check_url(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), ctx=ctx, param=param) from exc


@cli.command()
@click.argument("alias")
@click.argument("url", callback=_checked_url)
@click.option("--description", "-d", default="", help="Description of the link")
@click.option("--category", "-c", default="", help="Category for the link")
@pass_app
def add(app: _App, alias: str, url: str, description: str, category: str) -> None:
    """Add a new go link."""
    store = app.open_store()
    with _store_errors():
        store.create(new_link(alias, url, description=description, category=category))
    click.echo(f"Created go link: {alias} -> {url}")


@cli.command("list")
@pass_app
def list_cmd(app: _App) -> None:
    """List all go links."""
    links = sorted(app.open_store().list(), key=lambda link: link.alias)
    if not links:
        click.echo("No links found.")
        return

    click.echo("Go Links:")
    click.echo("=========")
    for link in links:
        click.echo(f"{link.alias:<15} -> URL: {link.url}")
        if link.description:
            click.echo(f"{'':18} Description: {link.description}")
        if link.category:
            click.echo(f"{'':18} Category: {link.category}")
        click.echo()


@cli.command()
@click.argument("alias")
@click.option("--url", default=None, callback=_checked_url, help="New target URL")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--category", "-c", default=None, help="New category")
@pass_app
def update(app: _App, alias: str, url: str | None, description: str | None, category: str | None) -> None:
    """Change fields of an existing go link."""
    changes = {
        k: v
        for k, v in (("url", url), ("description", description), ("category", category))
        if v is not None
    }
    if not changes:
        raise click.UsageError("Nothing to update: pass --url, --description or --category")

    store = app.open_store()
    with _store_errors():
        link = replace(store.get(alias), **changes)
        store.update(link)
    click.echo(f"Updated go link: {alias} -> {link.url}")


@cli.command()
@click.argument("alias")
@pass_app
def delete(app: _App, alias: str) -> None:
    """Delete a go link."""
    store = app.open_store()
    with _store_errors():
        store.delete(alias)
    click.echo(f"Deleted go link: {alias}")


@cli.command("open")
@click.argument("alias")
@click.option("--direct", "-d", is_flag=True, help="Open the target URL instead of go/<alias>")
@pass_app
def open_cmd(app: _App, alias: str, direct: bool) -> None:
    """Open a go link in the default browser."""
    store = app.open_store()
    with _store_errors():
        link = store.get(alias)
    url = link.url if direct else f"http://go/{link.alias}"
    click.echo(f"Opening {alias} ({url}) in browser")
    if not webbrowser.open(url):
        raise click.ClickException(f"Could not open a browser for {url}")


# ---------------------------------------------------------------------------
# golink serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--port", "-p", type=int, default=None, help="Port to serve on [default: from config, 80]")
@click.option("--host", default=None, help="Interface to bind [default: from config, 0.0.0.0]")
@click.option("--not-found", "not_found", default=None, help="URL to redirect to when a go link is not found")
@pass_app
def serve(app: _App, port: int | None, host: str | None, not_found: str | None) -> None:
    """Start the go links HTTP server."""
    from golink.server import serve as run_server

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    cfg = app.cfg
    store = app.open_store(watch=True)
    with _store_errors():
        run_server(
            store,
            host if host is not None else cfg.server.host,
            port if port is not None else cfg.server.port,
            not_found if not_found is not None else cfg.server.not_found_url,
        )
    click.echo("Server stopped")


# ---------------------------------------------------------------------------
# golink config
# ---------------------------------------------------------------------------


@cli.group()
def config() -> None:
    """Manage golink configuration."""


@config.command("view")
@pass_app
def config_view(app: _App) -> None:
    """View current configuration."""
    cfg = app.cfg
    click.echo(f"Config directory: {cfg.config_dir}")
    click.echo(f"Storage directory: {cfg.storage_dir}")
    if cfg.config_file is not None:
        click.echo(f"Config file: {cfg.config_file}")
    else:
        click.echo("Config file: not found (using defaults)")

    click.echo("\nAll settings:")
    for key, value in cfg.settings().items():
        click.echo(f"  {key}: {value}")


@config.command("storage-dir")
@click.argument("path", type=click.Path(file_okay=False))
@pass_app
def config_storage_dir(app: _App, path: str) -> None:
    """Set the directory to store links."""
    try:
        storage_dir = set_storage_dir(app.cfg.config_dir, path)
    except (ConfigError, OSError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Storage directory set to: {storage_dir}")
    click.echo("Restart the server for changes to take effect.")
