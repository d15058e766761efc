"""CLI adapter for ``lib_cluster_config`` built on ``lib_cli_exit_tools``.

Purpose
-------
Let operators inspect merged configuration, node identity, identifiers, and
the coordination store without writing Python code.

Contents
--------
* :func:`cli` – root command wiring traceback handling into
  ``lib_cli_exit_tools``.
* ``info`` / ``env-prefix`` – diagnostics.
* ``read`` / ``get`` – merge files and environment, print JSON.
* ``node-id`` / ``next-id`` – node identity and identifier generation.
* ``store get|put|delete`` / ``watch`` – etcd access configured via ``ETCD_*``.
* :func:`main` – entry point used by ``console_scripts`` registration.

System Role
-----------
Outermost layer: commands call the composition root and the store client and
never parse documents themselves. Store commands obtain their client from
``ctx.obj["client_factory"]`` when present, which tests use to inject an
in-memory store.
"""

from __future__ import annotations

import json
import sys
from importlib import metadata
from pathlib import Path
from typing import Any, Callable, Final, Optional, Sequence

import lib_cli_exit_tools
import rich_click as click

from .adapters.env.default import default_env_prefix
from .adapters.env.store import StoreSettings
from .adapters.node.hardware import NodeIdentityResolver
from .adapters.store.bridge import CoordinationClient
from .application.idgen import SnowflakeGenerator
from .core import read_config
from .domain.errors import KeyNotFound, NotFound
from .domain.events import CaughtUp, EventKind
from .domain.ids import to_radix32
from .domain.value import thaw_value

CLICK_CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}
_TRACEBACK_SUMMARY_LIMIT: Final[int] = 500
_TRACEBACK_VERBOSE_LIMIT: Final[int] = 10_000
_DISTRIBUTION: Final[str] = "lib_cluster_config"

_FILE_OPTION = click.option(
    "--file",
    "files",
    multiple=True,
    type=click.Path(path_type=Path, dir_okay=False),
    help="Configuration file (YAML/TOML/JSON); later files override earlier ones (repeatable)",
)
_ENV_PREFIX_OPTION = click.option(
    "--env-prefix",
    default=None,
    help="Read <PREFIX>_SECTION__KEY environment variables as the environment layer",
)


def _resolve_version() -> str:
    """Return the installed package version, ``"0.0.0"`` when not installed."""

    try:
        return metadata.version(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "0.0.0"


@click.group(
    help="Layered cluster configuration and identifier toolkit",
    context_settings=CLICK_CONTEXT_SETTINGS,
    invoke_without_command=False,
)
@click.version_option(
    version=_resolve_version(),
    prog_name=_DISTRIBUTION,
    message="lib_cluster_config version %(version)s",
)
@click.option(
    "--traceback/--no-traceback",
    is_flag=True,
    default=False,
    help="Show full Python traceback on errors",
)
@click.pass_context
def cli(ctx: click.Context, traceback: bool) -> None:
    """Root command configuring traceback handling for all subcommands.

    Side Effects
        Mutates ``lib_cli_exit_tools.config.traceback`` and
        ``lib_cli_exit_tools.config.traceback_force_color``.
    """

    ctx.ensure_object(dict)
    ctx.obj["traceback"] = traceback
    lib_cli_exit_tools.config.traceback = traceback
    lib_cli_exit_tools.config.traceback_force_color = traceback


@cli.command("info", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_info() -> None:
    """Print basic distribution metadata so users can confirm installation."""

    try:
        meta = metadata.metadata(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        click.echo(f"{_DISTRIBUTION} (metadata unavailable)")
        return
    click.echo(f"Info for {meta.get('Name', _DISTRIBUTION)}:")
    click.echo(f"  Version         : {meta.get('Version', _resolve_version())}")
    click.echo(f"  Requires-Python : {meta.get('Requires-Python', '>=3.10')}")
    summary = meta.get("Summary")
    if summary:
        click.echo(f"  Summary         : {summary}")


@cli.command("env-prefix", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("slug")
def cli_env_prefix(slug: str) -> None:
    """Compute the canonical environment prefix for *slug*.

    Examples
    --------
    >>> from click.testing import CliRunner
    >>> runner = CliRunner()
    >>> result = runner.invoke(cli, ["env-prefix", "billing-service"])
    >>> result.output.strip()
    'BILLING_SERVICE'
    """

    click.echo(default_env_prefix(slug))


@cli.command("read", context_settings=CLICK_CONTEXT_SETTINGS)
@_FILE_OPTION
@_ENV_PREFIX_OPTION
@click.option("--indent", type=int, default=None, help="Pretty-print JSON output with the provided indent size")
@click.option(
    "--provenance/--no-provenance",
    default=False,
    help="Include provenance metadata for each key in the output",
)
def cli_read_config(
    files: Sequence[Path],
    env_prefix: Optional[str],
    indent: Optional[int],
    provenance: bool,
) -> None:
    """Merge the given files and environment and print the result as JSON."""

    snapshot = read_config(files=files, env_prefix=env_prefix)
    if provenance:
        payload = {"config": snapshot.as_dict(), "provenance": thaw_value(snapshot.provenance)}
        click.echo(json.dumps(payload, indent=indent, separators=(",", ":")))
        return
    click.echo(snapshot.to_json(indent=indent))


@cli.command("get", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("path")
@_FILE_OPTION
@_ENV_PREFIX_OPTION
def cli_get(path: str, files: Sequence[Path], env_prefix: Optional[str]) -> None:
    """Print the value at dotted PATH as JSON."""

    snapshot = read_config(files=files, env_prefix=env_prefix)
    try:
        value = snapshot.get(path)
    except KeyNotFound as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(thaw_value(value)))


@cli.command("node-id", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("--override", type=click.IntRange(0, 1023), default=None, help="Explicit node id")
def cli_node_id(override: Optional[int]) -> None:
    """Show the node id this host resolves to and how it was obtained."""

    node = NodeIdentityResolver(override=override).resolve()
    click.echo(json.dumps({"value": node.value, "source": node.source, "address": node.address}))


@cli.command("next-id", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("--count", type=click.IntRange(min=1), default=1, show_default=True, help="Number of ids to print")
@click.option("--radix32/--decimal", default=False, help="Print ids in base 32 instead of decimal")
@click.option("--node-id", type=click.IntRange(0, 1023), default=None, help="Explicit node id")
def cli_next_id(count: int, radix32: bool, node_id: Optional[int]) -> None:
    """Generate identifiers, one per line."""

    generator = SnowflakeGenerator(NodeIdentityResolver(override=node_id).resolve())
    for _ in range(count):
        value = generator.next_id()
        click.echo(to_radix32(value) if radix32 else str(value))


@cli.group("store", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_store() -> None:
    """Read and write keys in the etcd store configured via ETCD_* variables."""


@cli_store.command("get", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("key")
@click.pass_context
def cli_store_get(ctx: click.Context, key: str) -> None:
    """Print the value stored at KEY."""

    with _open_client(ctx) as client:
        try:
            value, revision = client.get(key)
        except NotFound as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(value.decode("utf-8", errors="replace"))
    click.echo(f"revision: {revision}", err=True)


@cli_store.command("put", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("key")
@click.argument("value")
@click.option("--prev-revision", type=int, default=None, help="Only write while the key is at this revision (0: absent)")
@click.pass_context
def cli_store_put(ctx: click.Context, key: str, value: str, prev_revision: Optional[int]) -> None:
    """Write VALUE at KEY and print the new store revision."""

    with _open_client(ctx) as client:
        revision = client.put(key, value, prev_revision=prev_revision)
    click.echo(str(revision))


@cli_store.command("delete", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("key")
@click.pass_context
def cli_store_delete(ctx: click.Context, key: str) -> None:
    """Delete KEY and print the new store revision."""

    with _open_client(ctx) as client:
        try:
            revision = client.delete(key)
        except NotFound as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(str(revision))


@cli.command("watch", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("prefix")
@click.option("--count", type=click.IntRange(min=1), default=None, help="Exit after this many events")
@click.option("--start-revision", type=int, default=None, help="Replay events from this revision")
@click.pass_context
def cli_watch(ctx: click.Context, prefix: str, count: Optional[int], start_revision: Optional[int]) -> None:
    """Print changes below PREFIX as JSON lines until interrupted."""

    seen = 0
    with _open_client(ctx) as client, client.watch_prefix(prefix, start_revision=start_revision) as watch:
        for item in watch:
            if isinstance(item, CaughtUp):
                continue
            record: dict[str, Any] = {"key": item.key, "kind": item.kind.value, "revision": item.revision}
            if item.kind is EventKind.PUT and item.value is not None:
                record["value"] = item.value.decode("utf-8", errors="replace")
            click.echo(json.dumps(record))
            seen += 1
            if count is not None and seen >= count:
                break


def _open_client(ctx: click.Context) -> CoordinationClient:
    factory: Optional[Callable[[], CoordinationClient]] = (ctx.obj or {}).get("client_factory")
    if factory is not None:
        return factory()
    return CoordinationClient.connect(StoreSettings.from_env())


def main(argv: Optional[Sequence[str]] = None, *, restore_traceback: bool = True) -> int:
    """Execute the CLI with shared exit handling and return the exit code."""

    previous_traceback = getattr(lib_cli_exit_tools.config, "traceback", False)
    previous_force_color = getattr(lib_cli_exit_tools.config, "traceback_force_color", False)
    try:
        try:
            return lib_cli_exit_tools.run_cli(
                cli,
                argv=list(argv) if argv is not None else None,
                prog_name=_DISTRIBUTION,
            )
        except BaseException as exc:  # noqa: BLE001 - funnel through shared printers
            lib_cli_exit_tools.print_exception_message(
                trace_back=lib_cli_exit_tools.config.traceback,
                length_limit=(
                    _TRACEBACK_VERBOSE_LIMIT if lib_cli_exit_tools.config.traceback else _TRACEBACK_SUMMARY_LIMIT
                ),
            )
            return lib_cli_exit_tools.get_system_exit_code(exc)
    finally:
        if restore_traceback:
            lib_cli_exit_tools.config.traceback = previous_traceback
            lib_cli_exit_tools.config.traceback_force_color = previous_force_color


if __name__ == "__main__":  # pragma: no cover - exercised via console entry point
    raise SystemExit(main(sys.argv[1:]))
