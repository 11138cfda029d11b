"""Typer application and CLI entry point for shellcache.

The CLI administers a disk store from the command line: install a generation
from a config file, switch the active generation, inspect the namespaces,
push a single request through the policy engine, and wipe the store.

Each command builds a :class:`~shellcache.runtime.Runtime` for the resolved
configuration, restores the generation recorded as active in the store
directory, and runs one coroutine with :func:`asyncio.run`.
:class:`~shellcache.exceptions.ShellcacheError` is reported on stderr and
turned into the error's ``exit_code``.

See Also:
    :mod:`shellcache.config`: Config file precedence and the active marker.
    :mod:`shellcache.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Coroutine, Optional

import typer

from shellcache import __version__
from shellcache.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="shellcache",
    help="Offline caching layer with versioned cache generations.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"shellcache {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Generation config file (JSON or YAML)."
    ),
    store_dir: Optional[Path] = typer.Option(
        None, "--store", envvar="SHELLCACHE_STORE", help="Store directory."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~shellcache.output.OutputManager` and
    routes library logging to it, then stores the config path and store
    directory in ``ctx.obj`` for the sub-commands.
    """
    from shellcache.output import OutputFormat, OutputManager, configure_logging, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
    )
    set_output(output)
    configure_logging(output)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["store_dir"] = store_dir


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _store_dir(obj: dict[str, Any]) -> Path:
    if obj.get("store_dir") is not None:
        return Path(obj["store_dir"])
    from shellcache.config import get_cache_dir

    return get_cache_dir() / "store"


@asynccontextmanager
async def _session(obj: dict[str, Any], version: Optional[str] = None) -> AsyncIterator[Any]:
    """Yield a runtime with the recorded active generation restored.

    Every later activation is written back to the store's active marker.
    """
    from shellcache.config import load_active_version, resolve_config, save_active_version
    from shellcache.runtime import build_runtime

    config = resolve_config(obj.get("config_path"), version)
    store_dir = _store_dir(obj)
    async with build_runtime(config, store_dir=store_dir) as runtime:
        active = load_active_version(store_dir)
        if active:
            await runtime.versions.restore(active)

        async def _remember(generation: Any, previous: Any) -> None:
            save_active_version(store_dir, generation.version)

        runtime.versions.add_activation_listener(_remember)
        yield runtime


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run *coro*, turning a :class:`ShellcacheError` into a clean exit."""
    from shellcache.exceptions import ShellcacheError
    from shellcache.output import error

    try:
        return asyncio.run(coro)
    except ShellcacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code)


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


@app.command("install")
def install_command(
    ctx: typer.Context,
    version: Optional[str] = typer.Option(
        None, "--version", help="Version tag to install (overrides the config)."
    ),
    activate: bool = typer.Option(
        False, "--activate", help="Activate the generation once installed."
    ),
) -> None:
    """Install a generation into the store.

    Every pinned primary URL must download successfully, otherwise nothing
    is kept and the active generation stays in place.

    Example::

        shellcache -c shellcache.json install --version v14
        shellcache install --activate
    """
    from shellcache.output import success, suggest

    async def _install() -> tuple[Any, Any]:
        async with _session(ctx.obj, version) as runtime:
            generation = await runtime.lifecycle.on_install()
            if activate and runtime.versions.active != generation:
                await runtime.lifecycle.on_activate(generation.version)
            return generation, runtime.versions.active

    generation, active = _run(_install())
    success(f"Installed generation {generation.version}")
    if active == generation:
        success(f"Generation {generation.version} is now active")
    else:
        suggest(f"Run 'shellcache activate {generation.version}' to switch over.")


@app.command("activate")
def activate_command(
    ctx: typer.Context,
    version: str = typer.Argument(help="Installed version tag to activate."),
) -> None:
    """Make an installed generation the active one.

    Every namespace that does not belong to VERSION is deleted.

    Example::

        shellcache activate v14
    """
    from shellcache.output import success

    async def _activate() -> Any:
        async with _session(ctx.obj) as runtime:
            await runtime.versions.adopt(version)
            return await runtime.versions.activate(version)

    generation = _run(_activate())
    success(f"Generation {generation.version} is now active")


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """List the namespaces in the store.

    Example::

        shellcache status
        shellcache --json status
    """
    from shellcache.output import OutputFormat, get_output, info

    async def _status() -> tuple[Any, list[list[str]]]:
        async with _session(ctx.obj) as runtime:
            active = runtime.versions.active
            rows: list[list[str]] = []
            for namespace in sorted(await runtime.store.list_namespaces()):
                handle = await runtime.store.open(namespace, create=False)
                entries = len(await runtime.store.keys(handle))
                state = "active" if active and namespace in active.namespaces else "inactive"
                rows.append([namespace, str(entries), state])
            return active, rows

    active, rows = _run(_status())
    info(f"Store: {_store_dir(ctx.obj)}")
    info(f"Active generation: {active.version if active else 'none'}")
    output = get_output()
    if not rows and output.format != OutputFormat.JSON:
        info("Store is empty.")
        return
    output.print_table(["namespace", "entries", "state"], rows, title="Namespaces")


@app.command("fetch")
def fetch_command(
    ctx: typer.Context,
    url: str = typer.Argument(help="URL to request (absolute, or a path on the app origin)."),
    navigate: bool = typer.Option(
        False, "--navigate", help="Send the request as a navigation."
    ),
    mode: Optional[str] = typer.Option(
        None, "--mode", help="Request mode: navigate, same-origin, no-cors or cors."
    ),
    body: bool = typer.Option(
        False, "--body", help="Print the response body to stdout."
    ),
) -> None:
    """Run one GET request through the policy engine.

    Shows which category the request fell into and whether the answer came
    from the store, the network, or the synthetic offline response.

    Example::

        shellcache fetch / --navigate
        shellcache fetch /app.js?v=16 --json
    """
    from shellcache.models import Request, RequestMode
    from shellcache.output import OutputFormat, error, get_output
    from shellcache.responses import get_response_type, is_cached, is_synthetic

    if navigate:
        request_mode = RequestMode.NAVIGATE
    elif mode is not None:
        try:
            request_mode = RequestMode(mode)
        except ValueError:
            error(f"Unknown request mode: {mode}")
            raise typer.Exit(code=2)
    else:
        request_mode = RequestMode.SAME_ORIGIN

    async def _fetch() -> tuple[Any, Any, Any]:
        async with _session(ctx.obj) as runtime:
            request = Request(url=runtime.config.absolute_url(url), mode=request_mode)
            classification = runtime.engine.classifier.classify(request)
            response = await runtime.engine.respond(request)
            return request, classification, response

    request, classification, response = _run(_fetch())

    if is_synthetic(response):
        source = "synthetic"
    elif is_cached(response):
        source = "cache"
    else:
        source = "network"
    summary = {
        "url": request.url,
        "category": classification.category.value,
        "status": response.status_code,
        "reason": response.reason_phrase,
        "source": source,
        "type": get_response_type(response),
        "bytes": len(response.content),
    }

    output = get_output()
    if body:
        output.print_data(response.text)
    elif output.format == OutputFormat.JSON:
        output.print_json(summary)
    else:
        output.print_table(list(summary), [[str(v) for v in summary.values()]])


@app.command("clear")
def clear_command(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete every namespace in the store.

    Example::

        shellcache clear --yes
    """
    from shellcache.config import save_active_version
    from shellcache.output import success
    from shellcache.store import DiskStore

    if not yes:
        typer.confirm("Delete every namespace in the store?", abort=True)

    store_dir = _store_dir(ctx.obj)

    async def _clear() -> int:
        store = DiskStore(store_dir)
        try:
            removed = 0
            for namespace in sorted(await store.list_namespaces()):
                if await store.delete_namespace(namespace):
                    removed += 1
            return removed
        finally:
            await store.close()

    removed = _run(_clear())
    save_active_version(store_dir, None)
    success(f"Deleted {removed} namespace(s)")


# ------------------------------------------------------------------ #
# Entry point
# ------------------------------------------------------------------ #


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def main() -> None:
    """CLI entry point invoked by the ``shellcache`` console script.

    Unhandled :class:`~shellcache.exceptions.ShellcacheError` instances
    cause a clean exit with the error's ``exit_code``.  Anything else is
    reported and exits with a generic failure.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from shellcache.exceptions import ShellcacheError
        from shellcache.output import error

        if isinstance(exc, ShellcacheError):
            error(str(exc))
            sys.exit(exc.exit_code)
        error(f"Unexpected error: {exc}")
        sys.exit(EXIT_GENERIC_FAILURE)
