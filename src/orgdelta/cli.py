from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import DEFAULT_WORK_DIR, EngineConfig, load_engine_config
from .errors import OrgDeltaError
from .inventory import ProgressCallback
from .logging_setup import init_logging
from .manifest import DEPLOY_MANIFEST_NAME, DESTRUCTIVE_MANIFEST_NAME
from .models import ComparisonResult, DeltaStatus
from .org_client import DEFAULT_LOGIN_URL, TEST_LEVELS, DeployOptions, OrgClient, SfCliClient
from .package import build_delta_package
from .pipeline import ArtifactPaths, compare_orgs, compare_trees, write_artifacts
from .report import REPORT_NAME, summary_table, write_report
from .settings_store import (
    KNOWN_SETTINGS,
    default_settings_db,
    delete_setting,
    get_setting,
    load_settings,
    set_setting,
)

app = typer.Typer(
    help="Compare Salesforce orgs, build delta packages and deploy them via the sf CLI",
    no_args_is_help=True,
)
settings_app = typer.Typer(help="Show or change persisted settings", no_args_is_help=True)
app.add_typer(settings_app, name="settings")
console = Console()
err_console = Console(stderr=True)


@dataclass(frozen=True)
class CliState:
    settings_db: Path


def make_client() -> OrgClient:
    return SfCliClient()


class ScanProgressReporter:
    def __init__(
        self, progress: Progress, task_id: int, root_label: str, lock: threading.Lock
    ) -> None:
        self.progress = progress
        self.task_id = task_id
        self.root_label = root_label
        self.lock = lock
        self.last_rendered = 0.0

    def update(self, relpath: PurePosixPath, dirs_scanned: int, files_seen: int) -> None:
        now = time.monotonic()
        if (now - self.last_rendered) < 0.12:
            return
        label = self.root_label
        if relpath != PurePosixPath("."):
            label = f"{self.root_label}/{'/'.join(relpath.parts[:2])}"
        with self.lock:
            self.progress.update(
                self.task_id,
                description=f"{label}  dirs={dirs_scanned} files={files_seen}",
            )
        self.last_rendered = now


def _format_seconds(seconds: float) -> str:
    return f"{seconds:.2f}s"


@contextmanager
def _user_errors() -> Iterator[None]:
    try:
        yield
    except (OrgDeltaError, FileNotFoundError, FileExistsError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)


def _state(ctx: typer.Context) -> CliState:
    state = ctx.obj
    if isinstance(state, CliState):
        return state
    return CliState(settings_db=default_settings_db())


def _engine_config(
    state: CliState, config_path: Path | None, api_version: str | None
) -> EngineConfig:
    engine = load_engine_config(config_path)
    stored_version = get_setting(state.settings_db, "api_version")
    return engine.with_api_version(api_version or stored_version)


def _run_with_progress(
    source_label: str,
    dest_label: str,
    run: Callable[[ProgressCallback, ProgressCallback], ComparisonResult],
) -> ComparisonResult:
    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        lock = threading.Lock()
        source_task = progress.add_task("Preparing source scan...", total=None)
        dest_task = progress.add_task("Preparing destination scan...", total=None)
        source_reporter = ScanProgressReporter(progress, source_task, source_label, lock)
        dest_reporter = ScanProgressReporter(progress, dest_task, dest_label, lock)
        return run(source_reporter.update, dest_reporter.update)


def _status_counts_line(result: ComparisonResult) -> str:
    counts = result.delta.counts()
    return "  ".join(f"{status.value}={counts[status]}" for status in DeltaStatus)


def _print_comparison(result: ComparisonResult) -> None:
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning.describe()}")
    console.print(summary_table(result.delta))
    console.print(_status_counts_line(result))
    console.print(
        f"Source components: {len(result.source)}  "
        f"time={_format_seconds(result.source_scan_seconds)}"
    )
    console.print(
        f"Destination components: {len(result.destination)}  "
        f"time={_format_seconds(result.destination_scan_seconds)}"
    )


def _print_artifacts(artifacts: ArtifactPaths) -> None:
    deploy = artifacts.deploy
    if deploy.nothing_to_deploy:
        console.print(f"Nothing to deploy. Empty manifest written to {deploy.path}")
    else:
        console.print(f"Deploy manifest: {deploy.path} ({deploy.member_count} members)")
    if artifacts.destructive is not None:
        console.print(
            f"Destructive manifest: {artifacts.destructive.path} "
            f"({artifacts.destructive.member_count} members)"
        )
    console.print(f"Change report: {artifacts.report}")


@app.callback()
def _main(
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    log_file: Path | None = typer.Option(None, help="Also write logs to this file"),
    settings_db: Path | None = typer.Option(
        None,
        envvar="ORGDELTA_SETTINGS_DB",
        help="SQLite settings file (default: ~/.orgdelta/settings.sqlite3)",
    ),
) -> None:
    """Configure logging and the settings store for every command."""
    init_logging(log_level, log_file, console=err_console)
    resolved = settings_db.expanduser().resolve() if settings_db else default_settings_db()
    ctx.obj = CliState(settings_db=resolved)


@app.command()
def compare(
    ctx: typer.Context,
    source_dir: Path = typer.Argument(..., help="Retrieved metadata of the source org"),
    dest_dir: Path = typer.Argument(..., help="Retrieved metadata of the destination org"),
    out: Path = typer.Option(..., help="Directory receiving manifests and the report"),
    destructive: bool = typer.Option(
        False, help="Also write destructiveChanges.xml for removed components"
    ),
    strict: bool = typer.Option(False, help="Fail when a requested manifest is empty"),
    include_unchanged: bool = typer.Option(
        False, help="List unchanged components in the report"
    ),
    config: Path | None = typer.Option(None, help="orgdelta TOML config file"),
    api_version: str | None = typer.Option(None, help="API version for manifests"),
) -> None:
    """Compare two retrieved metadata trees and write the delta artifacts."""
    state = _state(ctx)
    with _user_errors():
        engine = _engine_config(state, config, api_version)
        result = _run_with_progress(
            f"source:{source_dir.name}",
            f"dest:{dest_dir.name}",
            lambda source_cb, dest_cb: compare_trees(
                source_dir,
                dest_dir,
                engine,
                source_progress=source_cb,
                dest_progress=dest_cb,
            ),
        )
        artifacts = write_artifacts(
            result,
            out,
            engine,
            destructive=destructive,
            strict=strict,
            include_unchanged=include_unchanged,
        )
    _print_comparison(result)
    _print_artifacts(artifacts)


@app.command()
def package(
    ctx: typer.Context,
    source_dir: Path = typer.Argument(..., help="Retrieved metadata of the source org"),
    dest_dir: Path = typer.Argument(..., help="Retrieved metadata of the destination org"),
    out: Path = typer.Option(..., help="Delta package directory to create"),
    destructive: bool = typer.Option(
        False, help="Include destructiveChanges.xml for removed components"
    ),
    strict: bool = typer.Option(False, help="Fail when nothing would be deployed"),
    overwrite: bool = typer.Option(False, help="Replace a non-empty output directory"),
    config: Path | None = typer.Option(None, help="orgdelta TOML config file"),
    api_version: str | None = typer.Option(None, help="API version for manifests"),
) -> None:
    """Build a deployable delta package from two retrieved metadata trees."""
    state = _state(ctx)
    with _user_errors():
        engine = _engine_config(state, config, api_version)
        result = compare_trees(source_dir, dest_dir, engine)
        built = build_delta_package(
            result,
            out,
            engine,
            include_destructive=destructive,
            strict=strict,
            overwrite=overwrite,
        )
        write_report(result.delta, built.output_dir / REPORT_NAME)
    _print_comparison(result)
    console.print(
        f"Delta package: {built.output_dir} "
        f"({built.copied_files} files, {built.deploy.member_count} members)"
    )
    if built.deploy.nothing_to_deploy:
        console.print("Nothing to deploy.")


@app.command("compare-orgs")
def compare_orgs_command(
    ctx: typer.Context,
    source: str | None = typer.Option(None, help="Source org alias (default: setting source_alias)"),
    dest: str | None = typer.Option(None, help="Destination org alias (default: setting dest_alias)"),
    work_dir: Path | None = typer.Option(None, help="Retrieval directory (default: setting work_dir)"),
    manifest: Path | None = typer.Option(
        None, help="Retrieve with this package.xml instead of generating one from the source org"
    ),
    destructive: bool = typer.Option(
        False, help="Include destructiveChanges.xml for removed components"
    ),
    config: Path | None = typer.Option(None, help="orgdelta TOML config file"),
    api_version: str | None = typer.Option(None, help="API version for manifests"),
) -> None:
    """Retrieve two orgs, compare them and build a delta package."""
    state = _state(ctx)
    source_alias = source or get_setting(state.settings_db, "source_alias")
    dest_alias = dest or get_setting(state.settings_db, "dest_alias")
    if not source_alias or not dest_alias:
        console.print(
            "[red]Missing org aliases.[/red] Use --source/--dest or "
            "`orgdelta settings set source_alias|dest_alias <alias>`."
        )
        raise typer.Exit(2)
    stored_work_dir = get_setting(state.settings_db, "work_dir")
    resolved_work_dir = (
        work_dir or (Path(stored_work_dir) if stored_work_dir else DEFAULT_WORK_DIR)
    ).expanduser()

    with _user_errors():
        engine = _engine_config(state, config, api_version)
        client = make_client()
        with console.status(f"Retrieving {source_alias} and {dest_alias}..."):
            result = compare_orgs(
                client,
                source_alias,
                dest_alias,
                resolved_work_dir,
                engine,
                manifest_path=manifest,
            )
        built = build_delta_package(
            result,
            resolved_work_dir / "package",
            engine,
            include_destructive=destructive,
            overwrite=True,
        )
        write_report(result.delta, built.output_dir / REPORT_NAME)
    _print_comparison(result)
    console.print(f"Delta package: {built.output_dir}")
    if built.deploy.nothing_to_deploy:
        console.print("Nothing to deploy.")
    else:
        console.print(f"Run `orgdelta deploy {built.output_dir}` to deploy it.")


@app.command()
def deploy(
    ctx: typer.Context,
    package_dir: Path = typer.Argument(..., help="Delta package directory"),
    target: str | None = typer.Option(None, help="Target org alias (default: setting dest_alias)"),
    test_level: str = typer.Option(
        "NoTestRun", help=f"Test level: {', '.join(TEST_LEVELS)}"
    ),
    tests: list[str] = typer.Option([], "--test", help="Test class for RunSpecifiedTests"),
    destructive: bool = typer.Option(
        False, help="Apply destructiveChanges.xml after the deployment"
    ),
    check_only: bool = typer.Option(False, help="Validate without saving (dry run)"),
) -> None:
    """Deploy a delta package with the sf CLI."""
    state = _state(ctx)
    target_alias = target or get_setting(state.settings_db, "dest_alias")
    if not target_alias:
        console.print("[red]Missing target org.[/red] Use --target or set dest_alias.")
        raise typer.Exit(2)
    package_dir = package_dir.expanduser().resolve()
    if not (package_dir / DEPLOY_MANIFEST_NAME).is_file():
        console.print(f"[red]No {DEPLOY_MANIFEST_NAME} in[/red] {package_dir}")
        raise typer.Exit(1)
    if destructive and not (package_dir / DESTRUCTIVE_MANIFEST_NAME).is_file():
        console.print(f"[red]No {DESTRUCTIVE_MANIFEST_NAME} in[/red] {package_dir}")
        raise typer.Exit(1)
    try:
        options = DeployOptions(
            test_level=test_level,
            run_destructive=destructive,
            check_only=check_only,
            tests=tuple(tests),
        )
    except ValueError as exc:
        console.print(f"[red]Invalid deploy options:[/red] {exc}")
        raise typer.Exit(2)

    with _user_errors():
        with console.status(f"Deploying to {target_alias}..."):
            result = make_client().deploy(package_dir, target_alias, options)

    for failure in result.component_failures:
        console.print(f"[red]Component failure:[/red] {failure}")
    for failure in result.test_failures:
        console.print(f"[red]Test failure:[/red] {failure}")
    if not result.success:
        console.print(f"[red]Deployment {result.deploy_id or ''} {result.status}[/red]")
        raise typer.Exit(1)
    verb = "Validation" if check_only else "Deployment"
    console.print(f"[green]{verb} {result.deploy_id or ''} {result.status}[/green]")


@app.command()
def orgs() -> None:
    """List orgs known to the sf CLI."""
    with _user_errors():
        known = make_client().list_orgs()
    table = Table(title="Authorized orgs")
    table.add_column("Alias")
    table.add_column("Username")
    table.add_column("Org Id")
    table.add_column("Instance URL")
    table.add_column("Default", justify="center")
    for org in known:
        table.add_row(
            org.alias or "",
            org.username,
            org.org_id or "",
            org.instance_url or "",
            "*" if org.is_default else "",
        )
    console.print(table)


@app.command()
def login(
    alias: str = typer.Argument(..., help="Alias to store the org under"),
    instance_url: str = typer.Option(DEFAULT_LOGIN_URL, help="Login or My Domain URL"),
) -> None:
    """Authorize an org through the sf CLI web login."""
    with _user_errors():
        org = make_client().authorize(alias, instance_url)
    console.print(f"[green]Authorized[/green] {org.username} as {alias}")


@settings_app.command("show")
def settings_show(ctx: typer.Context) -> None:
    """Print persisted settings."""
    state = _state(ctx)
    values = load_settings(state.settings_db)
    table = Table(title=f"Settings ({state.settings_db})")
    table.add_column("Key")
    table.add_column("Value")
    table.add_column("Description")
    for key in sorted(set(KNOWN_SETTINGS) | set(values)):
        table.add_row(key, values.get(key, ""), KNOWN_SETTINGS.get(key, ""))
    console.print(table)


@settings_app.command("set")
def settings_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help=f"One of: {', '.join(sorted(KNOWN_SETTINGS))}"),
    value: str = typer.Argument(...),
) -> None:
    """Persist a setting."""
    if key not in KNOWN_SETTINGS:
        console.print(f"[red]Unknown setting:[/red] {key}")
        raise typer.Exit(2)
    set_setting(_state(ctx).settings_db, key, value)
    console.print(f"{key} = {value}")


@settings_app.command("unset")
def settings_unset(ctx: typer.Context, key: str = typer.Argument(...)) -> None:
    """Remove a persisted setting."""
    if not delete_setting(_state(ctx).settings_db, key):
        console.print(f"{key} was not set")
        return
    console.print(f"{key} removed")


if __name__ == "__main__":
    app()
