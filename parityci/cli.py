"""
CLI interface for parityci.

Provides commands to run jobs in containers, inspect run manifests, prune
cache volumes, list container templates and check the local container
environment.
"""

import json
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click

from parityci import __version__
from parityci.config import LOG_FORMATS, ParityConfig, get_parityci_home, load_config, write_default_config
from parityci.doctor import has_failures, run_checks
from parityci.engine import ContainerEngine
from parityci.errors import ConfigurationError, EngineError, ErrorKind, ParityError, hint_for_kind
from parityci.executor import Executor, RunRequest
from parityci.images import ImageResolver
from parityci.prune import PrunePolicy, plan_prune_volumes
from parityci.registry import find_project_file, load_project
from parityci.run_store import FileManifestStore
from parityci.templates import TemplateProvider
from parityci.utils import format_duration, print_banner, print_info, print_success, print_warning, setup_logging
from parityci.volumes import VolumeManager


def _fail(ctx, message: str, kind: Optional[ErrorKind] = None) -> None:
    """Print the error (and a static hint for engine failures), then exit 1."""
    click.echo(f"error: {message}", err=True)
    if kind is not None and ctx.obj.get("log_format") == "human":
        click.echo(f"hint: {hint_for_kind(kind)}", err=True)
    raise SystemExit(1)


def _config(ctx) -> ParityConfig:
    if "config" not in ctx.obj:
        _fail(ctx, f"config not loaded: {ctx.obj.get('config_error', 'unknown error')}")
    return ctx.obj["config"]


@click.group()
@click.version_option(version=__version__, prog_name="parityci")
@click.option(
    "--log-format",
    type=click.Choice(LOG_FORMATS),
    envvar="PARITYCI_LOG_FORMAT",
    default=None,
    help="Log output format (default from config: human)",
)
@click.option(
    "--templates-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Override the templates directory (<dir>/<name>/Containerfile)",
)
@click.pass_context
def main(ctx, log_format: Optional[str], templates_dir: Optional[Path]):
    """
    parityci - Local-first CI runner.

    Run the same containerized build/test steps locally and in CI.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config()
    except ConfigurationError as e:
        # init-config must still work with a broken config file
        ctx.obj["config_error"] = str(e)
        ctx.obj["log_format"] = log_format or "human"
        return

    if templates_dir is not None:
        config = replace(config, templates_dir=templates_dir)
    ctx.obj["config"] = config
    ctx.obj["log_format"] = log_format or config.log_format
    try:
        setup_logging(ctx.obj["log_format"], config.log_level)
    except ConfigurationError as e:
        _fail(ctx, str(e))


@main.command("run")
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Project file (default: ./parityci.yaml)",
)
@click.option("--job", default="default", show_default=True, help="Job to run")
@click.option("--step", default=None, help="Run only this step")
@click.option("--profile", default=None, help="Override the job's profile")
@click.option("--dry-run", is_flag=True, help="Print commands without running containers")
@click.option("--pull", is_flag=True, help="Pull base images when building templates")
@click.option("--rebuild", is_flag=True, help="Rebuild template images without cache")
@click.pass_context
def run(ctx, config_path: Optional[Path], job: str, step: Optional[str], profile: Optional[str],
        dry_run: bool, pull: bool, rebuild: bool):
    """Run a job's steps in containers."""
    config = _config(ctx)
    project_path = config_path or find_project_file()

    try:
        project = load_project(project_path)
        if dry_run:
            engine = ContainerEngine(config.engine)
        else:
            engine = ContainerEngine.detect(config.engine)
        executor = Executor(
            engine=engine,
            store=FileManifestStore(config.state_dir),
            images=ImageResolver(engine, TemplateProvider(config.templates_dir), config.cache_dir),
            volumes=VolumeManager(engine),
            step_timeout_s=config.step_timeout_s,
        )
        if dry_run:
            print_banner("DRY RUN (no containers)")
        result = executor.execute(RunRequest(
            project=project,
            job_name=job,
            repo_root=project_path.resolve().parent,
            step=step,
            profile=profile,
            dry_run=dry_run,
            pull=pull,
            rebuild=rebuild,
        ))
    except EngineError as e:
        _fail(ctx, str(e), e.kind)
    except (ParityError, OSError) as e:
        _fail(ctx, str(e))

    click.echo(f"manifest: {result.manifest_path}")
    if not result.ok:
        _fail(ctx, result.error or "run failed", result.error_kind)
    total_ms = sum(s.duration_ms for s in result.manifest.steps)
    print_success(f"run {result.run_id} succeeded in {format_duration(total_ms / 1000)}")


@main.command("prune")
@click.option("--keep", type=click.IntRange(min=0), default=3, show_default=True,
              help="Number of most recent namespaces to keep")
@click.option("--older-than-days", type=click.IntRange(min=0), default=None,
              help="Only prune namespaces older than this many days")
@click.option("--yes", is_flag=True, help="Apply the plan (default is a dry run)")
@click.pass_context
def prune(ctx, keep: int, older_than_days: Optional[int], yes: bool):
    """Prune parityci-managed cache volumes."""
    config = _config(ctx)
    click.echo(f"prune policy: keep={keep} older_than_days={older_than_days}")

    try:
        engine = ContainerEngine.detect(config.engine)
        manager = VolumeManager(engine)
        volumes = manager.list_managed()
        if not volumes:
            click.echo("no parityci-managed volumes with namespace labels found")
            return

        plan = plan_prune_volumes(volumes, PrunePolicy(keep=keep, older_than_days=older_than_days))
        if plan.empty:
            click.echo("nothing to prune (within keep/age policy)")
            return

        click.echo(
            f"prune plan: delete {len(plan.volumes)} volumes across {len(plan.candidates)} namespaces"
        )
        for name in plan.volumes:
            click.echo(f"  - {name}")

        if not yes:
            print_info("dry-run only (re-run with --yes to apply)")
            return

        for name in plan.volumes:
            manager.remove(name)
            click.echo(f"  removed {name}")
    except EngineError as e:
        _fail(ctx, str(e), e.kind)
    except ParityError as e:
        _fail(ctx, str(e))

    print_success("prune complete")


@main.group("manifest")
def manifest_group():
    """Inspect run manifests."""
    pass


@manifest_group.command("show")
@click.option("--latest", is_flag=True, help="Show the most recent manifest")
@click.option("--run", "run_id", default=None, help="Show the manifest of a specific run")
@click.pass_context
def manifest_show(ctx, latest: bool, run_id: Optional[str]):
    """Print a run manifest as JSON."""
    config = _config(ctx)
    if not latest and run_id is None:
        raise click.UsageError("specify --latest or --run <id>")

    store = FileManifestStore(config.state_dir)
    try:
        manifest = store.read(run_id) if run_id is not None else store.read_latest()
    except ParityError as e:
        _fail(ctx, str(e))

    if manifest is None:
        _fail(ctx, "no manifest found (run `parityci run` first)")
    click.echo(json.dumps(manifest.to_dict(), indent=2))


@manifest_group.command("list")
@click.pass_context
def manifest_list(ctx):
    """List recorded runs, newest first."""
    config = _config(ctx)
    store = FileManifestStore(config.state_dir)
    run_ids = store.list_runs()
    if not run_ids:
        click.echo("No runs recorded.")
        return

    for rid in run_ids:
        try:
            manifest = store.read(rid)
        except ParityError as e:
            print_warning(f"{rid}: {e}")
            continue
        status = "ok" if manifest.result.ok else f"failed ({manifest.result.exit_code})"
        click.echo(f"{rid}  {manifest.project}/{manifest.job}  {status}")


@main.group("templates")
def templates_group():
    """Inspect container templates."""
    pass


@templates_group.command("list")
@click.pass_context
def templates_list(ctx):
    """List available templates and where each resolves from."""
    provider = TemplateProvider(_config(ctx).templates_dir)
    for name in provider.names():
        click.echo(f"{name}  {provider.origin(name)}")


@templates_group.command("where")
@click.argument("name")
@click.pass_context
def templates_where(ctx, name: str):
    """Print the directory a template resolves from, or "builtin"."""
    provider = TemplateProvider(_config(ctx).templates_dir)
    try:
        click.echo(provider.origin(name))
    except ParityError as e:
        _fail(ctx, str(e))


@main.command("doctor")
@click.pass_context
def doctor(ctx):
    """Check the local container environment."""
    config = _config(ctx)
    checks = run_checks(config)
    for check in checks:
        click.echo(check.render())
    if has_failures(checks):
        raise SystemExit(1)


@main.command("version")
def version():
    """Print the parityci version."""
    click.echo(f"parityci {__version__}")


@main.command("init-config")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.pass_context
def init_config(ctx, force: bool):
    """Write a default parityci config.yaml."""
    try:
        cfg_path = write_default_config(get_parityci_home(), force=force)
    except ConfigurationError as e:
        _fail(ctx, str(e))
    click.echo(f"Initialized parityci config at {cfg_path}")


if __name__ == "__main__":
    main()
