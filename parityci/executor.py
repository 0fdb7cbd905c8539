"""
Executor - run a job's steps in containers and record the outcome.

The Executor implements:
- Validation before any subprocess (job/profile/step lookup, container
  reference classification, workdir safety for every selected step)
- Environment setup (image resolution, cache volumes)
- Sequential step execution with short-circuit on the first failure
- Full stdout/stderr capture per step
- Exactly one manifest per run, written even when the run fails

Execution flow:
1. Resolve job, profile and selected steps; validate workdirs
2. Compute env_id and namespace, allocate a run id
3. Resolve the image and ensure cache volumes (skipped in dry-run)
4. For each step: Pending -> Running -> Succeeded | Failed (dry-run: Skipped)
5. Assemble and write the manifest
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional

from parityci import __version__
from parityci.engine import ContainerEngine, classify_failure, truncate_tail
from parityci.errors import ConfigurationError, EngineError, ErrorKind, WorkdirError
from parityci.fingerprint import fingerprint
from parityci.images import ImageResolver, classify_container_ref
from parityci.namespace import namespace_from
from parityci.run_store import ManifestStore, new_run_id, now_rfc3339
from parityci.schemas import (
    DigestStatus,
    Manifest,
    ManifestResult,
    ManifestStep,
    ProjectDef,
    StepDef,
    StepStatus,
)
from parityci.utils import print_command
from parityci.volumes import CacheVolumes, VolumeManager

logger = logging.getLogger(__name__)

CONTAINER_WORKDIR = "/work"
TOOLCHAIN_HOME = "/usr/local/cargo"
MOUNT_REGISTRY = "/usr/local/cargo/registry"
MOUNT_VCS_CACHE = "/usr/local/cargo/git"
MOUNT_BUILD_OUTPUT = "/work/target"

STEP_LOG_PLACEHOLDER = "step"


def sanitize_for_filename(name: str) -> str:
    """Keep ASCII alphanumerics and '-_.'; everything else becomes '_'."""
    safe = "".join(c if (c.isascii() and c.isalnum()) or c in "-_." else "_" for c in name)
    return safe or STEP_LOG_PLACEHOLDER


def resolve_workdir(repo_root: Path, rel: Optional[str]) -> tuple[Path, str]:
    """
    Validate a step workdir and map it into the container.

    Returns:
        (host path, container path)

    Raises:
        WorkdirError: If the workdir is absolute, contains '..', or is missing
    """
    if rel is None:
        host, container = repo_root, CONTAINER_WORKDIR
    else:
        if rel.startswith("/"):
            raise WorkdirError(f"step.workdir must be relative (got absolute '{rel}')")
        if ".." in PurePosixPath(rel).parts:
            raise WorkdirError(f"step.workdir must not contain '..' (got '{rel}')")
        host = repo_root / rel
        container = f"{CONTAINER_WORKDIR}/{rel}" if rel else CONTAINER_WORKDIR

    if not host.is_dir():
        raise WorkdirError(f"workdir does not exist: {host}")
    return host, container


def merge_env(profile_env: dict[str, str], step_env: dict[str, str]) -> list[tuple[str, str]]:
    """Profile env then step env; step values win on key collision."""
    merged = dict(profile_env)
    merged.update(step_env)
    return list(merged.items())


def build_run_args(
    repo_root: Path,
    container_workdir: str,
    volumes: CacheVolumes,
    image: str,
    env: list[tuple[str, str]],
    argv: tuple[str, ...],
) -> list[str]:
    """Engine arguments for running one step."""
    args = [
        "run",
        "--rm",
        "--userns=keep-id",
        "-v", f"{volumes.registry}:{MOUNT_REGISTRY}:Z",
        "-v", f"{volumes.vcs_cache}:{MOUNT_VCS_CACHE}:Z",
        "-v", f"{volumes.build_output}:{MOUNT_BUILD_OUTPUT}:Z",
        "-v", f"{repo_root}:{CONTAINER_WORKDIR}:Z",
        "-w", container_workdir,
        "--env", f"CARGO_HOME={TOOLCHAIN_HOME}",
    ]
    for key, value in env:
        args.extend(["--env", f"{key}={value}"])
    args.append(image)
    args.extend(argv)
    return args


@dataclass
class RunRequest:
    """
    What to run.

    Attributes:
        project: Validated project definition
        job_name: Job to run
        repo_root: Repository root mounted at /work
        step: Run only this step instead of the whole step_order
        profile: Profile override (defaults to the job's profile)
        dry_run: Echo commands without contacting the engine
        pull: Pass --pull to template builds
        rebuild: Force a template rebuild without cache
    """
    project: ProjectDef
    job_name: str
    repo_root: Path
    step: Optional[str] = None
    profile: Optional[str] = None
    dry_run: bool = False
    pull: bool = False
    rebuild: bool = False


@dataclass
class RunResult:
    """Outcome of a run; the manifest has already been written."""
    run_id: str
    manifest: Manifest
    manifest_path: Path
    ok: bool
    exit_code: int
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    step_statuses: dict[str, StepStatus] = field(default_factory=dict)


@dataclass
class _PlannedStep:
    name: str
    step: StepDef
    container_workdir: str


@dataclass
class _StepOutcome:
    record: ManifestStep
    ok: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class Executor:
    """
    Run orchestrator.

    Usage:
        engine = ContainerEngine.detect()
        executor = Executor(
            engine=engine,
            store=FileManifestStore(config.state_dir),
            images=ImageResolver(engine, TemplateProvider(), config.cache_dir),
            volumes=VolumeManager(engine),
        )
        result = executor.execute(RunRequest(project, "default", repo_root))
    """

    def __init__(
        self,
        engine: ContainerEngine,
        store: ManifestStore,
        images: ImageResolver,
        volumes: VolumeManager,
        step_timeout_s: Optional[float] = None,
    ):
        self._engine = engine
        self._store = store
        self._images = images
        self._volumes = volumes
        self._step_timeout_s = step_timeout_s

    def _plan(self, request: RunRequest, repo_root: Path) -> tuple[str, list[_PlannedStep]]:
        """Validate everything that can be checked without a subprocess."""
        project = request.project
        job = project.job(request.job_name)
        profile_name = request.profile or job.profile
        profile = project.profile(profile_name)

        if request.step is not None:
            if request.step not in job.steps:
                raise ConfigurationError(
                    f"unknown step '{request.step}' for job '{request.job_name}'"
                )
            names = [request.step]
        else:
            names = list(job.step_order)

        classify_container_ref(profile.container, self._images.provider)

        planned = []
        for name in names:
            step = job.steps[name]
            _, container_workdir = resolve_workdir(repo_root, step.workdir)
            planned.append(_PlannedStep(name=name, step=step, container_workdir=container_workdir))
        return profile_name, planned

    def execute(self, request: RunRequest) -> RunResult:
        """
        Execute a job.

        Raises:
            ConfigurationError: Unknown job/profile/step or malformed container reference
            WorkdirError: Unsafe or missing workdir

        Setup and step failures do not raise; they are recorded in the
        manifest and reflected in the returned RunResult.
        """
        repo_root = Path(request.repo_root).resolve()
        profile_name, planned = self._plan(request, repo_root)

        project = request.project
        job = project.job(request.job_name)
        profile = project.profile(profile_name)
        env_id = fingerprint(project, job, profile, request.job_name, profile_name)
        namespace = namespace_from(project.project, request.job_name, env_id)

        run_id = new_run_id()
        logger.info(
            f"Run {run_id} started",
            extra={
                "event": "run_start",
                "metadata": {
                    "run_id": run_id,
                    "project": project.project,
                    "job": request.job_name,
                    "profile": profile_name,
                    "namespace": namespace,
                    "dry_run": request.dry_run,
                },
            },
        )

        statuses = {p.name: StepStatus.PENDING for p in planned}
        records: list[ManifestStep] = []
        ok, exit_code = True, 0
        error: Optional[str] = None
        error_kind: Optional[ErrorKind] = None
        digest: Optional[str] = None
        digest_status = DigestStatus.UNKNOWN

        try:
            if request.dry_run:
                for p in planned:
                    self._log_step(request.job_name, p.name, "step_start")
                    print_command(list(p.step.run))
                    records.append(ManifestStep(
                        name=p.name, argv=p.step.run, duration_ms=0, exit_code=0,
                    ))
                    statuses[p.name] = StepStatus.SKIPPED
                    self._log_step(request.job_name, p.name, "step_end", status=StepStatus.SKIPPED)
            else:
                try:
                    resolved = self._images.resolve(profile.container, pull=request.pull, rebuild=request.rebuild)
                    digest, digest_status = resolved.digest, resolved.digest_status
                    volumes = self._volumes.ensure_cache_volumes(namespace, env_id)
                except EngineError as e:
                    ok, exit_code = False, 1
                    error = f"environment setup failed: {e}"
                    error_kind = e.kind
                except OSError as e:
                    ok, exit_code = False, 1
                    error = f"environment setup failed: {e}"
                else:
                    logs_dir = self._store.run_dir(run_id) / "logs"
                    for p in planned:
                        statuses[p.name] = StepStatus.RUNNING
                        outcome = self._run_step(
                            request.job_name, p, profile.env, repo_root, resolved.tag, volumes, logs_dir
                        )
                        records.append(outcome.record)
                        if outcome.ok:
                            statuses[p.name] = StepStatus.SUCCEEDED
                            continue
                        statuses[p.name] = StepStatus.FAILED
                        ok = False
                        exit_code = outcome.record.exit_code or 1
                        error, error_kind = outcome.error, outcome.error_kind
                        break
        except BaseException as e:
            # Recorded in the manifest below, then re-raised (including interrupts)
            ok, exit_code = False, 1
            error = f"run aborted: {type(e).__name__}: {e}"
            raise
        finally:
            manifest = Manifest(
                tool_version=__version__,
                timestamp=now_rfc3339(),
                project=project.project,
                job=request.job_name,
                profile=profile_name,
                namespace=namespace,
                env_id=env_id,
                base_image_digest=digest,
                base_image_digest_status=digest_status,
                steps=tuple(records),
                result=ManifestResult(ok=ok, exit_code=exit_code, error=error),
            )
            manifest_path = self._store.write(run_id, manifest)
            logger.info(
                f"Manifest written to {manifest_path}",
                extra={"event": "manifest_written", "metadata": {"run_id": run_id, "path": str(manifest_path)}},
            )

        return RunResult(
            run_id=run_id,
            manifest=manifest,
            manifest_path=manifest_path,
            ok=ok,
            exit_code=exit_code,
            error=error,
            error_kind=error_kind,
            step_statuses=statuses,
        )

    def _run_step(
        self,
        job_name: str,
        planned: _PlannedStep,
        profile_env: dict[str, str],
        repo_root: Path,
        image: str,
        volumes: CacheVolumes,
        logs_dir: Path,
    ) -> _StepOutcome:
        """Run one step, write its logs and build its manifest record."""
        name, step = planned.name, planned.step
        self._log_step(job_name, name, "step_start")
        print_command(list(step.run))

        args = build_run_args(
            repo_root,
            planned.container_workdir,
            volumes,
            image,
            merge_env(profile_env, step.env),
            step.run,
        )

        start = time.monotonic()
        try:
            result = self._engine.run_capture_allow_failure(args, timeout=self._step_timeout_s)
        except EngineError as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            self._log_step(job_name, name, "step_end", status=StepStatus.FAILED)
            return _StepOutcome(
                record=ManifestStep(name=name, argv=step.run, duration_ms=duration_ms, exit_code=1),
                ok=False,
                error=f"step '{name}' failed: {e}",
                error_kind=e.kind,
            )
        duration_ms = int((time.monotonic() - start) * 1000)

        tag = sanitize_for_filename(name)
        stdout_path = logs_dir / f"{tag}.stdout"
        stderr_path = logs_dir / f"{tag}.stderr"
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            stdout_path.write_bytes(result.stdout)
            stderr_path.write_bytes(result.stderr)
        except OSError as e:
            self._log_step(job_name, name, "step_end", status=StepStatus.FAILED)
            return _StepOutcome(
                record=ManifestStep(
                    name=name,
                    argv=step.run,
                    duration_ms=duration_ms,
                    exit_code=result.exit_code or 1,
                ),
                ok=False,
                error=f"step '{name}' failed: could not write logs: {e}",
            )

        record = ManifestStep(
            name=name,
            argv=step.run,
            duration_ms=duration_ms,
            exit_code=result.exit_code,
            stdout_path=f"logs/{tag}.stdout",
            stderr_path=f"logs/{tag}.stderr",
        )

        if result.ok:
            self._log_step(job_name, name, "step_end", status=StepStatus.SUCCEEDED)
            return _StepOutcome(record=record, ok=True)

        err = EngineError(
            classify_failure(result.exit_code, result.stderr),
            self._engine.format_cmd(args),
            exit_code=result.exit_code,
            stdout=truncate_tail(result.stdout),
            stderr=truncate_tail(result.stderr),
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            engine_name=self._engine.name,
        )
        self._log_step(job_name, name, "step_end", status=StepStatus.FAILED)
        return _StepOutcome(
            record=record,
            ok=False,
            error=f"step '{name}' failed: {err}",
            error_kind=err.kind,
        )

    @staticmethod
    def _log_step(job_name: str, step_name: str, event: str, status: Optional[StepStatus] = None) -> None:
        metadata = {"job": job_name, "step": step_name}
        if status is not None:
            metadata["status"] = status.value
        logger.info(f"{event} {step_name}", extra={"event": event, "metadata": metadata})
