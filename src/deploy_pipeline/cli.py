from __future__ import annotations

import argparse
import signal
import threading
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from deploy_pipeline.core import (
    PipelineError,
    ProjectConfigError,
    Settings,
    bind,
    configure_logging,
    get_logger,
    load_settings,
    new_run_id,
)
from deploy_pipeline.pipeline.context import PipelineServices, RunInputs
from deploy_pipeline.pipeline.controller import PipelineController
from deploy_pipeline.pipeline.report import PipelineResult
from deploy_pipeline.pipeline.types import ArtifactRef, StageOutcome, WorkloadRef
from deploy_pipeline.project import ProjectFile, get_project
from deploy_pipeline.stages.build import (
    AnonymousCredentials,
    CredentialProvider,
    DockerCliBuilder,
    EnvCredentialProvider,
)
from deploy_pipeline.stages.changes import GitRevisionProvider
from deploy_pipeline.stages.deploy import KubectlClient

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

_OUTCOME_STYLE = {
    StageOutcome.SUCCEEDED: "green",
    StageOutcome.FAILED: "red",
    StageOutcome.SKIPPED: "dim",
}


def _add_repo_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--repo",
        type=Path,
        default=None,
        help="Repository root (default: DEPLOY_PIPELINE_REPO_PATH or the current directory).",
    )
    p.add_argument(
        "--project",
        type=Path,
        default=None,
        help=(
            "Project file. If omitted: DEPLOY_PIPELINE_PROJECT_FILE, "
            "{repo}/deploy-pipeline.yaml, ./deploy-pipeline.yaml, then built-in defaults."
        ),
    )


def _add_revision_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base", required=True, help="Base revision (e.g. origin/main)")
    p.add_argument("--head", required=True, help="Head revision (e.g. HEAD)")


def _add_cluster_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--context", default=None, help="kubectl context to target")
    p.add_argument("--kubeconfig", type=Path, default=None, help="kubeconfig path")
    p.add_argument("--run-root", type=Path, default=None, help="Where run directories go")
    p.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between rollout status polls",
    )
    p.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Seconds to wait for the rollout to become healthy",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="deploy-pipeline")
    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Analyze, build, deploy and verify")
    _add_repo_args(run)
    _add_revision_args(run)
    _add_cluster_args(run)
    run.add_argument(
        "--image",
        default=None,
        help="Image repository[:tag] to publish (default tag: DEPLOY_PIPELINE_IMAGE_TAG)",
    )
    run.add_argument(
        "--lock-wait",
        type=float,
        default=None,
        help="Seconds to wait for another run on the same workload",
    )
    run.add_argument(
        "--no-lock",
        action="store_true",
        help="Do not serialize runs on the same workload",
    )

    plan = sub.add_parser("plan", help="Show which stages a change would run")
    _add_repo_args(plan)
    _add_revision_args(plan)

    verify = sub.add_parser("verify", help="Verify an already triggered rollout")
    _add_repo_args(verify)
    _add_cluster_args(verify)
    verify.add_argument(
        "--workload",
        default=None,
        help="kind/namespace/name (default: the project's workload)",
    )

    return p


def _settings_for(args: argparse.Namespace) -> Settings:
    """CLI flags win over environment and .env settings."""
    overrides: dict[str, Any] = {}
    for attr, field in (
        ("repo", "repo_path"),
        ("project", "project_file"),
        ("run_root", "run_root"),
        ("context", "kube_context"),
        ("kubeconfig", "kubeconfig"),
        ("poll_interval", "poll_interval_s"),
        ("deadline", "rollout_deadline_s"),
        ("lock_wait", "lock_wait_s"),
    ):
        value = getattr(args, attr, None)
        if value is not None:
            overrides[field] = value
    return load_settings().model_copy(update=overrides)


def parse_workload(value: str) -> WorkloadRef:
    parts = [p for p in value.split("/") if p]
    if len(parts) == 2:
        return WorkloadRef(kind=parts[0], name=parts[1])
    if len(parts) == 3:
        return WorkloadRef(kind=parts[0], namespace=parts[1], name=parts[2])
    raise ValueError(f"expected kind/namespace/name, got {value!r}")


def _image_for(
    args: argparse.Namespace, s: Settings, project: ProjectFile
) -> ArtifactRef | None:
    value = (
        getattr(args, "image", None)
        or project.build.image_repository
        or s.image_repository
    )
    if not value:
        return None
    return ArtifactRef.parse(value, default_tag=s.image_tag)


def _credentials_for(s: Settings) -> CredentialProvider:
    if s.registry_username or s.registry_password is not None:
        return EnvCredentialProvider(s)
    # Fall back to whatever `docker login` has already stored.
    return AnonymousCredentials()


def _install_cancel_handlers(cancel: threading.Event) -> None:
    def _handler(signum: int, _frame: object) -> None:
        console.print(f"[yellow]{signal.Signals(signum).name} received, cancelling[/yellow]")
        cancel.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _render_result(result: PipelineResult, report_path: Path) -> None:
    tbl = Table(title="Stages", show_header=True)
    tbl.add_column("stage")
    tbl.add_column("outcome")
    tbl.add_column("duration")
    tbl.add_column("detail")
    for s in result.stages:
        style = _OUTCOME_STYLE[s.status]
        if s.status == StageOutcome.SKIPPED:
            detail = s.skip_reason or ""
        elif s.status == StageOutcome.FAILED:
            detail = s.failure_reason or ""
        else:
            detail = ""
        tbl.add_row(
            s.stage, f"[{style}]{s.status.value}[/{style}]", f"{s.duration_ms} ms", detail
        )
    console.print(tbl)

    summary = Table(title="Result", show_header=False, box=None)
    summary.add_row(
        "status", "[green]ok[/green]" if result.ok else "[red]failed[/red]"
    )
    summary.add_row(
        "rollout",
        result.rollout_status.value if result.rollout_status else "not verified",
    )
    if result.failure is not None:
        summary.add_row(
            "failure",
            f"{result.failure.stage}: {result.failure.reason} ({result.failure.message})",
        )
    summary.add_row("report", str(report_path))
    console.print(summary)


def _cmd_plan(args: argparse.Namespace, s: Settings, project: ProjectFile) -> int:
    repo_root = Path(s.repo_path)
    revisions = GitRevisionProvider(repo_root)
    try:
        controller = PipelineController(
            PipelineServices(revisions=revisions, cluster=KubectlClient()),
            run_root=s.run_root,
            logger=get_logger("deploy_pipeline"),
        )
        inputs = RunInputs(
            base=args.base, head=args.head, repo_root=repo_root, project=project
        )
        change_set, decision = controller.plan(inputs)
    except PipelineError as exc:
        console.print(f"[red]{type(exc).__name__}[/red]: {exc}")
        return EXIT_FAILED
    finally:
        revisions.close()

    tbl = Table(title=f"{change_set.base}..{change_set.head}", show_header=True)
    tbl.add_column("path group")
    tbl.add_column("changed")
    for name, changed in change_set.groups.items():
        tbl.add_row(name, "[yellow]yes[/yellow]" if changed else "no")
    console.print(tbl)
    console.print(
        f"build: [bold]{'run' if decision.build else 'skip'}[/bold]  "
        f"deploy: [bold]{'run' if decision.deploy else 'skip'}[/bold]  "
        f"({len(change_set.paths)} changed path(s))"
    )
    return EXIT_OK


def _cmd_run_or_verify(args: argparse.Namespace, s: Settings, project: ProjectFile) -> int:
    repo_root = Path(s.repo_path)
    cluster = KubectlClient(
        context=s.kube_context, kubeconfig=s.kubeconfig, timeout_s=s.kubectl_timeout_s
    )
    revisions = GitRevisionProvider(repo_root)

    workload: WorkloadRef | None = None
    image: ArtifactRef | None = None
    try:
        if args.cmd == "verify" and args.workload:
            workload = parse_workload(args.workload)
        if args.cmd == "run":
            image = _image_for(args, s, project)
    except ValueError as exc:
        console.print(f"[red]usage error[/red]: {exc}")
        return EXIT_USAGE

    if s.poll_interval_s * 10 > s.rollout_deadline_s:
        console.print(
            "[red]usage error[/red]: poll interval must be at most a tenth of the deadline"
        )
        return EXIT_USAGE

    run_id = new_run_id()
    bind(run_id=run_id, command=args.cmd)

    cancel = threading.Event()
    _install_cancel_handlers(cancel)

    controller = PipelineController(
        PipelineServices(
            revisions=revisions,
            cluster=cluster,
            builder=DockerCliBuilder(),
            credentials=_credentials_for(s),
        ),
        run_root=s.run_root,
        logger=get_logger("deploy_pipeline"),
        lock=not getattr(args, "no_lock", False),
        cancel=cancel,
    )
    inputs = RunInputs(
        base=getattr(args, "base", None) or "HEAD",
        head=getattr(args, "head", None) or "HEAD",
        repo_root=repo_root,
        project=project,
        image=image,
        poll_interval_s=s.poll_interval_s,
        deadline_s=s.rollout_deadline_s,
        lock_wait_s=s.lock_wait_s,
    )

    console.print(
        Panel.fit(
            Text(
                f"deploy-pipeline - {args.cmd}\nrun_id={run_id}\n"
                f"{inputs.base}..{inputs.head}"
                + (f"\nimage={image.reference}" if image else ""),
                style="bold",
            ),
            title="Run",
        )
    )

    try:
        if args.cmd == "verify":
            result = controller.verify(inputs, workload=workload, run_id=run_id)
        else:
            result = controller.run(inputs, run_id=run_id)
    finally:
        revisions.close()

    _render_result(result, Path(s.run_root) / run_id / "run_report.json")
    return result.exit_code


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    s = _settings_for(args)
    configure_logging(level=s.log_level, fmt=s.log_format)

    try:
        project = get_project(s.project_file, repo_root=Path(s.repo_path))
    except ProjectConfigError as exc:
        console.print(f"[red]project error[/red]: {exc}")
        return EXIT_USAGE

    if args.cmd == "plan":
        return _cmd_plan(args, s, project)
    return _cmd_run_or_verify(args, s, project)


if __name__ == "__main__":
    raise SystemExit(main())
