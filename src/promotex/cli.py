"""promotex CLI - promote a tagged image artifact to production."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer

from promotex import __version__
from promotex.artifacts import REPORT_JSON, default_run_dir, write_promotion_artifacts
from promotex.cluster.credentials import EnvCredentialProvider
from promotex.cluster.oc import OcSessionFactory
from promotex.cluster.types import SessionFactory
from promotex.config import PromotionConfig, load_config
from promotex.errors import ArtifactNotFound, ConfigError, PromotionError
from promotex.notify import notifier_from_config
from promotex.pipeline.orchestrator import PromotionOrchestrator
from promotex.pipeline.stages import check_artifact as check_artifact_impl
from promotex.pipeline.types import RunResult
from promotex.ui import configure_logging, console, render_summary, spin
from promotex.version import read_release_version

cli = typer.Typer(
    name="promotex",
    help="promotex - gated promotion of tagged image artifacts to production",
    no_args_is_help=True,
)

EXIT_CODES: dict[RunResult, int] = {
    RunResult.RELEASED: 0,
    RunResult.PLANNED: 0,
    RunResult.ABORTED: 2,
    RunResult.FAILED: 1,
}


def build_session_factory(config: PromotionConfig) -> SessionFactory:
    return OcSessionFactory(config, EnvCredentialProvider())


def _version_option_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@cli.callback()
def _cli_callback(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show promotex version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every oc call."),
) -> None:
    """promotex - gated promotion of tagged image artifacts to production."""
    configure_logging(verbose)


def _load(config_path: Path | None, overrides: dict[str, Any]) -> PromotionConfig:
    try:
        return load_config(config_path, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        raise typer.Exit(1) from exc


@cli.command()
def promote(
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="YAML config file (default ./promotex.yaml when present)",
    ),
    source_tag: str | None = typer.Option(
        None,
        "--source-tag",
        help="Source image tag to promote; skips the approval prompt",
    ),
    version_file: Path | None = typer.Option(
        None,
        "--version-file",
        help="File holding the release version",
    ),
    approval_timeout: float | None = typer.Option(
        None,
        "--approval-timeout",
        help="Seconds to wait for an operator to enter a source tag",
    ),
    rollout_timeout: float | None = typer.Option(
        None,
        "--rollout-timeout",
        help="Seconds to wait for the rollout to finish",
    ),
    notify_on_abort: bool | None = typer.Option(
        None,
        "--notify-on-abort/--no-notify-on-abort",
        help="Send a notification when the source tag does not exist",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Run read-only checks and print planned mutations",
    ),
    run_dir: Path | None = typer.Option(
        None,
        "--run-dir",
        help="Directory for PROMOTION_REPORT.json (default out/promotions/<stream>/<version>)",
    ),
    timestamp_mode: str = typer.Option(
        "wallclock",
        help="Timestamp mode: deterministic or wallclock",
    ),
) -> None:
    """Promote the approved source tag to production and verify the rollout."""
    config = _load(
        config_path,
        {
            "release_version_tag": source_tag,
            "version_file": version_file,
            "approval_timeout_seconds": approval_timeout,
            "rollout_timeout_seconds": rollout_timeout,
            "notify_on_abort": notify_on_abort,
        },
    )

    try:
        orchestrator = PromotionOrchestrator(
            config,
            build_session_factory(config),
            notifier_from_config(config, console),
            dry_run=dry_run,
            timestamp_mode=timestamp_mode,
            spinner=spin,
        )
        console.print(f"[cyan]Promoting image stream:[/cyan] {config.image_stream_name}")
        report = orchestrator.run()

        selected_run_dir = run_dir or default_run_dir(Path.cwd(), report.image_stream, report.release_version)
        write_promotion_artifacts(selected_run_dir, report)
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e

    render_summary(report)
    if report.planned_mutations:
        console.print("[cyan]Planned mutations:[/cyan]")
        for item in report.planned_mutations:
            console.print(f"  - {item}")
    console.print(f"[cyan]Report:[/cyan] {selected_run_dir / REPORT_JSON}")

    result = report.result or RunResult.FAILED
    if result is RunResult.RELEASED:
        console.print(f"[green]✓ Released {report.image_stream} {report.release_version}[/green]")
    elif result is RunResult.ABORTED:
        console.print("[yellow]Promotion aborted: nothing to promote[/yellow]")
    elif result is RunResult.FAILED:
        console.print(f"[red]✗ Promotion failed ({report.error_code})[/red]")
    raise typer.Exit(EXIT_CODES[result])


@cli.command("resolve-version")
def resolve_version(
    version_file: Path = typer.Option(
        Path("VERSION"),
        "--version-file",
        help="File holding the release version",
    ),
) -> None:
    """Print the release version from the tracked version file."""
    try:
        typer.echo(read_release_version(version_file))
    except PromotionError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e


@cli.command("check-artifact")
def check_artifact(
    source_tag: str = typer.Argument(..., help="Source image tag to look up"),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="YAML config file (default ./promotex.yaml when present)",
    ),
) -> None:
    """Check that a source tag exists in the source registry (exit 2 when absent)."""
    config = _load(config_path, {})
    target = config.target

    try:
        with build_session_factory(config).registry_session() as registry:
            check_artifact_impl(registry, target, source_tag)
    except ArtifactNotFound as e:
        console.print(f"[yellow]✗ {e}[/yellow]")
        raise typer.Exit(2) from e
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[green]✓ {target.source_ref(source_tag)} exists[/green]")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
