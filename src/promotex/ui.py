from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from promotex.pipeline.types import PromotionReport, RunResult

_T = TypeVar("_T")

console = Console()

RESULT_STYLES: dict[RunResult, str] = {
    RunResult.RELEASED: "bold green",
    RunResult.ABORTED: "bold yellow",
    RunResult.FAILED: "bold red",
    RunResult.PLANNED: "bold cyan",
}


def spinner_enabled() -> bool:
    return os.getenv("PROMOTEX_SPINNER", "1") == "1"


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose, markup=False)],
        force=True,
    )


@dataclass(frozen=True)
class Spinner:
    message: str

    def run(self, fn: Callable[[], _T]) -> _T:
        if not spinner_enabled():
            return fn()

        with Progress(
            SpinnerColumn(style="bright_cyan"),
            TextColumn("[bold cyan]{task.description}[/bold cyan]"),
            TimeElapsedColumn(),
            transient=True,
            console=console,
        ) as prog:
            task_id = prog.add_task(self.message, total=None)
            try:
                return fn()
            finally:
                prog.update(task_id, completed=1)


def spin(message: str, fn: Callable[[], _T]) -> _T:
    return Spinner(message).run(fn)


def render_summary(report: PromotionReport) -> None:
    result = report.result or RunResult.FAILED
    table = Table(title="Promotion", show_header=False, box=None)
    table.add_column("field", style="dim")
    table.add_column("value")
    table.add_row("result", Text(result.value, style=RESULT_STYLES[result]))
    table.add_row("image stream", report.image_stream)
    table.add_row("release version", str(report.release_version))
    table.add_row("source tag", str(report.source_tag))
    table.add_row("rollout", report.rollout_state.value)
    table.add_row("notification", report.notification)
    if report.error_code:
        table.add_row("error", Text(f"{report.error_code} {report.error_message}", style="red"))
    console.print(table)
