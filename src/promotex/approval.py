"""Approval gate: decide which source tag gets promoted."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

import click
import typer

from promotex.errors import ApprovalTimeout

logger = logging.getLogger(__name__)

PromptFn = Callable[[str], str]


def approval_message(release_version: str) -> str:
    return f"Release version {release_version}: enter the source image tag to promote"


def resolve_source_tag(
    release_version: str,
    *,
    supplied: str | None = None,
    prompt: PromptFn | None = None,
    timeout_seconds: float = 120.0,
) -> str:
    """
    Resolve the SourceTag for this run.

    A pre-supplied tag is used as-is with no interaction. Otherwise a human is
    asked for one and the wait is cut off after ``timeout_seconds``.

    Raises:
        ApprovalTimeout: If no non-empty answer arrives before the deadline
    """
    if supplied is not None and supplied.strip():
        logger.info("Using pre-supplied source tag %s", supplied.strip())
        return supplied.strip()

    ask = prompt or _typer_prompt
    message = approval_message(release_version)
    stop = threading.Event()
    answer = wait_for_answer(lambda: _ask_until_answered(ask, message, stop), timeout_seconds, stop=stop)
    logger.info("Operator selected source tag %s", answer)
    return answer


def wait_for_answer(
    ask: Callable[[], str], timeout_seconds: float, *, stop: threading.Event | None = None
) -> str:
    """Run a blocking prompt on a worker thread with an explicit deadline.

    ``stop`` is set when the deadline passes so a looping worker can exit.
    """
    answers: queue.Queue[tuple[str | None, BaseException | None]] = queue.Queue(maxsize=1)

    def _worker() -> None:
        try:
            answers.put((ask(), None))
        except BaseException as exc:  # handed back to the waiting thread
            answers.put((None, exc))

    thread = threading.Thread(target=_worker, name="promotex-approval", daemon=True)
    thread.start()

    try:
        answer, error = answers.get(timeout=timeout_seconds)
    except queue.Empty:
        if stop is not None:
            stop.set()
        raise ApprovalTimeout(f"No source tag entered within {timeout_seconds:g}s") from None

    if isinstance(error, (EOFError, click.Abort)):
        raise ApprovalTimeout("Approval input closed before a source tag was entered") from error
    if error is not None:
        raise error
    assert answer is not None
    return answer


def _ask_until_answered(ask: PromptFn, message: str, stop: threading.Event) -> str:
    while not stop.is_set():
        value = (ask(message) or "").strip()
        if value:
            return value
    return ""


def _typer_prompt(message: str) -> str:
    return str(typer.prompt(message, default="", show_default=False))
