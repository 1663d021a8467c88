"""Promotion orchestrator: the stage state machine.

One state per stage. Each stage handler returns a typed StageOutcome and
``next_stage`` maps (stage, transition) to the following stage, so the run
is a plain loop over explicit transitions:

    resolve_version -> approval -> check_artifact -> tag -> apply -> rollout -> notify -> done

Any ``abort`` or ``fail`` transition jumps straight to ``notify``. Registry
stages share one scoped session and production stages share another; a
session is closed as soon as the run leaves its group.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import ExitStack
from pathlib import Path
from typing import Any, TypeVar

from promotex.approval import PromptFn, resolve_source_tag
from promotex.artifacts.writer import timestamp_for
from promotex.cluster.types import DeploymentClient, RegistryClient, RenderedObjectSet, SessionFactory
from promotex.config import PromotionConfig
from promotex.errors import (
    ApplyFailed,
    ArtifactNotFound,
    CredentialError,
    PromotionError,
    RegistryUnavailable,
)
from promotex.exec import ExecError
from promotex.notify import NotificationSink, build_notification
from promotex.pipeline.rollout import Clock, RolloutWatcher, Sleep, select_deployment
from promotex.pipeline.stages import apply_production, check_artifact, planned_mutations, tag_release
from promotex.pipeline.types import (
    PromotionReport,
    RunResult,
    Stage,
    StageOutcome,
    StageRecord,
    Transition,
)
from promotex.version import read_release_version

logger = logging.getLogger(__name__)

_T = TypeVar("_T")
SpinnerFn = Callable[[str, Callable[[], Any]], Any]

STAGE_ORDER: tuple[Stage, ...] = (
    Stage.RESOLVE_VERSION,
    Stage.APPROVAL,
    Stage.CHECK_ARTIFACT,
    Stage.TAG,
    Stage.APPLY,
    Stage.ROLLOUT,
    Stage.NOTIFY,
    Stage.DONE,
)

REGISTRY_GROUP = "registry"
PRODUCTION_GROUP = "production"

STAGE_GROUPS: dict[Stage, str] = {
    Stage.CHECK_ARTIFACT: REGISTRY_GROUP,
    Stage.TAG: REGISTRY_GROUP,
    Stage.APPLY: PRODUCTION_GROUP,
    Stage.ROLLOUT: PRODUCTION_GROUP,
}


def next_stage(stage: Stage, transition: Transition) -> Stage:
    """Pure transition function of the promotion state machine."""
    if stage is Stage.DONE:
        raise ValueError("no transition out of done")
    if stage is Stage.NOTIFY or transition is Transition.STOP:
        return Stage.DONE
    if transition in (Transition.ABORT, Transition.FAIL):
        return Stage.NOTIFY
    return STAGE_ORDER[STAGE_ORDER.index(stage) + 1]


def result_for(stage: Stage, transition: Transition) -> RunResult | None:
    """Terminal RunResult implied by a transition, if any."""
    if transition is Transition.ABORT:
        return RunResult.ABORTED
    if transition is Transition.FAIL:
        return RunResult.FAILED
    if transition is Transition.STOP:
        return RunResult.PLANNED
    if stage is Stage.ROLLOUT and transition is Transition.ADVANCE:
        return RunResult.RELEASED
    return None


class PromotionOrchestrator:
    """Drives one promotion run from version lookup to notification."""

    def __init__(
        self,
        config: PromotionConfig,
        sessions: SessionFactory,
        notifier: NotificationSink,
        *,
        source_tag: str | None = None,
        prompt: PromptFn | None = None,
        dry_run: bool = False,
        workdir: Path | None = None,
        timestamp_mode: str = "deterministic",
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
        spinner: SpinnerFn | None = None,
    ):
        self.config = config
        self.sessions = sessions
        self.notifier = notifier
        self.supplied_tag = source_tag if source_tag is not None else config.release_version_tag
        self.prompt = prompt
        self.dry_run = dry_run
        self.workdir = workdir or Path.cwd()
        self.timestamp_mode = timestamp_mode
        self.clock = clock
        self.sleep = sleep
        self.spinner = spinner

        self.report = PromotionReport(image_stream=config.image_stream_name, dry_run=dry_run)
        self._rendered: RenderedObjectSet | None = None
        self._group: str | None = None
        self._group_stack = ExitStack()
        self._client: Any = None

        self._handlers: dict[Stage, Callable[[], StageOutcome]] = {
            Stage.RESOLVE_VERSION: self._resolve_version,
            Stage.APPROVAL: self._approve,
            Stage.CHECK_ARTIFACT: self._check_artifact,
            Stage.TAG: self._tag,
            Stage.APPLY: self._apply,
            Stage.ROLLOUT: self._rollout,
            Stage.NOTIFY: self._notify,
        }

    def run(self) -> PromotionReport:
        """Run every stage in order and return the finished report."""
        report = self.report
        report.started_at = timestamp_for(self.timestamp_mode)
        target = self.config.target
        report.target = {
            "source_project": target.source_project,
            "source_stream": target.source_stream,
            "dest_project": target.dest_project,
            "dest_stream": target.dest_stream,
        }

        stage = Stage.RESOLVE_VERSION
        try:
            while stage is not Stage.DONE:
                outcome = self._run_stage(stage)
                report.stages.append(StageRecord(stage, outcome.transition, outcome.detail))
                logger.info("%s -> %s %s", stage.value, outcome.transition.value, outcome.detail)

                result = result_for(stage, outcome.transition)
                if result is not None and report.result is None:
                    report.result = result
                if outcome.error_code and report.error_code is None:
                    report.error_code = outcome.error_code
                    report.error_message = outcome.detail

                stage = next_stage(stage, outcome.transition)
        finally:
            self._leave_group()
            report.finished_at = timestamp_for(self.timestamp_mode)

        return report

    def _run_stage(self, stage: Stage) -> StageOutcome:
        try:
            self._enter_group(STAGE_GROUPS.get(stage))
            return self._handlers[stage]()
        except ArtifactNotFound as exc:
            return StageOutcome(Transition.ABORT, str(exc), exc.code)
        except (PromotionError, CredentialError) as exc:
            return StageOutcome(Transition.FAIL, str(exc), exc.code)
        except Exception as exc:
            logger.exception("Unexpected error in stage %s", stage.value)
            return StageOutcome(Transition.FAIL, f"{type(exc).__name__}: {exc}", "UNEXPECTED_ERROR")

    # -- session groups -------------------------------------------------

    def _enter_group(self, group: str | None) -> None:
        if group == self._group:
            return
        self._leave_group()
        if group is None:
            return

        opener = self.sessions.registry_session if group == REGISTRY_GROUP else self.sessions.production_session
        stack = ExitStack()
        try:
            self._client = stack.enter_context(opener())
        except ExecError as exc:
            stack.close()
            error_cls = RegistryUnavailable if group == REGISTRY_GROUP else ApplyFailed
            raise error_cls(f"Could not open {group} session: {exc}") from exc
        except BaseException:
            stack.close()
            raise
        self._group_stack = stack
        self._group = group
        logger.debug("opened %s session", group)

    def _leave_group(self) -> None:
        if self._group is None:
            return
        group = self._group
        self._group = None
        self._client = None
        self._group_stack.close()
        logger.debug("closed %s session", group)

    # -- stages ---------------------------------------------------------

    def _resolve_version(self) -> StageOutcome:
        version_file = self.config.version_file
        if not version_file.is_absolute():
            version_file = self.workdir / version_file
        self.report.release_version = read_release_version(version_file)
        return StageOutcome(Transition.ADVANCE, self.report.release_version)

    def _approve(self) -> StageOutcome:
        assert self.report.release_version is not None
        self.report.source_tag = resolve_source_tag(
            self.report.release_version,
            supplied=self.supplied_tag,
            prompt=self.prompt,
            timeout_seconds=self.config.approval_timeout_seconds,
        )
        return StageOutcome(Transition.ADVANCE, self.report.source_tag)

    def _check_artifact(self) -> StageOutcome:
        registry: RegistryClient = self._client
        assert self.report.source_tag is not None
        check_artifact(registry, self.config.target, self.report.source_tag)
        detail = self.config.target.source_ref(self.report.source_tag)

        if self.dry_run:
            assert self.report.release_version is not None
            self.report.planned_mutations = planned_mutations(
                self.config, self.report.source_tag, self.report.release_version
            )
            return StageOutcome(Transition.STOP, f"{detail} (dry run)")
        return StageOutcome(Transition.ADVANCE, detail)

    def _tag(self) -> StageOutcome:
        registry: RegistryClient = self._client
        assert self.report.source_tag is not None and self.report.release_version is not None
        applied = tag_release(
            registry,
            self.config.target,
            self.report.source_tag,
            self.report.release_version,
            self.report.mutations,
        )
        return StageOutcome(Transition.ADVANCE, ", ".join(applied))

    def _apply(self) -> StageOutcome:
        deployment: DeploymentClient = self._client
        assert self.report.release_version is not None
        self._rendered = apply_production(
            deployment, self.config, self.report.release_version, self.report.mutations
        )
        return StageOutcome(Transition.ADVANCE, f"{len(self._rendered)} object(s) applied")

    def _rollout(self) -> StageOutcome:
        deployment: DeploymentClient = self._client
        assert self._rendered is not None
        dc = select_deployment(self._rendered, self.config.app_dc_name)
        watcher = RolloutWatcher(
            deployment,
            dc,
            timeout_seconds=self.config.rollout_timeout_seconds,
            poll_interval_seconds=self.config.rollout_poll_interval_seconds,
            clock=self.clock,
            sleep=self.sleep,
        )
        try:
            watcher.trigger()
            self.report.mutations.append(f"rollout deploymentconfig/{dc.name}")
            self._with_spinner(f"Waiting for rollout of {dc.name}", watcher.wait)
        finally:
            self.report.rollout_state = watcher.state
        return StageOutcome(Transition.ADVANCE, f"deploymentconfig/{dc.name} {watcher.state.value}")

    def _notify(self) -> StageOutcome:
        report = self.report
        result = report.result
        if self.dry_run:
            report.notification = "skipped"
            return StageOutcome(Transition.ADVANCE, "dry run, no notification")
        if result is None or result is RunResult.PLANNED:
            report.notification = "skipped"
            return StageOutcome(Transition.ADVANCE, "no notification")
        if result is RunResult.ABORTED and not self.config.notify_on_abort:
            report.notification = "skipped"
            return StageOutcome(Transition.ADVANCE, "abort notification disabled")

        notification = build_notification(
            result,
            image_stream=self.config.image_stream_name,
            release_version=report.release_version,
            run_url=self.config.run_url,
            source_tag=report.source_tag,
            error_message=report.error_message,
        )
        try:
            self.notifier.send(notification)
        except Exception as exc:
            logger.error("Sending %s notification failed: %s", result.value, exc)
            report.notification = "error"
            report.notification_error = str(exc)
            return StageOutcome(Transition.ADVANCE, f"{result.value} notification failed")

        report.notification = "sent"
        return StageOutcome(Transition.ADVANCE, f"{result.value} notification sent")

    def _with_spinner(self, message: str, fn: Callable[[], _T]) -> _T:
        if self.spinner is None:
            return fn()
        return self.spinner(message, fn)
