"""Promotion pipeline types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Stage(str, Enum):
    """One state per pipeline stage, in execution order."""

    RESOLVE_VERSION = "resolve_version"
    APPROVAL = "approval"
    CHECK_ARTIFACT = "check_artifact"
    TAG = "tag"
    APPLY = "apply"
    ROLLOUT = "rollout"
    NOTIFY = "notify"
    DONE = "done"


class RunResult(str, Enum):
    RELEASED = "released"
    ABORTED = "aborted"
    FAILED = "failed"
    PLANNED = "planned"  # dry run only


class RolloutOutcome(str, Enum):
    """Observed result of one rollout status probe."""

    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RolloutState(str, Enum):
    NOT_STARTED = "not_started"
    TRIGGERED = "rollout_triggered"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in {RolloutState.SUCCEEDED, RolloutState.FAILED, RolloutState.TIMED_OUT}


class Transition(str, Enum):
    """Typed result of running one stage."""

    ADVANCE = "advance"
    ABORT = "abort"
    FAIL = "fail"
    STOP = "stop"  # dry run ends after the read-only stages


@dataclass(frozen=True)
class StageOutcome:
    transition: Transition
    detail: str = ""
    error_code: str | None = None


@dataclass
class StageRecord:
    stage: Stage
    transition: Transition
    detail: str


@dataclass
class PromotionReport:
    """Everything one run did, written as PROMOTION_REPORT.json."""

    image_stream: str
    result: RunResult | None = None
    release_version: str | None = None
    source_tag: str | None = None
    target: dict[str, str] = field(default_factory=dict)
    stages: list[StageRecord] = field(default_factory=list)
    mutations: list[str] = field(default_factory=list)
    planned_mutations: list[str] = field(default_factory=list)
    rollout_state: RolloutState = RolloutState.NOT_STARTED
    error_code: str | None = None
    error_message: str | None = None
    notification: str = "not_sent"
    notification_error: str | None = None
    dry_run: bool = False
    started_at: str = ""
    finished_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_stream": self.image_stream,
            "result": self.result.value if self.result else None,
            "release_version": self.release_version,
            "source_tag": self.source_tag,
            "target": dict(self.target),
            "stages": [
                {"stage": r.stage.value, "transition": r.transition.value, "detail": r.detail}
                for r in self.stages
            ],
            "mutations": list(self.mutations),
            "planned_mutations": list(self.planned_mutations),
            "rollout_state": self.rollout_state.value,
            "error": {"code": self.error_code, "message": self.error_message},
            "notification": {"status": self.notification, "error": self.notification_error},
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
