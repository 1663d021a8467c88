"""Tests for the promotion orchestrator state machine."""

from __future__ import annotations

from pathlib import Path

import pytest

from promotex.errors import ApprovalTimeout
from promotex.pipeline.orchestrator import PromotionOrchestrator, next_stage, result_for
from promotex.pipeline.types import RolloutOutcome, RolloutState, RunResult, Stage, Transition
from tests.unit.promotex.fakes import (
    FakeClock,
    FakeDeployment,
    FakeRegistry,
    FakeSessions,
    RecordingNotifier,
    make_config,
)


@pytest.fixture
def version_21(tmp_path: Path) -> Path:
    version_file = tmp_path / "VERSION"
    version_file.write_text("2.1\n", encoding="utf-8")
    return version_file


def _orchestrator(tmp_path: Path, registry, deployment, notifier, **kwargs):
    config_overrides = kwargs.pop("config", {})
    config = make_config(tmp_path, **config_overrides)
    clock = kwargs.pop("clock", FakeClock())
    return PromotionOrchestrator(
        config,
        FakeSessions(registry, deployment),
        notifier,
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


class TestTransitions:
    def test_advance_follows_stage_order(self):
        assert next_stage(Stage.RESOLVE_VERSION, Transition.ADVANCE) is Stage.APPROVAL
        assert next_stage(Stage.CHECK_ARTIFACT, Transition.ADVANCE) is Stage.TAG
        assert next_stage(Stage.ROLLOUT, Transition.ADVANCE) is Stage.NOTIFY
        assert next_stage(Stage.NOTIFY, Transition.ADVANCE) is Stage.DONE

    def test_abort_and_fail_jump_to_notify(self):
        assert next_stage(Stage.CHECK_ARTIFACT, Transition.ABORT) is Stage.NOTIFY
        assert next_stage(Stage.TAG, Transition.FAIL) is Stage.NOTIFY
        assert next_stage(Stage.RESOLVE_VERSION, Transition.FAIL) is Stage.NOTIFY

    def test_stop_ends_run(self):
        assert next_stage(Stage.CHECK_ARTIFACT, Transition.STOP) is Stage.DONE

    def test_done_has_no_transition(self):
        with pytest.raises(ValueError):
            next_stage(Stage.DONE, Transition.ADVANCE)

    def test_only_rollout_success_releases(self):
        assert result_for(Stage.TAG, Transition.ADVANCE) is None
        assert result_for(Stage.ROLLOUT, Transition.ADVANCE) is RunResult.RELEASED
        assert result_for(Stage.CHECK_ARTIFACT, Transition.ABORT) is RunResult.ABORTED
        assert result_for(Stage.APPLY, Transition.FAIL) is RunResult.FAILED


def test_existing_tag_is_released(tmp_path: Path, version_21: Path):
    registry = FakeRegistry(tags={"myapp-tools/myapp:2.1-8"})
    deployment = FakeDeployment()
    notifier = RecordingNotifier()

    report = _orchestrator(tmp_path, registry, deployment, notifier, source_tag="2.1-8").run()

    assert report.result is RunResult.RELEASED
    assert report.release_version == "2.1"
    assert registry.tag_calls == [
        ("myapp-tools/myapp:2.1-8", "myapp-tools/myapp:2.1"),
        ("myapp-tools/myapp:2.1-8", "myapp-tools/myapp:latest"),
    ]
    assert deployment.names() == [
        "apply_file",
        "process_and_apply",
        "delete",
        "trigger_rollout",
        "rollout_status",
    ]
    _, (template, params) = deployment.calls[1]
    assert template.endswith("app.yaml")
    assert params["TAG"] == "2.1"
    assert params["IMAGESTREAM_TAG"] == "2.1"
    assert params["REGISTRY"] == "docker-registry.default.svc:5000"
    assert params["REGISTRY_PROJECT"] == "myapp-tools"
    assert ("delete", ("BuildConfig", "myapp")) in deployment.calls
    assert report.rollout_state is RolloutState.SUCCEEDED

    assert len(notifier.sent) == 1
    assert notifier.sent[0].result is RunResult.RELEASED
    assert "2.1" in notifier.sent[0].subject
    assert "https://ci.example.com/job/promote/42" in notifier.sent[0].body
    assert report.notification == "sent"


def test_missing_tag_aborts_without_cluster_calls(tmp_path: Path, version_21: Path):
    registry = FakeRegistry(tags={"myapp-tools/myapp:2.1-8"})
    deployment = FakeDeployment()
    notifier = RecordingNotifier()
    orchestrator = _orchestrator(tmp_path, registry, deployment, notifier, source_tag="2.1-9")

    report = orchestrator.run()

    assert report.result is RunResult.ABORTED
    assert report.error_code == "ARTIFACT_NOT_FOUND"
    assert registry.tag_calls == []
    assert deployment.calls == []
    assert report.mutations == []
    assert notifier.sent == []
    assert report.notification == "skipped"
    assert "open production" not in orchestrator.sessions.events


def test_abort_notifies_when_enabled(tmp_path: Path, version_21: Path):
    notifier = RecordingNotifier()
    report = _orchestrator(
        tmp_path,
        FakeRegistry(),
        FakeDeployment(),
        notifier,
        source_tag="2.1-9",
        config={"notify_on_abort": True},
    ).run()

    assert report.result is RunResult.ABORTED
    assert [n.result for n in notifier.sent] == [RunResult.ABORTED]
    assert "aborted" in notifier.sent[0].subject


def test_retagging_is_idempotent(tmp_path: Path, version_21: Path):
    registry = FakeRegistry(tags={"myapp-tools/myapp:2.1-8"})

    for _ in range(2):
        report = _orchestrator(
            tmp_path, registry, FakeDeployment(), RecordingNotifier(), source_tag="2.1-8"
        ).run()
        assert report.result is RunResult.RELEASED

    assert registry.tags == {
        "myapp-tools/myapp:2.1-8",
        "myapp-tools/myapp:2.1",
        "myapp-tools/myapp:latest",
    }


def test_approval_timeout_fails_before_mutation(tmp_path: Path, version_21: Path, monkeypatch):
    def _timeout(*_args, **_kwargs):
        raise ApprovalTimeout("No source tag entered within 120s")

    monkeypatch.setattr("promotex.pipeline.orchestrator.resolve_source_tag", _timeout)
    registry = FakeRegistry(tags={"myapp-tools/myapp:2.1-8"})
    deployment = FakeDeployment()
    notifier = RecordingNotifier()
    orchestrator = _orchestrator(tmp_path, registry, deployment, notifier)

    report = orchestrator.run()

    assert report.result is RunResult.FAILED
    assert report.error_code == "APPROVAL_TIMEOUT"
    assert registry.exists_calls == []
    assert registry.tag_calls == []
    assert deployment.calls == []
    assert orchestrator.sessions.events == []
    assert [n.result for n in notifier.sent] == [RunResult.FAILED]


def test_interactive_prompt_supplies_tag(tmp_path: Path, version_21: Path):
    registry = FakeRegistry(tags={"myapp-tools/myapp:2.1-8"})
    prompts: list[str] = []

    def _prompt(message: str) -> str:
        prompts.append(message)
        return "2.1-8"

    report = _orchestrator(
        tmp_path, registry, FakeDeployment(), RecordingNotifier(), prompt=_prompt
    ).run()

    assert report.result is RunResult.RELEASED
    assert report.source_tag == "2.1-8"
    assert "2.1" in prompts[0]


def test_missing_version_file_fails_first(tmp_path: Path):
    registry = FakeRegistry()
    notifier = RecordingNotifier()
    report = _orchestrator(tmp_path, registry, FakeDeployment(), notifier, source_tag="2.1-8").run()

    assert report.result is RunResult.FAILED
    assert report.error_code == "MISSING_VERSION_FILE"
    assert [s.stage for s in report.stages] == [Stage.RESOLVE_VERSION, Stage.NOTIFY]
    assert registry.exists_calls == []
    assert "unknown" in notifier.sent[0].subject


def test_rollout_timeout_fails_and_notifies(tmp_path: Path, version_21: Path):
    deployment = FakeDeployment(statuses=[RolloutOutcome.IN_PROGRESS])
    notifier = RecordingNotifier()

    report = _orchestrator(
        tmp_path,
        FakeRegistry(tags={"myapp-tools/myapp:2.1-8"}),
        deployment,
        notifier,
        source_tag="2.1-8",
    ).run()

    assert report.result is RunResult.FAILED
    assert report.error_code == "ROLLOUT_TIMED_OUT"
    assert report.rollout_state is RolloutState.TIMED_OUT
    assert deployment.names().count("trigger_rollout") == 1
    assert [n.result for n in notifier.sent] == [RunResult.FAILED]


def test_rollout_failure_is_not_retried(tmp_path: Path, version_21: Path):
    deployment = FakeDeployment(statuses=[RolloutOutcome.IN_PROGRESS, RolloutOutcome.FAILED])

    report = _orchestrator(
        tmp_path,
        FakeRegistry(tags={"myapp-tools/myapp:2.1-8"}),
        deployment,
        RecordingNotifier(),
        source_tag="2.1-8",
    ).run()

    assert report.result is RunResult.FAILED
    assert report.error_code == "ROLLOUT_FAILED"
    assert deployment.names().count("trigger_rollout") == 1
    assert deployment.names().count("rollout_status") == 2


def test_partial_tagging_fails_run(tmp_path: Path, version_21: Path):
    registry = FakeRegistry(tags={"myapp-tools/myapp:2.1-8"}, fail_on_tag="latest")
    deployment = FakeDeployment()

    report = _orchestrator(
        tmp_path, registry, deployment, RecordingNotifier(), source_tag="2.1-8"
    ).run()

    assert report.result is RunResult.FAILED
    assert report.error_code == "TAGGING_FAILED"
    assert len(registry.tag_calls) == 2
    assert deployment.calls == []


def test_apply_failure_stops_before_rollout(tmp_path: Path, version_21: Path):
    deployment = FakeDeployment(fail_apply=True)

    report = _orchestrator(
        tmp_path,
        FakeRegistry(tags={"myapp-tools/myapp:2.1-8"}),
        deployment,
        RecordingNotifier(),
        source_tag="2.1-8",
    ).run()

    assert report.result is RunResult.FAILED
    assert report.error_code == "APPLY_FAILED"
    assert "trigger_rollout" not in deployment.names()


def test_sessions_are_scoped_per_stage_group(tmp_path: Path, version_21: Path):
    orchestrator = _orchestrator(
        tmp_path,
        FakeRegistry(tags={"myapp-tools/myapp:2.1-8"}),
        FakeDeployment(),
        RecordingNotifier(),
        source_tag="2.1-8",
    )

    orchestrator.run()

    assert orchestrator.sessions.events == [
        "open registry",
        "close registry",
        "open production",
        "close production",
    ]


def test_notification_error_keeps_result(tmp_path: Path, version_21: Path):
    report = _orchestrator(
        tmp_path,
        FakeRegistry(tags={"myapp-tools/myapp:2.1-8"}),
        FakeDeployment(),
        RecordingNotifier(fail=True),
        source_tag="2.1-8",
    ).run()

    assert report.result is RunResult.RELEASED
    assert report.notification == "error"
    assert "smtp down" in (report.notification_error or "")


def test_dry_run_plans_without_mutation(tmp_path: Path, version_21: Path):
    registry = FakeRegistry(tags={"myapp-tools/myapp:2.1-8"})
    deployment = FakeDeployment()
    notifier = RecordingNotifier()

    report = _orchestrator(
        tmp_path, registry, deployment, notifier, source_tag="2.1-8", dry_run=True
    ).run()

    assert report.result is RunResult.PLANNED
    assert registry.tag_calls == []
    assert deployment.calls == []
    assert notifier.sent == []
    assert report.planned_mutations[0] == "tag myapp-tools/myapp:2.1-8 -> myapp-tools/myapp:2.1"
    assert report.planned_mutations[-1] == "rollout deploymentconfig/myapp"


def test_dry_run_abort_sends_nothing(tmp_path: Path, version_21: Path):
    notifier = RecordingNotifier()

    report = _orchestrator(
        tmp_path,
        FakeRegistry(),
        FakeDeployment(),
        notifier,
        source_tag="2.1-9",
        dry_run=True,
        config={"notify_on_abort": True},
    ).run()

    assert report.result is RunResult.ABORTED
    assert report.notification == "skipped"
    assert notifier.sent == []


def test_dry_run_registry_error_sends_nothing(tmp_path: Path, version_21: Path):
    class _DownRegistry(FakeRegistry):
        def tag_exists(self, project: str, stream: str, tag: str) -> bool:
            raise RuntimeError("connection refused")

    notifier = RecordingNotifier()

    report = _orchestrator(
        tmp_path, _DownRegistry(), FakeDeployment(), notifier, source_tag="2.1-8", dry_run=True
    ).run()

    assert report.result is RunResult.FAILED
    assert report.error_code == "REGISTRY_UNAVAILABLE"
    assert notifier.sent == []


def test_config_release_version_tag_skips_prompt(tmp_path: Path, version_21: Path):
    def _prompt(_message: str) -> str:
        raise AssertionError("prompt must not be used")

    report = _orchestrator(
        tmp_path,
        FakeRegistry(tags={"myapp-tools/myapp:2.1-8"}),
        FakeDeployment(),
        RecordingNotifier(),
        prompt=_prompt,
        config={"release_version_tag": "2.1-8"},
    ).run()

    assert report.result is RunResult.RELEASED
