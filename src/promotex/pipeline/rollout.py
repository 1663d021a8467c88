"""Rollout trigger and bounded verification loop."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from promotex.cluster.types import (
    KIND_DEPLOYMENT_CONFIG,
    DeploymentClient,
    RenderedObject,
    RenderedObjectSet,
)
from promotex.errors import RolloutFailed, RolloutTimedOut
from promotex.pipeline.types import RolloutOutcome, RolloutState

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], None]


def rollout_transition(state: RolloutState, outcome: RolloutOutcome, deadline_passed: bool) -> RolloutState:
    """Next rollout state for one status probe."""
    if state is not RolloutState.TRIGGERED:
        return state
    if outcome is RolloutOutcome.SUCCEEDED:
        return RolloutState.SUCCEEDED
    if outcome is RolloutOutcome.FAILED:
        return RolloutState.FAILED
    if deadline_passed:
        return RolloutState.TIMED_OUT
    return RolloutState.TRIGGERED


def select_deployment(rendered: RenderedObjectSet, dc_name: str) -> RenderedObject:
    obj = rendered.find(KIND_DEPLOYMENT_CONFIG, dc_name)
    if obj is None:
        available = ", ".join(o.name for o in rendered.of_kind(KIND_DEPLOYMENT_CONFIG)) or "none"
        raise RolloutFailed(
            f"deploymentconfig/{dc_name} not found in applied objects (available: {available})"
        )
    return obj


class RolloutWatcher:
    """Triggers exactly one rollout and waits for a terminal state."""

    def __init__(
        self,
        deployment: DeploymentClient,
        target: RenderedObject,
        *,
        timeout_seconds: float,
        poll_interval_seconds: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
    ):
        self.deployment = deployment
        self.target = target
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.clock = clock
        self.sleep = sleep
        self.state = RolloutState.NOT_STARTED
        self.polls = 0

    def trigger(self) -> None:
        if self.state is not RolloutState.NOT_STARTED:
            raise RolloutFailed(f"rollout already {self.state.value}; refusing to trigger twice")
        try:
            self.deployment.trigger_rollout(self.target)
        except Exception as exc:
            self.state = RolloutState.FAILED
            raise RolloutFailed(f"Triggering rollout of {self.target.name} failed: {exc}") from exc
        self.state = RolloutState.TRIGGERED
        logger.info("Triggered rollout of deploymentconfig/%s", self.target.name)

    def wait(self) -> RolloutState:
        """Poll until the rollout succeeds.

        Raises:
            RolloutFailed: If the rollout reports failure or a probe errors
            RolloutTimedOut: If the deadline passes first
        """
        if self.state is not RolloutState.TRIGGERED:
            raise RolloutFailed(f"cannot wait on rollout in state {self.state.value}")

        deadline = self.clock() + self.timeout_seconds
        while True:
            try:
                outcome = self.deployment.rollout_status(self.target)
            except Exception as exc:
                self.state = RolloutState.FAILED
                raise RolloutFailed(f"Rollout status of {self.target.name} unavailable: {exc}") from exc
            self.polls += 1

            now = self.clock()
            self.state = rollout_transition(self.state, outcome, now >= deadline)
            logger.debug("rollout poll %d: %s -> %s", self.polls, outcome.value, self.state.value)

            if self.state.terminal:
                return self._finish()

            self.sleep(max(0.0, min(self.poll_interval_seconds, deadline - now)))

    def _finish(self) -> RolloutState:
        if self.state is RolloutState.SUCCEEDED:
            logger.info("Rollout of deploymentconfig/%s succeeded", self.target.name)
            return self.state
        if self.state is RolloutState.FAILED:
            raise RolloutFailed(f"Rollout of deploymentconfig/{self.target.name} failed")
        raise RolloutTimedOut(
            f"Rollout of deploymentconfig/{self.target.name} not finished "
            f"after {self.timeout_seconds:g}s"
        )
