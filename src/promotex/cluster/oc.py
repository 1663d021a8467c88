"""``oc`` CLI implementation of the cluster capabilities.

Each session logs in with its own throwaway kubeconfig, so credentials for
the registry scope and the production scope never share state and are torn
down as soon as their stage group finishes.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

from promotex.cluster.types import (
    CredentialProvider,
    RenderedObject,
    RenderedObjectSet,
)
from promotex.config import PromotionConfig
from promotex.exec import ExecError, ExecResult, run_oc
from promotex.pipeline.types import RolloutOutcome

logger = logging.getLogger(__name__)

_ROLLOUT_FAILURE_MARKERS = ("failed", "progress deadline exceeded", "cancelled")


class _OcClient:
    def __init__(self, *, env: Mapping[str, str], project: str):
        self.env = dict(env)
        self.project = project

    def _oc(self, args: list[str], *, stdin_text: str | None = None, check: bool = True) -> ExecResult:
        return run_oc([*args, "-n", self.project], env=self.env, stdin_text=stdin_text, check=check)


class OcRegistryClient(_OcClient):
    """Image-stream queries and tagging in the source registry."""

    def tag_exists(self, project: str, stream: str, tag: str) -> bool:
        result = run_oc(
            ["get", f"imagestreamtag/{stream}:{tag}", "-n", project, "--ignore-not-found", "-o", "name"],
            env=self.env,
        )
        return bool(result.stdout.strip())

    def create_tag(self, source_ref: str, dest_ref: str) -> None:
        self._oc(["tag", source_ref, dest_ref])


class OcDeploymentClient(_OcClient):
    """Template apply and rollout control in the production project."""

    def apply_file(self, path: str) -> None:
        self._oc(["apply", "-f", path])

    def process_and_apply(self, template_path: str, params: dict[str, str]) -> RenderedObjectSet:
        process_args = ["process", "-f", template_path, "-o", "json"]
        for key in sorted(params):
            process_args.extend(["-p", f"{key}={params[key]}"])
        processed = self._oc(process_args)

        rendered = parse_rendered_objects(processed.stdout)
        self._oc(["apply", "-f", "-"], stdin_text=processed.stdout)
        return rendered

    def delete(self, obj: RenderedObject) -> None:
        self._oc(["delete", _resource(obj), "--ignore-not-found"])

    def trigger_rollout(self, obj: RenderedObject) -> None:
        self._oc(["rollout", "latest", _resource(obj)])

    def rollout_status(self, obj: RenderedObject) -> RolloutOutcome:
        result = self._oc(["rollout", "status", _resource(obj), "--watch=false"], check=False)
        return parse_rollout_status(result)


def parse_rendered_objects(raw_json: str) -> RenderedObjectSet:
    """Parse ``oc process -o json`` output into a RenderedObjectSet."""
    try:
        payload = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"template processing returned invalid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise RuntimeError("template processing must return a JSON object")

    if payload.get("kind") == "List" or "items" in payload:
        items = payload.get("items") or []
    else:
        items = [payload]

    return RenderedObjectSet(
        objects=tuple(RenderedObject.from_manifest(item) for item in items if isinstance(item, dict))
    )


def parse_rollout_status(result: ExecResult) -> RolloutOutcome:
    """Map one non-blocking ``oc rollout status`` probe to a RolloutOutcome."""
    text = f"{result.stdout}\n{result.stderr}".lower()
    if result.returncode != 0:
        if any(marker in text for marker in _ROLLOUT_FAILURE_MARKERS):
            return RolloutOutcome.FAILED
        raise ExecError(result)
    if "successfully rolled out" in text:
        return RolloutOutcome.SUCCEEDED
    if any(marker in text for marker in _ROLLOUT_FAILURE_MARKERS):
        return RolloutOutcome.FAILED
    return RolloutOutcome.IN_PROGRESS


def _resource(obj: RenderedObject) -> str:
    return f"{obj.kind.lower()}/{obj.name}"


@contextmanager
def oc_login(server: str, token: str) -> Iterator[dict[str, str]]:
    """Log in with an isolated kubeconfig and yield the env that uses it."""
    with tempfile.TemporaryDirectory(prefix="promotex-kube-") as tmp:
        env = dict(os.environ)
        env["KUBECONFIG"] = str(Path(tmp) / "config")
        run_oc(["login", server, f"--token={token}"], env=env)
        logger.debug("logged in to %s", server)
        try:
            yield env
        finally:
            logout = run_oc(["logout"], env=env, check=False)
            if not logout.ok:
                logger.warning("oc logout from %s failed: %s", server, logout.stderr.strip())


class OcSessionFactory:
    """Opens scoped ``oc`` sessions for the registry and production groups."""

    def __init__(self, config: PromotionConfig, credentials: CredentialProvider):
        self.config = config
        self.credentials = credentials

    @contextmanager
    def registry_session(self) -> Iterator[OcRegistryClient]:
        token = self._token(self.config.registry_secret_name)
        with oc_login(self.config.registry_uri, token) as env:
            yield OcRegistryClient(env=env, project=self.config.registry_project)

    @contextmanager
    def production_session(self) -> Iterator[OcDeploymentClient]:
        token = self._token(self.config.prod_secret_name)
        with oc_login(self.config.prod_uri, token) as env:
            yield OcDeploymentClient(env=env, project=self.config.prod_project)

    def _token(self, secret_name: str | None) -> str:
        return self.credentials.token_for(secret_name or "")
