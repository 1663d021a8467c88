"""Capability interfaces the promotion core calls."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Protocol

from promotex.pipeline.types import RolloutOutcome

KIND_BUILD_CONFIG = "BuildConfig"
KIND_DEPLOYMENT_CONFIG = "DeploymentConfig"


@dataclass(frozen=True)
class RenderedObject:
    """One deployable object produced by template processing."""

    kind: str
    name: str
    body: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> RenderedObject:
        metadata = manifest.get("metadata") or {}
        return cls(
            kind=str(manifest.get("kind", "")),
            name=str(metadata.get("name", "")),
            body=manifest,
        )


@dataclass(frozen=True)
class RenderedObjectSet:
    """Objects rendered from one template; narrowed by kind."""

    objects: tuple[RenderedObject, ...] = ()

    def __iter__(self) -> Iterator[RenderedObject]:
        return iter(self.objects)

    def __len__(self) -> int:
        return len(self.objects)

    def of_kind(self, kind: str) -> list[RenderedObject]:
        return [obj for obj in self.objects if obj.kind == kind]

    def find(self, kind: str, name: str) -> RenderedObject | None:
        for obj in self.objects:
            if obj.kind == kind and obj.name == name:
                return obj
        return None


class RegistryClient(Protocol):
    """Query and tag artifacts in the source registry project."""

    def tag_exists(self, project: str, stream: str, tag: str) -> bool: ...

    def create_tag(self, source_ref: str, dest_ref: str) -> None: ...


class DeploymentClient(Protocol):
    """Apply objects and drive rollouts in the production project."""

    def apply_file(self, path: str) -> None: ...

    def process_and_apply(self, template_path: str, params: dict[str, str]) -> RenderedObjectSet: ...

    def delete(self, obj: RenderedObject) -> None: ...

    def trigger_rollout(self, obj: RenderedObject) -> None: ...

    def rollout_status(self, obj: RenderedObject) -> RolloutOutcome: ...


class SessionFactory(Protocol):
    """Opens one scoped session per stage group."""

    def registry_session(self) -> AbstractContextManager[RegistryClient]: ...

    def production_session(self) -> AbstractContextManager[DeploymentClient]: ...


class CredentialProvider(Protocol):
    def token_for(self, secret_name: str) -> str: ...
