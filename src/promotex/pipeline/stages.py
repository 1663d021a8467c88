"""Promotion stages that talk to the registry and production cluster."""

from __future__ import annotations

import logging
from pathlib import Path

from promotex.cluster.types import (
    KIND_BUILD_CONFIG,
    DeploymentClient,
    RegistryClient,
    RenderedObjectSet,
)
from promotex.config import PromotionConfig, PromotionTarget
from promotex.errors import ApplyFailed, ArtifactNotFound, RegistryUnavailable, TaggingFailed

logger = logging.getLogger(__name__)

LATEST_TAG = "latest"


def destination_tags(release_version: str) -> tuple[str, str]:
    """Destination tags are always exactly the release version and latest."""
    return (release_version, LATEST_TAG)


def check_artifact(registry: RegistryClient, target: PromotionTarget, source_tag: str) -> None:
    """Guard: the source tag must exist before anything is mutated.

    Raises:
        ArtifactNotFound: If the image-stream tag is absent
        RegistryUnavailable: If the registry could not be queried
    """
    try:
        exists = registry.tag_exists(target.source_project, target.source_stream, source_tag)
    except Exception as exc:
        raise RegistryUnavailable(
            f"Could not query {target.source_ref(source_tag)}: {exc}"
        ) from exc

    if not exists:
        raise ArtifactNotFound(f"{target.source_ref(source_tag)} does not exist")
    logger.info("Found %s", target.source_ref(source_tag))


def tag_release(
    registry: RegistryClient,
    target: PromotionTarget,
    source_tag: str,
    release_version: str,
    mutations: list[str] | None = None,
) -> list[str]:
    """Point the release version and latest at the source tag's image.

    Re-tagging to the same target is a no-op on the registry side, so a full
    re-run after a partial failure is safe.

    Raises:
        TaggingFailed: If either tag call fails
    """
    applied: list[str] = []
    source_ref = target.source_ref(source_tag)
    for dest_tag in destination_tags(release_version):
        dest_ref = target.dest_ref(dest_tag)
        try:
            registry.create_tag(source_ref, dest_ref)
        except Exception as exc:
            raise TaggingFailed(
                f"Tagging {source_ref} -> {dest_ref} failed after {len(applied)} of 2 tags: {exc}"
            ) from exc
        applied.append(dest_ref)
        if mutations is not None:
            mutations.append(f"tag {source_ref} -> {dest_ref}")
        logger.info("Tagged %s -> %s", source_ref, dest_ref)
    return applied


def template_params(config: PromotionConfig, release_version: str) -> dict[str, str]:
    return {
        "TAG": release_version,
        "IMAGESTREAM_TAG": release_version,
        "REGISTRY": config.image_registry,
        "REGISTRY_PROJECT": config.registry_project,
    }


def apply_production(
    deployment: DeploymentClient,
    config: PromotionConfig,
    release_version: str,
    mutations: list[str] | None = None,
) -> RenderedObjectSet:
    """Apply base and parameterized templates, then drop build configs.

    Raises:
        ApplyFailed: If any apply or deletion fails
    """
    record = mutations if mutations is not None else []

    if config.base_template_path is not None:
        base = str(config.base_template_path)
        try:
            deployment.apply_file(base)
        except Exception as exc:
            raise ApplyFailed(f"Applying base template {base} failed: {exc}") from exc
        record.append(f"apply {base}")
        logger.info("Applied base template %s", base)

    app_template = str(config.app_template_path)
    params = template_params(config, release_version)
    try:
        rendered = deployment.process_and_apply(app_template, params)
    except Exception as exc:
        raise ApplyFailed(f"Applying template {app_template} failed: {exc}") from exc
    record.append(f"apply {app_template} {_render_params(params)}")
    logger.info("Applied %d object(s) from %s", len(rendered), app_template)

    for build_config in rendered.of_kind(KIND_BUILD_CONFIG):
        try:
            deployment.delete(build_config)
        except Exception as exc:
            raise ApplyFailed(f"Deleting buildconfig/{build_config.name} failed: {exc}") from exc
        record.append(f"delete buildconfig/{build_config.name}")
        logger.info("Deleted buildconfig/%s", build_config.name)

    return rendered


def planned_mutations(
    config: PromotionConfig,
    source_tag: str,
    release_version: str,
) -> list[str]:
    """Describe the mutations a real run would perform."""
    target = config.target
    plan = [
        f"tag {target.source_ref(source_tag)} -> {target.dest_ref(dest_tag)}"
        for dest_tag in destination_tags(release_version)
    ]
    if config.base_template_path is not None:
        plan.append(f"apply {Path(config.base_template_path)}")
    plan.append(
        f"apply {Path(config.app_template_path)} "
        f"{_render_params(template_params(config, release_version))}"
    )
    plan.append("delete rendered buildconfig objects")
    plan.append(f"rollout deploymentconfig/{config.app_dc_name}")
    return plan


def _render_params(params: dict[str, str]) -> str:
    return " ".join(f"{key}={params[key]}" for key in sorted(params))
