"""Error taxonomy for promotion runs."""

from __future__ import annotations


class PromotionError(RuntimeError):
    """Base class for every terminal promotion error."""

    code = "PROMOTION_ERROR"


class MissingVersionFile(PromotionError):
    """Raised when the tracked version file is absent or empty."""

    code = "MISSING_VERSION_FILE"


class ApprovalTimeout(PromotionError):
    """Raised when nobody answers the approval prompt in time."""

    code = "APPROVAL_TIMEOUT"


class ArtifactNotFound(PromotionError):
    """Source tag is missing from the source registry project.

    Never surfaces past the orchestrator; it becomes a clean abort.
    """

    code = "ARTIFACT_NOT_FOUND"


class TaggingFailed(PromotionError):
    """Raised when either destination tag could not be created."""

    code = "TAGGING_FAILED"


class ApplyFailed(PromotionError):
    """Raised when a template apply or build-config deletion fails."""

    code = "APPLY_FAILED"


class RolloutFailed(PromotionError):
    """Raised when the rollout reports failure or cannot be triggered."""

    code = "ROLLOUT_FAILED"


class RolloutTimedOut(PromotionError):
    """Raised when the rollout does not finish before the deadline."""

    code = "ROLLOUT_TIMED_OUT"


class ConfigError(RuntimeError):
    """Raised when run configuration is missing or malformed."""

    code = "CONFIG_ERROR"


class CredentialError(RuntimeError):
    """Raised when a secret name cannot be resolved to a token."""

    code = "CREDENTIAL_ERROR"


class RegistryUnavailable(PromotionError):
    """Raised when the existence check cannot reach the source registry."""

    code = "REGISTRY_UNAVAILABLE"
