"""Resolve secret names to bearer tokens.

Secrets are provisioned by the surrounding CI system; this module only looks
them up, either from ``PROMOTEX_SECRET_<NAME>`` or from a mounted secrets
directory.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

from promotex.errors import CredentialError

SECRET_ENV_PREFIX = "PROMOTEX_SECRET_"
SECRETS_DIR_ENV = "PROMOTEX_SECRETS_DIR"
DEFAULT_SECRETS_DIR = Path("/var/run/secrets/promotex")


def secret_env_name(secret_name: str) -> str:
    normalized = re.sub(r"[^A-Za-z0-9]+", "_", secret_name.strip()).strip("_").upper()
    return f"{SECRET_ENV_PREFIX}{normalized}"


class EnvCredentialProvider:
    """Look up tokens in the environment, then in a secrets directory."""

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        secrets_dir: Path | None = None,
    ):
        self.environ = os.environ if environ is None else environ
        configured = self.environ.get(SECRETS_DIR_ENV, "").strip()
        self.secrets_dir = secrets_dir or (Path(configured) if configured else DEFAULT_SECRETS_DIR)

    def token_for(self, secret_name: str) -> str:
        if not secret_name or not secret_name.strip():
            raise CredentialError("Secret name is empty")

        env_value = self.environ.get(secret_env_name(secret_name), "").strip()
        if env_value:
            return env_value

        secret_file = self.secrets_dir / secret_name
        if secret_file.is_file():
            token = secret_file.read_text(encoding="utf-8").strip()
            if token:
                return token
            raise CredentialError(f"Secret file is empty: {secret_file}")

        raise CredentialError(
            f"Secret {secret_name!r} not found in ${secret_env_name(secret_name)} or {secret_file}"
        )
