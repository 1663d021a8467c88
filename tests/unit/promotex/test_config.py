"""Tests for run configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from promotex.config import PromotionConfig, load_config, parse_address_list
from promotex.errors import ConfigError

BASE_ENV = {
    "REGISTRY_URI": "https://registry.example.com:8443",
    "REGISTRY_PROJECT": "myapp-tools",
    "IMAGE_STREAM_NAME": "myapp",
    "PROD_URI": "https://prod.example.com:8443",
    "PROD_PROJECT": "myapp-prod",
    "APP_TEMPLATE_PATH": "openshift/app.yaml",
    "APP_DC_NAME": "myapp",
}


def test_env_only_config(tmp_path: Path):
    config = load_config(environ=BASE_ENV, cwd=tmp_path)

    assert config.image_stream_name == "myapp"
    assert config.app_template_path == Path("openshift/app.yaml")
    assert config.version_file == Path("VERSION")
    assert config.approval_timeout_seconds == 120.0
    assert config.rollout_timeout_seconds == 600.0
    assert config.notify_on_abort is False
    assert config.image_registry == "https://registry.example.com:8443"


def test_precedence_file_env_overrides(tmp_path: Path):
    config_file = tmp_path / "promotex.yaml"
    config_file.write_text(
        "image_stream_name: from-file\n"
        "prod_project: file-prod\n"
        "notify_on_abort: true\n"
        "RELEASE_VERSION_TAG: 1.0-3\n",
        encoding="utf-8",
    )
    env = dict(BASE_ENV)
    del env["IMAGE_STREAM_NAME"]

    config = load_config(
        environ=env,
        cwd=tmp_path,
        overrides={"prod_project": "cli-prod", "approval_timeout_seconds": None},
    )

    assert config.image_stream_name == "from-file"
    assert config.prod_project == "cli-prod"
    assert config.notify_on_abort is True
    assert config.release_version_tag == "1.0-3"
    assert config.approval_timeout_seconds == 120.0


def test_missing_required_keys_are_listed(tmp_path: Path):
    with pytest.raises(ConfigError, match="prod_uri, prod_project"):
        load_config(
            environ={k: v for k, v in BASE_ENV.items() if not k.startswith("PROD_")},
            cwd=tmp_path,
        )


def test_explicit_config_must_exist(tmp_path: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.yaml", environ=BASE_ENV)


def test_malformed_yaml(tmp_path: Path):
    bad = tmp_path / "promotex.yaml"
    bad.write_text("prod_uri: [unterminated\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Malformed YAML"):
        load_config(bad, environ=BASE_ENV)


def test_non_mapping_yaml(tmp_path: Path):
    bad = tmp_path / "promotex.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="must be a mapping"):
        load_config(bad, environ=BASE_ENV)


def test_unknown_key_rejected():
    data = {k.lower(): v for k, v in BASE_ENV.items()}
    data["prod_uri_typo"] = "x"
    with pytest.raises(ConfigError, match="prod_uri_typo"):
        PromotionConfig.from_dict(data)


def test_invalid_timeout_rejected():
    data = {k.lower(): v for k, v in BASE_ENV.items()}
    data["rollout_timeout_seconds"] = "0"
    with pytest.raises(ConfigError, match="must be positive"):
        PromotionConfig.from_dict(data)


def test_target_refs(tmp_path: Path):
    config = load_config(environ=BASE_ENV, cwd=tmp_path)
    assert config.target.source_ref("2.1-8") == "myapp-tools/myapp:2.1-8"
    assert config.target.dest_ref("latest") == "myapp-tools/myapp:latest"


def test_email_list_parsing():
    assert parse_address_list("a@x.com, b@x.com  c@x.com") == ("a@x.com", "b@x.com", "c@x.com")
    assert parse_address_list(["a@x.com", " "]) == ("a@x.com",)


def test_build_url_maps_to_run_url(tmp_path: Path):
    config = load_config(environ={**BASE_ENV, "BUILD_URL": "https://ci/job/1"}, cwd=tmp_path)
    assert config.run_url == "https://ci/job/1"
