"""Tests for shipstack.core.config module."""

from __future__ import annotations

from pathlib import Path

import pytest

from shipstack.core.config import (
    DEFAULT_ASSET_KEY_PREFIX,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_UPLOAD_CONCURRENCY,
    Config,
    DeployConfig,
    UploadRuleConfig,
    load_config,
    load_config_or_default,
)
from shipstack.core.result import Err, Ok


class TestDefaults:
    def test_deploy_defaults(self) -> None:
        deploy = DeployConfig()
        assert deploy.region is None
        assert deploy.artifact_bucket is None
        assert deploy.poll_interval_seconds == DEFAULT_POLL_INTERVAL_SECONDS
        assert deploy.timeout_seconds == DEFAULT_TIMEOUT_SECONDS
        assert deploy.upload_concurrency == DEFAULT_UPLOAD_CONCURRENCY

    def test_config_defaults(self) -> None:
        config = Config()
        assert config.app.name == "app"
        assert config.assets.key_prefix == DEFAULT_ASSET_KEY_PREFIX
        assert config.assets.rules == ()

    def test_frozen(self) -> None:
        with pytest.raises(AttributeError):
            Config().app = None  # type: ignore[misc,assignment]


class TestFromDict:
    def test_full(self) -> None:
        config = Config.from_dict(
            {
                "app": {"name": "shop"},
                "deploy": {
                    "region": "us-west-2",
                    "artifact_bucket": "shop-artifacts",
                    "poll_interval_seconds": 1,
                    "timeout_seconds": 60.5,
                    "upload_concurrency": 8,
                },
                "assets": {
                    "key_prefix": "assets",
                    "rules": [
                        {
                            "type": "AWS::Serverless::Function",
                            "property": "CodeUri",
                            "bucket_property": "Bucket",
                            "key_property": "Key",
                            "force_zip": True,
                        }
                    ],
                },
            }
        )
        assert config.app.name == "shop"
        assert config.deploy.region == "us-west-2"
        assert config.deploy.artifact_bucket == "shop-artifacts"
        assert config.deploy.poll_interval_seconds == 1.0
        assert config.deploy.timeout_seconds == 60.5
        assert config.deploy.upload_concurrency == 8
        assert config.assets.key_prefix == "assets"
        assert config.assets.rules == (
            UploadRuleConfig(
                resource_type="AWS::Serverless::Function",
                property="CodeUri",
                bucket_property="Bucket",
                key_property="Key",
                force_zip=True,
            ),
        )

    def test_rule_without_property_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="assets.rules\\[0\\]"):
            Config.from_dict({"assets": {"rules": [{"type": "AWS::Glue::Job"}]}})

    def test_negative_concurrency_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="upload_concurrency"):
            Config.from_dict({"deploy": {"upload_concurrency": -1}})


class TestLoading:
    def test_load_config(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text('[app]\nname = "shop"\n[deploy]\nregion = "eu-west-1"\n', encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Ok)
        assert result.value.app.name == "shop"
        assert result.value.deploy.region == "eu-west-1"

    def test_missing_file_is_an_error(self, tmp_path: Path) -> None:
        result = load_config(tmp_path / "nope.toml")
        assert isinstance(result, Err)
        assert "not found" in result.error.message

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text("[app\n", encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "Invalid TOML" in result.error.message

    def test_invalid_structure(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text("[[assets.rules]]\nproperty = 'Code'\n", encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "Invalid config structure" in result.error.message

    def test_or_default_without_file(self, tmp_path: Path) -> None:
        result = load_config_or_default(tmp_path / "config.toml")
        assert result == Ok(Config())
