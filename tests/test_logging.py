import logging

import pytest

import featurescope.cli as cli
from featurescope.config.settings import get_logging_config
from featurescope.core.logging import build_logging_config


def test_override_level_applies_to_root_and_handlers():
    config = build_logging_config("debug")
    assert config["root"]["level"] == "DEBUG"
    assert config["handlers"]["console"]["level"] == "DEBUG"
    # Library loggers keep their own quieter levels.
    assert config["loggers"]["httpx"]["level"] == "WARNING"


def test_building_config_leaves_packaged_yaml_untouched():
    build_logging_config("ERROR")
    assert get_logging_config()["root"]["level"] == "INFO"
    assert get_logging_config()["handlers"]["console"]["level"] == "INFO"


def test_unknown_level_is_rejected():
    with pytest.raises(ValueError, match="unknown log level"):
        build_logging_config("chatty")


def test_cli_log_level_flag_configures_root_logger(tmp_path, monkeypatch):
    catalog = tmp_path / "sources.yaml"
    catalog.write_text("sources: []\n", encoding="utf-8")
    root = logging.getLogger()
    monkeypatch.setattr(root, "level", root.level)

    assert cli.main(["--log-level", "WARNING", "sources", "--catalog", str(catalog)]) == 0
    assert root.level == logging.WARNING
