from pathlib import Path

import pytest

from pubmed_ingest.config_utils import (
    DEFAULT_BASE_URL,
    DEFAULT_KEYWORDS,
    ConfigError,
    build_settings,
    load_config,
    load_settings,
)


def test_missing_config_file_uses_defaults(tmp_path):
    settings = load_settings(tmp_path / "absent.yaml")

    assert settings.source.base_url == DEFAULT_BASE_URL
    assert settings.source.file_prefix == "pubmed24n"
    assert settings.run.processes == 10
    assert settings.run.file_count == 1219
    assert settings.filter.keywords == list(DEFAULT_KEYWORDS)
    assert settings.network.chunk_size == 64 * 1024


def test_yaml_values_are_loaded(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "paths:\n"
        "  output_dir: results\n"
        "run:\n"
        "  processes: 3\n"
        "filter:\n"
        "  keywords: [heart]\n",
        encoding="utf-8",
    )

    settings = load_settings(config_path)

    assert settings.paths.output_dir == Path("results")
    assert settings.run.processes == 3
    assert settings.filter.keywords == ["heart"]


def test_overrides_win_and_none_is_ignored(tmp_path):
    settings = build_settings(
        {"run": {"processes": 3, "file_count": 5}},
        overrides={
            "run.processes": 7,
            "run.file_count": None,
            "paths.output_dir": tmp_path,
        },
    )

    assert settings.run.processes == 7
    assert settings.run.file_count == 5
    assert settings.paths.output_dir == tmp_path


@pytest.mark.parametrize(
    "raw",
    [
        {"run": {"unknown": 1}},
        {"mystery": {}},
        {"run": {"processes": 0}},
        {"run": {"file_count": -1}},
        {"network": {"chunk_size": 0}},
    ],
)
def test_invalid_configuration_raises_config_error(raw):
    with pytest.raises(ConfigError):
        build_settings(raw)


def test_override_into_scalar_section_is_rejected():
    with pytest.raises(ConfigError):
        build_settings({"run": 3}, overrides={"run.processes": 2})


def test_load_config_rejects_non_mapping(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_load_config_rejects_malformed_yaml(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("run: [unterminated\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_empty_config_file_is_empty_mapping(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("", encoding="utf-8")
    assert load_config(config_path) == {}


def test_bundled_config_file_is_valid():
    settings = load_settings(Path(__file__).resolve().parent.parent / "config.yaml")
    assert settings.source.checksum_suffix == "md5"
    assert settings.filter.keywords == ["cancer", "oncology", "tumor"]
