"""
Tests for settings loading and validation.
"""

from pathlib import Path

import pytest

from endpoint_remediation.config import (
    ApiFailurePolicy,
    DriverMode,
    RemediationSettings,
    load_settings,
)
from endpoint_remediation.exceptions import ConfigurationError


def test_defaults():
    settings = RemediationSettings()

    assert settings.endpoint_url is None
    assert settings.api_failure_policy == ApiFailurePolicy.DEMOTE
    assert settings.http_timeout_seconds == 30
    assert settings.max_body_bytes == 1024 * 1024
    assert settings.disk_threshold_percent is None
    assert settings.driver_max_age_days == 730
    assert settings.printer_driver_max_age_days == 365
    assert settings.print_job_max_age_minutes == 60
    assert settings.driver_mode == DriverMode.REPORT
    assert settings.device_identity is None


def test_driver_log_dir_uses_programdata(monkeypatch):
    monkeypatch.setenv("ProgramData", "D:\\ProgramData")
    settings = RemediationSettings()
    assert settings.driver_log_dir.parts[-3:] == ("Microsoft", "IntuneManagementExtension", "Logs")


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("REMEDIATION_SERVICE_NAME", "Sense")
    monkeypatch.setenv("REMEDIATION_DISK_THRESHOLD_PERCENT", "85")
    monkeypatch.setenv("REMEDIATION_API_FAILURE_POLICY", "critical")

    settings = load_settings()

    assert settings.service_name == "Sense"
    assert settings.disk_threshold_percent == 85
    assert settings.api_failure_policy == ApiFailurePolicy.CRITICAL


def test_yaml_file(tmp_path):
    config_file = tmp_path / "remediation.yaml"
    config_file.write_text(
        "endpoint_url: https://reports.example.com/api/remediation\n"
        "id_group: branch-07\n"
        "id_device: 1234\n"
        "cache_paths:\n"
        "  - C:/Cache/One\n"
        "  - C:/Cache/Two\n"
        "cache_threshold_bytes: 1048576\n"
        "driver_mode: update\n"
    )

    settings = load_settings(config_file)

    assert settings.endpoint_url == "https://reports.example.com/api/remediation"
    assert settings.device_identity.id_group == "branch-07"
    assert settings.device_identity.id_device == 1234
    assert settings.cache_paths == [Path("C:/Cache/One"), Path("C:/Cache/Two")]
    assert settings.driver_mode == DriverMode.UPDATE


def test_precedence(tmp_path, monkeypatch):
    monkeypatch.setenv("REMEDIATION_DISK_THRESHOLD_PERCENT", "70")
    config_file = tmp_path / "remediation.yaml"
    config_file.write_text("disk_threshold_percent: 80\nservice_name: Sense\n")

    assert load_settings(config_file).disk_threshold_percent == 80
    assert load_settings(config_file, disk_threshold_percent=95).disk_threshold_percent == 95
    assert load_settings(config_file, disk_threshold_percent=None).disk_threshold_percent == 80


def test_missing_file():
    with pytest.raises(ConfigurationError, match="Failed to read config file"):
        load_settings(Path("/nonexistent/remediation.yaml"))


def test_malformed_yaml(tmp_path):
    config_file = tmp_path / "bad.yaml"
    config_file.write_text("service_name: [unclosed\n")

    with pytest.raises(ConfigurationError):
        load_settings(config_file)


def test_yaml_must_be_mapping(tmp_path):
    config_file = tmp_path / "list.yaml"
    config_file.write_text("- a\n- b\n")

    with pytest.raises(ConfigurationError, match="mapping"):
        load_settings(config_file)


def test_empty_yaml_file(tmp_path):
    config_file = tmp_path / "empty.yaml"
    config_file.write_text("")
    assert load_settings(config_file).service_name is None


def test_unknown_key_rejected():
    with pytest.raises(ConfigurationError):
        load_settings(disk_treshold_percent=90)


def test_log_level_normalized():
    assert load_settings(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ConfigurationError):
        load_settings(log_level="VERBOSE")


def test_endpoint_requires_identity():
    with pytest.raises(ConfigurationError, match="id_group and id_device"):
        load_settings(endpoint_url="https://reports.example.com/")


def test_endpoint_must_be_http():
    with pytest.raises(ConfigurationError):
        load_settings(endpoint_url="ftp://reports.example.com/", id_group=1, id_device=2)


@pytest.mark.parametrize("threshold", [0, -5, 101])
def test_disk_threshold_range(threshold):
    with pytest.raises(ConfigurationError):
        load_settings(disk_threshold_percent=threshold)


def test_invalid_driver_pattern():
    with pytest.raises(ConfigurationError, match="invalid driver pattern"):
        load_settings(driver_bad_patterns=["(unclosed"])


def test_integer_group_identifier():
    settings = load_settings(endpoint_url="http://localhost/report", id_group=7, id_device=99)
    assert settings.device_identity.id_group == 7
