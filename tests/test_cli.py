"""
Tests for the command line entry point.
"""

import json
import logging
from unittest.mock import patch

import pytest

from endpoint_remediation import __version__
from endpoint_remediation.checks import build_check
from endpoint_remediation.cli import main
from endpoint_remediation.models import DiskUsage, ServiceState, ServiceStatus


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    root.handlers = saved_handlers
    root.setLevel(saved_level)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "remediation.yaml"
    path.write_text(
        f"output_dir: {tmp_path / 'out'}\n"
        f"fallback_dir: {tmp_path / 'fallback'}\n"
        f"driver_log_dir: {tmp_path / 'logs'}\n"
        f"temp_paths:\n"
        f"  - {tmp_path / 'temp'}\n"
        "service_name: Sense\n"
    )
    return path


@pytest.fixture
def use_probe(probe):
    """Route checks built by the CLI to the in-memory probe."""
    def _build(name, settings):
        return build_check(name, settings, probe=probe)

    with patch("endpoint_remediation.cli.build_check", side_effect=_build) as mock_build:
        yield mock_build


def test_detect_with_threshold_override(config_file, probe, use_probe):
    probe.disk_readings = [DiskUsage(drive="C:", total_bytes=100, free_bytes=5)]

    assert main(["--config", str(config_file), "--no-color", "detect", "disk", "--threshold", "90"]) == 1
    assert main(["--config", str(config_file), "--no-color", "detect", "disk", "--threshold", "99"]) == 0

    settings = use_probe.call_args[0][1]
    assert settings.disk_threshold_percent == 99
    assert settings.use_colors is False


def test_disk_check_without_threshold_fails(config_file, use_probe):
    assert main(["--config", str(config_file), "detect", "disk"]) == 1


def test_remediate_service(config_file, probe, use_probe, tmp_path):
    probe.services["Sense"] = ServiceState(name="Sense", status=ServiceStatus.STOPPED)

    assert main(["--config", str(config_file), "remediate", "service"]) == 0

    data = json.loads((tmp_path / "out" / "service_remediation.json").read_text(encoding='utf-8'))
    assert data["completedTasks"] == ["Service Sense started (was Stopped)"]
    assert data["criticalErrors"] == []


def test_remediate_service_failure(config_file, probe, use_probe):
    probe.services["Sense"] = ServiceState(name="Sense", status=ServiceStatus.STOPPED)
    probe.fail("start_service", "Access is denied")

    assert main(["--config", str(config_file), "remediate", "service"]) == 1


def test_log_level_option(config_file, use_probe):
    main(["--config", str(config_file), "--log-level", "debug", "detect", "service"])
    assert logging.getLogger().level == logging.DEBUG


def test_invalid_config_file(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("log_level: CHATTY\n")

    assert main(["--config", str(bad), "detect", "service"]) == 1


def test_missing_config_file(tmp_path):
    assert main(["--config", str(tmp_path / "missing.yaml"), "detect", "service"]) == 1


def test_unknown_check_rejected():
    with pytest.raises(SystemExit) as exc_info:
        main(["detect", "firewall"])
    assert exc_info.value.code == 2


def test_version(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])

    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out
