"""Tests for command line and default configuration."""

import pytest

from pulsebridge import config as cfg
from pulsebridge.config import BridgeConfig, build_parser, config_from_args


def parse(*argv):
    return config_from_args(build_parser().parse_args(list(argv)))


def test_defaults():
    c = parse()
    assert c.obs_port == cfg.OBS_PORT
    assert c.actuator_url == cfg.ACTUATOR_URL
    assert c.hr_threshold == cfg.HR_THRESHOLD
    assert c.connection_retries == cfg.CONNECTION_RETRIES
    assert c.spawn_server is True
    assert c.open_browser is True


def test_overrides():
    c = parse("--obs-port", "5000", "--threshold", "90", "--retries", "2",
              "--retry-delay", "1.5", "--no-server", "--no-browser",
              "--actuator-url", "ws://10.0.0.2:12345", "--input-name", "hr")
    assert c.obs_port == 5000
    assert c.hr_threshold == 90
    assert c.connection_retries == 2
    assert c.retry_delay_s == 1.5
    assert c.spawn_server is False
    assert c.open_browser is False
    assert c.actuator_url == "ws://10.0.0.2:12345"
    assert c.hr_input_name == "hr"


def test_verbose_switches_to_debug():
    assert parse("-v").log_level == "DEBUG"


@pytest.mark.parametrize("argv", [
    ("--retries", "0"),
    ("--retry-delay", "-1"),
    ("--discovery-timeout", "0"),
    ("--tick", "0"),
    ("--threshold", "-5"),
    ("--input-name", ""),
])
def test_invalid_settings_rejected(argv):
    with pytest.raises(ValueError):
        parse(*argv)
