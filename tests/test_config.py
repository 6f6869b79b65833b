import pytest

from export_limiter.common.config import (
    FilterVariant,
    GateSignal,
    LimiterConfig,
    load_config,
    validate_config,
)
from export_limiter.common.exceptions import ConfigError
from export_limiter.main import read_config_file


def _valid(**sections) -> dict:
    data = {"inverter": {"host": "192.168.1.50"}}
    data.update(sections)
    return data


def test_defaults():
    config = load_config(_valid())

    assert config.meter.multicast_group == "239.12.255.254"
    assert config.meter.port == 9522
    assert config.meter.meter_id == 66560
    assert config.inverter.port == 1502
    assert config.inverter.timeout_s == 2.0
    assert config.inverter.capacity_w is None
    assert config.control.max_export_w == 6600.0
    assert config.control.deadband_pct == 2
    assert config.control.gate_signal == GateSignal.RAW
    assert config.filter.variant == FilterVariant.MOVING_AVERAGE
    assert validate_config(config) == []


def test_empty_document_loads():
    assert isinstance(load_config(None), LimiterConfig)


def test_values_are_converted():
    config = load_config(_valid(
        inverter={"host": "inv", "port": "502", "capacity_w": "7400"},
        control={"max_export_w": 5000, "gate_signal": "filtered"},
        filter={"variant": "custom", "b": [1, 0, 0, 0], "a": [0, 0, 0]},
        service={"log_level": "debug", "log_format": "TEXT"},
    ))

    assert config.inverter.port == 502
    assert config.inverter.capacity_w == 7400.0
    assert config.control.max_export_w == 5000.0
    assert config.control.gate_signal == GateSignal.FILTERED
    assert config.filter.b == [1.0, 0.0, 0.0, 0.0]
    assert config.service.log_level == "DEBUG"
    assert config.service.log_format == "text"
    assert validate_config(config) == []


def test_unknown_filter_variant():
    with pytest.raises(ConfigError) as exc_info:
        load_config(_valid(filter={"variant": "kalman"}))
    assert "filter.variant" in exc_info.value.message


def test_non_numeric_value():
    with pytest.raises(ConfigError):
        load_config(_valid(meter={"port": "multicast"}))


def test_missing_host():
    errors = validate_config(load_config({}))
    assert "inverter.host is required" in errors


def test_reset_must_be_below_start():
    config = load_config(_valid(control={"control_start_w": 1000, "control_reset_w": 1000}))
    assert any("control_reset_w" in e for e in validate_config(config))


def test_custom_filter_needs_coefficients():
    config = load_config(_valid(filter={"variant": "custom", "b": [1, 0]}))
    errors = validate_config(config)

    assert any("filter.b" in e for e in errors)
    assert any("filter.a" in e for e in errors)


@pytest.mark.parametrize("section, key, value", [
    ("inverter", "port", 0),
    ("inverter", "unit_id", 300),
    ("inverter", "timeout_s", 0),
    ("inverter", "capacity_w", -1),
    ("meter", "port", 70000),
    ("control", "max_export_w", -10),
    ("control", "deadband_pct", -1),
    ("control", "reconnect_delay_s", -1),
    ("service", "health_port", 70000),
    ("service", "log_format", "xml"),
])
def test_out_of_range_values(section, key, value):
    data = _valid()
    data.setdefault(section, {})[key] = value
    assert validate_config(load_config(data)) != []


def test_read_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "inverter:\n"
        "  host: 10.0.0.7\n"
        "control:\n"
        "  max_export_w: 4600\n"
    )

    config = load_config(read_config_file(str(path)))

    assert config.inverter.host == "10.0.0.7"
    assert config.control.max_export_w == 4600.0


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError):
        read_config_file(str(tmp_path / "missing.yaml"))


def test_malformed_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("inverter: [unclosed\n")

    with pytest.raises(ConfigError):
        read_config_file(str(path))


@pytest.mark.parametrize("value, expected", [
    (True, True),
    (False, False),
    ("false", False),
    ("False", False),
    ("no", False),
    ("yes", True),
    (1, True),
    (0, False),
])
def test_switches_parse_strictly(value, expected):
    config = load_config(_valid(inverter={
        "host": "inv",
        "enable_control_on_connect": value,
        "commit_after_limit": value,
    }))

    assert config.inverter.enable_control_on_connect is expected
    assert config.inverter.commit_after_limit is expected


@pytest.mark.parametrize("value", ["maybe", 2, [True]])
def test_switch_rejects_non_boolean(value):
    with pytest.raises(ConfigError) as exc_info:
        load_config(_valid(inverter={"host": "inv", "commit_after_limit": value}))
    assert "inverter.commit_after_limit" in exc_info.value.message
