"""Tests for machine.yaml loading, filesystem helpers and log formatting.

Validates that:
    - The shipped machine.yaml loads and matches the controller register map
    - Partial protocol sections keep defaults for missing keys
    - Invalid values raise ConfigError, never a bare KeyError/TypeError
    - Atomic writes leave no temporary file behind
    - Context fields reach both human and JSON log lines
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pytest
import yaml

from spray_control.configs.loader import (
    ConfigError,
    MachineConfig,
    ProtocolConfig,
    load_config,
)
from spray_control.utils.fs import atomic_write_text, load_yaml
from spray_control.utils.logging_config import ContextFormatter, pop_context, push_context

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def config() -> MachineConfig:
    """Load the default machine.yaml shipped with the package."""
    return load_config()


def _write(tmp_path: Path, data: dict[str, Any]) -> Path:
    path = tmp_path / "machine.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


def _minimal(**sections: Any) -> dict[str, Any]:
    data: dict[str, Any] = {"connection": {"host": "10.0.0.5"}}
    data.update(sections)
    return data


# ---------------------------------------------------------------------------
# Shipped configuration
# ---------------------------------------------------------------------------


class TestShippedConfig:
    def test_register_map(self, config: MachineConfig) -> None:
        p = config.protocol
        assert p.robot_status_register == 1000
        assert p.save_status_register == 1001
        assert p.control_register == 1010
        assert p.payload_base_register == 4000

    def test_matches_dataclass_defaults(self, config: MachineConfig) -> None:
        assert config.protocol == ProtocolConfig()

    def test_save_timeout_is_five_seconds(self, config: MachineConfig) -> None:
        assert config.protocol.save_timeout_s == pytest.approx(5.0)

    def test_control_window_holds_all_passes(self, config: MachineConfig) -> None:
        p = config.protocol
        assert p.control_slots >= 2 + p.max_passes

    def test_connection(self, config: MachineConfig) -> None:
        assert config.connection.port == 502
        assert 0 <= config.connection.unit_id <= 255


# ---------------------------------------------------------------------------
# Loading custom files
# ---------------------------------------------------------------------------


class TestLoadCustom:
    def test_minimal_file_uses_defaults(self, tmp_path: Path) -> None:
        config = load_config(_write(tmp_path, _minimal()))
        assert config.connection.host == "10.0.0.5"
        assert config.protocol == ProtocolConfig()
        assert config.geometry.resolution_deg == 15.0
        assert config.logging.file is None

    def test_partial_protocol(self, tmp_path: Path) -> None:
        path = _write(tmp_path, _minimal(protocol={"poll_attempts": 10, "chunk_delay_s": 0}))
        p = load_config(path).protocol
        assert p.poll_attempts == 10
        assert p.chunk_delay_s == 0.0
        assert p.chunk_registers == 50

    def test_logging_section(self, tmp_path: Path) -> None:
        path = _write(tmp_path, _minimal(logging={"level": "debug", "file": "logs/s.log", "json": True}))
        log = load_config(path).logging
        assert log.file == "logs/s.log"
        assert log.json is True

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "machine.yaml"
        path.write_text("")
        with pytest.raises(ConfigError, match="Empty"):
            load_config(path)

    def test_missing_connection(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Missing"):
            load_config(_write(tmp_path, {"protocol": {}}))


class TestValidation:
    @pytest.mark.parametrize(
        "protocol, message",
        [
            ({"chunk_registers": 51}, "even"),
            ({"chunk_registers": 124}, "123"),
            ({"max_passes": 0}, "max_passes"),
            ({"max_passes": 6}, "control_slots"),
            ({"poll_attempts": 0}, "poll_attempts"),
            ({"payload_base_register": 1012}, "overlaps"),
            ({"control_register": 70000}, "0..65535"),
            ({"chunk_delay_s": -1}, "chunk_delay_s"),
            ({"save_register": 1001}, "Unknown protocol key"),
            ({"max_passes": "four"}, "integer"),
            ({"max_passes": True}, "integer"),
        ],
    )
    def test_bad_protocol(self, tmp_path: Path, protocol: dict, message: str) -> None:
        with pytest.raises(ConfigError, match=message):
            load_config(_write(tmp_path, _minimal(protocol=protocol)))

    @pytest.mark.parametrize(
        "connection, message",
        [
            ({"host": ""}, "host"),
            ({"host": "h", "port": 0}, "port"),
            ({"host": "h", "timeout_s": 0}, "timeout_s"),
            ({"host": "h", "unit_id": 300}, "unit_id"),
            ({"host": "h", "port": "abc"}, "Invalid configuration value"),
        ],
    )
    def test_bad_connection(self, tmp_path: Path, connection: dict, message: str) -> None:
        with pytest.raises(ConfigError, match=message):
            load_config(_write(tmp_path, {"connection": connection}))

    def test_bad_resolution(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="resolution_deg"):
            load_config(_write(tmp_path, _minimal(geometry={"resolution_deg": 0})))

    def test_bad_log_level(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="logging.level"):
            load_config(_write(tmp_path, _minimal(logging={"level": "LOUD"})))


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def test_atomic_write_text_creates_parents(tmp_path: Path) -> None:
    target = tmp_path / "dumps" / "send.txt"
    atomic_write_text(target, "1.000  (4000)\n")
    assert target.read_text() == "1.000  (4000)\n"
    assert list(target.parent.iterdir()) == [target]


def test_atomic_write_text_parent_is_a_file(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    with pytest.raises(RuntimeError, match="atomically"):
        atomic_write_text(blocker / "sub" / "send.txt", "x")


def test_load_yaml_round_trip(tmp_path: Path) -> None:
    path = _write(tmp_path, {"a": [1, 2], "b": {"c": "d"}})
    assert load_yaml(path) == {"a": [1, 2], "b": {"c": "d"}}


# ---------------------------------------------------------------------------
# Log formatting
# ---------------------------------------------------------------------------


@pytest.fixture()
def record() -> logging.LogRecord:
    return logging.LogRecord(
        "spray_control.modbus.transport", logging.INFO, __file__, 1,
        "Sent %d primitives", (5,), None,
    )


class TestContextFormatter:
    def test_human_line_carries_context(self, record: logging.LogRecord) -> None:
        push_context(host="10.0.0.5")
        try:
            line = ContextFormatter("human", use_color=False).format(record)
        finally:
            pop_context()
        assert "host=10.0.0.5" in line
        assert line.endswith("Sent 5 primitives")
        assert "| INFO " in line

    def test_json_line(self, record: logging.LogRecord) -> None:
        push_context(phase="payload")
        try:
            data = json.loads(ContextFormatter("json").format(record))
        finally:
            pop_context(["phase"])
        assert data["lvl"] == "INFO"
        assert data["phase"] == "payload"
        assert data["msg"] == "Sent 5 primitives"
