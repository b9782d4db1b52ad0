#!/usr/bin/env python3
"""Verify Modbus connectivity to the spray robot controller.

Connects, reads the robot status and save-status registers, then
disconnects.  Nothing is written.

Usage::

    python -m spray_control.scripts.check_connection
    python -m spray_control.scripts.check_connection --host 192.168.0.10 --port 502
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Allow direct execution from the repo root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from spray_control.configs.loader import load_config
from spray_control.modbus.transport import TransportSession
from spray_control.utils.logging_config import install_excepthook, setup_logging

logger = logging.getLogger(__name__)

_STATUS_NAMES = {1: "busy", 2: "ready", 3: "fault"}


def check_connection(
    host: str | None = None,
    port: int | None = None,
    config_path: str | None = None,
) -> bool:
    """Run connection checks.  Returns ``True`` if all pass."""
    print("=" * 60)
    print("  MODBUS CONNECTION CHECK")
    print("=" * 60)

    config = load_config(config_path)
    host = host or config.connection.host
    port = port or config.connection.port
    print(f"\n[OK] Configuration loaded")
    print(f"     Controller: {host}:{port}")

    passed = 0
    failed = 0

    with TransportSession(
        config.protocol,
        timeout=config.connection.timeout_s,
        unit_id=config.connection.unit_id,
    ) as session:
        # --- Check 1: connect ----------------------------------------------
        result = session.connect(host, port)
        if not result.success:
            print(f"[FAIL] Connection: {result.message}")
            return False
        print("[PASS] TCP connection established")
        passed += 1

        # --- Check 2: robot status -----------------------------------------
        status = session.read_robot_status()
        if status.success:
            name = _STATUS_NAMES.get(status.value, "unknown")
            print(f"[PASS] Robot status register: {status.value} ({name})")
            passed += 1
        else:
            print(f"[FAIL] Robot status: {status.message}")
            failed += 1

        # --- Check 3: save-status register ---------------------------------
        save = session.read_status_register(config.protocol.save_status_register)
        if save.success:
            print(f"[PASS] Save-status register: {save.value}")
            passed += 1
        else:
            print(f"[FAIL] Save-status register: {save.message}")
            failed += 1

    print(f"\n{'='*60}")
    print(f"  Results: {passed} passed, {failed} failed")
    print(f"{'='*60}")
    return failed == 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Check Modbus connection")
    parser.add_argument("--host", type=str, help="Controller host override")
    parser.add_argument("--port", "-p", type=int, help="Controller port override")
    parser.add_argument("--config", "-c", type=str, help="Config file path")
    args = parser.parse_args()

    setup_logging("INFO", context={"app": "check_connection"})
    install_excepthook()
    success = check_connection(args.host, args.port, args.config)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
