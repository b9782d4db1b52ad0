#!/usr/bin/env python3
"""
Send DXF Script.

Build a single-pass spray program from a DXF drawing and upload it to the
robot controller.

Usage:
    python -m spray_control.scripts.send_dxf --dxf part.dxf --dry-run
    python -m spray_control.scripts.send_dxf --dxf part.dxf --host 192.168.0.10
    python -m spray_control.scripts.send_dxf --dxf part.dxf --layer SPRAY \\
        --upper-liquid --runtime-scale 1.5 --dump-dir logs/sent

Every supported entity (LINE, ARC, CIRCLE, LWPOLYLINE, exploded blocks)
becomes one trajectory, in drawing order, with its runtime set to the
minimum runtime times ``--runtime-scale``.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from spray_control.configs.loader import ConfigError, load_config
from spray_control.geometry.cad_import import CadImportError, load_dxf
from spray_control.modbus.encoder import ConfigurationError, ProtocolEncoder
from spray_control.modbus.transport import TransportSession, format_payload_dump
from spray_control.program.model import Configuration
from spray_control.program.reconstruct import (
    InputValidationError,
    create_trajectory,
    set_nozzle,
    set_runtime,
)
from spray_control.utils.logging_config import install_excepthook, push_context, setup_logging

logger = logging.getLogger(__name__)


def build_configuration(
    dxf_path: str,
    *,
    layers: list[str] | None = None,
    pass_name: str = "Pass 1",
    runtime_scale: float = 1.0,
    resolution_deg: float = 15.0,
    upper_gas: bool = False,
    upper_liquid: bool = False,
    lower_gas: bool = False,
    lower_liquid: bool = False,
) -> Configuration:
    """One pass holding every supported entity of the drawing."""
    if runtime_scale < 1.0:
        raise InputValidationError(
            f"runtime scale must be >= 1 (minimum runtime), got {runtime_scale}"
        )
    entities = load_dxf(dxf_path, layers)

    configuration = Configuration()
    spray_pass = configuration.add_pass(pass_name)
    for index, entity in enumerate(entities):
        trajectory = create_trajectory(
            entity.primitive,
            source_index=index,
            name=f"{type(entity.primitive).__name__} {entity.handle or index}",
            resolution_deg=resolution_deg,
        )
        set_nozzle(
            trajectory,
            upper_gas=upper_gas,
            upper_liquid=upper_liquid,
            lower_gas=lower_gas,
            lower_liquid=lower_liquid,
        )
        set_runtime(trajectory, trajectory.runtime * runtime_scale)
        spray_pass.trajectories.append(trajectory)
    return configuration


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Upload a DXF drawing as a spray program",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--dxf", "-d", type=str, required=True, help="DXF drawing")
    parser.add_argument("--config", "-c", type=str, help="Configuration file path")
    parser.add_argument("--host", type=str, help="Controller host override")
    parser.add_argument("--port", type=int, help="Controller port override")
    parser.add_argument(
        "--layer",
        "-l",
        action="append",
        help="Only import entities on this layer (repeatable)",
    )
    parser.add_argument("--pass-name", type=str, default="Pass 1", help="Spray pass name")
    parser.add_argument(
        "--runtime-scale",
        type=float,
        default=1.0,
        help="Multiply each minimum runtime by this factor (>= 1)",
    )

    # Nozzles
    parser.add_argument("--upper-gas", action="store_true", help="Upper nozzle gas on")
    parser.add_argument("--upper-liquid", action="store_true", help="Upper nozzle liquid on (implies gas)")
    parser.add_argument("--lower-gas", action="store_true", help="Lower nozzle gas on")
    parser.add_argument("--lower-liquid", action="store_true", help="Lower nozzle liquid on (implies gas)")

    # Execution
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Encode and print the register plan without connecting",
    )
    parser.add_argument("--dump-dir", type=str, help="Write a payload dump before sending")
    parser.add_argument(
        "--skip-status-check",
        action="store_true",
        help="Do not require the robot to report ready before sending",
    )
    parser.add_argument("--log-level", type=str, help="Logging level override")

    args = parser.parse_args()

    # Load config
    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as e:
        print(f"Error loading config: {e}")
        sys.exit(1)

    setup_logging(
        args.log_level or config.logging.level,
        config.logging.file,
        json=config.logging.json,
        context={"app": "send_dxf"},
    )
    install_excepthook()

    try:
        configuration = build_configuration(
            args.dxf,
            layers=args.layer,
            pass_name=args.pass_name,
            runtime_scale=args.runtime_scale,
            resolution_deg=config.geometry.resolution_deg,
            upper_gas=args.upper_gas,
            upper_liquid=args.upper_liquid,
            lower_gas=args.lower_gas,
            lower_liquid=args.lower_liquid,
        )
        program = ProtocolEncoder(config.protocol).encode(configuration)
    except (CadImportError, InputValidationError, ConfigurationError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Encoded {program.total_primitives} primitives in "
          f"{program.pass_count} pass(es), {len(program.payload)} floats")

    if args.dry_run:
        print(format_payload_dump(program, config.protocol.payload_base_register), end="")
        return

    host = args.host or config.connection.host
    port = args.port or config.connection.port
    push_context(host=host)

    with TransportSession(
        config.protocol,
        timeout=config.connection.timeout_s,
        unit_id=config.connection.unit_id,
    ) as session:
        result = session.connect(host, port)
        if not result.success:
            print(f"Connection failed: {result.message}")
            sys.exit(1)

        if not args.skip_status_check:
            ready = session.check_ready_for_send()
            if not ready.success:
                print(f"Robot not ready: {ready.message}")
                sys.exit(1)

        result = session.send_configuration(configuration, dump_dir=args.dump_dir)
        print(result.message)
        if not result.success:
            sys.exit(1)


if __name__ == "__main__":
    main()
