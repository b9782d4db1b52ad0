"""
Spray program module.

Holds the editable program (configuration, passes, trajectories) and the
reconstructor that rebuilds each trajectory's point path from its
primitive, direction and height settings.
"""

from spray_control.program.model import Configuration, SprayPass, Trajectory
from spray_control.program.reconstruct import (
    InputValidationError,
    create_trajectory,
    regenerate_points,
)

__all__ = [
    "Configuration",
    "SprayPass",
    "Trajectory",
    "InputValidationError",
    "create_trajectory",
    "regenerate_points",
]
