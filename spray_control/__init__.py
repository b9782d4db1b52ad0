"""
Spray Control Package.

Teaches spray-coating trajectories to a robot arm. Primitives captured from
CAD drawings are discretised into point paths, packed into a Modbus register
map and pushed to the robot controller over Modbus TCP.

Subpackages:
    geometry: Primitive types, arc/circle/bulge math, CAD import, matching
    program: Trajectories, spray passes and point reconstruction
    modbus: Register-map encoder and transport session
    configs: Machine configuration loading and validation
    utils: Filesystem helpers and logging setup
"""

__all__ = ["geometry", "program", "modbus", "configs", "utils"]
