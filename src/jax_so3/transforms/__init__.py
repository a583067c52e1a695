"""
Rotation representations and maps for SO(3).

This module provides:
- quaternion algebra helpers (rotation module)
- exponential/logarithm maps between so(3) and SO(3) (so3 module)
- an immutable rotation value type (Rotation3d)

All functions are pure, stateless, and keep the dtype of their inputs.
"""

from . import rotation
from . import so3
from .rotation3d import Rotation3d

__all__ = [
    "rotation",
    "so3",
    "Rotation3d",
]
