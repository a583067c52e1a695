"""
jax_so3: analytic SO(3) exponential/logarithm maps and their Jacobians.

This library provides closed-form, JIT-compilable implementations of the
rotation-group formulas needed to linearise rotations in least-squares
problems, numerically stable at small angles and valid in float32 and
float64.
"""

import logging

import jax

_logger = logging.getLogger(__name__)

jax.config.update("jax_enable_x64", True)
_logger.debug("jax_enable_x64 set; float64 arrays are available")

# Import core modules
from . import transforms
from . import core
from . import jacobians
from . import numerical

__version__ = "0.1.0"
__all__ = ["transforms", "core", "jacobians", "numerical"]
