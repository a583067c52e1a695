"""SO(3) rotations as an immutable JAX value type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import jax
import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class

from . import so3
from .rotation import (
    canonicalize_quaternion,
    normalize_quaternions,
    quaternion_conjugate,
    quaternion_multiply,
)

Array = jax.Array

@register_pytree_node_class  # let Rotation3d work with jit / grad / vmap …
@dataclass(frozen=True)
class Rotation3d:
    """Immutable rotation(s) stored as unit quaternions (w, x, y, z)."""
    quaternion: Array  # shape (..., 4)

    # Constructors
    @classmethod
    def from_quaternion(cls, quaternion: Array) -> "Rotation3d":
        if quaternion.shape[-1:] != (4,):
            raise ValueError(f"quaternion must have shape (...,4), got {quaternion.shape}")
        return cls(normalize_quaternions(quaternion))

    @classmethod
    def from_matrix(cls, matrix: Array) -> "Rotation3d":
        if matrix.ndim < 2 or matrix.shape[-2:] != (3, 3):
            raise ValueError(f"matrix must have shape (...,3,3), got {matrix.shape}")
        return cls(so3.to_quaternion(matrix))

    @classmethod
    def exp(cls, log_r: Array) -> "Rotation3d":
        if log_r.shape[-1:] != (3,):
            raise ValueError(f"log_r must have shape (...,3), got {log_r.shape}")
        return cls(so3.quaternion_exp(log_r))

    @classmethod
    def identity(cls, batch_shape: Tuple[int, ...] = (), *, dtype=jnp.float64) -> "Rotation3d":
        q = jnp.array([1.0, 0.0, 0.0, 0.0], dtype=dtype)
        return cls(jnp.broadcast_to(q, batch_shape + (4,)))

    # PyTree boiler-plate
    def tree_flatten(self):
        return (self.quaternion,), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        (quaternion,) = children
        return cls(quaternion)

    # Group operations
    def compose(self, other: "Rotation3d") -> "Rotation3d":
        """Self ∘ other (apply *other* first, then self)."""
        return Rotation3d(quaternion_multiply(self.quaternion, other.quaternion))

    def inverse(self) -> "Rotation3d":
        return Rotation3d(quaternion_conjugate(self.quaternion))

    def apply(self, points: Array) -> Array:
        """Rotate (..., 3) or (..., N, 3) points."""
        return so3.apply(self.matrix(), points)

    # Conversions
    def matrix(self) -> Array:
        return so3.from_quaternion(self.quaternion)

    def quaternion_array(self) -> Array:
        """Quaternion with a non-negative scalar part."""
        return canonicalize_quaternion(self.quaternion)

    def log(self) -> Array:
        return so3.quaternion_log(self.quaternion)
