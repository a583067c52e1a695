"""Reference computations for validating the analytic formulas.

These are deliberately independent of the closed forms in ``jacobians``:
finite differences for derivatives and a truncated power series for the
matrix exponential.
"""

import logging
from typing import Callable, Optional

import jax
import jax.numpy as jnp
from jax import Array

_logger = logging.getLogger(__name__)


def numerical_jacobian(
    fn: Callable[[Array], Array], x: Array, step: Optional[float] = None
) -> Array:
    """Five-point central-difference Jacobian of ``fn`` at ``x``.

    Args:
        fn: maps an (n,) array to an (m,) array; must be traceable by JAX
        x: (n,) point at which to differentiate
        step: finite-difference step, defaults to eps ** (1/5) for x's dtype

    Returns:
        (m, n) Jacobian
    """
    x = jnp.asarray(x)
    if step is None:
        step = float(jnp.finfo(x.dtype).eps) ** 0.2
        _logger.debug("numerical_jacobian: using step %g for %s", step, x.dtype)

    def column(dx: Array) -> Array:
        near = fn(x + dx) - fn(x - dx)
        far = fn(x + 2.0 * dx) - fn(x - 2.0 * dx)
        return (8.0 * near - far) / (12.0 * step)

    basis = jnp.eye(x.shape[0], dtype=x.dtype) * step
    columns = jax.vmap(column)(basis)  # (n, m)
    return jnp.moveaxis(columns, 0, -1)


def exp_matrix_series(M: Array, terms: int = 50) -> Array:
    """Matrix exponential by its power series, sum_{k < terms} M^k / k!."""
    term = jnp.broadcast_to(jnp.eye(M.shape[-1], dtype=M.dtype), M.shape)
    result = term
    for k in range(1, terms):
        term = jnp.matmul(term, M) / k
        result = result + term
    return result


def angle_grid(start: float, stop: float, step: float, dtype=jnp.float64) -> Array:
    """All tangent vectors whose components lie on arange(start, stop, step).

    Returns:
        (N**3, 3) array
    """
    values = jnp.arange(start, stop, step, dtype=dtype)
    x, y, z = jnp.meshgrid(values, values, values, indexing="ij")
    return jnp.stack([x.ravel(), y.ravel(), z.ravel()], axis=-1)
