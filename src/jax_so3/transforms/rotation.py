"""Quaternion algebra and rotation conversion utilities in JAX.

Quaternions are stored as (..., 4) arrays in (w, x, y, z) order and combined
with the Hamilton product.
"""

import jax
import jax.numpy as jnp
from typing import Union

# Type aliases
Array = jax.Array
Scalar = Union[float, Array]


def quaternion_multiply(q0: Array, q1: Array) -> Array:
    """
    Hamilton product q0 * q1.

    Args:
        q0: (..., 4) left quaternion in (w, x, y, z) format
        q1: (..., 4) right quaternion in (w, x, y, z) format

    Returns:
        (..., 4) product quaternion
    """
    w0, x0, y0, z0 = jnp.moveaxis(q0, -1, 0)
    w1, x1, y1, z1 = jnp.moveaxis(q1, -1, 0)

    return jnp.stack([
        w0*w1 - x0*x1 - y0*y1 - z0*z1,
        w0*x1 + x0*w1 + y0*z1 - z0*y1,
        w0*y1 - x0*z1 + y0*w1 + z0*x1,
        w0*z1 + x0*y1 - y0*x1 + z0*w1
    ], axis=-1)


def quaternion_mul_matrix(q: Array) -> Array:
    """
    Matrix of left multiplication by a quaternion.

    Returns M such that M(q0) @ q1 == q0 * q1 for any pair of quaternions,
    unit or not.

    Args:
        q: (..., 4) quaternion in (w, x, y, z) format

    Returns:
        (..., 4, 4) left-multiplication matrix
    """
    w, x, y, z = jnp.moveaxis(q, -1, 0)

    return jnp.stack([
        jnp.stack([w, -x, -y, -z], axis=-1),
        jnp.stack([x, w, -z, y], axis=-1),
        jnp.stack([y, z, w, -x], axis=-1),
        jnp.stack([z, -y, x, w], axis=-1)
    ], axis=-2)


def quaternion_conjugate(q: Array) -> Array:
    """Conjugate (inverse for unit quaternions)."""
    return q * jnp.array([1.0, -1.0, -1.0, -1.0], dtype=q.dtype)


def normalize_quaternions(quaternions: Array) -> Array:
    """Normalize quaternions to unit length."""
    return quaternions / jnp.linalg.norm(quaternions, axis=-1, keepdims=True)


def canonicalize_quaternion(q: Array) -> Array:
    """
    Pick one representative of {q, -q}.

    The scalar part is made non-negative. When it is exactly zero (a half
    turn) the vector component of largest magnitude is made positive, the
    same choice ``so3.log`` makes for a matrix at pi.
    """
    w = q[..., 0:1]
    v = q[..., 1:]
    dominant = jnp.take_along_axis(v, jnp.argmax(jnp.abs(v), axis=-1)[..., None], axis=-1)
    flip = (w < 0) | ((w == 0) & (dominant < 0))
    return jnp.where(flip, -q, q)


def quaternion_to_matrix(quaternions: Array) -> Array:
    """
    Rotation matrices of unit quaternions.

    Homogeneous form: the diagonal is w^2 + x^2 - y^2 - z^2 and cyclic
    permutations, so no constant term appears.

    Args:
        quaternions: (..., 4) array of quaternions in (w, x, y, z) format

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    w, x, y, z = (quaternions[..., i] for i in range(4))

    ww, xx, yy, zz = w * w, x * x, y * y, z * z
    rows = [
        [ww + xx - yy - zz, 2 * (x * y - w * z), 2 * (x * z + w * y)],
        [2 * (x * y + w * z), ww - xx + yy - zz, 2 * (y * z - w * x)],
        [2 * (x * z - w * y), 2 * (y * z + w * x), ww - xx - yy + zz],
    ]
    return jnp.stack([jnp.stack(row, axis=-1) for row in rows], axis=-2)


def matrix_to_quaternion(matrix: Array) -> Array:
    """
    Convert rotation matrices to quaternions (w, x, y, z).

    Picks the best-conditioned of the four extraction formulas per element.
    The result has a non-negative scalar part.

    Args:
        matrix: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 4) array of unit quaternions
    """
    m00 = matrix[..., 0, 0]
    m01 = matrix[..., 0, 1]
    m02 = matrix[..., 0, 2]
    m10 = matrix[..., 1, 0]
    m11 = matrix[..., 1, 1]
    m12 = matrix[..., 1, 2]
    m20 = matrix[..., 2, 0]
    m21 = matrix[..., 2, 1]
    m22 = matrix[..., 2, 2]

    trace = m00 + m11 + m22

    # Use dtype-adaptive epsilon
    eps = jnp.finfo(matrix.dtype).eps

    # Four candidates, each proportional to the quaternion
    q0 = jnp.stack([trace + 1.0, m21 - m12, m02 - m20, m10 - m01], axis=-1)
    q1 = jnp.stack([m21 - m12, m00 - m11 - m22 + 1.0, m01 + m10, m02 + m20], axis=-1)
    q2 = jnp.stack([m02 - m20, m01 + m10, m11 - m00 - m22 + 1.0, m12 + m21], axis=-1)
    q3 = jnp.stack([m10 - m01, m02 + m20, m12 + m21, m22 - m00 - m11 + 1.0], axis=-1)

    s0 = 0.5 / jnp.sqrt(jnp.maximum(1.0 + trace, eps))
    s1 = 0.5 / jnp.sqrt(jnp.maximum(1.0 + m00 - m11 - m22, eps))
    s2 = 0.5 / jnp.sqrt(jnp.maximum(1.0 + m11 - m00 - m22, eps))
    s3 = 0.5 / jnp.sqrt(jnp.maximum(1.0 + m22 - m00 - m11, eps))

    mask0 = (trace > 0)
    mask1 = (~mask0) & (m00 > m11) & (m00 > m22)
    mask2 = (~mask0) & (~mask1) & (m11 > m22)

    quaternion = jnp.where(
        mask0[..., None],
        q0 * s0[..., None],
        jnp.where(
            mask1[..., None],
            q1 * s1[..., None],
            jnp.where(mask2[..., None], q2 * s2[..., None], q3 * s3[..., None])
        )
    )

    return normalize_quaternions(canonicalize_quaternion(quaternion))


def axis_angle_to_matrix(axis: Array, angle: Scalar) -> Array:
    """
    Rotation matrix from a unit axis and an angle (textbook Rodrigues form).

    Args:
        axis: (..., 3) unit rotation axis
        angle: (...) rotation angle in radians

    Returns:
        (..., 3, 3) rotation matrix
    """
    angle = jnp.asarray(angle, dtype=axis.dtype)[..., None, None]
    x, y, z = jnp.moveaxis(axis, -1, 0)
    zeros = jnp.zeros_like(x)

    K = jnp.stack([
        jnp.stack([zeros, -z, y], axis=-1),
        jnp.stack([z, zeros, -x], axis=-1),
        jnp.stack([-y, x, zeros], axis=-1)
    ], axis=-2)
    I = jnp.broadcast_to(jnp.eye(3, dtype=axis.dtype), K.shape)

    return I + jnp.sin(angle) * K + (1.0 - jnp.cos(angle)) * jnp.matmul(K, K)
