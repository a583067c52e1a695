"""SO(3) and so(3) Lie group operations in JAX.

This module implements the exponential and logarithm maps between tangent
vectors (axis-angle, so(3)) and rotations (SO(3)), as unit quaternions in
(w, x, y, z) order or as 3x3 rotation matrices. All functions are pure,
JIT-able, operate on JAX arrays and keep the dtype of their input.

Formulas with a removable singularity at zero angle switch to a truncated
series below ``SMALL_ANGLE_THRESHOLD``. Both branches of every ``jnp.where``
are evaluated, so the closed-form branch is fed a "safe" angle that never
divides by zero.
"""

import jax
import jax.numpy as jnp

from .rotation import (
    canonicalize_quaternion,
    matrix_to_quaternion,
    quaternion_to_matrix,
)

Array = jax.Array

# Below this angle (radians) closed forms are replaced by their Maclaurin
# series. The truncated series are accurate to below float64 rounding here.
SMALL_ANGLE_THRESHOLD = 1e-2

# Within this distance of pi the matrix logarithm takes the rotation axis from
# the symmetric part of R instead of the skew part.
NEAR_PI_THRESHOLD = 0.5


def skew_symmetric(v: Array) -> Array:
    """
    Convert 3D vector to skew-symmetric matrix.

    The result satisfies ``skew_symmetric(v) @ x == cross(v, x)``.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) skew-symmetric matrix
    """
    zeros = jnp.zeros(v.shape[:-1], dtype=v.dtype)

    return jnp.stack([
        jnp.stack([zeros, -v[..., 2], v[..., 1]], axis=-1),
        jnp.stack([v[..., 2], zeros, -v[..., 0]], axis=-1),
        jnp.stack([-v[..., 1], v[..., 0], zeros], axis=-1)
    ], axis=-2)


def vee(M: Array) -> Array:
    """Inverse of skew_symmetric: (..., 3, 3) -> (..., 3)."""
    return jnp.stack([M[..., 2, 1], M[..., 0, 2], M[..., 1, 0]], axis=-1)


def safe_sqrt(x: Array) -> Array:
    """
    Square root whose derivative stays finite at x = 0.

    The zero input is routed around jnp.sqrt so no inf tangent is formed;
    the returned derivative there is zero.
    """
    positive = x > 0
    return jnp.where(positive, jnp.sqrt(jnp.where(positive, x, 1.0)), 0.0)


def half_angle_sinc(theta: Array, theta_sq: Array) -> Array:
    """
    sin(theta / 2) / theta, finite at theta = 0.

    Args:
        theta: angle, any shape
        theta_sq: theta squared, same shape (passed in to avoid recomputing)

    Returns:
        coefficient with the same shape as theta
    """
    small_angle = theta < SMALL_ANGLE_THRESHOLD
    safe_theta = jnp.where(small_angle, 1.0, theta)

    # 1/2 - t^2/48 + t^4/3840
    series = 0.5 + theta_sq * (-1.0 / 48.0 + theta_sq / 3840.0)

    return jnp.where(small_angle, series, jnp.sin(0.5 * safe_theta) / safe_theta)


def quaternion_exp(log_r: Array) -> Array:
    """
    SO(3) exponential map to a unit quaternion.

    q = [cos(theta/2), sin(theta/2) * log_r / theta] with theta = |log_r|.

    Args:
        log_r: (..., 3) array of axis-angle vectors

    Returns:
        (..., 4) array of unit quaternions in (w, x, y, z) format
    """
    theta_sq = jnp.sum(log_r * log_r, axis=-1, keepdims=True)
    theta = safe_sqrt(theta_sq)

    coeff = half_angle_sinc(theta, theta_sq)

    return jnp.concatenate([jnp.cos(0.5 * theta), coeff * log_r], axis=-1)


def exp(log_r: Array) -> Array:
    """
    SO(3) exponential map: convert axis-angle vector to rotation matrix.

    Rodrigues' formula written with the half-angle coefficient
    f = sin(theta/2)/theta, using sin(theta)/theta = 2 f cos(theta/2) and
    (1 - cos(theta))/theta^2 = 2 f^2:

        R = I + 2 f cos(theta/2) K + 2 f^2 K^2,   K = [log_r]x

    Args:
        log_r: (..., 3) array of axis-angle vectors

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    theta_sq = jnp.sum(log_r * log_r, axis=-1, keepdims=True)
    theta = safe_sqrt(theta_sq)

    f = half_angle_sinc(theta, theta_sq)[..., None]
    c = jnp.cos(0.5 * theta)[..., None]

    K = skew_symmetric(log_r)
    I = jnp.broadcast_to(jnp.eye(3, dtype=log_r.dtype), K.shape)

    return I + 2.0 * f * c * K + 2.0 * f * f * jnp.matmul(K, K)


def quaternion_log(q: Array) -> Array:
    """
    SO(3) logarithm map of a unit quaternion.

    q and -q are the same rotation; q is first replaced by the representative
    with a non-negative scalar part so the returned angle lies in [0, pi].

    Args:
        q: (..., 4) array of unit quaternions in (w, x, y, z) format

    Returns:
        (..., 3) array of axis-angle vectors
    """
    q = canonicalize_quaternion(q)
    w = q[..., 0:1]
    v = q[..., 1:]

    sin_half_sq = jnp.sum(v * v, axis=-1, keepdims=True)
    sin_half = safe_sqrt(sin_half_sq)

    # theta / sin(theta/2) = 2 atan2(s, w) / s; for small s the scalar part is ~1
    small_angle = sin_half < SMALL_ANGLE_THRESHOLD
    safe_sin_half = jnp.where(small_angle, 1.0, sin_half)
    safe_w = jnp.where(small_angle, w, 1.0)

    x = sin_half_sq / (safe_w * safe_w)
    series = (2.0 / safe_w) * (1.0 + x * (-1.0 / 3.0 + x * (1.0 / 5.0 - x / 7.0)))
    scale = jnp.where(small_angle, series, 2.0 * jnp.arctan2(safe_sin_half, w) / safe_sin_half)

    return scale * v


def log(R: Array) -> Array:
    """
    SO(3) logarithm map: convert rotation matrix to axis-angle vector.

    The angle comes from the trace, cos(theta) = (tr(R) - 1) / 2, paired with
    sin(theta) = |vee((R - R^T) / 2)| through atan2. Three regimes:

    * small angle: the skew part is scaled by the series of theta / sin(theta);
      the identity maps to exactly zero.
    * general: skew part scaled by theta / sin(theta).
    * near pi: the skew part carries no usable axis information. The axis is
      read from n n^T = (sym(R) - cos(theta) I) / (1 - cos(theta)), taking the
      column with the largest diagonal entry. Its sign follows the skew part,
      and where that vanishes (theta == pi) the dominant component is positive.

    Args:
        R: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 3) array of axis-angle vectors
    """
    trace = jnp.trace(R, axis1=-2, axis2=-1)[..., None]
    cos_theta = jnp.clip(0.5 * (trace - 1.0), -1.0, 1.0)

    R_t = jnp.swapaxes(R, -1, -2)
    omega_raw = 0.5 * vee(R - R_t)
    sin_theta = safe_sqrt(jnp.sum(omega_raw * omega_raw, axis=-1, keepdims=True))
    theta = jnp.arctan2(sin_theta, cos_theta)
    theta_sq = theta * theta

    small_angle = theta < SMALL_ANGLE_THRESHOLD
    safe_sin = jnp.where(small_angle, 1.0, sin_theta)

    # theta / sin(theta) = 1 + t^2/6 + 7 t^4/360 + 31 t^6/15120
    series = 1.0 + theta_sq * (1.0 / 6.0 + theta_sq * (7.0 / 360.0 + theta_sq * 31.0 / 15120.0))
    omega = jnp.where(small_angle, series, theta / safe_sin) * omega_raw

    near_pi = theta > jnp.pi - NEAR_PI_THRESHOLD
    safe_cos = jnp.where(near_pi, cos_theta, -1.0)
    I = jnp.eye(3, dtype=R.dtype)
    nn_t = (0.5 * (R + R_t) - safe_cos[..., None] * I) / (1.0 - safe_cos[..., None])

    diag_vals = jnp.diagonal(nn_t, axis1=-2, axis2=-1)
    best_col = jnp.argmax(diag_vals, axis=-1)
    axis = jnp.take_along_axis(nn_t, best_col[..., None, None], axis=-1)[..., 0]
    axis = axis / jnp.linalg.norm(axis, axis=-1, keepdims=True)
    dot = jnp.sum(axis * omega_raw, axis=-1, keepdims=True)
    axis = jnp.where(dot < 0, -axis, axis)

    return jnp.where(near_pi, theta * axis, omega)


def rotation_log(rotation: Array) -> Array:
    """
    SO(3) logarithm of either representation.

    Args:
        rotation: (..., 4) unit quaternion or (..., 3, 3) rotation matrix

    Returns:
        (..., 3) array of axis-angle vectors
    """
    if rotation.ndim >= 2 and rotation.shape[-2:] == (3, 3):
        return log(rotation)
    if rotation.shape[-1:] == (4,):
        return quaternion_log(rotation)
    raise ValueError(
        f"rotation must have shape (...,4) or (...,3,3), got {rotation.shape}"
    )


def multiply(R1: Array, R2: Array) -> Array:
    """Group product R1 R2; leading batch dimensions broadcast."""
    return R1 @ R2


def inverse(R: Array) -> Array:
    """Inverse of a rotation matrix, i.e. its transpose."""
    return jnp.swapaxes(R, -1, -2)


def apply(R: Array, v: Array) -> Array:
    """
    Rotate a vector, or a stack of N row vectors, by R.

    Args:
        R: (..., 3, 3) rotation matrix
        v: (..., 3) or (..., N, 3)

    Returns:
        array shaped like v
    """
    if v.ndim == R.ndim - 1:
        return (R @ v[..., None])[..., 0]
    return v @ inverse(R)


def from_quaternion(quaternions: Array) -> Array:
    """(..., 4) unit quaternions -> (..., 3, 3) rotation matrices."""
    return quaternion_to_matrix(quaternions)


def to_quaternion(matrix: Array) -> Array:
    """(..., 3, 3) rotation matrices -> (..., 4) quaternions with w >= 0."""
    return matrix_to_quaternion(matrix)
