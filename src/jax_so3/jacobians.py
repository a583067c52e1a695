"""Analytic derivatives of the SO(3) exponential and logarithm maps.

This module provides closed-form Jacobians used to linearise rotations in
least-squares solvers: the derivative of the quaternion exponential, the
right/left Jacobians of SO(3) and their inverses, the derivative of the
vectorised rotation matrix and the derivative of the retraction
``w -> Log(R * Exp(w))``.

All functions take a single tangent vector of shape (3,); use ``jax.vmap``
to evaluate many at once. None of them relies on automatic differentiation.
"""

import jax.numpy as jnp
from jax import Array

from .core import QuaternionExpDerivative
from .transforms.rotation import matrix_to_quaternion, quaternion_multiply
from .transforms.so3 import (
    SMALL_ANGLE_THRESHOLD,
    half_angle_sinc,
    quaternion_exp,
    quaternion_log,
    safe_sqrt,
    skew_symmetric,
)


def _angle(w: Array):
    theta_sq = jnp.dot(w, w)
    theta = safe_sqrt(theta_sq)
    small_angle = theta < SMALL_ANGLE_THRESHOLD
    safe_theta = jnp.where(small_angle, 1.0, theta)
    return theta, theta_sq, small_angle, safe_theta


def quaternion_exp_derivative(w: Array) -> QuaternionExpDerivative:
    """Quaternion exponential and its 4x3 derivative with respect to w.

    With theta = |w|, f = sin(theta/2)/theta and q = [cos(theta/2), f w]:

        d q_w / d w = -f w^T / 2 = -q_v^T / 2
        d q_v / d w = f I + g w w^T,   g = f'(theta) / theta
                    = (theta cos(theta/2) - 2 sin(theta/2)) / (2 theta^3)

    Below the small-angle threshold g uses -1/24 + t^2/960 - t^4/107520.

    Args:
        w: (3,) tangent vector

    Returns:
        QuaternionExpDerivative with q (4,) and q_D_w (4, 3)
    """
    theta, theta_sq, small_angle, safe_theta = _angle(w)

    f = half_angle_sinc(theta, theta_sq)
    half = 0.5 * safe_theta
    g = jnp.where(
        small_angle,
        -1.0 / 24.0 + theta_sq * (1.0 / 960.0 - theta_sq / 107520.0),
        (safe_theta * jnp.cos(half) - 2.0 * jnp.sin(half)) / (2.0 * safe_theta**3),
    )

    q_v = f * w
    q = jnp.concatenate([jnp.cos(0.5 * theta)[None], q_v])

    I = jnp.eye(3, dtype=w.dtype)
    q_D_w = jnp.concatenate([-0.5 * q_v[None, :], f * I + g * jnp.outer(w, w)], axis=0)

    return QuaternionExpDerivative(q=q, q_D_w=q_D_w)


def so3_jacobian(w: Array, right: bool = True) -> Array:
    """SO(3) Jacobian of the exponential map.

        J = I -/+ (1 - cos t)/t^2 [w]x + (t - sin t)/t^3 [w]x^2

    The right Jacobian (minus sign) satisfies Exp(w + d) ~= Exp(w) Exp(J d),
    the left one (plus sign) Exp(w + d) ~= Exp(J d) Exp(w).

    Args:
        w: (3,) tangent vector
        right: right (True) or left (False) convention

    Returns:
        (3, 3) Jacobian
    """
    theta, theta_sq, small_angle, safe_theta = _angle(w)

    # (1 - cos t)/t^2 = 2 (sin(t/2)/t)^2, no cancellation
    f = half_angle_sinc(theta, theta_sq)
    a = 2.0 * f * f
    b = jnp.where(
        small_angle,
        1.0 / 6.0 + theta_sq * (-1.0 / 120.0 + theta_sq / 5040.0),
        (safe_theta - jnp.sin(safe_theta)) / safe_theta**3,
    )

    K = skew_symmetric(w)
    sign = -1.0 if right else 1.0
    return jnp.eye(3, dtype=w.dtype) + sign * a * K + b * (K @ K)


def so3_jacobian_inverse(w: Array, right: bool = True) -> Array:
    """Closed-form inverse of ``so3_jacobian``.

        J^-1 = I +/- [w]x / 2 + D [w]x^2,   D = 1/t^2 - cot(t/2) / (2 t)

    Valid for |w| < 2 pi. Near zero D = 1/12 + t^2/720 + t^4/30240.
    """
    theta, theta_sq, small_angle, safe_theta = _angle(w)

    half = 0.5 * safe_theta
    d = jnp.where(
        small_angle,
        1.0 / 12.0 + theta_sq * (1.0 / 720.0 + theta_sq / 30240.0),
        1.0 / safe_theta**2 - jnp.cos(half) / (2.0 * safe_theta * jnp.sin(half)),
    )

    K = skew_symmetric(w)
    sign = 0.5 if right else -0.5
    return jnp.eye(3, dtype=w.dtype) + sign * K + d * (K @ K)


def so3_exp_matrix_derivative(w: Array) -> Array:
    """Derivative of the column-major vectorised exp(w) with respect to w.

    Chain rule through the quaternion: column i of R(q) is

        R e_i = (q_w^2 - |q_v|^2) e_i + 2 q_v (q_v)_i + 2 q_w (q_v x e_i)

    whose derivative with respect to q is multiplied by q_D_w. At w = 0 the
    three 3x3 row blocks reduce to the generators skew(-e_x), skew(-e_y),
    skew(-e_z).

    Args:
        w: (3,) tangent vector

    Returns:
        (9, 3) derivative; rows 3i..3i+2 belong to column i of R
    """
    deriv = quaternion_exp_derivative(w)
    q_w = deriv.q[0]
    q_v = deriv.q[1:]

    I = jnp.eye(3, dtype=w.dtype)
    blocks = []
    for i in range(3):
        e_i = I[i]
        skew_e = skew_symmetric(e_i)
        col_D_qw = 2.0 * q_w * e_i - 2.0 * (skew_e @ q_v)
        col_D_qv = (
            2.0 * q_v[i] * I
            + 2.0 * jnp.outer(q_v, e_i)
            - 2.0 * jnp.outer(e_i, q_v)
            - 2.0 * q_w * skew_e
        )
        col_D_q = jnp.concatenate([col_D_qw[:, None], col_D_qv], axis=1)
        blocks.append(col_D_q @ deriv.q_D_w)

    return jnp.concatenate(blocks, axis=0)


def so3_retract_derivative(R: Array, w: Array) -> Array:
    """Derivative of Log(R * Exp(w)) with respect to w, with R held fixed.

    With phi = Log(R * Exp(w)):

        R Exp(w + d) ~= Exp(phi) Exp(Jr(w) d) ~= Exp(phi + Jr(phi)^-1 Jr(w) d)

    so the derivative is Jr(phi)^-1 Jr(w).

    Args:
        R: (4,) unit quaternion or (3, 3) rotation matrix
        w: (3,) tangent vector at which to evaluate

    Returns:
        (3, 3) derivative
    """
    if R.shape == (3, 3):
        R = matrix_to_quaternion(R)
    elif R.shape != (4,):
        raise ValueError(f"R must have shape (4,) or (3,3), got {R.shape}")

    phi = quaternion_log(quaternion_multiply(R, quaternion_exp(w)))
    return so3_jacobian_inverse(phi, right=True) @ so3_jacobian(w, right=True)
