"""Tests for the SO(3) Jacobians and the retraction derivative."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jax_so3.jacobians import (
    quaternion_exp_derivative,
    so3_jacobian,
    so3_jacobian_inverse,
    so3_retract_derivative,
)
from jax_so3.numerical import angle_grid, numerical_jacobian
from jax_so3.transforms import rotation, so3


def right_perturbation_jacobian(w):
    """d/dd Log(Exp(w)^-1 Exp(w + d)) at d = 0."""
    q_inv = rotation.quaternion_conjugate(so3.quaternion_exp(w))
    return numerical_jacobian(
        lambda d: so3.quaternion_log(rotation.quaternion_multiply(q_inv, so3.quaternion_exp(w + d))),
        jnp.zeros_like(w),
    )


def left_perturbation_jacobian(w):
    """d/dd Log(Exp(w + d) Exp(w)^-1) at d = 0."""
    q_inv = rotation.quaternion_conjugate(so3.quaternion_exp(w))
    return numerical_jacobian(
        lambda d: so3.quaternion_log(rotation.quaternion_multiply(so3.quaternion_exp(w + d), q_inv)),
        jnp.zeros_like(w),
    )


def composed_log_jacobian(w):
    """d/dd Log(Exp(w) Exp(d)) at d = 0, which is the inverse right Jacobian."""
    q = so3.quaternion_exp(w)
    return numerical_jacobian(
        lambda d: so3.quaternion_log(rotation.quaternion_multiply(q, so3.quaternion_exp(d))),
        jnp.zeros_like(w),
    )


@pytest.fixture
def half_turn_grid(precision):
    return angle_grid(-jnp.pi / 2, jnp.pi / 2, 0.2, dtype=precision.dtype)


# SO(3) Jacobian
def test_right_jacobian_matches_finite_differences(half_turn_grid, precision):
    """Exp(w + d) ~= Exp(w) Exp(Jr d)."""
    J_analytical = jax.jit(jax.vmap(lambda w: so3_jacobian(w, right=True)))(half_turn_grid)
    J_numerical = jax.jit(jax.vmap(right_perturbation_jacobian))(half_turn_grid)
    assert J_analytical.dtype == precision.dtype
    np.testing.assert_allclose(J_analytical, J_numerical, atol=precision.deriv_tol)


def test_left_jacobian_matches_finite_differences(half_turn_grid, precision):
    """Exp(w + d) ~= Exp(Jl d) Exp(w)."""
    J_analytical = jax.jit(jax.vmap(lambda w: so3_jacobian(w, right=False)))(half_turn_grid)
    J_numerical = jax.jit(jax.vmap(left_perturbation_jacobian))(half_turn_grid)
    np.testing.assert_allclose(J_analytical, J_numerical, atol=precision.deriv_tol)


def test_jacobian_inverse_matches_finite_differences(half_turn_grid, precision):
    """d/dd Log(Exp(w) Exp(d)) at zero is Jr(w)^-1."""
    J_inv = jax.jit(jax.vmap(lambda w: so3_jacobian_inverse(w, right=True)))(half_turn_grid)
    J_numerical = jax.jit(jax.vmap(composed_log_jacobian))(half_turn_grid)
    np.testing.assert_allclose(J_inv, J_numerical, atol=precision.deriv_tol)


@pytest.mark.parametrize("right", [True, False])
def test_jacobian_inverse_is_inverse(right):
    """J J^-1 = I up to a full turn in angle."""
    w = angle_grid(-jnp.pi, jnp.pi, 0.4)
    w = w[jnp.linalg.norm(w, axis=-1) < 1.9 * jnp.pi]
    J = jax.vmap(lambda x: so3_jacobian(x, right=right))(w)
    J_inv = jax.vmap(lambda x: so3_jacobian_inverse(x, right=right))(w)
    np.testing.assert_allclose(J @ J_inv, jnp.broadcast_to(jnp.eye(3), J.shape), atol=1e-10)
    np.testing.assert_allclose(J_inv, jnp.linalg.inv(J), atol=1e-9)


def test_left_jacobian_is_transpose_of_right():
    """Jl(w) = Jr(w)^T = Jr(-w)."""
    w = jnp.array([0.7, -1.2, 0.3])
    Jl = so3_jacobian(w, right=False)
    np.testing.assert_allclose(Jl, so3_jacobian(w, right=True).T, atol=1e-15)
    np.testing.assert_allclose(Jl, so3_jacobian(-w, right=True), atol=1e-15)


def test_right_jacobian_from_quaternion_derivative():
    """Jr = 2 Im(conj(q) * dq/dw), tying the Jacobian to the exp derivative."""
    keys = jax.random.split(jax.random.PRNGKey(5), 8)
    for key in keys:
        w = jax.random.uniform(key, (3,), minval=-2.5, maxval=2.5)
        deriv = quaternion_exp_derivative(w)
        L = rotation.quaternion_mul_matrix(rotation.quaternion_conjugate(deriv.q))
        np.testing.assert_allclose(2.0 * (L @ deriv.q_D_w)[1:], so3_jacobian(w), atol=1e-12)


def test_jacobian_at_zero_is_identity(precision):
    """Both Jacobians and their inverses are the identity at zero."""
    zero = jnp.zeros(3, dtype=precision.dtype)
    for right in (True, False):
        np.testing.assert_array_equal(so3_jacobian(zero, right), np.eye(3))
        np.testing.assert_array_equal(so3_jacobian_inverse(zero, right), np.eye(3))


@pytest.mark.parametrize("w", [[1.0e-7, 0.5e-6, 3.5e-8], [-0.2e-8, 0.3e-7, 0.0]])
def test_jacobian_near_zero(w, precision):
    """Tiny angles give finite Jacobians that match finite differences."""
    w = jnp.array(w, dtype=precision.dtype)
    Jr = so3_jacobian(w)
    Jr_inv = so3_jacobian_inverse(w)
    assert jnp.all(jnp.isfinite(Jr)) and jnp.all(jnp.isfinite(Jr_inv))
    np.testing.assert_allclose(Jr, right_perturbation_jacobian(w), atol=precision.near_zero_deriv_tol)
    np.testing.assert_allclose(Jr_inv, composed_log_jacobian(w), atol=precision.near_zero_deriv_tol)


def test_jacobian_small_angle_branch_is_continuous():
    """Series and closed form meet at the threshold without a jump."""
    axis = jnp.array([0.36, 0.48, -0.8])
    below = axis * (so3.SMALL_ANGLE_THRESHOLD - 1e-14)
    above = axis * (so3.SMALL_ANGLE_THRESHOLD + 1e-14)
    for right in (True, False):
        np.testing.assert_allclose(
            so3_jacobian(below, right), so3_jacobian(above, right), rtol=0, atol=1e-13
        )
        np.testing.assert_allclose(
            so3_jacobian_inverse(below, right), so3_jacobian_inverse(above, right), rtol=0, atol=1e-13
        )


# Retraction derivative
RETRACT_SAMPLES = [
    [0.6, -0.1, 0.4],
    [0.8, 0.0, 0.2],
    [-1.2, 0.6, 1.5],
    [0.0, 0.0, 0.1],
    [1.5, 1.7, -1.2],
    [-0.3, 0.3, 0.3],
]

RETRACT_SAMPLES_NEAR_ZERO = [
    [0.0, 0.0, 0.0],
    [-1.0e-5, 1.0e-5, 0.3e-5],
    [0.1e-5, 0.0, -0.1e-5],
    [-0.2e-8, 0.3e-7, 0.0],
]


def retract_log(R):
    """w -> Log(R * Exp(w)) with R held fixed."""
    return lambda w: so3.quaternion_log(rotation.quaternion_multiply(R, so3.quaternion_exp(w)))


@pytest.mark.parametrize("w", RETRACT_SAMPLES)
def test_retract_derivative(w):
    """Analytic retraction derivative matches finite differences."""
    R = so3.quaternion_exp(jnp.array([0.6, -0.1, 0.4]))
    w = jnp.array(w)
    J_analytical = so3_retract_derivative(R, w)
    J_numerical = numerical_jacobian(retract_log(R), w)
    np.testing.assert_allclose(J_analytical, J_numerical, atol=1e-9)


@pytest.mark.parametrize("w", RETRACT_SAMPLES_NEAR_ZERO)
def test_retract_derivative_near_zero(w):
    """With R = I and tiny w the derivative is the identity map's."""
    R = jnp.array([1.0, 0.0, 0.0, 0.0])
    w = jnp.array(w)
    J_analytical = so3_retract_derivative(R, w)
    assert jnp.all(jnp.isfinite(J_analytical))
    np.testing.assert_allclose(J_analytical, numerical_jacobian(retract_log(R), w), atol=1e-9)


def test_retract_derivative_accepts_matrix():
    """A rotation matrix gives the same answer as its quaternion."""
    log_r = jnp.array([-0.4, 1.1, 0.25])
    w = jnp.array([0.3, -0.2, 0.9])
    np.testing.assert_allclose(
        so3_retract_derivative(so3.exp(log_r), w),
        so3_retract_derivative(so3.quaternion_exp(log_r), w),
        atol=1e-12,
    )


def test_retract_derivative_at_zero_is_inverse_jacobian():
    """At w = 0 the derivative reduces to Jr(Log R)^-1."""
    log_r = jnp.array([0.6, -0.1, 0.4])
    np.testing.assert_allclose(
        so3_retract_derivative(so3.quaternion_exp(log_r), jnp.zeros(3)),
        so3_jacobian_inverse(log_r),
        atol=1e-14,
    )


def test_retract_derivative_vmap():
    """Many perturbations at once through vmap."""
    R = so3.quaternion_exp(jnp.array([0.6, -0.1, 0.4]))
    samples = jnp.array(RETRACT_SAMPLES)
    J_batch = jax.vmap(lambda w: so3_retract_derivative(R, w))(samples)
    assert J_batch.shape == (len(RETRACT_SAMPLES), 3, 3)
    np.testing.assert_allclose(J_batch[2], so3_retract_derivative(R, samples[2]), atol=1e-14)


def test_retract_derivative_rejects_bad_shape():
    """Rotations must be quaternions or 3x3 matrices."""
    with pytest.raises(ValueError, match="R must have shape"):
        so3_retract_derivative(jnp.zeros(3), jnp.zeros(3))
