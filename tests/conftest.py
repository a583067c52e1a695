import os
from dataclasses import dataclass
from typing import Any, Dict

import jax.numpy as jnp
import pytest
from hypothesis import settings

import jax_so3  # noqa: F401  (enables float64 before any array is built)

# Use hypothesis profile for CI
settings.register_profile("ci", max_examples=10, deadline=None)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


# =============================================================================
# Precision Fixtures
# =============================================================================
# The formulas carry no tolerances of their own; each floating-point precision
# gets its own acceptance thresholds here.


@dataclass(frozen=True)
class Precision:
    dtype: Any
    value_tol: float  # rotations vs. independent references
    deriv_tol: float  # analytic vs. finite-difference derivatives
    near_zero_value_tol: float
    near_zero_deriv_tol: float


PRECISIONS: Dict[str, Precision] = {
    "float64": Precision(jnp.float64, 1e-12, 1e-9, 1e-12, 1e-6),
    "float32": Precision(jnp.float32, 1e-5, 2e-4, 1e-9, 2e-5),
}


@pytest.fixture(params=sorted(PRECISIONS))
def precision(request) -> Precision:
    """
    Tolerances for one floating-point precision.

    Usage:
        def test_something(precision):
            w = jnp.zeros(3, dtype=precision.dtype)
    """
    return PRECISIONS[request.param]
