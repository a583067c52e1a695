"""Derivative bundle returned by the exponential map Jacobian.

The bundle is an immutable PyTree, so it can be returned from jit-compiled
functions and mapped over with vmap like any other array container.
"""

from jax import Array
from flax import struct


@struct.dataclass
class QuaternionExpDerivative:
    """Unit quaternion exp(w) together with its derivative with respect to w.

    Attributes:
        q: Array of shape (4,), the quaternion in (w, x, y, z) order.
        q_D_w: Array of shape (4, 3), d q / d w. Rows follow the component
               order of ``q``.
    """
    q: Array
    q_D_w: Array
