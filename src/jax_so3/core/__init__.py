"""
Core data structures for jax_so3.

This module contains the value types returned by the derivative routines.
"""

from .derivative import QuaternionExpDerivative

__all__ = ["QuaternionExpDerivative"]
