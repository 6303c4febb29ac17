"""Scoring engine for X01 darts."""

from . import darts, inputs

__all__ = [
    "darts",
    "inputs",
]
