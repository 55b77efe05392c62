"""Analysis drivers."""

from pymetcor.analysis.runner import MetCorAnalysis

__all__ = [
    'MetCorAnalysis',
]
