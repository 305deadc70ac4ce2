"""
Core algorithms (backend-agnostic).
"""

from .families import Family, Poisson, QuasiPoisson
from .irls import irls_step, relative_change
from .variance import stratified_cluster_variance

__all__ = [
    "Family",
    "Poisson",
    "QuasiPoisson",
    "irls_step",
    "relative_change",
    "stratified_cluster_variance",
]
