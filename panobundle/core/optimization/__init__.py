"""Optimization and factor graph modules."""

from .factor_graph import FactorGraph, Variable, VariableType, Factor, MissingJacobianError
from .residuals import ResidualFunctor, ReprojectionResidual
from .correspondences import CorrespondenceGraph, IndexMatch
from .problem import PanoramaProblem

__all__ = [
    "FactorGraph",
    "Variable",
    "VariableType",
    "Factor",
    "MissingJacobianError",
    "ResidualFunctor",
    "ReprojectionResidual",
    "CorrespondenceGraph",
    "IndexMatch",
    "PanoramaProblem",
]
