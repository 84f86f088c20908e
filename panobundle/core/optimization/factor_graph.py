"""Factor graph representation for optimization problems.

The graph is the single owner of every parameter block. Factors only hold
variable ids, so values written by the solver are visible to all factors
immediately. Manifold variables are optimized in their tangent space: packing
anchors them at their current value and unpacking retracts from that anchor.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Collection, Dict, FrozenSet, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class MissingJacobianError(ValueError):
    """A free variable has no analytic Jacobian supplying its gradient."""


class VariableType(Enum):
    """Types of optimization variables."""
    CAMERA_ROTATION = "camera_rotation"
    FIELD_OF_VIEW = "field_of_view"
    PRINCIPAL_POINT = "principal_point"
    DISTORTION = "distortion"


@dataclass
class Variable:
    """Optimization variable in the factor graph."""

    id: str
    type: VariableType
    size: int
    value: Optional[np.ndarray] = None
    is_constant: bool = False
    lower_bounds: Optional[np.ndarray] = None
    upper_bounds: Optional[np.ndarray] = None
    manifold: Optional[Any] = None
    anchor: Optional[np.ndarray] = field(default=None, repr=False)
    delta: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        """Initialize variable with proper array shapes."""
        if self.value is not None:
            self.value = np.atleast_1d(np.asarray(self.value, dtype=float)).reshape(-1)
            if len(self.value) != self.size:
                raise ValueError(f"Variable {self.id}: value size {len(self.value)} != expected size {self.size}")

        if self.manifold is not None:
            if self.manifold.ambient_size != self.size:
                raise ValueError(
                    f"Variable {self.id}: manifold ambient size {self.manifold.ambient_size} "
                    f"!= variable size {self.size}"
                )
            if self.lower_bounds is not None or self.upper_bounds is not None:
                raise ValueError(f"Variable {self.id}: manifold variables cannot carry bounds")

        if self.lower_bounds is not None:
            self.lower_bounds = np.atleast_1d(self.lower_bounds)
            if len(self.lower_bounds) != self.size:
                raise ValueError(f"Variable {self.id}: lower_bounds size != variable size")

        if self.upper_bounds is not None:
            self.upper_bounds = np.atleast_1d(self.upper_bounds)
            if len(self.upper_bounds) != self.size:
                raise ValueError(f"Variable {self.id}: upper_bounds size != variable size")

    @property
    def tangent_size(self) -> int:
        """Number of coordinates the solver sees for this variable."""
        if self.manifold is not None:
            return self.manifold.tangent_size
        return self.size

    def is_initialized(self) -> bool:
        """Check if variable has a value."""
        return self.value is not None

    def get_value(self) -> np.ndarray:
        """Get variable value, ensuring it exists."""
        if self.value is None:
            raise ValueError(f"Variable {self.id} has no value")
        return self.value.copy()

    def set_value(self, value: np.ndarray) -> None:
        """Set variable value with validation."""
        value = np.atleast_1d(np.asarray(value, dtype=float)).reshape(-1)
        if len(value) != self.size:
            raise ValueError(f"Variable {self.id}: new value size {len(value)} != expected size {self.size}")
        self.value = value.copy()

    def clamp_to_bounds(self) -> None:
        """Clamp variable value to bounds if they exist."""
        if self.value is None:
            return

        if self.lower_bounds is not None:
            self.value = np.maximum(self.value, self.lower_bounds)

        if self.upper_bounds is not None:
            self.value = np.minimum(self.value, self.upper_bounds)

    def anchor_here(self) -> np.ndarray:
        """Anchor at the current value and return the tangent coordinates to pack."""
        value = self.get_value()
        if self.manifold is None:
            return value
        self.anchor = value
        self.delta = np.zeros(self.manifold.tangent_size)
        return self.delta.copy()

    def apply_tangent(self, coords: np.ndarray) -> None:
        """Set the value from solver coordinates."""
        if self.manifold is None:
            self.set_value(coords)
            self.clamp_to_bounds()
            return
        if self.anchor is None:
            raise ValueError(f"Variable {self.id} was never packed")
        self.delta = np.array(coords, dtype=float)
        self.set_value(self.manifold.retract(self.anchor, self.delta))

    def tangent_jacobian(self) -> np.ndarray:
        """Map from solver coordinates to ambient coordinates (size x tangent_size)."""
        if self.manifold is None:
            return np.eye(self.size)
        if self.anchor is None:
            return self.manifold.plus_jacobian(self.get_value(), np.zeros(self.manifold.tangent_size))
        return self.manifold.plus_jacobian(self.anchor, self.delta)


class Factor(ABC):
    """Abstract base class for factors in the factor graph."""

    #: Variable ids whose analytic Jacobian :meth:`compute_jacobian` supplies.
    #: ``None`` means every connected variable.
    jacobian_slots: Optional[FrozenSet[str]] = None

    def __init__(self, factor_id: str, variable_ids: List[str]):
        """Initialize factor.

        Args:
            factor_id: Unique identifier for this factor
            variable_ids: List of variable IDs this factor depends on
        """
        self.factor_id = factor_id
        self.variable_ids = variable_ids

    @abstractmethod
    def compute_residual(self, variables: Dict[str, np.ndarray]) -> np.ndarray:
        """Compute residual given variable values.

        Args:
            variables: Dictionary mapping variable IDs to their values

        Returns:
            Residual vector
        """
        pass

    @abstractmethod
    def compute_jacobian(
        self,
        variables: Dict[str, np.ndarray],
        requested: Optional[Collection[str]] = None
    ) -> Dict[str, np.ndarray]:
        """Compute Jacobian of residual with respect to variables.

        Args:
            variables: Dictionary mapping variable IDs to their values
            requested: Variable IDs whose blocks are needed (None for all).
                Blocks outside this set are not computed.

        Returns:
            Dictionary mapping variable IDs to their Jacobian matrices
            (residual_dimension x ambient size)
        """
        pass

    @abstractmethod
    def residual_dimension(self) -> int:
        """Get dimension of residual vector."""
        pass

    def provides_jacobian(self, variable_id: str) -> bool:
        """Check whether an analytic Jacobian exists for a connected variable."""
        if variable_id not in self.variable_ids:
            return False
        return self.jacobian_slots is None or variable_id in self.jacobian_slots


class FactorGraph:
    """Factor graph for panoramic bundle adjustment."""

    def __init__(self):
        """Initialize empty factor graph."""
        self.variables: Dict[str, Variable] = {}
        self.factors: Dict[str, Factor] = {}
        self._variable_ordering: List[str] = []
        self._factor_ordering: List[str] = []

    def add_variable(self, variable: Variable) -> None:
        """Add a variable to the graph."""
        if variable.id in self.variables:
            raise ValueError(f"Variable {variable.id} already exists")

        self.variables[variable.id] = variable
        self._variable_ordering.append(variable.id)

    def add_factor(self, factor: Factor) -> None:
        """Add a factor to the graph."""
        if factor.factor_id in self.factors:
            raise ValueError(f"Factor {factor.factor_id} already exists")

        for var_id in factor.variable_ids:
            if var_id not in self.variables:
                raise ValueError(f"Factor {factor.factor_id} references unknown variable {var_id}")

        self.factors[factor.factor_id] = factor
        self._factor_ordering.append(factor.factor_id)

    def get_variable(self, variable_id: str) -> Variable:
        """Get variable by ID."""
        if variable_id not in self.variables:
            raise ValueError(f"Variable {variable_id} not found")
        return self.variables[variable_id]

    def get_factor(self, factor_id: str) -> Factor:
        """Get factor by ID."""
        if factor_id not in self.factors:
            raise ValueError(f"Factor {factor_id} not found")
        return self.factors[factor_id]

    def get_variable_ids(self) -> List[str]:
        """Get list of all variable IDs in order."""
        return self._variable_ordering.copy()

    def get_factor_ids(self) -> List[str]:
        """Get list of all factor IDs in order."""
        return self._factor_ordering.copy()

    def get_free_variable_ids(self) -> List[str]:
        """Get IDs of variables the solver may change, in order."""
        return [
            var_id for var_id in self._variable_ordering
            if not self.variables[var_id].is_constant
        ]

    def validate_jacobians(self) -> None:
        """Check that every free variable receives an analytic Jacobian.

        Raises:
            MissingJacobianError: if a free variable is connected to a factor
                without a Jacobian for it, or to no factor at all
        """
        covered = set()

        for factor_id in self._factor_ordering:
            factor = self.factors[factor_id]
            for var_id in factor.variable_ids:
                if self.variables[var_id].is_constant:
                    continue
                if not factor.provides_jacobian(var_id):
                    raise MissingJacobianError(
                        f"Factor {factor_id} has no Jacobian for free variable {var_id}"
                    )
                covered.add(var_id)

        for var_id in self.get_free_variable_ids():
            if var_id not in covered:
                raise MissingJacobianError(
                    f"Free variable {var_id} is not constrained by any factor"
                )

        logger.debug(f"Jacobian coverage verified for {len(covered)} free variables")

    def pack_variables(self, variable_ids: Optional[List[str]] = None) -> np.ndarray:
        """Pack free variables into a solver vector.

        Manifold variables are anchored at their current value and contribute
        zero tangent coordinates.

        Args:
            variable_ids: List of variable IDs to pack (None for all)

        Returns:
            Packed parameter vector
        """
        if variable_ids is None:
            variable_ids = self._variable_ordering

        packed_values = []
        for var_id in variable_ids:
            variable = self.variables[var_id]
            if not variable.is_constant and variable.is_initialized():
                packed_values.append(variable.anchor_here())

        if not packed_values:
            return np.array([])

        return np.concatenate(packed_values)

    def unpack_variables(self, params: np.ndarray, variable_ids: Optional[List[str]] = None) -> None:
        """Unpack a solver vector into variable values.

        Args:
            params: Packed parameter vector
            variable_ids: List of variable IDs to unpack (None for all)
        """
        if variable_ids is None:
            variable_ids = self._variable_ordering

        offset = 0
        for var_id in variable_ids:
            variable = self.variables[var_id]
            if not variable.is_constant:
                end_offset = offset + variable.tangent_size
                if end_offset > len(params):
                    raise ValueError(f"Not enough parameters for variable {var_id}")

                variable.apply_tangent(params[offset:end_offset])
                offset = end_offset

        if offset != len(params):
            raise ValueError(f"Parameter vector size mismatch: {offset} vs {len(params)}")

    def get_variable_bounds(self, variable_ids: Optional[List[str]] = None) -> Tuple[np.ndarray, np.ndarray]:
        """Get lower and upper bounds for the packed solver vector."""
        if variable_ids is None:
            variable_ids = self._variable_ordering

        lower_bounds = []
        upper_bounds = []

        for var_id in variable_ids:
            variable = self.variables[var_id]
            if not variable.is_constant:
                if variable.lower_bounds is not None:
                    lower_bounds.append(variable.lower_bounds)
                else:
                    lower_bounds.append(np.full(variable.tangent_size, -np.inf))

                if variable.upper_bounds is not None:
                    upper_bounds.append(variable.upper_bounds)
                else:
                    upper_bounds.append(np.full(variable.tangent_size, np.inf))

        if not lower_bounds:
            return np.array([]), np.array([])

        return np.concatenate(lower_bounds), np.concatenate(upper_bounds)

    def _factor_values(self, factor: Factor) -> Dict[str, np.ndarray]:
        var_values = {}
        for var_id in factor.variable_ids:
            variable = self.variables[var_id]
            if not variable.is_initialized():
                raise ValueError(
                    f"Variable {var_id} required by factor {factor.factor_id} is not initialized"
                )
            var_values[var_id] = variable.value
        return var_values

    def compute_factor_residual(self, factor_id: str) -> np.ndarray:
        """Compute the residual of a single factor at the current values."""
        factor = self.get_factor(factor_id)
        return factor.compute_residual(self._factor_values(factor))

    def get_connected_factor_ids(self, variable_id: str) -> List[str]:
        """Get IDs of factors that depend on a variable, in order."""
        return [
            factor_id for factor_id in self._factor_ordering
            if variable_id in self.factors[factor_id].variable_ids
        ]

    def compute_all_residuals(self, factor_ids: Optional[List[str]] = None) -> np.ndarray:
        """Compute residuals for all factors.

        Args:
            factor_ids: Factors to evaluate (None for all)

        Returns:
            Concatenated residual vector
        """
        if factor_ids is None:
            factor_ids = self._factor_ordering

        residuals = [
            self.compute_factor_residual(factor_id)
            for factor_id in factor_ids
        ]

        if not residuals:
            return np.array([])

        return np.concatenate(residuals)

    def compute_cost(self, factor_ids: Optional[List[str]] = None) -> float:
        """Half the squared norm of the residuals."""
        residuals = self.compute_all_residuals(factor_ids)
        return 0.5 * float(np.dot(residuals, residuals))

    def compute_jacobian_matrix(
        self,
        variable_ids: Optional[List[str]] = None,
        factor_ids: Optional[List[str]] = None
    ) -> np.ndarray:
        """Assemble the dense Jacobian w.r.t. the packed solver coordinates.

        Ambient factor Jacobians of manifold variables are mapped to the
        tangent space through each variable's current ``plus_jacobian``.

        Args:
            variable_ids: Variables spanning the columns (None for all free)
            factor_ids: Factors spanning the rows (None for all)

        Returns:
            Matrix of shape (total residual dimension, packed size)
        """
        if variable_ids is None:
            variable_ids = self._variable_ordering
        if factor_ids is None:
            factor_ids = self._factor_ordering

        column_map: Dict[str, Tuple[int, np.ndarray]] = {}
        n_cols = 0
        for var_id in variable_ids:
            variable = self.variables[var_id]
            if not variable.is_constant:
                column_map[var_id] = (n_cols, variable.tangent_jacobian())
                n_cols += variable.tangent_size

        n_rows = sum(self.factors[f].residual_dimension() for f in factor_ids)
        J = np.zeros((n_rows, n_cols))

        row = 0
        for factor_id in factor_ids:
            factor = self.factors[factor_id]
            dim = factor.residual_dimension()

            requested = [var_id for var_id in factor.variable_ids if var_id in column_map]
            if requested:
                blocks = factor.compute_jacobian(self._factor_values(factor), requested)
                for var_id in requested:
                    block = blocks.get(var_id)
                    if block is None:
                        continue
                    col, tangent = column_map[var_id]
                    J[row:row + dim, col:col + tangent.shape[1]] = block @ tangent

            row += dim

        return J

    def summary(self) -> Dict[str, Any]:
        """Get summary information about the factor graph."""
        n_variables = len(self.variables)
        n_factors = len(self.factors)

        var_type_counts = {}
        total_var_size = 0
        free_tangent_size = 0
        constant_vars = 0

        for variable in self.variables.values():
            var_type = variable.type.value
            var_type_counts[var_type] = var_type_counts.get(var_type, 0) + 1
            total_var_size += variable.size
            if variable.is_constant:
                constant_vars += 1
            else:
                free_tangent_size += variable.tangent_size

        factor_type_counts = {}
        total_residual_size = 0

        for factor in self.factors.values():
            factor_type = type(factor).__name__
            factor_type_counts[factor_type] = factor_type_counts.get(factor_type, 0) + 1
            total_residual_size += factor.residual_dimension()

        return {
            "variables": {
                "total": n_variables,
                "constant": constant_vars,
                "free": n_variables - constant_vars,
                "total_parameters": total_var_size,
                "free_parameters": free_tangent_size,
                "by_type": var_type_counts
            },
            "factors": {
                "total": n_factors,
                "total_residuals": total_residual_size,
                "by_type": factor_type_counts
            }
        }
