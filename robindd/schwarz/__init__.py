"""Robin-coupled domain decomposition."""
from . import robin_dd
from .robin_dd import DDMInterfaceOperator, DDState, ddm_interface_operator
from .rdd.types import DDConfig, DDError, FactorizationError, GeometricMismatchError, StructuralError

__all__ = [
    'robin_dd',
    'DDMInterfaceOperator',
    'DDState',
    'ddm_interface_operator',
    'DDConfig',
    'DDError',
    'FactorizationError',
    'GeometricMismatchError',
    'StructuralError',
]
