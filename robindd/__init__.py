"""Robin-coupled non-overlapping domain decomposition operators."""
from . import fem, schwarz
from .schwarz import DDConfig, DDMInterfaceOperator, ddm_interface_operator

__version__ = '0.1.0'

__all__ = [
    'fem',
    'schwarz',
    'DDConfig',
    'DDMInterfaceOperator',
    'ddm_interface_operator',
]
