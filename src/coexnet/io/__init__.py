"""
File I/O: clean expression tables in, result tables out.
"""

from coexnet.io.loaders import load_expression_matrix, load_sample_traits, sniff_delimiter
from coexnet.io.writers import (
    write_dendrogram,
    write_module_assignments,
    write_module_sizes,
    write_power_report,
)

__all__ = [
    'load_expression_matrix',
    'load_sample_traits',
    'sniff_delimiter',
    'write_dendrogram',
    'write_module_assignments',
    'write_module_sizes',
    'write_power_report',
]
