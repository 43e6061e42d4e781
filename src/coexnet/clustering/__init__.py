"""
Clustering stages: average-linkage dendrogram and dynamic tree cut.
"""

from coexnet.clustering.assignment import UNASSIGNED, ModuleAssignment
from coexnet.clustering.dynamic_tree import DynamicModuleDetector, cut_tree_dynamic
from coexnet.clustering.hierarchy import Dendrogram, HierarchicalClusterer, average_linkage

__all__ = [
    'UNASSIGNED',
    'ModuleAssignment',
    'DynamicModuleDetector',
    'cut_tree_dynamic',
    'Dendrogram',
    'HierarchicalClusterer',
    'average_linkage',
]
