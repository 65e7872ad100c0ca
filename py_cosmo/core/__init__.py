"""
Core world simulation functionality.
"""

from .errors import CosmoError, StructuralError, ConfigurationError, EvaluationError, OwnershipError
from .topology import WorldShape, Extent
from .tile_graph import TileGraphConfig, TileGraph, generate_tile_graph, build_grid_graph
from .attributes import AttributeLayer, BiomeType, TileRecord
from .scoring import ScoringContext, Expression, evaluate, format_formula
from .formula_parser import parse_formula
from .expansion import CapacityLimit, ExpansionEngine, GroupAffinity, OwnershipAssignment, Seed, expand

__all__ = ['CosmoError', 'StructuralError', 'ConfigurationError', 'EvaluationError', 'OwnershipError',
           'WorldShape', 'Extent', 'TileGraphConfig', 'TileGraph', 'generate_tile_graph', 'build_grid_graph',
           'AttributeLayer', 'BiomeType', 'TileRecord',
           'ScoringContext', 'Expression', 'evaluate', 'format_formula', 'parse_formula',
           'CapacityLimit', 'ExpansionEngine', 'GroupAffinity', 'OwnershipAssignment', 'Seed', 'expand']
