"""
py-cosmo: tile-graph world simulation core.
"""

__version__ = "0.1.0"
