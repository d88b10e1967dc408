"""
Formation geometry
"""

from .planner import FormationPlanner, compute_offsets, relative_offsets, LAYOUTS

__all__ = ['FormationPlanner', 'compute_offsets', 'relative_offsets', 'LAYOUTS']
