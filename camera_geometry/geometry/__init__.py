"""
3D Geometry Module
"""

from .rigid_alignment import RigidAlignmentSolver

__all__ = ['RigidAlignmentSolver']
