"""
Swarm Formation

Coordinates a swarm of agents flying a formation along a path: one
path-following action moves the formation centroid while every agent
tracks its own slot in the moving formation frame.
"""

__version__ = "0.1.0"
