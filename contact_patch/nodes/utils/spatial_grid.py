"""
Uniform hash grid over the ground-plane (x, z) coordinates.

Used for neighbor-support filtering of contact points. Grids are built
per call and discarded; they carry nothing across frames.
"""

import math
from typing import Dict, List, Tuple


class SpatialGrid:
    """
    Hash grid keyed by (floor(x / cell_size), floor(z / cell_size)).
    
    Points are any objects exposing ``x`` and ``z`` attributes. Neighbor
    queries scan the 3x3 block of cells around the query point, which is
    exhaustive only when ``radius <= cell_size``.
    """
    
    def __init__(self, cell_size: float):
        if not (cell_size > 0.0 and math.isfinite(cell_size)):
            raise ValueError(f"cell_size must be positive and finite, got {cell_size}")
        self.cell_size = float(cell_size)
        self.cells: Dict[Tuple[int, int], List] = {}
    
    def cell_of(self, x: float, z: float) -> Tuple[int, int]:
        return (math.floor(x / self.cell_size), math.floor(z / self.cell_size))
    
    def insert(self, point):
        key = self.cell_of(point.x, point.z)
        self.cells.setdefault(key, []).append(point)
    
    def query_neighbors(self, point, radius: float) -> List:
        """
        Return inserted points within ``radius`` of ``point`` in (x, z).
        
        The query point itself (by identity) is excluded. Result order is
        unspecified.
        """
        radius_sq = radius * radius
        cx, cz = self.cell_of(point.x, point.z)
        neighbors = []
        
        for dx in (-1, 0, 1):
            for dz in (-1, 0, 1):
                bucket = self.cells.get((cx + dx, cz + dz))
                if not bucket:
                    continue
                for candidate in bucket:
                    if candidate is point:
                        continue
                    dist_sq = (point.x - candidate.x) ** 2 + (point.z - candidate.z) ** 2
                    if dist_sq <= radius_sq:
                        neighbors.append(candidate)
        
        return neighbors
