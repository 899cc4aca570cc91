"""Terrain Bounded Context.

Responsible for physical geography and spatial calculations:
- Value Objects: Site, TileKey, TerrainPath, ObstructionReport
- Tile store: paged one-degree elevation tiles with signal and mask layers
- Services: sample_path (great-circle sampling), line-of-sight analysis
"""
