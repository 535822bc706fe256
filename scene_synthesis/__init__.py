"""BVH Engine - Scene Synthesis Package.

Reproducible synthetic primitive lists and random query rays for building
and validating accelerators without scene files.
"""
