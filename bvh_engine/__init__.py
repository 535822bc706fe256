"""BVH Engine - Core Package.

Bounding volume hierarchy construction (median and SAH splits), nearest-hit
and occlusion traversal, ray/box geometry, and the sphere, triangle, box and
mesh primitives the hierarchy is built over.
"""
