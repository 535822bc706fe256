"""BVH Engine - Benchmark Package.

BVH-versus-brute-force query benchmark and result persistence.
"""
