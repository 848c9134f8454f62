"""
Edge functions package.

This package provides a FastAPI application serving the study guide,
verse and token endpoints, with database, cache and auth abstractions
so the functions can run against the hosted services or fully in memory.
"""
