"""Rate limiting adapters.

This package keeps storage behind a small abstraction so the service can
start with a process-local map and later move to Redis or another shared
store without changing the limiter or the API layer.
"""
