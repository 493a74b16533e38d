"""
Response caching package for the marketplace service.

Provides the in-process cache store, per-resource key schemes and
invalidation scopes, and the route decorators that put them in front of
FastAPI endpoints. Prefer short TTLs and explicit invalidation on every
mutation.
"""
