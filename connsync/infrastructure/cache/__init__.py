"""Caching Service Implementation.

Provides the TTL cache behind the CacheService interface, with optional
payload compression and size-bounded eviction.
Bounded Context: Cache Management
"""
