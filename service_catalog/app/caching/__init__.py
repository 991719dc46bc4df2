"""
Catalog caching package.

Provides the in-memory cache used in front of the Rezdy API to reduce latency
and stay under upstream rate limits. Entries are short-lived, one process
owns one cache, and invalidation is explicit by key prefix.
"""
