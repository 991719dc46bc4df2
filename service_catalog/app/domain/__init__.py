"""
Catalog domain helpers sitting between route handlers and the cache.
"""
