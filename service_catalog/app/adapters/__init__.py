"""
HTTP adapters for upstream systems used by the catalog service.
"""
