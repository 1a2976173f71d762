"""
Tenant Sales Analytics

Daily sales aggregation and customer classification for e-commerce tenants.
"""

__version__ = "1.0.0"
