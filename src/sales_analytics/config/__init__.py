"""
Tenant Sales Analytics
Configuration Module
"""
from .settings import Settings, SalesSettings, get_settings

__all__ = ["Settings", "SalesSettings", "get_settings"]
