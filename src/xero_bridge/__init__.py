"""
Xero Bridge - OAuth, API passthrough and notes storage for the Xero invoice dashboard
"""
from .core import create_app

__all__ = ['create_app']
