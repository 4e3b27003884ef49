"""
Sync Interfaces Layer
=====================

Interface adapters (controllers) for the sync module.
"""

from src.sync.interfaces.controllers import sync_router

__all__ = ["sync_router"]
