"""
member_sync.storage - Local profile store

SQLite persistence for member profiles and list settings.
"""

from member_sync.storage.db import ProfileDatabase, ProfileStoreError

__all__ = ["ProfileDatabase", "ProfileStoreError"]
