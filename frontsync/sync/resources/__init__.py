"""
Resource sync strategies.

Importing this package registers every strategy with `ResourceRegistry`.
"""

from frontsync.sync.resources import contacts, conversations, inboxes, messages, tags, teammates  # noqa: F401
from frontsync.sync.resources.base import ResourceRegistry, ResourceSync, SyncContext

__all__ = ["ResourceRegistry", "ResourceSync", "SyncContext"]
