"""
Front sync engine.

Mirrors the Front conversation API (teammates, tags, inboxes, contacts,
conversations, messages) into a local store with full and event-driven
incremental refresh.

Keep imports here lightweight; submodules are imported explicitly by callers.
"""

__version__ = "0.1.0"
