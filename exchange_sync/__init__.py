"""
exchange_sync - Bidirectional Exchange/Office365 synchronization

Reconciles mail, contacts and calendar data between a mail client's local
store and a remote Exchange mailbox.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
