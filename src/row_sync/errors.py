"""
Row Sync Errors
Exception hierarchy shared by the fetcher, chunker, publisher and offset store
"""


class SyncError(Exception):
    """Base class for all row sync failures"""


class ConfigError(SyncError):
    """Invalid or inconsistent configuration"""


class QueryError(SyncError):
    """Source table unreachable or query rejected"""


class PublishError(SyncError):
    """Stream unreachable or message rejected.

    Some prefix of the batch may already have been delivered.
    """


class PersistenceError(SyncError):
    """Offset store unreachable or write rejected"""


class SerializationError(SyncError):
    """Row or payload could not be encoded"""
