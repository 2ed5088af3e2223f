"""Custom exception classes for the replicator."""


class ReplicationError(Exception):
    """
    Base exception class for all replication errors.
    """
    pass


class ConfigurationError(ReplicationError):
    """
    Raised when required settings are missing or invalid.
    """
    pass


class SubscriptionError(ReplicationError):
    """
    Raised when the source change feed closes or its connection is lost.
    """
    pass


class ReplicaWriteError(ReplicationError):
    """
    Raised when a bulk upsert or insert is rejected by the replica collection.
    """
    pass


class CheckpointError(ReplicationError):
    """
    Raised when the resume checkpoint cannot be read or written.
    """
    pass


class SourceReadError(ReplicationError):
    """
    Raised when a backfill scan of the source or replica fails.
    """
    pass
