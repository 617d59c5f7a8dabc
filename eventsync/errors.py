"""
Error taxonomy for the ingestion pipeline.

Item- and adapter-level errors are contained where they happen and show up as
counters in the run summary. Only StoreUnavailableError stops a run.
"""


class EventSyncError(Exception):
    """Base class for every error raised by eventsync."""


class ValidationError(EventSyncError):
    """A raw record is missing its title or a parseable start date."""


class NetworkError(EventSyncError):
    """A request to a source failed or returned an error status."""


class ConfigurationError(EventSyncError):
    """An adapter is missing a required setting, such as an API key."""


class DuplicateKeyError(EventSyncError):
    """The store rejected a write that would break a uniqueness constraint."""


class StoreUnavailableError(EventSyncError):
    """The record store could not be opened."""
