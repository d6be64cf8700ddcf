# marketing_data/etl/errors.py


class EtlError(Exception):
    """Base class for ETL errors."""


class PipelineBusyError(EtlError):
    """A run was requested while another one is still in progress."""


class UnknownEventError(EtlError):
    """Publish/subscribe was called with a topic that is not an `Event`."""
