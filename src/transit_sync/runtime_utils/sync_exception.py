class TransitSyncException(Exception):
    """
    Generic exception for the transit_sync library
    """


class SourceUnavailableError(TransitSyncException):
    """
    Upstream source did not answer successfully, or answered without the
    information required to continue (ie. no Last-Modified header)
    """

    def __init__(self, url: str, status: int, reason: str = "request failed"):
        message = f"{reason}: HTTP {status} from {url}"
        super().__init__(message)
        self.url = url
        self.status = status


class ScheduleLoadError(TransitSyncException):
    """
    Loading one table of a schedule archive failed. The sync that triggered
    the load is abandoned without recording freshness.
    """

    def __init__(self, table_name: str):
        super().__init__(f"Unable to load schedule table {table_name}")
        self.table_name = table_name


class MessageTypeNotFoundError(TransitSyncException):
    """
    Unable to resolve a protobuf message type from its dotted import path
    """

    def __init__(self, message_type: str):
        super().__init__(f"Unable to find protobuf message type {message_type}")
        self.message_type = message_type


class SyncInProgressError(TransitSyncException):
    """
    A schedule sync was requested while another sync of the same source was
    still running
    """

    def __init__(self, source_id: str):
        super().__init__(f"Schedule sync of {source_id} already in progress")
        self.source_id = source_id
