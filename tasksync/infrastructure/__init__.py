"""Infrastructure layer exports."""

from .http_records import HttpRecordServiceClient
from .records import RecordServiceClient, UnconfiguredRecordClient, configure_record_client, get_record_client

__all__ = [
    "HttpRecordServiceClient",
    "RecordServiceClient",
    "UnconfiguredRecordClient",
    "configure_record_client",
    "get_record_client",
]
