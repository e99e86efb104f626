"""Provider implementations."""

from commander_store.providers._aifs import AifsProvider, BearerAuthInterceptor, UploadSink
from commander_store.providers._azure import AzureProvider
from commander_store.providers._file import FileProvider
from commander_store.providers._gcs import GCSProvider
from commander_store.providers._s3 import MAX_SINGLE_COPY_SIZE, S3Provider

__all__ = [
    "FileProvider",
    "S3Provider",
    "GCSProvider",
    "AzureProvider",
    "AifsProvider",
    "UploadSink",
    "BearerAuthInterceptor",
    "MAX_SINGLE_COPY_SIZE",
]
