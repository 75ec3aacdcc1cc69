"""
Object Storage for Consultation Audio
=====================================

Batch speech recognition reads audio from Cloud Storage rather than from the
request body, so every recording is staged as a temporary object:

1. ``put`` uploads the bytes under a unique key
2. ``create_bucket`` provisions the bucket on first use
3. ``delete`` removes the object once the batch job is finished

The storage layer reports a missing bucket as ``BucketNotFoundError`` so the
job runner can decide whether to create it and retry.
"""

import logging
from typing import Optional, Protocol

from google.api_core import exceptions as gcp_exceptions
from google.cloud import storage

from exceptions import BucketNotFoundError


logger = logging.getLogger(__name__)


class ObjectStorageProtocol(Protocol):
    """Interface for the object store holding temporary audio."""

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        """
        Upload bytes to ``bucket/key``.

        Raises:
            BucketNotFoundError: If the bucket does not exist
        """
        ...

    def delete(self, bucket: str, key: str) -> None:
        """Delete ``bucket/key``."""
        ...

    def create_bucket(self, bucket: str, region: str) -> None:
        """Create ``bucket`` in ``region``."""
        ...


class GCSObjectStorage:
    """
    Object storage backed by Google Cloud Storage.

    The client is created lazily so constructing the pipeline never needs
    credentials; the first upload does.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        client: Optional[storage.Client] = None
    ):
        self.project_id = project_id
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            logger.info(f"Creating Cloud Storage client (project={self.project_id})")
            self._client = (
                storage.Client(project=self.project_id)
                if self.project_id else storage.Client()
            )
        return self._client

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        blob = self.client.bucket(bucket).blob(key)
        try:
            blob.upload_from_string(data, content_type=content_type)
        except gcp_exceptions.NotFound as e:
            logger.warning(f"Bucket {bucket} not found during upload: {e}")
            raise BucketNotFoundError(bucket) from e
        logger.debug(f"Uploaded {len(data)} bytes to gs://{bucket}/{key}")

    def delete(self, bucket: str, key: str) -> None:
        self.client.bucket(bucket).blob(key).delete()
        logger.debug(f"Deleted gs://{bucket}/{key}")

    def create_bucket(self, bucket: str, region: str) -> None:
        logger.info(f"Creating bucket {bucket} in {region}")
        try:
            self.client.create_bucket(bucket, location=region)
        except gcp_exceptions.Conflict:
            # Another request created it between our upload and this call
            logger.info(f"Bucket {bucket} already exists")


class MockObjectStorage:
    """
    In-memory object store for testing.

    Usage in tests:
        storage = MockObjectStorage(bucket_exists=False)
        storage.put("audio", "a.wav", b"...", "audio/wav")  # BucketNotFoundError
        storage.create_bucket("audio", "us-central1")
        storage.put("audio", "a.wav", b"...", "audio/wav")  # ok
    """

    def __init__(
        self,
        bucket_exists: bool = True,
        fail_uploads: int = 0,
        fail_deletes: bool = False
    ):
        self.buckets: set[str] = set()
        self.objects: dict[tuple[str, str], bytes] = {}
        self.calls: list[tuple] = []
        self._auto_bucket = bucket_exists
        self._fail_uploads = fail_uploads
        self._fail_deletes = fail_deletes

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        self.calls.append(("put", bucket, key, content_type))
        if self._auto_bucket:
            self.buckets.add(bucket)
        if bucket not in self.buckets:
            raise BucketNotFoundError(bucket)
        if self._fail_uploads > 0:
            self._fail_uploads -= 1
            raise RuntimeError("simulated upload failure")
        self.objects[(bucket, key)] = data

    def delete(self, bucket: str, key: str) -> None:
        self.calls.append(("delete", bucket, key))
        if self._fail_deletes:
            raise RuntimeError("simulated delete failure")
        self.objects.pop((bucket, key), None)

    def create_bucket(self, bucket: str, region: str) -> None:
        self.calls.append(("create_bucket", bucket, region))
        self.buckets.add(bucket)


# =============================================================================
# Factory Function
# =============================================================================

def create_object_storage(
    project_id: Optional[str] = None,
    use_mock: bool = False
) -> ObjectStorageProtocol:
    """Create the Cloud Storage backend, or an in-memory one for tests."""
    if use_mock:
        logger.info("Creating mock object storage")
        return MockObjectStorage()
    return GCSObjectStorage(project_id=project_id)
