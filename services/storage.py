"""
Object storage adapter for S3 or MinIO.

Files are handed to storage and only the returned URL plus metadata is kept
in the database. Every logical bucket (avatars, submissions, chat files,
documents) is a key prefix inside `settings.storage_bucket`. URLs are public
when `settings.storage_public_base_url` is set and presigned otherwise.
"""
import logging
import os
import uuid
from dataclasses import dataclass

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from config.settings import settings
from .exceptions import Unavailable, ValidationError

logger = logging.getLogger(__name__)

BUCKETS = ("avatars", "submissions", "chat-files", "documents")


@dataclass
class StoredObject:
    url: str
    key: str
    file_name: str
    size: int
    mime_type: str = None


class ObjectStorage:
    """S3-compatible store. The boto3 client is created on first use."""

    def __init__(self, client=None, bucket_name: str = None, max_bytes: int = None,
                 public_base_url: str = None, url_expiration: int = None):
        self._client = client
        self._bucket_ready = client is not None
        self.bucket_name = bucket_name or settings.storage_bucket
        self.max_bytes = max_bytes or settings.max_upload_bytes
        base_url = public_base_url if public_base_url is not None else settings.storage_public_base_url
        self.public_base_url = base_url.rstrip("/") if base_url else None
        self.url_expiration = url_expiration or settings.storage_url_expiration_seconds

    def _get_client(self):
        if self._client is None:
            options = {"region_name": settings.storage_region}
            if settings.storage_endpoint_url:
                # MinIO needs path-style addressing
                options["endpoint_url"] = settings.storage_endpoint_url
                options["config"] = Config(signature_version="s3v4", s3={"addressing_style": "path"})
            if settings.storage_access_key_id and settings.storage_secret_access_key:
                options["aws_access_key_id"] = settings.storage_access_key_id
                options["aws_secret_access_key"] = settings.storage_secret_access_key
            self._client = boto3.client("s3", **options)
        if not self._bucket_ready:
            self._ensure_bucket()
        return self._client

    def _ensure_bucket(self):
        try:
            self._client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code not in ("404", "NoSuchBucket"):
                raise
            self._client.create_bucket(Bucket=self.bucket_name)
            logger.info("Created bucket '%s'", self.bucket_name)
        self._bucket_ready = True

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self._get_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket_name, "Key": key},
            ExpiresIn=self.url_expiration,
        )

    def upload(self, bucket: str, owner_id: int, file_name: str, data: bytes,
               mime_type: str = None) -> StoredObject:
        """
        Raises:
            ValidationError: unknown bucket, empty or oversized file
            Unavailable: the object store rejected or could not take the write
        """
        if bucket not in BUCKETS:
            raise ValidationError(f"Bucket desconocido: {bucket}")
        if not data:
            raise ValidationError("El archivo está vacío", "file")
        if len(data) > self.max_bytes:
            raise ValidationError(
                f"El archivo supera el tamaño máximo de {self.max_bytes // (1024 * 1024)} MB", "file"
            )
        extension = os.path.splitext(file_name or "")[1].lower()
        key = f"{bucket}/{owner_id}/{uuid.uuid4().hex}{extension}"
        try:
            self._get_client().put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=mime_type or "application/octet-stream",
                Metadata={"owner_id": str(owner_id)},
            )
            url = self.url_for(key)
        except (BotoCoreError, ClientError) as e:
            logger.error("Upload of %s failed: %s", key, e)
            raise Unavailable("El almacenamiento de archivos no está disponible", retry_after=30)
        logger.info("Uploaded %s (%d bytes)", key, len(data))
        return StoredObject(
            url=url,
            key=key,
            file_name=os.path.basename(file_name or key),
            size=len(data),
            mime_type=mime_type,
        )


_storage = None


def get_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        _storage = ObjectStorage()
    return _storage
