# edutest/services/storage.py
"""
Blob storage for test PDFs, answer images and task attachments.

Two backends share one small interface: ``upload`` returns a publicly
dereferenceable URL, ``delete`` removes the blob. ``local`` writes below
MEDIA_DIR and is served by the app under /media; ``s3`` puts objects into
S3_BUCKET_NAME with the logical bucket as key prefix.
"""
import logging
import uuid
from pathlib import Path
from typing import Protocol

from edutest.core.config import settings

logger = logging.getLogger(__name__)


class BlobStorage(Protocol):
    def upload(self, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        ...

    def delete(self, bucket: str, path: str) -> None:
        ...


def make_blob_key(*parts, filename: str | None = None, default_ext: str = "bin") -> str:
    """
    Build a collision-resistant key: ``{part1}_{part2}_..._{random}.{ext}``.

    The extension is taken from the original filename when it has one.
    """
    ext = default_ext
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1].lower() or default_ext
    prefix = "_".join(str(p) for p in parts)
    return f"{prefix}_{uuid.uuid4().hex[:12]}.{ext}"


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


class LocalBlobStorage:
    def __init__(self, media_root: str, public_base_url: str):
        self.media_root = Path(media_root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, bucket: str, path: str) -> Path:
        target = (self.media_root / bucket / path).resolve()
        root = (self.media_root / bucket).resolve()
        if root not in target.parents:
            raise ValueError(f"Invalid blob path: {path}")
        return target

    def upload(self, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        target = self._path(bucket, path)
        ensure_dir(target.parent)
        target.write_bytes(data)
        logger.info(f"Stored {len(data)} bytes at {bucket}/{path}")
        return f"{self.public_base_url}/media/{bucket}/{path}"

    def delete(self, bucket: str, path: str) -> None:
        target = self._path(bucket, path)
        target.unlink(missing_ok=True)
        logger.info(f"Deleted blob {bucket}/{path}")


class S3BlobStorage:
    def __init__(
        self,
        bucket_name: str,
        region: str,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ):
        import boto3

        self.bucket_name = bucket_name
        self.region = region
        self._client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    def _key(self, bucket: str, path: str) -> str:
        return f"{bucket}/{path}"

    def upload(self, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        key = self._key(bucket, path)
        extra = {"ContentType": content_type} if content_type else {}
        self._client.put_object(Bucket=self.bucket_name, Key=key, Body=data, **extra)
        logger.info(f"Uploaded {len(data)} bytes to s3://{self.bucket_name}/{key}")
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"

    def delete(self, bucket: str, path: str) -> None:
        key = self._key(bucket, path)
        self._client.delete_object(Bucket=self.bucket_name, Key=key)
        logger.info(f"Deleted s3://{self.bucket_name}/{key}")


_storage: BlobStorage | None = None


def get_storage() -> BlobStorage:
    global _storage
    if _storage is None:
        if settings.STORAGE_BACKEND == "s3":
            if not settings.S3_BUCKET_NAME:
                raise RuntimeError("S3_BUCKET_NAME must be set when STORAGE_BACKEND=s3")
            _storage = S3BlobStorage(
                bucket_name=settings.S3_BUCKET_NAME,
                region=settings.AWS_REGION,
                access_key_id=settings.AWS_ACCESS_KEY_ID,
                secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            )
        else:
            _storage = LocalBlobStorage(settings.MEDIA_DIR, settings.PUBLIC_BASE_URL)
    return _storage
