"""MinIO client configuration and utilities"""
import logging
from datetime import timedelta
from typing import Iterable

from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error

from config import settings

logger = logging.getLogger(__name__)


def get_minio_client() -> Minio:
    """Create and return a MinIO client instance"""
    return Minio(
        settings.MINIO_ENDPOINT,
        access_key=settings.MINIO_ACCESS_KEY,
        secret_key=settings.MINIO_SECRET_KEY,
        secure=settings.MINIO_SECURE,
        region=settings.MINIO_REGION,
    )


def ensure_bucket_exists(client: Minio, bucket_name: str):
    """Create bucket if it doesn't exist. Buckets are private by default."""
    try:
        if not client.bucket_exists(bucket_name):
            client.make_bucket(bucket_name)
            logger.info(f"Created MinIO bucket: {bucket_name}")
        else:
            logger.info(f"MinIO bucket exists: {bucket_name}")
    except S3Error as e:
        logger.error(f"Error ensuring bucket exists: {e}")
        raise


def signed_url(client: Minio, object_name: str) -> str:
    """Mint a signed GET link for a private object, rewritten to the external host."""
    url = client.get_presigned_url(
        "GET",
        settings.MINIO_BUCKET,
        object_name,
        expires=timedelta(seconds=settings.SIGNED_URL_EXPIRES_SECONDS),
    )
    base = f"{settings.MINIO_EXTERNAL_SCHEME}://{settings.MINIO_EXTERNAL_ENDPOINT}/"
    scheme = "https" if settings.MINIO_SECURE else "http"
    return url.replace(f"{scheme}://{settings.MINIO_ENDPOINT}/", base)


def remove_objects(client: Minio, object_names: Iterable[str]) -> list[str]:
    """Bulk-delete objects. Returns the names that could not be removed."""
    names = sorted(object_names)
    if not names:
        return []

    failed = []
    try:
        # remove_objects is lazy: errors only surface while iterating
        for error in client.remove_objects(
            settings.MINIO_BUCKET, [DeleteObject(name) for name in names]
        ):
            logger.warning(f"Could not delete object {error.name}: {error.message}")
            failed.append(error.name)
    except S3Error as e:
        logger.warning(f"Bulk delete failed for {len(names)} objects: {e}")
        return names
    return failed
