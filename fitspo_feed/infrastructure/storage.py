"""
Post image storage on S3 or MinIO
"""
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from io import BytesIO
from typing import Optional
import asyncio
import logging

from ..config import settings
from ..domain.exceptions import UploadError
from ..domain.repositories import IBlobStore

logger = logging.getLogger(__name__)


class StorageManager(IBlobStore):
    """
    Post images addressed by object key.

    Public image URLs are MEDIA_BASE_URL joined with the key, so a stored
    post's image_url can be mapped back to its key for deletion or signing.
    boto3 is blocking; every network call runs in a worker thread.
    """

    def __init__(self):
        self.client = None
        self.bucket_name = settings.S3_BUCKET_NAME
        self.base_url = settings.MEDIA_BASE_URL.rstrip("/")

    def connect(self):
        """Create the S3 client and make sure the media bucket is there"""
        self.client = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL or None,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
            region_name=settings.AWS_REGION
        )
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
        except ClientError:
            self._create_bucket()
        else:
            logger.info(f"Using media bucket {self.bucket_name}")

    def _create_bucket(self):
        kwargs = {"Bucket": self.bucket_name}
        # us-east-1 rejects an explicit location constraint
        if settings.AWS_REGION != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": settings.AWS_REGION}
        try:
            self.client.create_bucket(**kwargs)
        except ClientError as e:
            logger.error(f"Could not create media bucket {self.bucket_name}: {e}")
            return
        logger.info(f"Created media bucket {self.bucket_name}")

    def url_for_key(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def key_for_url(self, url: str) -> Optional[str]:
        """Object key for a URL produced by url_for_key"""
        prefix = f"{self.base_url}/"
        if not url or not url.startswith(prefix):
            return None
        return url[len(prefix):].split("?", 1)[0] or None

    async def upload(self, data: bytes, key: str, content_type: str = "image/jpeg") -> str:
        """
        Store an encoded post image.

        Returns:
            Public URL of the image

        Raises:
            UploadError: the bucket rejected the write
        """
        try:
            await asyncio.to_thread(
                self.client.upload_fileobj,
                BytesIO(data),
                self.bucket_name,
                key,
                ExtraArgs={"ContentType": content_type}
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Image upload to {self.bucket_name}/{key} failed: {e}")
            raise UploadError(f"Could not store image {key}") from e

        logger.info(f"Stored image {key} ({len(data)} bytes)")
        return self.url_for_key(key)

    async def delete(self, key: str) -> bool:
        """Remove an image; False when the bucket refused"""
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Image delete {self.bucket_name}/{key} failed: {e}")
            return False
        logger.info(f"Removed image {key}")
        return True

    async def signed_url(self, key: str, expiration: int = 3600) -> Optional[str]:
        """Time-limited GET link for a private bucket"""
        try:
            return await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=expiration
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Signing {key} failed: {e}")
            return None


# Global storage instance
storage = StorageManager()


async def get_storage() -> StorageManager:
    """Dependency for getting storage instance"""
    return storage
