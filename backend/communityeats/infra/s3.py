# communityeats/infra/s3.py

import logging
from typing import Optional

import boto3

from communityeats.core.config import Settings

logger = logging.getLogger(__name__)

LISTING_IMAGE_PREFIX = "listings/"


def build_s3_client(settings: Settings):
    return boto3.client(
        "s3",
        region_name=settings.storage_region,
        endpoint_url=settings.storage_endpoint_url,
    )


class ImageBucket:
    """Listing images stored under ``listings/<image id>`` in one bucket."""

    def __init__(self, client, bucket: str, url_ttl_seconds: int = 3600):
        self.client = client
        self.bucket = bucket
        self.url_ttl_seconds = url_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings, client=None) -> "ImageBucket":
        return cls(
            client or build_s3_client(settings),
            settings.storage_bucket,
            settings.signed_url_ttl_seconds,
        )

    @staticmethod
    def key_for(image_id: str) -> str:
        return f"{LISTING_IMAGE_PREFIX}{image_id}"

    def upload(self, image_id: str, data: bytes, content_type: Optional[str] = None):
        extra = {"ContentType": content_type} if content_type else {}
        self.client.put_object(Bucket=self.bucket, Key=self.key_for(image_id), Body=data, **extra)

    def signed_read_url(self, image_id: str) -> str:
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": self.key_for(image_id)},
            ExpiresIn=self.url_ttl_seconds,
        )

    def delete(self, image_id: str):
        self.client.delete_object(Bucket=self.bucket, Key=self.key_for(image_id))
