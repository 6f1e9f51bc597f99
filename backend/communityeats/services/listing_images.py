# communityeats/services/listing_images.py

import logging
import uuid
from typing import Iterable, List, Optional

from communityeats.infra.s3 import ImageBucket

logger = logging.getLogger(__name__)


def new_image_id(filename: str) -> str:
    safe_name = filename.replace("/", "_").strip() or "image"
    return f"{uuid.uuid4()}_{safe_name}"


def store_listing_image(bucket: ImageBucket, filename: str, data: bytes, content_type: Optional[str]):
    image_id = new_image_id(filename)
    bucket.upload(image_id, data, content_type)
    return image_id, bucket.signed_read_url(image_id)


def signed_url_or_none(bucket: ImageBucket, image_id: Optional[str]) -> Optional[str]:
    if not image_id:
        return None
    try:
        return bucket.signed_read_url(image_id)
    except Exception as e:
        logger.warning("Failed to generate URL for image %s: %s", image_id, e)
        return None


def signed_urls(bucket: ImageBucket, image_ids: Iterable[str]) -> List[str]:
    """Signed read URLs in image order, skipping images that fail to sign."""
    urls = (signed_url_or_none(bucket, image_id) for image_id in image_ids)
    return [url for url in urls if url]


def delete_listing_images(bucket: ImageBucket, image_ids: Iterable[str]) -> List[str]:
    """Delete each image; failures are logged and skipped. Returns the ids that failed."""
    failed = []
    for image_id in image_ids:
        try:
            bucket.delete(image_id)
        except Exception as e:
            logger.warning("Failed to delete image %s: %s", image_id, e)
            failed.append(image_id)
    return failed
