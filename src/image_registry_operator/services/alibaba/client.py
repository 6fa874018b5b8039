"""Alibaba Cloud OSS bucket client."""

from __future__ import annotations

import logging

import oss2
from oss2.models import (
    AbortMultipartUpload,
    BucketLifecycle,
    LifecycleRule,
    ServerSideEncryptionRule,
    Tagging,
    TaggingRule,
)

logger = logging.getLogger(__name__)


def oss_endpoint(region: str, internal: bool) -> str:
    """Return the OSS endpoint of a region, using the VPC endpoint when ``internal``."""
    if internal:
        return f"oss-{region}-internal.aliyuncs.com"
    return f"oss-{region}.aliyuncs.com"


class OSSBucketClient:
    """Bucket operations the registry needs, backed by oss2."""

    def __init__(self, endpoint: str, access_key_id: str, access_key_secret: str) -> None:
        self.endpoint = endpoint
        self.auth = oss2.Auth(access_key_id, access_key_secret)

    def _bucket(self, name: str) -> oss2.Bucket:
        return oss2.Bucket(self.auth, self.endpoint, name)

    def bucket_info(self, name: str) -> None:
        """Fetch bucket info.

        Raises:
            oss2.exceptions.OssError: ``NoSuchBucket`` if the bucket is missing
        """
        self._bucket(name).get_bucket_info()

    def create_bucket(self, name: str) -> None:
        logger.info(f"Creating OSS bucket {name}")
        self._bucket(name).create_bucket(oss2.BUCKET_ACL_PRIVATE)

    def set_private_acl(self, name: str) -> None:
        self._bucket(name).put_bucket_acl(oss2.BUCKET_ACL_PRIVATE)

    def set_bucket_tags(self, name: str, tags: list[tuple[str, str]]) -> None:
        rule = TaggingRule()
        for key, value in tags:
            rule.add(key, value)
        self._bucket(name).put_bucket_tagging(Tagging(rule))

    def set_bucket_encryption(self, name: str, algorithm: str, kms_key_id: str | None = None) -> None:
        rule = ServerSideEncryptionRule()
        rule.sse_algorithm = algorithm
        if kms_key_id:
            rule.kms_master_keyid = kms_key_id
        self._bucket(name).put_bucket_encryption(rule)

    def set_incomplete_upload_cleanup(self, name: str, rule_id: str, days: int = 1) -> None:
        rule = LifecycleRule(
            rule_id,
            "",
            status=LifecycleRule.ENABLED,
            abort_multipart_upload=AbortMultipartUpload(days=days),
        )
        self._bucket(name).put_bucket_lifecycle(BucketLifecycle([rule]))

    def abort_multipart_uploads(self, name: str) -> None:
        bucket = self._bucket(name)
        for upload in oss2.MultipartUploadIterator(bucket):
            bucket.abort_multipart_upload(upload.key, upload.upload_id)

    def delete_objects(self, name: str) -> None:
        logger.info(f"Emptying OSS bucket {name}")
        bucket = self._bucket(name)
        for obj in oss2.ObjectIterator(bucket):
            bucket.delete_object(obj.key)

    def delete_bucket(self, name: str) -> None:
        logger.info(f"Deleting OSS bucket {name}")
        self._bucket(name).delete_bucket()
