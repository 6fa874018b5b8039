"""S3 bucket client used by the S3 and IBM COS drivers."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from ... import __version__

logger = logging.getLogger(__name__)

USER_AGENT_EXTRA = f"openshift.io image-registry-operator/{__version__}"


def error_code(e: ClientError) -> str:
    """Return the S3 error code of a botocore client error."""
    return e.response.get("Error", {}).get("Code", "")


class S3BucketClient:
    """Thin wrapper over a boto3 S3 client with the bucket operations the registry needs."""

    def __init__(
        self,
        region: str,
        access_key: str,
        secret_key: str,
        endpoint: str | None = None,
        path_style: bool = False,
        use_dual_stack: bool = False,
        trusted_ca_bundle: str | None = None,
    ) -> None:
        """Initialize the S3 client.

        Args:
            region: Bucket region
            access_key: Access key ID
            secret_key: Secret access key
            endpoint: Custom S3 endpoint URL
            path_style: Use path-style addressing
            use_dual_stack: Use dual-stack (IPv4 and IPv6) endpoints
            trusted_ca_bundle: Path to a CA bundle used to verify the endpoint
        """
        self.region = region
        self.endpoint = endpoint

        config = Config(
            signature_version="s3v4",
            s3={
                "addressing_style": "path" if path_style else "auto",
                "use_dualstack_endpoint": use_dual_stack,
            },
            user_agent_extra=USER_AGENT_EXTRA,
        )

        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint or None,
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=config,
            verify=trusted_ca_bundle if trusted_ca_bundle else None,
        )

    def head_bucket(self, name: str) -> None:
        """Check that the bucket exists and is accessible.

        Raises:
            ClientError: ``NoSuchBucket``, ``NotFound``, ``Forbidden`` or any other failure
        """
        self.client.head_bucket(Bucket=name)

    def create_bucket(self, name: str, location_constraint: str | None = None) -> None:
        """Create a bucket.

        Args:
            name: Bucket name
            location_constraint: Region the bucket is created in. us-east-1
                must not be passed as a constraint.
        """
        params: dict[str, Any] = {"Bucket": name}
        if location_constraint and location_constraint != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": location_constraint}
        logger.info(f"Creating bucket {name}")
        self.client.create_bucket(**params)

    def wait_until_exists(self, name: str) -> None:
        self.client.get_waiter("bucket_exists").wait(Bucket=name)

    def wait_until_not_exists(self, name: str) -> None:
        self.client.get_waiter("bucket_not_exists").wait(Bucket=name)

    def block_public_access(self, name: str) -> None:
        self.client.put_public_access_block(
            Bucket=name,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": True,
                "BlockPublicPolicy": True,
                "IgnorePublicAcls": True,
                "RestrictPublicBuckets": True,
            },
        )

    def set_bucket_tags(self, name: str, tags: list[dict[str, str]]) -> None:
        """Replace the bucket tag set with ``tags`` (``Key``/``Value`` pairs)."""
        self.client.put_bucket_tagging(Bucket=name, Tagging={"TagSet": tags})

    def set_bucket_encryption(self, name: str, algorithm: str, kms_key_id: str | None = None) -> None:
        """Enable default server side encryption with an S3 bucket key."""
        default: dict[str, str] = {"SSEAlgorithm": algorithm}
        if kms_key_id:
            default["KMSMasterKeyID"] = kms_key_id
        self.client.put_bucket_encryption(
            Bucket=name,
            ServerSideEncryptionConfiguration={
                "Rules": [
                    {
                        "ApplyServerSideEncryptionByDefault": default,
                        "BucketKeyEnabled": True,
                    }
                ]
            },
        )

    def set_incomplete_upload_cleanup(self, name: str, rule_id: str, days: int = 1) -> None:
        """Abort incomplete multipart uploads after ``days`` days."""
        self.client.put_bucket_lifecycle_configuration(
            Bucket=name,
            LifecycleConfiguration={
                "Rules": [
                    {
                        "ID": rule_id,
                        "Status": "Enabled",
                        "Filter": {"Prefix": ""},
                        "AbortIncompleteMultipartUpload": {"DaysAfterInitiation": days},
                    }
                ]
            },
        )

    def empty_bucket(self, name: str) -> None:
        """Delete every object version and delete marker in the bucket.

        Raises:
            ClientError: If listing or deleting fails
        """
        logger.info(f"Emptying bucket {name}")
        paginator = self.client.get_paginator("list_object_versions")
        for page in paginator.paginate(Bucket=name):
            objects = [
                {"Key": item["Key"], "VersionId": item["VersionId"]}
                for item in page.get("Versions", []) + page.get("DeleteMarkers", [])
            ]
            if not objects:
                continue
            response = self.client.delete_objects(Bucket=name, Delete={"Objects": objects, "Quiet": True})
            for error in response.get("Errors", []):
                logger.warning(f"Failed to delete object {error.get('Key')}: {error.get('Message')}")

    def delete_bucket(self, name: str) -> None:
        logger.info(f"Deleting bucket {name}")
        self.client.delete_bucket(Bucket=name)
