"""AWS S3 storage driver."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError

from ..clients import Listers
from ..constants import (
    CLOUD_CREDENTIALS_KEY,
    CLOUD_CREDENTIALS_MOUNT_PATH,
    CLOUD_CREDENTIALS_NAME,
    COND_STORAGE_ENCRYPTED,
    COND_STORAGE_EXISTS,
    COND_STORAGE_INCOMPLETE_UPLOAD_CLEANUP_ENABLED,
    COND_STORAGE_PUBLIC_ACCESS_BLOCKED,
    COND_STORAGE_TAGGED,
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER,
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_UNMANAGED,
)
from ..envvar import EnvVar, EnvVars
from ..errors import StorageError
from ..services.aws.client import S3BucketClient, error_code
from ..utils.conditions import set_cr_condition
from ..utils.errors import sanitize_exception
from . import util

logger = logging.getLogger(__name__)

STORAGE_KEY = "s3"

REASON_UNKNOWN_ERROR = "Unknown Error Occurred"
# HeadBucket codes that mean the bucket is missing or unreachable, not broken.
BUCKET_MISSING_CODES = ("NoSuchBucket", "Forbidden", "NotFound", "404", "403")
MAX_CREATE_ATTEMPTS = 5000
CLEANUP_RULE_ID = "cleanup-incomplete-multipart-registry-uploads"


def shared_credentials(access_key: str, secret_key: str) -> str:
    """Render static keys as a shared AWS credentials file."""
    return (
        "[default]\n"
        f"aws_access_key_id = {access_key}\n"
        f"aws_secret_access_key = {secret_key}\n"
    )


def get_credentials_data(listers: Listers, prefix: str = "REGISTRY_STORAGE_S3") -> str:
    """Return the shared credentials file the registry and operator use.

    Keys from the user secret (`<prefix>_ACCESSKEY` and `<prefix>_SECRETKEY`)
    win over the cluster minted credentials.

    Raises:
        KeyError: If the user secret misses a key
        StorageError: If no usable cluster credentials exist
    """
    user_data = util.get_secret_data(listers, IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER)
    if user_data is not None:
        access_key = util.get_value_from_secret(
            user_data, IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER, f"{prefix}_ACCESSKEY"
        )
        secret_key = util.get_value_from_secret(
            user_data, IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER, f"{prefix}_SECRETKEY"
        )
        return shared_credentials(access_key, secret_key)

    data = util.get_secret_data(listers, CLOUD_CREDENTIALS_NAME)
    if data is None:
        raise StorageError(
            f"unable to get cluster minted credentials {listers.namespace}/{CLOUD_CREDENTIALS_NAME}"
        )
    if data.get(CLOUD_CREDENTIALS_KEY):
        return data[CLOUD_CREDENTIALS_KEY]
    if data.get("aws_access_key_id") and data.get("aws_secret_access_key"):
        return shared_credentials(data["aws_access_key_id"], data["aws_secret_access_key"])
    raise StorageError("invalid secret for aws credentials")


def _condition_from_error(cr: dict[str, Any], condition: str, e: Exception) -> None:
    if isinstance(e, ClientError):
        set_cr_condition(cr, condition, CONDITION_FALSE, error_code(e), sanitize_exception(e))
    else:
        set_cr_condition(cr, condition, CONDITION_FALSE, REASON_UNKNOWN_ERROR, sanitize_exception(e))


class S3Driver:
    """Provisions and configures an S3 bucket for the registry."""

    def __init__(
        self,
        config: dict[str, Any],
        listers: Listers,
        client_factory: Callable[..., S3BucketClient] = S3BucketClient,
    ) -> None:
        self.config = copy.deepcopy(config)
        self.listers = listers
        self.client_factory = client_factory

    def update_effective_config(self) -> None:
        """Fill region and endpoint from the Infrastructure when none are set."""
        if self.config.get("region") or self.config.get("regionEndpoint"):
            return

        infra = util.get_infrastructure(self.listers)
        aws_status = util.platform_status(infra).get("aws") or {}
        self.config["region"] = aws_status.get("region", "")
        for endpoint in aws_status.get("serviceEndpoints") or []:
            if endpoint.get("name") == "s3":
                self.config["regionEndpoint"] = endpoint.get("url", "")
                # Custom endpoints are only reachable in virtual hosted style.
                self.config["virtualHostedStyle"] = True

    def _client(self) -> S3BucketClient:
        credentials = util.parse_credentials_file(get_credentials_data(self.listers))
        self.update_effective_config()
        endpoint = self.config.get("regionEndpoint") or None
        return self.client_factory(
            region=self.config.get("region", ""),
            access_key=credentials.get("aws_access_key_id", ""),
            secret_key=credentials.get("aws_secret_access_key", ""),
            endpoint=endpoint,
            path_style=bool(endpoint) and not self.config.get("virtualHostedStyle", False),
        )

    def config_env(self) -> EnvVars:
        self.update_effective_config()

        envs = EnvVars()
        if self.config.get("regionEndpoint"):
            envs.append(EnvVar("REGISTRY_STORAGE_S3_REGIONENDPOINT", self.config["regionEndpoint"]))
        if self.config.get("keyID"):
            envs.append(EnvVar("REGISTRY_STORAGE_S3_KEYID", self.config["keyID"]))

        envs.extend([
            EnvVar("REGISTRY_STORAGE", "s3"),
            EnvVar("REGISTRY_STORAGE_S3_BUCKET", self.config.get("bucket", "")),
            EnvVar("REGISTRY_STORAGE_S3_REGION", self.config.get("region", "")),
            EnvVar("REGISTRY_STORAGE_S3_ENCRYPT", bool(self.config.get("encrypt", False))),
            EnvVar("REGISTRY_STORAGE_S3_FORCEPATHSTYLE", not self.config.get("virtualHostedStyle", False)),
            EnvVar(
                "REGISTRY_STORAGE_S3_CREDENTIALSCONFIGPATH",
                f"{CLOUD_CREDENTIALS_MOUNT_PATH}/{CLOUD_CREDENTIALS_KEY}",
            ),
        ])
        return envs

    def volumes(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        volume, mount = util.credentials_volume()
        return [volume], [mount]

    def volume_secrets(self) -> dict[str, str]:
        return {CLOUD_CREDENTIALS_KEY: get_credentials_data(self.listers)}

    def secrets(self) -> dict[str, str]:
        return self.config_env().secret_data()

    def storage_exists(self, cr: dict[str, Any]) -> bool:
        bucket = self.config.get("bucket", "")
        if not bucket:
            return False

        try:
            self._client().head_bucket(bucket)
        except ClientError as e:
            code = error_code(e)
            if code in BUCKET_MISSING_CODES:
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, code, sanitize_exception(e))
                return False
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise
        except (BotoCoreError, StorageError, KeyError) as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise

        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "S3 Bucket Exists", "")
        return True

    def storage_changed(self, cr: dict[str, Any]) -> bool:
        if not util.storage_changed(cr, STORAGE_KEY):
            return False
        set_cr_condition(
            cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, "S3 Configuration Changed", "S3 storage is in an unknown state"
        )
        return True

    def _bucket_exists(self, cr: dict[str, Any], client: S3BucketClient) -> bool:
        bucket = self.config.get("bucket", "")
        if not bucket:
            return False
        try:
            client.head_bucket(bucket)
        except ClientError as e:
            code = error_code(e)
            if code not in BUCKET_MISSING_CODES:
                set_cr_condition(
                    cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e)
                )
                raise
            # A missing bucket is created below.
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, code, sanitize_exception(e))
            return False
        return True

    def _create_bucket(self, cr: dict[str, Any], client: S3BucketClient, infra: dict[str, Any]) -> None:
        generated = not self.config.get("bucket")
        for _ in range(MAX_CREATE_ATTEMPTS):
            if not self.config.get("bucket"):
                self.config["bucket"] = util.generate_storage_name(
                    util.infrastructure_name(infra), self.config.get("region", "")
                )

            try:
                client.create_bucket(self.config["bucket"], self.config.get("region") or None)
            except ClientError as e:
                code = error_code(e)
                if code == "BucketAlreadyExists":
                    if not generated:
                        set_cr_condition(
                            cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "Unable to Access Bucket",
                            "The bucket exists, but we do not have permission to access it",
                        )
                        raise StorageError(
                            f"bucket {self.config['bucket']} exists but is not accessible",
                            reason="Unable to Access Bucket",
                        ) from e
                    self.config["bucket"] = ""
                    continue
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, code, sanitize_exception(e))
                raise

            util.set_management_state_if_empty(cr, MANAGEMENT_STATE_MANAGED)
            util.persist_storage_config(cr, STORAGE_KEY, self.config)
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "Creation Successful", "S3 bucket was successfully created"
            )
            return

        set_cr_condition(
            cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "Unable to Generate Unique Bucket Name", ""
        )
        raise StorageError(
            "unable to generate a unique s3 bucket name", reason="Unable to Generate Unique Bucket Name"
        )

    def _block_public_access(self, cr: dict[str, Any], client: S3BucketClient) -> None:
        try:
            client.block_public_access(self.config["bucket"])
        except (ClientError, BotoCoreError) as e:
            _condition_from_error(cr, COND_STORAGE_PUBLIC_ACCESS_BLOCKED, e)
            return
        set_cr_condition(
            cr, COND_STORAGE_PUBLIC_ACCESS_BLOCKED, CONDITION_TRUE, "Public Access Block Successful",
            "Public access to the S3 bucket and its contents have been successfully blocked.",
        )

    def _tag_bucket(self, cr: dict[str, Any], client: S3BucketClient, infra: dict[str, Any]) -> None:
        infra_name = util.infrastructure_name(infra)
        tags = [
            {"Key": f"kubernetes.io/cluster/{infra_name}", "Value": "owned"},
            {"Key": "Name", "Value": f"{infra_name}-image-registry"},
        ]
        aws_status = util.platform_status(infra).get("aws") or {}
        for tag in aws_status.get("resourceTags") or []:
            tags.append({"Key": tag["key"], "Value": tag["value"]})

        try:
            client.set_bucket_tags(self.config["bucket"], tags)
        except (ClientError, BotoCoreError) as e:
            _condition_from_error(cr, COND_STORAGE_TAGGED, e)
            return
        set_cr_condition(
            cr, COND_STORAGE_TAGGED, CONDITION_TRUE, "Tagging Successful", "Tags were successfully applied to the S3 bucket"
        )

    def _encrypt_bucket(self, cr: dict[str, Any], client: S3BucketClient) -> None:
        key_id = self.config.get("keyID", "")
        algorithm = "aws:kms" if key_id else "AES256"
        try:
            client.set_bucket_encryption(self.config["bucket"], algorithm, key_id or None)
        except (ClientError, BotoCoreError) as e:
            _condition_from_error(cr, COND_STORAGE_ENCRYPTED, e)
            return

        self.config["encrypt"] = True
        util.persist_storage_config(cr, STORAGE_KEY, self.config)
        set_cr_condition(
            cr, COND_STORAGE_ENCRYPTED, CONDITION_TRUE, "Encryption Successful",
            f"Default {algorithm} encryption was successfully enabled on the S3 bucket",
        )

    def _enable_upload_cleanup(self, cr: dict[str, Any], client: S3BucketClient) -> None:
        try:
            client.set_incomplete_upload_cleanup(self.config["bucket"], CLEANUP_RULE_ID, days=1)
        except (ClientError, BotoCoreError) as e:
            _condition_from_error(cr, COND_STORAGE_INCOMPLETE_UPLOAD_CLEANUP_ENABLED, e)
            return
        set_cr_condition(
            cr, COND_STORAGE_INCOMPLETE_UPLOAD_CLEANUP_ENABLED, CONDITION_TRUE, "Enable Cleanup Successful",
            "Default cleanup of incomplete multipart uploads after one (1) day was successfully enabled",
        )

    def create_storage(self, cr: dict[str, Any]) -> None:
        try:
            client = self._client()
        except (StorageError, KeyError) as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise
        infra = util.get_infrastructure(self.listers)

        if self._bucket_exists(cr, client):
            util.set_management_state_if_empty(cr, MANAGEMENT_STATE_UNMANAGED)
            util.persist_storage_config(cr, STORAGE_KEY, self.config)
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "User supplied S3 bucket exists and is accessible", ""
            )
        else:
            self._create_bucket(cr, client, infra)
            logger.info(f"Waiting for bucket {self.config['bucket']} to become available")
            client.wait_until_exists(self.config["bucket"])

        if util.management_state(cr) != MANAGEMENT_STATE_MANAGED:
            logger.info("Storage is not managed, skipping bucket configuration")
            return

        self._block_public_access(cr, client)
        self._tag_bucket(cr, client, infra)
        self._encrypt_bucket(cr, client)
        self._enable_upload_cleanup(cr, client)

    def remove_storage(self, cr: dict[str, Any]) -> tuple[bool, Exception | None]:
        if util.management_state(cr) != MANAGEMENT_STATE_MANAGED or not self.config.get("bucket"):
            return False, None

        bucket = self.config["bucket"]
        try:
            client = self._client()
        except (StorageError, KeyError) as e:
            return False, e

        try:
            client.empty_bucket(bucket)
        except ClientError as e:
            if error_code(e) != "NoSuchBucket":
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, error_code(e), sanitize_exception(e))
                return False, e

        try:
            client.delete_bucket(bucket)
        except ClientError as e:
            if error_code(e) == "NoSuchBucket":
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "S3 Bucket Deleted", "The S3 bucket did not exist.")
                return False, None
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, error_code(e), sanitize_exception(e))
            return False, e

        try:
            client.wait_until_not_exists(bucket)
        except BotoCoreError as e:
            return False, e

        self.config["bucket"] = ""
        for source in ("spec", "status"):
            config = util.get_storage_config(cr, STORAGE_KEY, source)
            if config is not None:
                config["bucket"] = ""
        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "S3 Bucket Deleted", "The S3 bucket has been removed.")
        return False, None

    def id(self) -> str:
        return self.config.get("bucket", "")
