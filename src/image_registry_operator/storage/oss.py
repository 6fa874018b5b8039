"""Alibaba Cloud OSS storage driver."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

import oss2
from oss2.exceptions import OssError

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
from ..services.alibaba.client import OSSBucketClient, oss_endpoint
from ..utils.conditions import set_cr_condition
from ..utils.errors import sanitize_exception
from . import util

logger = logging.getLogger(__name__)

STORAGE_KEY = "oss"

REASON_UNKNOWN_ERROR = "Unknown Error Occurred"
MAX_CREATE_ATTEMPTS = 500
CLEANUP_RULE_ID = "cleanup-incomplete-multipart-registry-uploads"
PUBLIC_ENDPOINT = "Public"


def get_credentials(listers: Listers) -> tuple[str, str]:
    """Return the access key id and secret from the user or cluster secret.

    Both secrets carry an ini file under ``credentials``.

    Raises:
        StorageError: If neither secret holds usable credentials
    """
    data = util.get_secret_data(listers, IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER)
    if data is None:
        data = util.get_secret_data(listers, CLOUD_CREDENTIALS_NAME)
    if data is None:
        raise StorageError(
            f"unable to get cluster minted credentials {listers.namespace}/{CLOUD_CREDENTIALS_NAME}"
        )
    if CLOUD_CREDENTIALS_KEY not in data:
        raise StorageError("failed to fetch key 'credentials' in secret data")

    profile = util.parse_credentials_file(data[CLOUD_CREDENTIALS_KEY])
    access_key_id = profile.get("access_key_id", "")
    access_key_secret = profile.get("access_key_secret", "")
    if not access_key_id or not access_key_secret:
        raise StorageError("invalid credentials for Alibaba Cloud")
    return access_key_id, access_key_secret


def _error_code(e: Exception) -> str:
    if isinstance(e, OssError) and e.code:
        return e.code
    return REASON_UNKNOWN_ERROR


class OSSDriver:
    """Provisions and configures an OSS bucket for the registry."""

    def __init__(
        self,
        config: dict[str, Any],
        listers: Listers,
        client_factory: Callable[[str, str, str], OSSBucketClient] = OSSBucketClient,
    ) -> None:
        self.config = copy.deepcopy(config)
        self.listers = listers
        self.client_factory = client_factory

    def update_effective_config(self) -> None:
        if self.config.get("region"):
            return
        infra = util.get_infrastructure(self.listers)
        alibaba_status = util.platform_status(infra).get("alibabaCloud") or {}
        self.config["region"] = alibaba_status.get("region", "")

    def is_internal(self) -> bool:
        return self.config.get("endpointAccessibility") != PUBLIC_ENDPOINT

    def endpoint(self) -> str:
        return oss_endpoint(self.config.get("region", ""), self.is_internal())

    def _client(self) -> OSSBucketClient:
        access_key_id, access_key_secret = get_credentials(self.listers)
        self.update_effective_config()
        return self.client_factory(self.endpoint(), access_key_id, access_key_secret)

    def config_env(self) -> EnvVars:
        self.update_effective_config()
        access_key_id, access_key_secret = get_credentials(self.listers)
        bucket = self.config.get("bucket", "")
        return EnvVars([
            EnvVar("REGISTRY_STORAGE_OSS_ENDPOINT", f"{bucket}.{self.endpoint()}"),
            EnvVar("REGISTRY_STORAGE", "oss"),
            EnvVar("REGISTRY_STORAGE_OSS_BUCKET", bucket),
            EnvVar("REGISTRY_STORAGE_OSS_REGION", f"oss-{self.config.get('region', '')}"),
            EnvVar("REGISTRY_STORAGE_OSS_INTERNAL", self.is_internal()),
            EnvVar("REGISTRY_STORAGE_OSS_ENCRYPT", True),
            EnvVar(
                "REGISTRY_STORAGE_OSS_CREDENTIALSCONFIGPATH",
                f"{CLOUD_CREDENTIALS_MOUNT_PATH}/{CLOUD_CREDENTIALS_KEY}",
            ),
            EnvVar("REGISTRY_STORAGE_OSS_ACCESSKEYID", access_key_id, secret=True),
            EnvVar("REGISTRY_STORAGE_OSS_ACCESSKEYSECRET", access_key_secret, secret=True),
        ])

    def volumes(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        volume, mount = util.credentials_volume()
        return [volume], [mount]

    def volume_secrets(self) -> dict[str, str]:
        access_key_id, access_key_secret = get_credentials(self.listers)
        return {
            CLOUD_CREDENTIALS_KEY: (
                "[default]\n"
                "type = access_key\n"
                f"access_key_id = {access_key_id}\n"
                f"access_key_secret = {access_key_secret}\n"
            )
        }

    def secrets(self) -> dict[str, str]:
        return self.config_env().secret_data()

    def storage_exists(self, cr: dict[str, Any]) -> bool:
        bucket = self.config.get("bucket", "")
        if not bucket:
            return False

        try:
            self._client().bucket_info(bucket)
        except OssError as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, _error_code(e), sanitize_exception(e))
            return False
        except StorageError as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise

        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "OSS Bucket Exists", "")
        return True

    def storage_changed(self, cr: dict[str, Any]) -> bool:
        if not util.storage_changed(cr, STORAGE_KEY):
            return False
        set_cr_condition(
            cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, "OSS Configuration Changed", "OSS storage is in an unknown state"
        )
        return True

    def _bucket_exists(self, cr: dict[str, Any], client: OSSBucketClient) -> bool:
        bucket = self.config.get("bucket", "")
        if not bucket:
            return False
        try:
            client.bucket_info(bucket)
        except OssError as e:
            if e.code in ("NoSuchBucket", "NotFound"):
                logger.info(f"The bucket {bucket} was not found")
                return False
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise
        return True

    def _create_bucket(self, cr: dict[str, Any], client: OSSBucketClient, infra: dict[str, Any]) -> None:
        generated = not self.config.get("bucket")
        for _ in range(MAX_CREATE_ATTEMPTS):
            if not self.config.get("bucket"):
                self.config["bucket"] = util.generate_storage_name(
                    util.infrastructure_name(infra), self.config.get("region", "")
                )

            try:
                client.create_bucket(self.config["bucket"])
            except OssError as e:
                if e.code == "BucketAlreadyExists":
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
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, _error_code(e), sanitize_exception(e))
                raise

            util.set_management_state_if_empty(cr, MANAGEMENT_STATE_MANAGED)
            util.persist_storage_config(cr, STORAGE_KEY, self.config)
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "Creation Successful", "OSS bucket was successfully created"
            )
            return

        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "Unable to Generate Unique Bucket Name", "")
        raise StorageError(
            "unable to generate a unique OSS bucket name", reason="Unable to Generate Unique Bucket Name"
        )

    def _configure_managed_bucket(self, cr: dict[str, Any], client: OSSBucketClient, infra: dict[str, Any]) -> None:
        bucket = self.config["bucket"]

        try:
            client.set_private_acl(bucket)
        except OssError as e:
            set_cr_condition(cr, COND_STORAGE_PUBLIC_ACCESS_BLOCKED, CONDITION_FALSE, _error_code(e), sanitize_exception(e))
        else:
            set_cr_condition(
                cr, COND_STORAGE_PUBLIC_ACCESS_BLOCKED, CONDITION_TRUE, "Public Access Block Successful",
                "Public access to the OSS bucket and its contents have been successfully blocked.",
            )

        infra_name = util.infrastructure_name(infra)
        tags = [
            (f"kubernetes.io/cluster/{infra_name}", "owned"),
            ("Name", f"{infra_name}-image-registry"),
            ("sigs.k8s.io/cloud-provider-alibaba/origin", "ocp"),
            ("GISV", "ocp"),
        ]
        alibaba_status = util.platform_status(infra).get("alibabaCloud") or {}
        for tag in alibaba_status.get("resourceTags") or []:
            tags.append((tag["key"], tag["value"]))
        try:
            client.set_bucket_tags(bucket, tags)
        except OssError as e:
            set_cr_condition(cr, COND_STORAGE_TAGGED, CONDITION_FALSE, _error_code(e), sanitize_exception(e))
        else:
            set_cr_condition(
                cr, COND_STORAGE_TAGGED, CONDITION_TRUE, "Tagging Successful", "Tags were successfully applied to the OSS bucket"
            )

        encryption = self.config.get("encryption") or {}
        key_id = ((encryption.get("kms") or {}).get("keyID", "")) if encryption.get("method") == "KMS" else ""
        algorithm = oss2.SERVER_SIDE_ENCRYPTION_KMS if key_id else oss2.SERVER_SIDE_ENCRYPTION_AES256
        try:
            client.set_bucket_encryption(bucket, algorithm, key_id or None)
        except OssError as e:
            set_cr_condition(cr, COND_STORAGE_ENCRYPTED, CONDITION_FALSE, _error_code(e), sanitize_exception(e))
        else:
            set_cr_condition(
                cr, COND_STORAGE_ENCRYPTED, CONDITION_TRUE, "Encryption Successful",
                f"Default {algorithm} encryption was successfully enabled on the OSS bucket",
            )

        try:
            client.set_incomplete_upload_cleanup(bucket, CLEANUP_RULE_ID, days=1)
        except OssError as e:
            set_cr_condition(
                cr, COND_STORAGE_INCOMPLETE_UPLOAD_CLEANUP_ENABLED, CONDITION_FALSE, _error_code(e), sanitize_exception(e)
            )
        else:
            set_cr_condition(
                cr, COND_STORAGE_INCOMPLETE_UPLOAD_CLEANUP_ENABLED, CONDITION_TRUE, "Enable Cleanup Successful",
                "Default cleanup of incomplete multipart uploads after one (1) day was successfully enabled",
            )

    def create_storage(self, cr: dict[str, Any]) -> None:
        try:
            client = self._client()
        except StorageError as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise
        infra = util.get_infrastructure(self.listers)

        if self._bucket_exists(cr, client):
            util.set_management_state_if_empty(cr, MANAGEMENT_STATE_UNMANAGED)
            util.persist_storage_config(cr, STORAGE_KEY, self.config)
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "OSS Bucket Exists",
                "User supplied OSS bucket exists and is accessible",
            )
        else:
            self._create_bucket(cr, client, infra)

        if util.management_state(cr) == MANAGEMENT_STATE_MANAGED:
            self._configure_managed_bucket(cr, client, infra)

    def remove_storage(self, cr: dict[str, Any]) -> tuple[bool, Exception | None]:
        if util.management_state(cr) != MANAGEMENT_STATE_MANAGED or not self.config.get("bucket"):
            return False, None

        bucket = self.config["bucket"]
        try:
            client = self._client()
            client.abort_multipart_uploads(bucket)
            client.delete_objects(bucket)
        except (StorageError, OssError) as e:
            return False, e

        try:
            client.delete_bucket(bucket)
        except OssError as e:
            if e.code == "NoSuchBucket":
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "OSS Bucket Deleted", "The OSS bucket did not exist.")
                return True, None
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, _error_code(e), sanitize_exception(e))
            return False, e

        self.config["bucket"] = ""
        spec_config = util.get_storage_config(cr, STORAGE_KEY, "spec")
        if spec_config is not None:
            spec_config["bucket"] = ""
        util.persist_storage_config(cr, STORAGE_KEY, self.config, spec=False)
        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "OSS Bucket Deleted", "The OSS bucket has been removed.")
        return False, None

    def id(self) -> str:
        return self.config.get("bucket", "")
