"""IBM Cloud Object Storage driver.

IBM COS speaks the S3 API, so buckets are managed with boto3 using HMAC
credentials and the registry runs its S3 storage driver against the COS
endpoint.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError

from ..clients import Listers
from ..constants import (
    CLOUD_CREDENTIALS_KEY,
    CLOUD_CREDENTIALS_MOUNT_PATH,
    COND_STORAGE_EXISTS,
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_UNMANAGED,
)
from ..envvar import EnvVar, EnvVars
from ..errors import StorageError
from ..services.aws.client import S3BucketClient, error_code
from ..utils.conditions import set_cr_condition
from ..utils.errors import sanitize_exception
from . import util
from .s3 import BUCKET_MISSING_CODES, REASON_UNKNOWN_ERROR, get_credentials_data

logger = logging.getLogger(__name__)

STORAGE_KEY = "ibmcos"
CREDENTIALS_PREFIX = "REGISTRY_STORAGE_IBMCOS"
COS_ENDPOINT_TEMPLATE = "s3.{location}.cloud-object-storage.appdomain.cloud"


def cos_endpoint(location: str) -> str:
    return COS_ENDPOINT_TEMPLATE.format(location=location)


class IBMCOSDriver:
    """Provisions an IBM COS bucket for the registry."""

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
        """Use the cluster location and resource group unless the user set a location."""
        if self.config.get("location"):
            return
        infra = util.get_infrastructure(self.listers)
        ibm_status = util.platform_status(infra).get("ibmcloud") or {}
        self.config["location"] = ibm_status.get("location", "")
        if not self.config.get("resourceGroupName"):
            self.config["resourceGroupName"] = ibm_status.get("resourceGroupName", "")

    def _credentials_data(self) -> str:
        return get_credentials_data(self.listers, prefix=CREDENTIALS_PREFIX)

    def _client(self) -> S3BucketClient:
        credentials = util.parse_credentials_file(self._credentials_data())
        self.update_effective_config()
        return self.client_factory(
            region=self.config.get("location", ""),
            access_key=credentials.get("aws_access_key_id", ""),
            secret_key=credentials.get("aws_secret_access_key", ""),
            endpoint=f"https://{cos_endpoint(self.config.get('location', ''))}",
            path_style=True,
        )

    def config_env(self) -> EnvVars:
        self.update_effective_config()
        return EnvVars([
            EnvVar("REGISTRY_STORAGE", "s3"),
            EnvVar("REGISTRY_STORAGE_S3_BUCKET", self.config.get("bucket", "")),
            EnvVar("REGISTRY_STORAGE_S3_REGION", self.config.get("location", "")),
            EnvVar("REGISTRY_STORAGE_S3_REGIONENDPOINT", cos_endpoint(self.config.get("location", ""))),
            EnvVar("REGISTRY_STORAGE_S3_ENCRYPT", False),
            EnvVar("REGISTRY_STORAGE_S3_FORCEPATHSTYLE", True),
            EnvVar("REGISTRY_STORAGE_S3_USEDUALSTACK", False),
            EnvVar(
                "REGISTRY_STORAGE_S3_CREDENTIALSCONFIGPATH",
                f"{CLOUD_CREDENTIALS_MOUNT_PATH}/{CLOUD_CREDENTIALS_KEY}",
            ),
        ])

    def volumes(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        volume, mount = util.credentials_volume()
        return [volume], [mount]

    def volume_secrets(self) -> dict[str, str]:
        return {CLOUD_CREDENTIALS_KEY: self._credentials_data()}

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

        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "IBM COS Bucket Exists", "")
        return True

    def storage_changed(self, cr: dict[str, Any]) -> bool:
        if not util.storage_changed(cr, STORAGE_KEY):
            return False
        set_cr_condition(
            cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, "IBMCOS Configuration Changed",
            "IBMCOS storage is in an unknown state",
        )
        return True

    def create_storage(self, cr: dict[str, Any]) -> None:
        try:
            client = self._client()
        except (StorageError, KeyError) as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise

        bucket_exists = False
        if self.config.get("bucket"):
            try:
                client.head_bucket(self.config["bucket"])
                bucket_exists = True
            except ClientError as e:
                code = error_code(e)
                if code not in BUCKET_MISSING_CODES:
                    set_cr_condition(
                        cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e)
                    )
                    raise
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, code, sanitize_exception(e))

        if bucket_exists:
            util.set_management_state_if_empty(cr, MANAGEMENT_STATE_UNMANAGED)
            util.persist_storage_config(cr, STORAGE_KEY, self.config)
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "IBM COS Bucket Exists",
                "User supplied IBM COS bucket exists and is accessible",
            )
            return

        if not self.config.get("bucket"):
            infra = util.get_infrastructure(self.listers)
            self.config["bucket"] = util.generate_storage_name(
                util.infrastructure_name(infra), self.config.get("location", "")
            )

        bucket = self.config["bucket"]
        try:
            client.create_bucket(bucket, f"{self.config.get('location', '')}-smart")
            client.wait_until_exists(bucket)
        except ClientError as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, error_code(e), sanitize_exception(e))
            raise
        except BotoCoreError as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise

        util.set_management_state_if_empty(cr, MANAGEMENT_STATE_MANAGED)
        util.persist_storage_config(cr, STORAGE_KEY, self.config)
        set_cr_condition(
            cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "Creation Successful", "IBM COS bucket was successfully created"
        )

    def remove_storage(self, cr: dict[str, Any]) -> tuple[bool, Exception | None]:
        if not self.config.get("bucket") or util.management_state(cr) != MANAGEMENT_STATE_MANAGED:
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
                return False, e

        try:
            client.delete_bucket(bucket)
        except ClientError as e:
            if error_code(e) == "NoSuchBucket":
                set_cr_condition(
                    cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "IBM COS Bucket Deleted", "IBM COS bucket did not exist."
                )
                return False, None
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, error_code(e), sanitize_exception(e))
            return False, e
        except BotoCoreError as e:
            return True, e

        try:
            client.wait_until_not_exists(bucket)
        except BotoCoreError as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            return False, e

        self.config["bucket"] = ""
        spec_config = util.get_storage_config(cr, STORAGE_KEY, "spec")
        if spec_config is not None:
            spec_config["bucket"] = ""
        util.persist_storage_config(cr, STORAGE_KEY, self.config, spec=False)
        set_cr_condition(
            cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "IBM COS Bucket Deleted", "IBM COS bucket has been removed."
        )
        return False, None

    def id(self) -> str:
        return self.config.get("bucket", "")
