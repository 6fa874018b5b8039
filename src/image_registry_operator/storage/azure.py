"""Azure Blob Storage driver."""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from azure.core.exceptions import AzureError, HttpResponseError

from ..clients import Listers
from ..constants import (
    CLOUD_CREDENTIALS_NAME,
    COND_STORAGE_EXISTS,
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER,
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_UNMANAGED,
)
from ..envvar import EnvVar, EnvVars
from ..errors import AzureConfigError, StorageDoesNotExistError
from ..services.azure.client import (
    AzureStorageClient,
    BlobContainerClient,
    CloudEnvironment,
    create_storage_client,
    get_environment,
)
from ..utils.cache import CacheKey, CredentialCache
from ..utils.conditions import set_cr_condition
from ..utils.errors import sanitize_exception
from . import util

logger = logging.getLogger(__name__)

STORAGE_KEY = "azure"

REASON_NOT_CONFIGURED = "StorageNotConfigured"
REASON_CONFIG_ERROR = "ConfigError"
REASON_USER_MANAGED = "UserManaged"
REASON_AZURE_ERROR = "AzureError"
REASON_CONTAINER_NOT_FOUND = "ContainerNotFound"
REASON_CONTAINER_EXISTS = "ContainerExists"
REASON_CONTAINER_DELETED = "ContainerDeleted"
REASON_ACCOUNT_DELETED = "AccountDeleted"

ACCOUNT_NAME_MAX_LENGTH = 24
ACCOUNT_NAME_SUFFIX_LENGTH = 5
# Same alphabet as the Kubernetes name generator, without vowels and ambiguous characters.
ACCOUNT_NAME_SUFFIX_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"

_INVALID_ACCOUNT_CHARS = re.compile(r"[^0-9A-Za-z]")

# Errors worth recording on the StorageExists condition instead of crashing the sync.
_AZURE_ERRORS = (AzureError, AzureConfigError, StorageDoesNotExistError, KeyError)


@dataclass
class AzureCredentials:
    """Credentials used to reach Azure.

    Installer-provisioned clusters carry a service principal; on user
    provisioned infrastructure only an account key is available.
    """

    subscription_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    tenant_id: str = ""
    resource_group: str = ""
    region: str = ""
    account_key: str = ""

    def as_client_kwargs(self) -> dict[str, str]:
        return {
            "subscription_id": self.subscription_id,
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }


def get_config(listers: Listers) -> AzureCredentials:
    """Read the Azure credentials from the user or cluster secrets.

    Raises:
        AzureConfigError: If no usable credentials are present
    """
    user_data = util.get_secret_data(listers, IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER)
    if user_data is not None:
        try:
            key = util.get_value_from_secret(
                user_data, IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER, "REGISTRY_STORAGE_AZURE_ACCOUNTKEY"
            )
        except KeyError as e:
            raise AzureConfigError(str(e)) from e
        if key == "":
            raise AzureConfigError(
                f"the secret {listers.namespace}/{IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER} has an "
                "empty value for REGISTRY_STORAGE_AZURE_ACCOUNTKEY; the secret should be removed so "
                "that the operator can use cluster-wide secrets or it should contain a valid storage "
                "account access key"
            )
        return AzureCredentials(account_key=key)

    data = util.get_secret_data(listers, CLOUD_CREDENTIALS_NAME)
    if data is None:
        raise AzureConfigError(
            f"unable to get cluster minted credentials: secret {CLOUD_CREDENTIALS_NAME} not found"
        )

    creds = AzureCredentials(
        subscription_id=data.get("azure_subscription_id", ""),
        client_id=data.get("azure_client_id", ""),
        client_secret=data.get("azure_client_secret", ""),
        tenant_id=data.get("azure_tenant_id", ""),
        resource_group=data.get("azure_resourcegroup", ""),
        region=data.get("azure_region", ""),
    )
    if not creds.resource_group:
        infra = util.get_infrastructure(listers)
        azure_status = util.platform_status(infra).get("azure") or {}
        creds.resource_group = azure_status.get("resourceGroupName", "")
    return creds


def generate_account_name(infrastructure_name: str) -> str:
    """Return a storage account name: 3 to 24 lowercase letters and digits."""
    prefix = "imageregistry" + _INVALID_ACCOUNT_CHARS.sub("", infrastructure_name)
    prefix = prefix[: ACCOUNT_NAME_MAX_LENGTH - ACCOUNT_NAME_SUFFIX_LENGTH]
    suffix = util.random_letters(ACCOUNT_NAME_SUFFIX_LENGTH, ACCOUNT_NAME_SUFFIX_ALPHABET)
    return (prefix + suffix).lower()


class AzureDriver:
    """Provisions a storage account and blob container for the registry."""

    def __init__(
        self,
        config: dict[str, Any],
        listers: Listers,
        key_cache: CredentialCache,
        account_client_factory: Callable[[dict[str, str], CloudEnvironment], AzureStorageClient] = create_storage_client,
        blob_client_factory: Callable[[CloudEnvironment], BlobContainerClient] = BlobContainerClient,
    ) -> None:
        self.config = copy.deepcopy(config)
        self.listers = listers
        self.key_cache = key_cache
        self.account_client_factory = account_client_factory
        self.blob_client_factory = blob_client_factory

    def _environment(self) -> CloudEnvironment:
        return get_environment(self.config.get("cloudName"))

    def _accounts(self, creds: AzureCredentials, environment: CloudEnvironment) -> AzureStorageClient:
        return self.account_client_factory(creds.as_client_kwargs(), environment)

    def _get_key(self, creds: AzureCredentials, environment: CloudEnvironment) -> str:
        if creds.account_key:
            return creds.account_key
        accounts = self._accounts(creds, environment)
        return self.key_cache.get(accounts, CacheKey(creds.resource_group, self.config.get("accountName", "")))

    def config_env(self) -> EnvVars:
        creds = get_config(self.listers)
        environment = self._environment()
        key = self._get_key(creds, environment)

        envs = EnvVars([
            EnvVar("REGISTRY_STORAGE_AZURE_ACCOUNTKEY", key, secret=True),
            EnvVar("REGISTRY_STORAGE", "azure"),
            EnvVar("REGISTRY_STORAGE_AZURE_CONTAINER", self.config.get("container", "")),
            EnvVar("REGISTRY_STORAGE_AZURE_ACCOUNTNAME", self.config.get("accountName", "")),
        ])
        if self.config.get("cloudName"):
            envs.append(EnvVar("REGISTRY_STORAGE_AZURE_REALM", environment.storage_endpoint_suffix))
        return envs

    def volumes(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        return [], []

    def volume_secrets(self) -> dict[str, str]:
        return {}

    def secrets(self) -> dict[str, str]:
        return self.config_env().secret_data()

    def storage_exists(self, cr: dict[str, Any]) -> bool:
        account_name = self.config.get("accountName", "")
        container = self.config.get("container", "")
        if not account_name or not container:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_NOT_CONFIGURED, "Storage is not configured")
            return False

        try:
            creds = get_config(self.listers)
            environment = self._environment()
        except AzureConfigError as e:
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_CONFIG_ERROR,
                f"Unable to get configuration: {sanitize_exception(e)}",
            )
            raise

        try:
            key = self._get_key(creds, environment)
        except _AZURE_ERRORS as e:
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_AZURE_ERROR,
                f"Unable to get storage account key: {sanitize_exception(e)}",
            )
            raise

        try:
            exists = self.blob_client_factory(environment).container_exists(account_name, key, container)
        except AzureError as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_AZURE_ERROR, sanitize_exception(e))
            raise

        if not exists:
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_CONTAINER_NOT_FOUND,
                f"Could not find storage container {container}",
            )
            return False

        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, REASON_CONTAINER_EXISTS, "Storage container exists")
        return True

    def storage_changed(self, cr: dict[str, Any]) -> bool:
        return util.storage_changed(cr, STORAGE_KEY)

    def _process_upi(self, cr: dict[str, Any]) -> None:
        if not self.config.get("accountName"):
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_NOT_CONFIGURED,
                "Storage account key is provided, but account name is not specified",
            )
            return

        if not self.config.get("container"):
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_NOT_CONFIGURED,
                "Storage account is provided, but container is not specified",
            )
            return

        util.set_management_state_if_empty(cr, MANAGEMENT_STATE_UNMANAGED)
        util.persist_storage_config(cr, STORAGE_KEY, self.config, spec=False)
        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, REASON_USER_MANAGED, "Storage is managed by the user")

    def _assure_storage_account(
        self,
        creds: AzureCredentials,
        infra: dict[str, Any],
        tags: dict[str, str],
    ) -> tuple[str, bool]:
        accounts = self._accounts(creds, self._environment())

        account_name = self.config.get("accountName", "")
        generated = not account_name
        if generated:
            account_name = generate_account_name(util.infrastructure_name(infra))

        available, _ = accounts.is_account_name_available(account_name)
        if generated and not available:
            raise AzureConfigError("create storage account failed, name not available")

        # A free name is created whether it was generated or given by the user.
        if not available:
            return account_name, False

        accounts.create_account(creds.resource_group, account_name, creds.region, tags)
        return account_name, True

    def _assure_container(
        self,
        creds: AzureCredentials,
        infra: dict[str, Any],
    ) -> tuple[str, bool]:
        environment = self._environment()
        account_name = self.config["accountName"]
        key = self._get_key(creds, environment)
        blobs = self.blob_client_factory(environment)

        container = self.config.get("container", "")
        if not container:
            container = util.generate_storage_name(util.infrastructure_name(infra))
            blobs.create_container(account_name, key, container)
            return container, True

        if blobs.container_exists(account_name, key, container):
            return container, False

        blobs.create_container(account_name, key, container)
        return container, True

    def create_storage(self, cr: dict[str, Any]) -> None:
        try:
            creds = get_config(self.listers)
        except AzureConfigError as e:
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_CONFIG_ERROR,
                f"Unable to get configuration: {sanitize_exception(e)}",
            )
            raise

        # A user provided account key means we only verify their configuration.
        if creds.account_key:
            logger.info("Storage account key provided by the user, skipping provisioning")
            self._process_upi(cr)
            return

        infra = util.get_infrastructure(self.listers)
        azure_status = util.platform_status(infra).get("azure") or {}

        if not self.config.get("cloudName") and not self.config.get("accountName"):
            if azure_status.get("cloudName"):
                self.config["cloudName"] = azure_status["cloudName"]

        # User tags are applied only when the account is created.
        tags = {f"kubernetes.io_cluster.{util.infrastructure_name(infra)}": "owned"}
        for tag in azure_status.get("resourceTags") or []:
            tags[tag["key"]] = tag["value"]

        try:
            account_name, account_created = self._assure_storage_account(creds, infra, tags)
        except _AZURE_ERRORS as e:
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_AZURE_ERROR,
                f"Unable to process storage account: {sanitize_exception(e)}",
            )
            raise
        # Persist the account before the container step so a retry reuses it.
        self.config["accountName"] = account_name
        if account_created:
            util.set_management_state_if_empty(cr, MANAGEMENT_STATE_MANAGED)
        util.persist_storage_config(cr, STORAGE_KEY, self.config)

        try:
            container, container_created = self._assure_container(creds, infra)
        except _AZURE_ERRORS as e:
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_AZURE_ERROR,
                f"Unable to process storage container: {sanitize_exception(e)}",
            )
            raise
        self.config["container"] = container

        if container_created:
            util.set_management_state_if_empty(cr, MANAGEMENT_STATE_MANAGED)
        else:
            util.set_management_state_if_empty(cr, MANAGEMENT_STATE_UNMANAGED)

        util.persist_storage_config(cr, STORAGE_KEY, self.config)
        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, REASON_CONTAINER_EXISTS, "Storage container exists")

    def _forget_account(self, cr: dict[str, Any]) -> None:
        self.config["accountName"] = ""
        for source in ("spec", "status"):
            config = util.get_storage_config(cr, STORAGE_KEY, source)
            if config is not None:
                config["accountName"] = ""

    def _forget_container(self, cr: dict[str, Any]) -> None:
        self.config["container"] = ""
        for source in ("spec", "status"):
            config = util.get_storage_config(cr, STORAGE_KEY, source)
            if config is not None:
                config["container"] = ""

    def _remove_container(
        self,
        cr: dict[str, Any],
        creds: AzureCredentials,
        environment: CloudEnvironment,
    ) -> tuple[bool, Exception | None]:
        """Delete the container.

        Returns:
            Whether the storage account is already gone, and any error
        """
        account_name = self.config["accountName"]
        try:
            key = self._get_key(creds, environment)
        except StorageDoesNotExistError as e:
            self._forget_account(cr)
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_CONTAINER_NOT_FOUND,
                f"Container has been already deleted: {sanitize_exception(e)}",
            )
            return True, None
        except _AZURE_ERRORS as e:
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_AZURE_ERROR,
                f"Unable to get account primary keys: {sanitize_exception(e)}",
            )
            return False, e

        try:
            self.blob_client_factory(environment).delete_container(account_name, key, self.config["container"])
        except HttpResponseError as e:
            if getattr(e, "error_code", None) == "AccountNotFound":
                self._forget_account(cr)
                set_cr_condition(
                    cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_CONTAINER_NOT_FOUND,
                    f"Container has been already deleted: {sanitize_exception(e)}",
                )
                return True, None
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_AZURE_ERROR,
                f"Unable to delete storage container: {sanitize_exception(e)}",
            )
            return False, e

        self._forget_container(cr)
        set_cr_condition(
            cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_CONTAINER_DELETED, "Storage container has been deleted"
        )
        return False, None

    def remove_storage(self, cr: dict[str, Any]) -> tuple[bool, Exception | None]:
        if util.management_state(cr) != MANAGEMENT_STATE_MANAGED:
            return False, None
        if not self.config.get("accountName"):
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_NOT_CONFIGURED, "Storage is not configured")
            return False, None

        try:
            creds = get_config(self.listers)
            environment = self._environment()
        except AzureConfigError as e:
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, REASON_CONFIG_ERROR,
                f"Unable to get configuration: {sanitize_exception(e)}",
            )
            return False, e

        if self.config.get("container"):
            account_gone, err = self._remove_container(cr, creds, environment)
            if err is not None or account_gone:
                return False, err

        resource_group = creds.resource_group
        account_name = self.config["accountName"]
        try:
            self._accounts(creds, environment).delete_account(resource_group, account_name)
        except AzureError as e:
            set_cr_condition(
                cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_AZURE_ERROR,
                f"Unable to delete storage account: {sanitize_exception(e)}",
            )
            return False, e

        self.key_cache.invalidate(CacheKey(resource_group, account_name))
        self._forget_account(cr)
        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, REASON_ACCOUNT_DELETED, "Storage account has been deleted")
        return False, None

    def id(self) -> str:
        return self.config.get("container", "")
