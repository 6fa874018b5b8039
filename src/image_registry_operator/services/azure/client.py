"""Azure storage account and blob container client."""

from __future__ import annotations

import logging
from typing import Any, NamedTuple

from azure.core.exceptions import HttpResponseError, ResourceExistsError, ResourceNotFoundError
from azure.identity import AzureAuthorityHosts, ClientSecretCredential
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.storage.models import (
    Kind,
    MinimumTlsVersion,
    Sku,
    SkuName,
    StorageAccountCheckNameAvailabilityParameters,
    StorageAccountCreateParameters,
)
from azure.storage.blob import BlobServiceClient

from ...errors import AzureConfigError, StorageDoesNotExistError

logger = logging.getLogger(__name__)


class CloudEnvironment(NamedTuple):
    """Endpoints of one Azure cloud."""

    name: str
    authority_host: str
    resource_manager_endpoint: str
    storage_endpoint_suffix: str


CLOUD_ENVIRONMENTS: dict[str, CloudEnvironment] = {
    "AzurePublicCloud": CloudEnvironment(
        "AzurePublicCloud",
        AzureAuthorityHosts.AZURE_PUBLIC_CLOUD,
        "https://management.azure.com",
        "core.windows.net",
    ),
    "AzureUSGovernmentCloud": CloudEnvironment(
        "AzureUSGovernmentCloud",
        AzureAuthorityHosts.AZURE_GOVERNMENT,
        "https://management.usgovcloudapi.net",
        "core.usgovcloudapi.net",
    ),
    "AzureChinaCloud": CloudEnvironment(
        "AzureChinaCloud",
        AzureAuthorityHosts.AZURE_CHINA,
        "https://management.chinacloudapi.cn",
        "core.chinacloudapi.cn",
    ),
    "AzureGermanCloud": CloudEnvironment(
        "AzureGermanCloud",
        "login.microsoftonline.de",
        "https://management.microsoftazure.de",
        "core.cloudapi.de",
    ),
}

DEFAULT_CLOUD_NAME = "AzurePublicCloud"


def get_environment(cloud_name: str | None) -> CloudEnvironment:
    """Return the endpoints of the named cloud, defaulting to the public cloud.

    Raises:
        AzureConfigError: If the cloud name is not known
    """
    name = cloud_name or DEFAULT_CLOUD_NAME
    try:
        return CLOUD_ENVIRONMENTS[name]
    except KeyError:
        raise AzureConfigError(f"unsupported Azure cloud environment: {name}") from None


def is_not_found(e: Exception) -> bool:
    return isinstance(e, ResourceNotFoundError) or (
        isinstance(e, HttpResponseError) and e.status_code == 404
    )


class AzureStorageClient:
    """Manages storage accounts of one subscription."""

    def __init__(
        self,
        subscription_id: str,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        environment: CloudEnvironment,
    ) -> None:
        self.subscription_id = subscription_id
        self.environment = environment

        self.credential = ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
            authority=environment.authority_host,
        )
        self.client = StorageManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            base_url=environment.resource_manager_endpoint,
            credential_scopes=[f"{environment.resource_manager_endpoint}/.default"],
        )

    def is_account_name_available(self, account_name: str) -> tuple[bool, str]:
        """Check whether ``account_name`` can be used for a new account.

        Returns:
            A tuple of availability and the reason reported by Azure
        """
        result = self.client.storage_accounts.check_name_availability(
            StorageAccountCheckNameAvailabilityParameters(name=account_name)
        )
        return bool(result.name_available), result.message or ""

    def create_account(
        self,
        resource_group: str,
        account_name: str,
        location: str,
        tags: dict[str, str],
    ) -> None:
        """Create a private StorageV2 account and wait for it to be provisioned."""
        logger.info(f"Creating storage account {account_name} in {resource_group}")
        params = StorageAccountCreateParameters(
            sku=Sku(name=SkuName.STANDARD_LRS),
            kind=Kind.STORAGE_V2,
            location=location,
            tags=tags,
            enable_https_traffic_only=True,
            allow_blob_public_access=False,
            minimum_tls_version=MinimumTlsVersion.TLS1_2,
        )
        poller = self.client.storage_accounts.begin_create(resource_group, account_name, params)
        poller.result()

    def delete_account(self, resource_group: str, account_name: str) -> None:
        logger.info(f"Deleting storage account {account_name} in {resource_group}")
        self.client.storage_accounts.delete(resource_group, account_name)

    def get_account_primary_key(self, resource_group: str, account_name: str) -> str:
        """Return the first key of the storage account.

        Raises:
            StorageDoesNotExistError: If the account does not exist
        """
        try:
            keys = self.client.storage_accounts.list_keys(resource_group, account_name)
        except HttpResponseError as e:
            if is_not_found(e):
                raise StorageDoesNotExistError(
                    f"storage account {account_name} does not exist in {resource_group}"
                ) from e
            raise
        if not keys.keys:
            raise StorageDoesNotExistError(f"storage account {account_name} has no keys")
        return keys.keys[0].value

    def fetch_credential(self, resource_group: str, account: str) -> str:
        return self.get_account_primary_key(resource_group, account)


class BlobContainerClient:
    """Manages blob containers with a storage account key."""

    def __init__(self, environment: CloudEnvironment) -> None:
        self.environment = environment

    def _blob_service(self, account_name: str, account_key: str) -> BlobServiceClient:
        account_url = f"https://{account_name}.blob.{self.environment.storage_endpoint_suffix}"
        return BlobServiceClient(account_url=account_url, credential=account_key)

    def container_exists(self, account_name: str, account_key: str, container: str) -> bool:
        return self._blob_service(account_name, account_key).get_container_client(container).exists()

    def create_container(self, account_name: str, account_key: str, container: str) -> None:
        logger.info(f"Creating container {container} in storage account {account_name}")
        try:
            self._blob_service(account_name, account_key).create_container(container)
        except ResourceExistsError:
            logger.info(f"Container {container} already exists")

    def delete_container(self, account_name: str, account_key: str, container: str) -> bool:
        """Delete a container.

        Returns:
            False if the container was already gone
        """
        try:
            self._blob_service(account_name, account_key).delete_container(container)
        except ResourceNotFoundError:
            return False
        return True


def create_storage_client(credentials: dict[str, Any], environment: CloudEnvironment) -> AzureStorageClient:
    """Build a client from the cloud credentials read from the cluster."""
    return AzureStorageClient(
        subscription_id=credentials["subscription_id"],
        tenant_id=credentials["tenant_id"],
        client_id=credentials["client_id"],
        client_secret=credentials["client_secret"],
        environment=environment,
    )
