"""Constants for the Image Registry Operator."""

import os

# API Groups
API_GROUP = "imageregistry.operator.openshift.io"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"
CONFIG_API_GROUP = "config.openshift.io"
ROUTE_API_GROUP = "route.openshift.io"

# Resource plurals
PLURAL_CONFIGS = "configs"
PLURAL_IMAGE_PRUNERS = "imagepruners"
PLURAL_INFRASTRUCTURES = "infrastructures"
PLURAL_ROUTES = "routes"

# Resource Kinds
KIND_CONFIG = "Config"
KIND_IMAGE_PRUNER = "ImagePruner"

# Singleton names
IMAGE_REGISTRY_RESOURCE_NAME = "cluster"
IMAGE_REGISTRY_NAME = "image-registry"
IMAGE_PRUNER_NAME = "image-pruner"
INFRASTRUCTURE_NAME = "cluster"
WORKQUEUE_KEY = "changes"

NAMESPACE = os.getenv("WATCH_NAMESPACE", "openshift-image-registry")

# Secrets
IMAGE_REGISTRY_PRIVATE_CONFIGURATION = "image-registry-private-configuration"
IMAGE_REGISTRY_PRIVATE_CONFIGURATION_USER = "image-registry-private-configuration-user"
CLOUD_CREDENTIALS_NAME = "installer-cloud-credentials"

# PVC
PVC_IMAGE_REGISTRY_NAME = "image-registry-storage"
PVC_OWNER_ANNOTATION = "imageregistry.openshift.io"
PVC_DEFAULT_SIZE = "100Gi"

# Volumes
STORAGE_VOLUME_NAME = "registry-storage"
CLOUD_CREDENTIALS_MOUNT_PATH = "/var/run/secrets/cloud"
CLOUD_CREDENTIALS_KEY = "credentials"
FILESYSTEM_ROOT_DIRECTORY = "/registry"

# Finalizers
FINALIZER = f"{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "image-registry-operator"

# Labels
LABEL_CREATED_BY = "created-by"

# Management states
MANAGEMENT_STATE_MANAGED = "Managed"
MANAGEMENT_STATE_UNMANAGED = "Unmanaged"
MANAGEMENT_STATE_REMOVED = "Removed"

# Condition statuses
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

# Condition Types
COND_AVAILABLE = "Available"
COND_PROGRESSING = "Progressing"
COND_DEGRADED = "Degraded"
COND_REMOVED = "Removed"
COND_STORAGE_EXISTS = "StorageExists"
COND_STORAGE_TAGGED = "StorageTagged"
COND_STORAGE_LABELED = "StorageLabeled"
COND_STORAGE_ENCRYPTED = "StorageEncrypted"
COND_STORAGE_PUBLIC_ACCESS_BLOCKED = "StoragePublicAccessBlocked"
COND_STORAGE_INCOMPLETE_UPLOAD_CLEANUP_ENABLED = "StorageIncompleteUploadCleanupEnabled"

# Pruner condition types
COND_PRUNER_SCHEDULED = "Scheduled"
COND_PRUNER_FAILED = "Failed"

# Degraded grace period for a deployment with no available replicas
UNAVAILABLE_GRACE_PERIOD_SECONDS = 60

# Registry workload
REGISTRY_IMAGE = os.getenv("IMAGE", "quay.io/openshift/origin-docker-registry:latest")
REGISTRY_PORT = 5000
REGISTRY_LABELS = {"docker-registry": "default"}
ROLLOUT_ROLLING_UPDATE = "RollingUpdate"
ROLLOUT_RECREATE = "Recreate"
CHECKSUM_ANNOTATION = f"{API_GROUP}/checksum"

# Exposure
DEFAULT_ROUTE_NAME = "default-route"
ROUTE_TLS_TERMINATION = "edge"

# Image pruner
PRUNER_IMAGE = os.getenv("PRUNER_IMAGE", "quay.io/openshift/origin-cli:latest")
PRUNER_DEFAULT_SCHEDULE = "0 0 * * *"
PRUNER_DEFAULT_KEEP_TAG_REVISIONS = 3
PRUNER_DEFAULT_HISTORY_LIMIT = 3
