from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from rehost.errors import (
    DuplicateResourceError,
    ResourceNotFoundError,
    ResourceValidationError,
    UnknownResourceTypeError,
)


class Provider(str, Enum):
    AWS     = "aws"
    GCP     = "gcp"
    AZURE   = "azure"
    UNKNOWN = "unknown"


class Category(str, Enum):
    COMPUTE        = "compute"
    CONTAINER      = "container"
    SERVERLESS     = "serverless"
    KUBERNETES     = "kubernetes"
    OBJECT_STORAGE = "object_storage"
    BLOCK_STORAGE  = "block_storage"
    FILE_STORAGE   = "file_storage"
    SQL_DATABASE   = "sql_database"
    NOSQL_DATABASE = "nosql_database"
    CACHE          = "cache"
    QUEUE          = "queue"
    PUBSUB         = "pubsub"
    STREAM         = "stream"
    LOAD_BALANCER  = "load_balancer"
    CDN            = "cdn"
    DNS            = "dns"
    API_GATEWAY    = "api_gateway"
    VPC            = "vpc"
    AUTH           = "auth"
    SECRETS        = "secrets"
    IAM            = "iam"
    FIREWALL       = "firewall"
    CERTIFICATE    = "certificate"
    MONITORING     = "monitoring"
    LOGGING        = "logging"
    TRACING        = "tracing"
    UNKNOWN        = "unknown"


# Known resource types and their normalized category.
_CATEGORY_MAP: Dict[str, Category] = {
    # AWS
    "aws_instance":                 Category.COMPUTE,
    "aws_lambda_function":          Category.SERVERLESS,
    "aws_ecs_service":              Category.CONTAINER,
    "aws_ecs_task_definition":      Category.CONTAINER,
    "aws_eks_cluster":              Category.KUBERNETES,
    "aws_s3_bucket":                Category.OBJECT_STORAGE,
    "aws_ebs_volume":               Category.BLOCK_STORAGE,
    "aws_efs_file_system":          Category.FILE_STORAGE,
    "aws_db_instance":              Category.SQL_DATABASE,
    "aws_rds_cluster":              Category.SQL_DATABASE,
    "aws_dynamodb_table":           Category.NOSQL_DATABASE,
    "aws_elasticache_cluster":      Category.CACHE,
    "aws_lb":                       Category.LOAD_BALANCER,
    "aws_api_gateway_rest_api":     Category.API_GATEWAY,
    "aws_route53_zone":             Category.DNS,
    "aws_cloudfront_distribution":  Category.CDN,
    "aws_vpc":                      Category.VPC,
    "aws_cognito_user_pool":        Category.AUTH,
    "aws_secretsmanager_secret":    Category.SECRETS,
    "aws_iam_role":                 Category.IAM,
    "aws_acm_certificate":          Category.CERTIFICATE,
    "aws_sqs_queue":                Category.QUEUE,
    "aws_sns_topic":                Category.PUBSUB,
    "aws_cloudwatch_event_rule":    Category.PUBSUB,
    "aws_kinesis_stream":           Category.STREAM,
    "aws_ses_domain_identity":      Category.UNKNOWN,
    "aws_kms_key":                  Category.SECRETS,
    "aws_cloudwatch_metric_alarm":  Category.MONITORING,
    "aws_cloudwatch_log_group":     Category.LOGGING,
    "aws_cloudwatch_dashboard":     Category.MONITORING,
    # GCP
    "google_compute_instance":          Category.COMPUTE,
    "google_cloud_run_service":         Category.CONTAINER,
    "google_cloudfunctions_function":   Category.SERVERLESS,
    "google_container_cluster":         Category.KUBERNETES,
    "google_app_engine_application":    Category.COMPUTE,
    "google_storage_bucket":            Category.OBJECT_STORAGE,
    "google_compute_disk":              Category.BLOCK_STORAGE,
    "google_filestore_instance":        Category.FILE_STORAGE,
    "google_sql_database_instance":     Category.SQL_DATABASE,
    "google_firestore_database":        Category.NOSQL_DATABASE,
    "google_bigtable_instance":         Category.NOSQL_DATABASE,
    "google_redis_instance":            Category.CACHE,
    "google_spanner_instance":          Category.SQL_DATABASE,
    "google_compute_backend_service":   Category.LOAD_BALANCER,
    "google_dns_managed_zone":          Category.DNS,
    "google_compute_backend_bucket":    Category.CDN,
    "google_compute_security_policy":   Category.FIREWALL,
    "google_compute_network":           Category.VPC,
    "google_identity_platform_config":  Category.AUTH,
    "google_secret_manager_secret":     Category.SECRETS,
    "google_project_iam_member":        Category.IAM,
    "google_pubsub_topic":              Category.PUBSUB,
    "google_pubsub_subscription":       Category.PUBSUB,
    "google_cloud_tasks_queue":         Category.QUEUE,
    "google_cloud_scheduler_job":       Category.PUBSUB,
    # Azure
    "azurerm_linux_virtual_machine":        Category.COMPUTE,
    "azurerm_windows_virtual_machine":      Category.COMPUTE,
    "azurerm_function_app":                 Category.SERVERLESS,
    "azurerm_container_group":              Category.CONTAINER,
    "azurerm_kubernetes_cluster":           Category.KUBERNETES,
    "azurerm_app_service":                  Category.COMPUTE,
    "azurerm_storage_container":            Category.OBJECT_STORAGE,
    "azurerm_storage_account":              Category.OBJECT_STORAGE,
    "azurerm_managed_disk":                 Category.BLOCK_STORAGE,
    "azurerm_storage_share":                Category.FILE_STORAGE,
    "azurerm_mssql_database":               Category.SQL_DATABASE,
    "azurerm_postgresql_flexible_server":   Category.SQL_DATABASE,
    "azurerm_mysql_flexible_server":        Category.SQL_DATABASE,
    "azurerm_cosmosdb_account":             Category.NOSQL_DATABASE,
    "azurerm_redis_cache":                  Category.CACHE,
    "azurerm_lb":                           Category.LOAD_BALANCER,
    "azurerm_application_gateway":          Category.LOAD_BALANCER,
    "azurerm_dns_zone":                     Category.DNS,
    "azurerm_cdn_profile":                  Category.CDN,
    "azurerm_frontdoor":                    Category.CDN,
    "azurerm_virtual_network":              Category.VPC,
    "azurerm_aadb2c_directory":             Category.AUTH,
    "azurerm_key_vault":                    Category.SECRETS,
    "azurerm_firewall":                     Category.FIREWALL,
    "azurerm_servicebus_namespace":         Category.QUEUE,
    "azurerm_servicebus_queue":             Category.QUEUE,
    "azurerm_eventhub":                     Category.STREAM,
    "azurerm_eventgrid_topic":              Category.PUBSUB,
    "azurerm_logic_app_workflow":           Category.SERVERLESS,
}

KNOWN_TYPES = frozenset(_CATEGORY_MAP)

# Alternate type names that share a mapper with a canonical type
TYPE_ALIASES: Dict[str, str] = {
    "aws_alb": "aws_lb",
    "aws_elb": "aws_lb",
    "aws_elasticache_replication_group": "aws_elasticache_cluster",
    "aws_apigatewayv2_api": "aws_api_gateway_rest_api",
    "aws_cloudwatch_event_bus": "aws_cloudwatch_event_rule",
}


def normalize_type(resource_type: str) -> str:
    return TYPE_ALIASES.get(resource_type, resource_type)


def category_of(resource_type: str) -> Category:
    return _CATEGORY_MAP.get(normalize_type(resource_type), Category.UNKNOWN)


def provider_of(resource_type: str) -> Provider:
    if resource_type.startswith("aws_"):
        return Provider.AWS
    if resource_type.startswith("google_"):
        return Provider.GCP
    if resource_type.startswith("azurerm_"):
        return Provider.AZURE
    return Provider.UNKNOWN


def types_for_category(category: Category, provider: Optional[Provider] = None) -> List[str]:
    return sorted(
        t for t, c in _CATEGORY_MAP.items()
        if c == category and (provider is None or provider_of(t) == provider)
    )


class ResourceType(str):
    """
    A resource type name checked against KNOWN_TYPES.

    Plain strings are still accepted on Resource.type, since new cloud types
    appear faster than this vocabulary grows; registration and dispatch go
    through ResourceType so that typos fail loudly.
    """

    def __new__(cls, value: str) -> "ResourceType":
        if value not in KNOWN_TYPES:
            raise UnknownResourceTypeError(value)
        return super().__new__(cls, value)

    @classmethod
    def parse(cls, value: str) -> "ResourceType":
        return cls(normalize_type(str(value).strip()))

    @staticmethod
    def is_known(value: str) -> bool:
        return normalize_type(value) in KNOWN_TYPES

    @property
    def category(self) -> Category:
        return _CATEGORY_MAP[str(self)]

    @property
    def provider(self) -> Provider:
        return provider_of(self)


@dataclass
class Resource:
    id: str                     # unique within its Infrastructure, e.g. "aws_instance.web[0]"
    name: str                   # display name
    type: str                   # e.g. "aws_instance"
    region: str = ""
    arn: str = ""               # identifier advertised by the cloud (ARN, resource ID)
    config: Dict[str, Any] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    provider: str = ""
    source_file: str = ""
    unresolved_references: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.provider:
            self.provider = provider_of(self.type).value

    @property
    def category(self) -> Category:
        return category_of(self.type)

    def add_dependency(self, dep_id: str) -> None:
        if dep_id and dep_id != self.id and dep_id not in self.dependencies:
            self.dependencies.append(dep_id)

    def get_config(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def validate(self) -> None:
        if not self.id:
            raise ResourceValidationError("missing id")
        if not self.name:
            raise ResourceValidationError("missing name", self.id)
        if not self.type:
            raise ResourceValidationError("missing type", self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "category": self.category.value,
            "provider": self.provider,
            "region": self.region,
            "arn": self.arn,
            "tags": dict(self.tags),
            "dependencies": list(self.dependencies),
            "unresolved_references": list(self.unresolved_references),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class Infrastructure:
    provider: str = ""
    region: str = ""
    resources: Dict[str, Resource] = field(default_factory=dict)
    metadata: Dict[str, str] = field(default_factory=dict)
    diagnostics: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.resources)

    def __iter__(self):
        return iter(self.resources.values())

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self.resources

    def add_resource(self, resource: Resource) -> None:
        if resource.id in self.resources:
            raise DuplicateResourceError(resource.id)
        self.resources[resource.id] = resource

    def get_resource(self, resource_id: str) -> Resource:
        try:
            return self.resources[resource_id]
        except KeyError:
            raise ResourceNotFoundError(resource_id) from None

    def resources_by_type(self, resource_type: str) -> List[Resource]:
        return [r for r in self.resources.values() if r.type == resource_type]

    def resources_by_category(self, category: Category) -> List[Resource]:
        return [r for r in self.resources.values() if r.category == category]

    def record(self, message: str) -> None:
        """Keep a recoverable problem for later inspection."""
        self.diagnostics.append(message)

    def unresolved_dependencies(self) -> Dict[str, List[str]]:
        """Resource ID -> dependency IDs and inferred references that match nothing."""
        out: Dict[str, List[str]] = {}
        for r in self.resources.values():
            missing = [d for d in r.dependencies if d not in self.resources]
            missing.extend(ref for ref in r.unresolved_references if ref not in missing)
            if missing:
                out[r.id] = missing
        return out

    def validate(self) -> None:
        for key, r in self.resources.items():
            r.validate()
            if key != r.id:
                raise ResourceValidationError(f"stored under key {key!r}", r.id)

    def merge(self, other: "Infrastructure") -> None:
        for r in other.resources.values():
            self.add_resource(r)
        for k, v in other.metadata.items():
            self.metadata.setdefault(k, v)
        self.diagnostics.extend(other.diagnostics)
        if not self.provider:
            self.provider = other.provider
        if not self.region:
            self.region = other.region

    def filter(self, types: Iterable[str] = (), categories: Iterable[str] = ()) -> None:
        """Drop resources outside the given types and categories, in place."""
        types = {normalize_type(t) for t in types}
        categories = {Category(c) for c in categories}
        for rid in list(self.resources):
            r = self.resources[rid]
            if types and normalize_type(r.type) not in types:
                del self.resources[rid]
            elif categories and r.category not in categories:
                del self.resources[rid]
