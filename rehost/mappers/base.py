"""
Mapper contract.

A mapper lowers one cloud resource into deployment primitives. It raises only
on input it cannot interpret (ResourceValidationError / MappingError); a cloud
feature without a self-hosted equivalent becomes a warning or manual step on
the MappingResult instead.
"""
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

from rehost.errors import ResourceValidationError
from rehost.models.mapping import DockerService, MappingResult
from rehost.models.resource import Resource, ResourceType, normalize_type

_INVALID_NAME_RE = re.compile(r"[^a-z0-9]+")

MAX_SERVICE_NAME = 63


def sanitize_name(name: str) -> str:
    """Service/volume name safe for compose, DNS labels and k8s objects."""
    cleaned = _INVALID_NAME_RE.sub("-", str(name).lower()).strip("-")
    return cleaned[:MAX_SERVICE_NAME].rstrip("-") or "service"


def config_str(resource: Resource, key: str, default: str = "") -> str:
    val = resource.config.get(key)
    if val is None:
        return default
    if isinstance(val, bool):
        return "true" if val else "false"
    return str(val)


def config_int(resource: Resource, key: str, default: int = 0) -> int:
    val = resource.config.get(key)
    try:
        return int(val)
    except (TypeError, ValueError):
        return default


def config_bool(resource: Resource, key: str, default: bool = False) -> bool:
    val = resource.config.get(key)
    if isinstance(val, bool):
        return val
    if isinstance(val, str):
        return val.strip().lower() in ("true", "1", "yes", "enabled")
    if isinstance(val, (int, float)):
        return bool(val)
    return default


class Mapper(ABC):
    @abstractmethod
    def resource_type(self) -> ResourceType:
        ...

    @abstractmethod
    def validate(self, resource: Optional[Resource]) -> None:
        ...

    @abstractmethod
    def map(self, resource: Optional[Resource]) -> MappingResult:
        ...


class BaseMapper(Mapper):
    """
    Shared validation and result scaffolding. Subclasses set TYPE and
    implement build(); map() validates first, so build() can rely on the
    resource being well formed.
    """

    TYPE = ""

    def __init__(self) -> None:
        self._type = ResourceType(self.TYPE)

    def resource_type(self) -> ResourceType:
        return self._type

    def validate(self, resource: Optional[Resource]) -> None:
        if resource is None:
            raise ResourceValidationError("resource is None")
        if not isinstance(resource, Resource):
            raise ResourceValidationError(f"expected Resource, got {type(resource).__name__}")
        if normalize_type(resource.type) != self._type:
            raise ResourceValidationError(
                f"type mismatch: mapper handles {self._type}, got {resource.type}", resource.id
            )
        if not resource.id:
            raise ResourceValidationError("missing id")
        if not resource.name:
            raise ResourceValidationError("missing name", resource.id)

    def new_result(self, resource: Resource, service_name: Optional[str] = None) -> MappingResult:
        result = MappingResult(
            docker_service=DockerService(name=sanitize_name(service_name or resource.name)),
            source_resource_type=resource.type,
            source_resource_name=resource.name,
            source_category=resource.category.value,
        )
        result.docker_service.labels["rehost.source"] = resource.type
        result.docker_service.labels["rehost.resource"] = resource.name
        return result

    def map(self, resource: Optional[Resource]) -> MappingResult:
        self.validate(resource)
        result = self.new_result(resource)
        self.build(resource, result)
        return result

    @abstractmethod
    def build(self, resource: Resource, result: MappingResult) -> None:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._type})"


def tag_environment(resource: Resource) -> dict:
    return {"TAG_" + re.sub(r"[^A-Z0-9]", "_", k.upper()): v for k, v in resource.tags.items()}


def first(*values: Any) -> Any:
    for v in values:
        if v not in (None, "", [], {}):
            return v
    return None


def config_block(resource: Resource, key: str) -> dict:
    """Nested blocks arrive as a dict (source files) or a one-element list (state)."""
    val = resource.config.get(key)
    if isinstance(val, list):
        val = val[0] if val else {}
    return val if isinstance(val, dict) else {}


def env_ref(service_name: str, suffix: str) -> str:
    """A compose interpolation the operator fills in from .env."""
    var = re.sub(r"[^A-Z0-9]", "_", service_name.upper()) + "_" + suffix
    return "${" + var + "}"
