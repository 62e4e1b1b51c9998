from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class HealthCheck:
    test: List[str]
    interval: str = "30s"
    timeout: str = "10s"
    retries: int = 3
    start_period: str = ""

    def to_dict(self) -> dict:
        d = {"test": list(self.test), "interval": self.interval,
             "timeout": self.timeout, "retries": self.retries}
        if self.start_period:
            d["start_period"] = self.start_period
        return d


@dataclass
class ResourceLimits:
    cpus: str = ""       # e.g. "0.5"
    memory: str = ""     # e.g. "512M"

    def to_dict(self) -> dict:
        return {k: v for k, v in (("cpus", self.cpus), ("memory", self.memory)) if v}


@dataclass
class DeployConfig:
    replicas: int = 1
    limits: Optional[ResourceLimits] = None
    reservations: Optional[ResourceLimits] = None
    restart_condition: str = ""
    placement_constraints: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: Dict[str, Any] = {}
        if self.replicas != 1:
            d["replicas"] = self.replicas
        resources = {}
        if self.limits and self.limits.to_dict():
            resources["limits"] = self.limits.to_dict()
        if self.reservations and self.reservations.to_dict():
            resources["reservations"] = self.reservations.to_dict()
        if resources:
            d["resources"] = resources
        if self.restart_condition:
            d["restart_policy"] = {"condition": self.restart_condition}
        if self.placement_constraints:
            d["placement"] = {"constraints": list(self.placement_constraints)}
        return d


@dataclass
class DockerService:
    name: str
    image: str = ""
    build_context: str = ""
    ports: List[str] = field(default_factory=list)
    volumes: List[str] = field(default_factory=list)      # "source:/target[:ro]"
    environment: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    networks: List[str] = field(default_factory=list)
    healthcheck: Optional[HealthCheck] = None
    deploy: Optional[DeployConfig] = None
    command: List[str] = field(default_factory=list)
    restart: str = "unless-stopped"

    def to_compose(self) -> dict:
        """Render as a compose service body (without the name key)."""
        d: Dict[str, Any] = {}
        if self.image:
            d["image"] = self.image
        if self.build_context:
            d["build"] = {"context": self.build_context}
        if self.command:
            d["command"] = list(self.command)
        if self.restart:
            d["restart"] = self.restart
        if self.ports:
            d["ports"] = list(self.ports)
        if self.volumes:
            d["volumes"] = list(self.volumes)
        if self.environment:
            d["environment"] = dict(sorted(self.environment.items()))
        if self.labels:
            d["labels"] = dict(sorted(self.labels.items()))
        if self.depends_on:
            d["depends_on"] = list(self.depends_on)
        if self.networks:
            d["networks"] = list(self.networks)
        if self.healthcheck:
            d["healthcheck"] = self.healthcheck.to_dict()
        if self.deploy and self.deploy.to_dict():
            d["deploy"] = self.deploy.to_dict()
        return d


@dataclass
class Volume:
    name: str
    driver: str = "local"
    driver_opts: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    def to_compose(self) -> dict:
        d: Dict[str, Any] = {"driver": self.driver}
        if self.driver_opts:
            d["driver_opts"] = dict(self.driver_opts)
        if self.labels:
            d["labels"] = dict(self.labels)
        return d


class PolicyKind(str, Enum):
    IAM      = "iam"
    RESOURCE = "resource"
    NETWORK  = "network"


@dataclass
class AccessPolicy:
    """An access-control document lifted from the source resource."""
    name: str
    kind: PolicyKind
    document: Dict[str, Any] = field(default_factory=dict)
    source_resource_id: str = ""
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "document": self.document,
            "source_resource_id": self.source_resource_id,
            "notes": list(self.notes),
        }


@dataclass
class MappingResult:
    docker_service: Optional[DockerService] = None
    additional_services: List[DockerService] = field(default_factory=list)
    configs: Dict[str, str] = field(default_factory=dict)
    scripts: Dict[str, str] = field(default_factory=dict)
    volumes: List[Volume] = field(default_factory=list)
    networks: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    manual_steps: List[str] = field(default_factory=list)
    policies: List[AccessPolicy] = field(default_factory=list)
    source_resource_type: str = ""
    source_resource_name: str = ""
    source_category: str = ""

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def add_manual_step(self, step: str) -> None:
        self.manual_steps.append(step)

    def add_config(self, path: str, content: str) -> None:
        self.configs[path] = content

    def add_script(self, path: str, content: str) -> None:
        self.scripts[path] = content

    def add_volume(self, volume: Volume) -> None:
        if all(v.name != volume.name for v in self.volumes):
            self.volumes.append(volume)

    def add_network(self, network: str) -> None:
        if network not in self.networks:
            self.networks.append(network)

    def add_service(self, service: DockerService) -> None:
        self.additional_services.append(service)

    def add_policy(self, policy: AccessPolicy) -> None:
        self.policies.append(policy)

    def services(self) -> List[DockerService]:
        """Primary service first, then auxiliaries."""
        out = [self.docker_service] if self.docker_service else []
        return out + list(self.additional_services)

    def to_dict(self) -> dict:
        return {
            "source_resource_type": self.source_resource_type,
            "source_resource_name": self.source_resource_name,
            "source_category": self.source_category,
            "services": {s.name: s.to_compose() for s in self.services()},
            "volumes": {v.name: v.to_compose() for v in self.volumes},
            "networks": list(self.networks),
            "configs": sorted(self.configs),
            "scripts": sorted(self.scripts),
            "warnings": list(self.warnings),
            "manual_steps": list(self.manual_steps),
            "policies": [p.to_dict() for p in self.policies],
        }
