from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


class Platform(str, Enum):
    DOCKER_COMPOSE = "docker-compose"
    DOCKER_SWARM   = "docker-swarm"
    KUBERNETES     = "kubernetes"
    K3S            = "k3s"
    HETZNER        = "hetzner"
    SCALEWAY       = "scaleway"
    OVH            = "ovh"

    @classmethod
    def parse(cls, value: str) -> "Platform":
        v = value.strip().lower()
        v = {"compose": "docker-compose", "swarm": "docker-swarm", "k8s": "kubernetes"}.get(v, v)
        return cls(v)


class HALevel(str, Enum):
    NONE         = "none"
    BASIC        = "basic"
    MULTI_SERVER = "multi-server"
    CLUSTER      = "cluster"
    GEO          = "geo"

    @property
    def level(self) -> int:
        return list(HALevel).index(self)

    @property
    def requires_multi_server(self) -> bool:
        return self.level >= 2

    @property
    def requires_cluster(self) -> bool:
        return self.level >= 3

    @classmethod
    def parse(cls, value: str) -> "HALevel":
        v = str(value).strip().lower()
        try:
            return cls(v)
        except ValueError:
            pass
        if v in _HA_ALIASES:
            return _HA_ALIASES[v]
        raise ValueError(f"unknown HA level: {value!r}")


_HA_ALIASES = {
    "0": HALevel.NONE, "single": HALevel.NONE,
    "1": HALevel.BASIC, "backup": HALevel.BASIC, "backups": HALevel.BASIC,
    "2": HALevel.MULTI_SERVER, "multi": HALevel.MULTI_SERVER, "failover": HALevel.MULTI_SERVER,
    "3": HALevel.CLUSTER, "ha": HALevel.CLUSTER, "active-active": HALevel.CLUSTER,
    "4": HALevel.GEO, "multi-dc": HALevel.GEO, "multidc": HALevel.GEO, "geographic": HALevel.GEO,
}


def ha_levels_up_to(top: HALevel) -> List[HALevel]:
    return [h for h in HALevel if h.level <= top.level]


@dataclass
class TargetConfig:
    """Everything a generator is allowed to know about the deployment target."""
    platform: Platform
    ha_level: HALevel = HALevel.NONE
    output_dir: str = ""
    project_name: str = "rehost"
    base_url: str = ""
    ssl_enabled: bool = True
    include_monitoring: bool = True
    include_backups: bool = True
    dry_run: bool = False
    variables: Dict[str, str] = field(default_factory=dict)


@dataclass
class CostEstimate:
    currency: str = "EUR"
    compute: float = 0.0
    storage: float = 0.0
    database: float = 0.0
    network: float = 0.0
    other: float = 0.0
    total: float = 0.0
    details: Dict[str, float] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    def calculate(self) -> float:
        self.total = round(self.compute + self.storage + self.database + self.network + self.other, 2)
        return self.total

    def add_detail(self, name: str, cost: float) -> None:
        self.details[name] = cost

    def add_note(self, note: str) -> None:
        self.notes.append(note)

    def to_dict(self) -> dict:
        return {
            "currency": self.currency,
            "compute": self.compute,
            "storage": self.storage,
            "database": self.database,
            "network": self.network,
            "other": self.other,
            "total": self.total,
            "details": dict(self.details),
            "notes": list(self.notes),
        }


@dataclass
class TargetOutput:
    """Generated artifacts for one platform. Every artifact also lands in ``files``."""
    platform: str
    files: Dict[str, str] = field(default_factory=dict)
    main_file: str = ""
    docker_files: Dict[str, str] = field(default_factory=dict)
    terraform_files: Dict[str, str] = field(default_factory=dict)
    k8s_manifests: Dict[str, str] = field(default_factory=dict)
    scripts: Dict[str, str] = field(default_factory=dict)
    configs: Dict[str, str] = field(default_factory=dict)
    docs: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    manual_steps: List[str] = field(default_factory=list)
    estimated_cost: Optional[CostEstimate] = None
    summary: str = ""
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def add_file(self, name: str, content: str) -> None:
        self.files[name] = content

    def add_docker_file(self, name: str, content: str) -> None:
        self.docker_files[name] = content
        self.files[name] = content

    def add_terraform_file(self, name: str, content: str) -> None:
        self.terraform_files[name] = content
        self.files[name] = content

    def add_k8s_manifest(self, name: str, content: str) -> None:
        self.k8s_manifests[name] = content
        self.files[name] = content

    def add_script(self, name: str, content: str) -> None:
        self.scripts[name] = content
        self.files[name] = content

    def add_config(self, name: str, content: str) -> None:
        self.configs[name] = content
        self.files[name] = content

    def add_doc(self, name: str, content: str) -> None:
        self.docs[name] = content
        self.files[name] = content

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def add_manual_step(self, step: str) -> None:
        if step not in self.manual_steps:
            self.manual_steps.append(step)

    @property
    def file_count(self) -> int:
        return len(self.files)
