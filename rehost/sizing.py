"""
Instance sizing and monthly cost estimation.

Requirements are summed over every service in a set of mapping results, given
20% headroom, then priced against a provider catalog. Nothing here raises on
odd input: unparseable sizes fall back to defaults and an undersized catalog
falls back to its largest instance.
"""
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

from rehost.models.mapping import DockerService, MappingResult, Volume
from rehost.models.target import HALevel
from rehost.pricing import InstancePricing, get_pricing

HEADROOM = 0.20
DEFAULT_CPUS = 0.25
DEFAULT_MEMORY_GB = 0.5
DEFAULT_VOLUME_GB = 10
MIN_VCPUS = 1
MIN_MEMORY_GB = 1.0
MIN_STORAGE_GB = 10

_UNIT_GB = {"K": 1.0 / (1024 * 1024), "M": 1.0 / 1024, "G": 1.0, "T": 1024.0}

_SERVER_COUNT = {"none": 1, "basic": 1, "multi-server": 2, "cluster": 3}


@dataclass
class ResourceRequirements:
    vcpus: int
    memory_gb: float
    storage_gb: int

    @property
    def description(self) -> str:
        return (f"{self.vcpus} vCPU(s), {self.memory_gb:.1f} GB RAM, "
                f"{self.storage_gb} GB storage (incl. {int(HEADROOM * 100)}% headroom)")


@dataclass
class CostBreakdown:
    compute: float = 0.0
    storage: float = 0.0
    network: float = 0.0
    total: float = 0.0
    currency: str = "EUR"
    instance_type: str = ""
    server_count: int = 1

    def calculate_total(self) -> float:
        self.total = round(self.compute + self.storage + self.network, 2)
        return self.total

    def to_dict(self) -> dict:
        return {
            "compute": round(self.compute, 2),
            "storage": round(self.storage, 2),
            "network": round(self.network, 2),
            "total": self.total,
            "currency": self.currency,
            "instance_type": self.instance_type,
            "server_count": self.server_count,
        }


def parse_cpus(value: str) -> float:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return 0.0


def parse_memory(value: str) -> float:
    """'512M' -> 0.5, '2G' -> 2.0; no suffix means bytes; bad input -> 0."""
    s = str(value or "").strip()
    if not s:
        return 0.0
    unit = s[-1].upper()
    if unit.isdigit():
        num, factor = s, 1.0 / (1024 ** 3)
    else:
        num, factor = s[:-1], _UNIT_GB.get(unit, 1.0 / (1024 ** 3))
    try:
        return float(num) * factor
    except ValueError:
        return 0.0


def parse_storage_size(value: str) -> int:
    """'100G', '50GB', '1T' -> whole GB; no suffix means GB; bad input -> 10."""
    s = str(value or "").strip().upper()
    if s.endswith("B"):
        s = s[:-1]
    if not s:
        return DEFAULT_VOLUME_GB
    unit = s[-1]
    if unit.isdigit():
        num, unit = s, "G"
    else:
        num = s[:-1]
    try:
        return int(float(num) * _UNIT_GB.get(unit, 1.0))
    except ValueError:
        return DEFAULT_VOLUME_GB


def service_resources(svc: DockerService) -> Tuple[float, float]:
    """(cpus, memory GB) from limits, then reservations, then the defaults."""
    deploy = svc.deploy
    if deploy is None or (deploy.limits is None and deploy.reservations is None):
        return DEFAULT_CPUS, DEFAULT_MEMORY_GB
    cpus = mem = 0.0
    if deploy.limits is not None:
        cpus = parse_cpus(deploy.limits.cpus)
        mem = parse_memory(deploy.limits.memory)
    if deploy.reservations is not None:
        cpus = cpus or parse_cpus(deploy.reservations.cpus)
        mem = mem or parse_memory(deploy.reservations.memory)
    return cpus or DEFAULT_CPUS, mem or DEFAULT_MEMORY_GB


def volume_size(vol: Volume) -> int:
    for key in ("size", "capacity"):
        if key in vol.driver_opts:
            return parse_storage_size(vol.driver_opts[key])
    return DEFAULT_VOLUME_GB


def extract_requirements(results: Iterable[Optional[MappingResult]]) -> ResourceRequirements:
    cpus = memory = 0.0
    storage = 0
    for result in results:
        if result is None:
            continue
        for svc in result.services():
            c, m = service_resources(svc)
            cpus += c
            memory += m
        for vol in result.volumes:
            storage += volume_size(vol)

    factor = 1 + HEADROOM
    return ResourceRequirements(
        vcpus=max(MIN_VCPUS, math.ceil(round(cpus * factor, 6))),
        memory_gb=max(MIN_MEMORY_GB, memory * factor),
        storage_gb=max(MIN_STORAGE_GB, int(storage * factor)),
    )


def select_instance(provider: str, req: ResourceRequirements) -> Optional[InstancePricing]:
    """Cheapest instance meeting both CPU and memory; else the biggest one."""
    instances = get_pricing(provider).instances
    if not instances:
        return None
    suitable = [i for i in instances if i.vcpus >= req.vcpus and i.memory_gb >= req.memory_gb]
    if not suitable:
        return max(instances, key=lambda i: i.vcpus * i.memory_gb)
    return min(suitable, key=lambda i: i.price_per_month)


def server_count(ha_level: Union[HALevel, str]) -> int:
    value = ha_level.value if isinstance(ha_level, HALevel) else str(ha_level).lower()
    return _SERVER_COUNT.get(value, 1)


def calculate_total_cost(provider: str, req: ResourceRequirements, ha_level: Union[HALevel, str],
                         storage_gb: int, egress_gb: int) -> Optional[CostBreakdown]:
    pricing = get_pricing(provider)
    instance = select_instance(provider, req)
    if instance is None:
        return None
    servers = server_count(ha_level)
    breakdown = CostBreakdown(
        compute=instance.price_per_month * servers,
        storage=pricing.storage.estimate(storage_gb),
        network=pricing.network.estimate_egress(egress_gb),
        currency=pricing.currency,
        instance_type=instance.type,
        server_count=servers,
    )
    breakdown.calculate_total()
    return breakdown
