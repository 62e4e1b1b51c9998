"""
Static pricing catalog for the self-hosted targets, plus reference prices for
the hyperscalers the infrastructure is migrating away from.

Prices are monthly list prices, last checked 2024-12.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from rehost.errors import RehostError


@dataclass(frozen=True)
class InstancePricing:
    type: str
    vcpus: int
    memory_gb: float
    storage_gb: int
    price_per_month: float
    price_per_hour: float
    currency: str = "EUR"


@dataclass(frozen=True)
class StoragePricing:
    price_per_gb_month: float
    min_size_gb: int
    max_size_gb: int
    currency: str = "EUR"

    def estimate(self, size_gb: int) -> float:
        size = min(max(size_gb, self.min_size_gb), self.max_size_gb)
        return size * self.price_per_gb_month


@dataclass(frozen=True)
class NetworkPricing:
    free_egress_gb: int
    egress_price_per_gb: float
    ingress_free: bool = True

    def estimate_egress(self, egress_gb: int) -> float:
        return max(0, egress_gb - self.free_egress_gb) * self.egress_price_per_gb


@dataclass(frozen=True)
class ProviderPricing:
    provider: str
    instances: List[InstancePricing] = field(default_factory=list)
    storage: StoragePricing = StoragePricing(0.0, 0, 0)
    network: NetworkPricing = NetworkPricing(0, 0.0)

    @property
    def currency(self) -> str:
        return self.storage.currency

    def find_instance(self, instance_type: str) -> Optional[InstancePricing]:
        for inst in self.instances:
            if inst.type == instance_type:
                return inst
        return None


def _eur(t, vcpus, mem, disk, month, hour):
    return InstancePricing(t, vcpus, mem, disk, month, hour, "EUR")


def _usd(t, vcpus, mem, month, hour):
    return InstancePricing(t, vcpus, mem, 0, month, hour, "USD")


CATALOG: Dict[str, ProviderPricing] = {
    "hetzner": ProviderPricing(
        provider="hetzner",
        instances=[
            _eur("cx11", 1, 2, 20, 3.49, 0.0049),
            _eur("cx21", 2, 4, 40, 5.18, 0.0072),
            _eur("cx31", 2, 8, 80, 9.18, 0.0128),
            _eur("cx41", 4, 16, 160, 17.18, 0.0239),
            _eur("cpx11", 2, 2, 40, 4.49, 0.0063),
            _eur("cpx21", 3, 4, 80, 8.39, 0.0117),
            _eur("cpx31", 4, 8, 160, 15.49, 0.0215),
            _eur("cpx41", 8, 16, 240, 29.49, 0.0410),
        ],
        storage=StoragePricing(0.044, 10, 10240),
        network=NetworkPricing(1024, 0.001),
    ),
    "scaleway": ProviderPricing(
        provider="scaleway",
        instances=[
            _eur("DEV1-S", 2, 2, 20, 7.99, 0.0111),
            _eur("DEV1-M", 3, 4, 40, 15.99, 0.0222),
            _eur("DEV1-L", 4, 8, 80, 31.99, 0.0444),
            _eur("GP1-XS", 4, 16, 150, 34.00, 0.0472),
            _eur("GP1-S", 8, 32, 300, 68.00, 0.0944),
        ],
        storage=StoragePricing(0.06, 1, 10000),
        network=NetworkPricing(75, 0.01),
    ),
    "ovh": ProviderPricing(
        provider="ovh",
        instances=[
            _eur("s1-2", 1, 2, 10, 5.49, 0.0076),
            _eur("s1-4", 1, 4, 20, 10.99, 0.0153),
            _eur("s1-8", 2, 8, 40, 21.99, 0.0306),
            _eur("b2-7", 2, 7, 50, 26.99, 0.0375),
            _eur("b2-15", 4, 15, 100, 53.99, 0.0750),
        ],
        storage=StoragePricing(0.04, 10, 4000),
        # egress is unmetered
        network=NetworkPricing(0, 0.0),
    ),
    "aws": ProviderPricing(
        provider="aws",
        instances=[
            _usd("t3.micro", 2, 1, 8.47, 0.0118),
            _usd("t3.small", 2, 2, 16.94, 0.0235),
            _usd("t3.medium", 2, 4, 33.87, 0.0471),
            _usd("t3.large", 2, 8, 67.74, 0.0941),
            _usd("m5.large", 2, 8, 89.28, 0.1240),
        ],
        storage=StoragePricing(0.10, 1, 16384, "USD"),
        network=NetworkPricing(0, 0.09),
    ),
    "gcp": ProviderPricing(
        provider="gcp",
        instances=[
            _usd("e2-micro", 2, 1, 6.11, 0.0085),
            _usd("e2-small", 2, 2, 12.23, 0.0170),
            _usd("e2-medium", 2, 4, 24.46, 0.0340),
            _usd("e2-standard-2", 2, 8, 48.92, 0.0680),
            _usd("n2-standard-2", 2, 8, 71.54, 0.0994),
        ],
        storage=StoragePricing(0.10, 10, 65536, "USD"),
        network=NetworkPricing(0, 0.12),
    ),
    "azure": ProviderPricing(
        provider="azure",
        instances=[
            _usd("B1s", 1, 1, 7.59, 0.0106),
            _usd("B1ms", 1, 2, 15.18, 0.0211),
            _usd("B2s", 2, 4, 30.37, 0.0422),
            _usd("B2ms", 2, 8, 60.74, 0.0844),
            _usd("D2s_v3", 2, 8, 87.60, 0.1217),
        ],
        storage=StoragePricing(0.12, 4, 32767, "USD"),
        network=NetworkPricing(0, 0.087),
    ),
}

TARGET_PROVIDERS = ["hetzner", "scaleway", "ovh"]
REFERENCE_PROVIDERS = ["aws", "gcp", "azure"]


def get_pricing(provider: str) -> ProviderPricing:
    try:
        return CATALOG[str(provider).lower()]
    except KeyError:
        raise RehostError(
            f"No pricing catalog for '{provider}'",
            f"Known providers: {', '.join(sorted(CATALOG))}",
        ) from None


def has_pricing(provider: str) -> bool:
    return str(provider).lower() in CATALOG
