"""
Sizing and pricing tests.
"""
import pytest

from rehost.errors import RehostError
from rehost.models.mapping import DeployConfig, DockerService, MappingResult, ResourceLimits, Volume
from rehost.models.target import HALevel
from rehost.pricing import CATALOG, REFERENCE_PROVIDERS, TARGET_PROVIDERS, get_pricing, has_pricing
from rehost.sizing import (
    ResourceRequirements,
    calculate_total_cost,
    extract_requirements,
    parse_memory,
    parse_storage_size,
    select_instance,
    server_count,
    service_resources,
    volume_size,
)


def _svc(cpus="", memory=""):
    return DockerService(name="svc", deploy=DeployConfig(limits=ResourceLimits(cpus=cpus, memory=memory)))


class TestParsing:
    def test_memory(self):
        assert parse_memory("512M") == 0.5
        assert parse_memory("2G") == 2.0
        assert parse_memory("1T") == 1024.0
        assert parse_memory("1048576K") == 1.0
        assert parse_memory("") == 0.0
        assert parse_memory("lots") == 0.0

    def test_memory_default_when_empty(self):
        assert service_resources(_svc(cpus="1", memory="")) == (1.0, 0.5)

    def test_no_deploy_uses_defaults(self):
        assert service_resources(DockerService(name="x")) == (0.25, 0.5)

    def test_reservations_used_when_no_limits(self):
        svc = DockerService(name="x", deploy=DeployConfig(reservations=ResourceLimits(cpus="2", memory="2G")))
        assert service_resources(svc) == (2.0, 2.0)

    def test_storage(self):
        assert parse_storage_size("100G") == 100
        assert parse_storage_size("50GB") == 50
        assert parse_storage_size("1T") == 1024
        assert parse_storage_size("20") == 20
        assert parse_storage_size("") == 10
        assert parse_storage_size("abc") == 10

    def test_volume_size(self):
        assert volume_size(Volume(name="v", driver_opts={"size": "100G"})) == 100
        assert volume_size(Volume(name="v")) == 10


class TestRequirements:
    def test_headroom(self):
        result = MappingResult(docker_service=_svc("1", "2G"))
        result.add_service(_svc("1", "2G"))
        result.add_volume(Volume(name="data", driver_opts={"size": "100G"}))
        req = extract_requirements([result])
        assert req.vcpus == 3
        assert req.memory_gb == pytest.approx(4.8)
        assert req.storage_gb == 120

    def test_minimums(self):
        req = extract_requirements([])
        assert (req.vcpus, req.memory_gb, req.storage_gb) == (1, 1.0, 10)

    def test_none_results_ignored(self):
        req = extract_requirements([None, MappingResult(docker_service=_svc("0.5", "512M"))])
        assert req.vcpus == 1
        assert req.memory_gb == 1.0

    def test_description(self):
        assert "20% headroom" in ResourceRequirements(2, 4.0, 40).description


class TestInstanceSelection:
    def test_cheapest_fit(self):
        assert select_instance("hetzner", ResourceRequirements(2, 4.0, 10)).type == "cx21"
        assert select_instance("hetzner", ResourceRequirements(4, 16.0, 10)).type == "cx41"

    def test_no_fit_falls_back_to_largest(self):
        inst = select_instance("ovh", ResourceRequirements(4, 16.0, 10))
        assert inst.type == "b2-15"

    def test_price_never_drops_as_requirements_grow(self):
        prices = [
            select_instance("hetzner", ResourceRequirements(cpu, mem, 10)).price_per_month
            for cpu, mem in [(1, 1.0), (1, 2.0), (2, 4.0), (2, 8.0), (4, 8.0), (4, 16.0), (8, 16.0)]
        ]
        assert prices == sorted(prices)

    def test_unknown_provider(self):
        with pytest.raises(RehostError):
            select_instance("digitalocean", ResourceRequirements(1, 1.0, 10))


class TestCost:
    def test_server_count(self):
        assert server_count(HALevel.NONE) == 1
        assert server_count(HALevel.BASIC) == 1
        assert server_count("multi-server") == 2
        assert server_count(HALevel.CLUSTER) == 3
        assert server_count("anything-else") == 1

    def test_total(self):
        breakdown = calculate_total_cost("hetzner", ResourceRequirements(2, 4.0, 40), HALevel.MULTI_SERVER, 40, 100)
        assert breakdown.instance_type == "cx21"
        assert breakdown.server_count == 2
        assert breakdown.compute == pytest.approx(10.36)
        assert breakdown.storage == pytest.approx(1.76)
        assert breakdown.network == 0
        assert breakdown.total == 12.12
        assert breakdown.to_dict()["currency"] == "EUR"

    def test_storage_clamped(self):
        storage = get_pricing("hetzner").storage
        assert storage.estimate(5) == pytest.approx(10 * 0.044)
        assert storage.estimate(100000) == pytest.approx(10240 * 0.044)

    def test_egress(self):
        network = get_pricing("hetzner").network
        assert network.estimate_egress(500) == 0
        assert network.estimate_egress(2048) == pytest.approx(1.024)


class TestCatalog:
    def test_providers(self):
        for name in TARGET_PROVIDERS + REFERENCE_PROVIDERS:
            assert has_pricing(name)
            assert CATALOG[name].instances
        assert not has_pricing("digitalocean")

    def test_lookup_case_insensitive(self):
        assert get_pricing("Hetzner").provider == "hetzner"

    def test_reference_catalogs_in_usd(self):
        for name in REFERENCE_PROVIDERS:
            assert get_pricing(name).currency == "USD"

    def test_unknown_provider(self):
        with pytest.raises(RehostError) as exc_info:
            get_pricing("digitalocean")
        assert "hetzner" in exc_info.value.suggestion

    def test_find_instance(self):
        assert get_pricing("ovh").find_instance("s1-8").memory_gb == 8
        assert get_pricing("ovh").find_instance("nope") is None
