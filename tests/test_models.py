"""
Resource graph model tests.
"""
import pytest

from rehost.errors import (
    DuplicateResourceError,
    ResourceNotFoundError,
    ResourceValidationError,
    UnknownResourceTypeError,
)
from rehost.models.resource import (
    Category,
    Infrastructure,
    Provider,
    Resource,
    ResourceType,
    category_of,
    normalize_type,
    types_for_category,
)
from rehost.models.target import HALevel, Platform, TargetOutput


def _res(rid, rtype="aws_instance", **kw):
    return Resource(id=rid, name=kw.pop("name", rid), type=rtype, **kw)


class TestResourceType:
    def test_known_type_accepted(self):
        assert ResourceType("aws_instance") == "aws_instance"

    def test_unknown_type_rejected(self):
        with pytest.raises(UnknownResourceTypeError):
            ResourceType("aws_made_up_thing")

    def test_parse_normalizes_aliases(self):
        assert ResourceType.parse(" aws_alb ") == "aws_lb"

    def test_is_known(self):
        assert ResourceType.is_known("aws_elb")
        assert not ResourceType.is_known("digitalocean_droplet")

    def test_category_and_provider(self):
        rt = ResourceType("google_sql_database_instance")
        assert rt.category == Category.SQL_DATABASE
        assert rt.provider == Provider.GCP

    def test_aliases_share_category(self):
        assert normalize_type("aws_elasticache_replication_group") == "aws_elasticache_cluster"
        assert category_of("aws_elasticache_replication_group") == Category.CACHE

    def test_unknown_category(self):
        assert category_of("aws_something_new") == Category.UNKNOWN

    def test_types_for_category_filters_provider(self):
        types = types_for_category(Category.CACHE, Provider.AZURE)
        assert types == ["azurerm_redis_cache"]


class TestResource:
    def test_provider_derived_from_type(self):
        assert _res("x", "azurerm_redis_cache").provider == "azure"

    def test_add_dependency_dedupes_and_ignores_self(self):
        r = _res("a")
        r.add_dependency("b")
        r.add_dependency("b")
        r.add_dependency("a")
        r.add_dependency("")
        assert r.dependencies == ["b"]

    def test_validate_missing_name(self):
        r = Resource(id="a", name="", type="aws_instance")
        with pytest.raises(ResourceValidationError):
            r.validate()

    def test_unknown_type_string_kept(self):
        r = _res("a", "aws_brand_new_service")
        assert r.category == Category.UNKNOWN
        r.validate()

    def test_to_dict(self):
        r = _res("aws_instance.web", region="eu-west-1", tags={"Name": "web"})
        d = r.to_dict()
        assert d["category"] == "compute"
        assert d["region"] == "eu-west-1"
        assert d["created_at"] is None


class TestInfrastructure:
    def setup_method(self):
        self.infra = Infrastructure()
        self.infra.add_resource(_res("a"))
        self.infra.add_resource(_res("b", "aws_s3_bucket", dependencies=["a", "ghost"]))

    def test_duplicate_id_rejected(self):
        with pytest.raises(DuplicateResourceError):
            self.infra.add_resource(_res("a"))

    def test_get_resource(self):
        assert self.infra.get_resource("b").type == "aws_s3_bucket"
        with pytest.raises(ResourceNotFoundError):
            self.infra.get_resource("zzz")

    def test_len_iter_contains(self):
        assert len(self.infra) == 2
        assert {r.id for r in self.infra} == {"a", "b"}
        assert "a" in self.infra

    def test_by_type_and_category(self):
        assert [r.id for r in self.infra.resources_by_type("aws_instance")] == ["a"]
        assert [r.id for r in self.infra.resources_by_category(Category.OBJECT_STORAGE)] == ["b"]

    def test_unresolved_dependencies(self):
        self.infra.get_resource("a").unresolved_references.append("sg-123")
        assert self.infra.unresolved_dependencies() == {"a": ["sg-123"], "b": ["ghost"]}

    def test_validate_key_mismatch(self):
        self.infra.resources["other"] = _res("c")
        with pytest.raises(ResourceValidationError):
            self.infra.validate()

    def test_merge_clash_is_error(self):
        other = Infrastructure()
        other.add_resource(_res("a"))
        with pytest.raises(DuplicateResourceError):
            self.infra.merge(other)

    def test_merge_keeps_existing_metadata(self):
        self.infra.metadata["k"] = "mine"
        other = Infrastructure(provider="aws")
        other.add_resource(_res("c"))
        other.metadata.update({"k": "theirs", "extra": "1"})
        self.infra.merge(other)
        assert len(self.infra) == 3
        assert self.infra.metadata == {"k": "mine", "extra": "1"}
        assert self.infra.provider == "aws"

    def test_filter_by_category(self):
        self.infra.filter(categories=["object_storage"])
        assert list(self.infra.resources) == ["b"]

    def test_filter_by_type_alias(self):
        self.infra.add_resource(_res("lb", "aws_alb"))
        self.infra.filter(types=["aws_lb"])
        assert list(self.infra.resources) == ["lb"]


class TestTargetModels:
    def test_platform_aliases(self):
        assert Platform.parse("compose") == Platform.DOCKER_COMPOSE
        assert Platform.parse("K8S") == Platform.KUBERNETES

    def test_ha_level_aliases(self):
        assert HALevel.parse("ha") == HALevel.CLUSTER
        assert HALevel.parse("2") == HALevel.MULTI_SERVER
        with pytest.raises(ValueError):
            HALevel.parse("planet-scale")

    def test_ha_level_ordering(self):
        assert HALevel.MULTI_SERVER.requires_multi_server
        assert not HALevel.BASIC.requires_multi_server
        assert HALevel.GEO.requires_cluster

    def test_output_groups_land_in_files(self):
        out = TargetOutput(platform="docker-compose")
        out.add_docker_file("docker-compose.yml", "services: {}")
        out.add_script("scripts/a.sh", "#!/bin/sh")
        out.add_manual_step("step")
        out.add_manual_step("step")
        assert out.file_count == 2
        assert out.scripts == {"scripts/a.sh": "#!/bin/sh"}
        assert out.manual_steps == ["step"]
