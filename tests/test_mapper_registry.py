"""
Mapper registry tests: registration, lookup, concurrent use, batch mapping.
"""
import threading

import pytest

from rehost.errors import (
    DuplicateRegistrationError,
    MapperNotFoundError,
    MappingError,
    ResourceValidationError,
    UnknownResourceTypeError,
)
from rehost.mappers import MAPPERS, MapperRegistry, default_registry
from rehost.mappers.base import BaseMapper
from rehost.mappers.compute import EC2Mapper, ECSTaskDefinitionMapper
from rehost.mappers.storage import S3Mapper
from rehost.models.resource import Resource


class _AltEC2Mapper(BaseMapper):
    TYPE = "aws_instance"

    def build(self, resource, result):
        result.docker_service.image = "alt:latest"


class _TypoMapper(BaseMapper):
    TYPE = "aws_instnace"

    def build(self, resource, result):
        pass


def _ec2(rid="aws_instance.web", name="web"):
    return Resource(id=rid, name=name, type="aws_instance", config={"instance_type": "t3.small"})


class TestRegistration:
    def setup_method(self):
        self.registry = MapperRegistry()

    def test_register_and_get(self):
        mapper = EC2Mapper()
        self.registry.register(mapper)
        assert self.registry.get("aws_instance") is mapper
        assert self.registry.lookup("aws_instance") is mapper
        assert self.registry.has_mapper("aws_instance")
        assert len(self.registry) == 1

    def test_duplicate_rejected_and_first_kept(self):
        first = EC2Mapper()
        self.registry.register(first)
        with pytest.raises(DuplicateRegistrationError):
            self.registry.register(_AltEC2Mapper())
        assert self.registry.get("aws_instance") is first

    def test_unknown_type_cannot_register(self):
        with pytest.raises(UnknownResourceTypeError):
            _TypoMapper()

    def test_missing_mapper(self):
        with pytest.raises(MapperNotFoundError):
            self.registry.get("aws_s3_bucket")
        assert not self.registry.has_mapper("aws_s3_bucket")

    def test_alias_dispatches_to_canonical(self):
        registry = default_registry()
        assert registry.has_mapper("aws_alb")
        assert registry.get("aws_alb") is registry.get("aws_lb")

    def test_supported_types_sorted(self):
        registry = default_registry()
        types = registry.supported_types()
        assert types == sorted(types)
        assert len(types) == len(MAPPERS)
        assert "aws_db_instance" in types

    def test_instances_are_independent(self):
        a, b = MapperRegistry(), MapperRegistry()
        a.register(EC2Mapper())
        assert len(b) == 0


class TestConcurrency:
    def test_concurrent_lookups_and_registration(self):
        registry = MapperRegistry([EC2Mapper()])
        errors = []
        barrier = threading.Barrier(9)

        def reader():
            barrier.wait()
            try:
                for _ in range(500):
                    registry.get("aws_instance")
                    registry.supported_types()
            except Exception as exc:
                errors.append(exc)

        def writer():
            barrier.wait()
            try:
                registry.register(S3Mapper())
            except DuplicateRegistrationError:
                pass

        threads = [threading.Thread(target=reader) for _ in range(8)] + [threading.Thread(target=writer)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        assert registry.has_mapper("aws_s3_bucket")

    def test_racing_duplicate_registration_has_one_winner(self):
        registry = MapperRegistry()
        outcomes = []
        lock = threading.Lock()

        def register():
            try:
                registry.register(EC2Mapper())
                result = "ok"
            except DuplicateRegistrationError:
                result = "dup"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=register) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert outcomes.count("ok") == 1
        assert outcomes.count("dup") == 9


class TestMapAll:
    def setup_method(self):
        self.registry = default_registry()

    def test_none_resource(self):
        with pytest.raises(ResourceValidationError):
            self.registry.map(None)

    def test_none_in_batch_is_structural_error(self):
        report = self.registry.map_all([_ec2("a", "a"), None, _ec2("b", "b")])
        assert not report.ok
        assert isinstance(report.error, ResourceValidationError)
        assert report.failed_resource == "<none>"
        assert [r.docker_service.name for r in report.results] == ["a"]

    def test_map_batch_records_none(self):
        results = self.registry.map_batch([None, _ec2()])
        assert results[0].docker_service is None
        assert results[0].warnings[0].startswith("Failed to map <none>")
        assert results[1].docker_service.name == "web"

    def test_unmapped_types_skipped(self):
        resources = [
            _ec2(),
            Resource(id="aws_cloudwatch_dashboard.ops", name="ops", type="aws_cloudwatch_dashboard"),
        ]
        report = self.registry.map_all(resources)
        assert report.ok
        assert len(report.results) == 1
        assert report.skipped == ["aws_cloudwatch_dashboard.ops"]
        assert any("no mapper" in w for w in report.warnings)

    def test_warnings_prefixed_with_resource_id(self):
        web = _ec2()
        web.config["key_name"] = "deploy"
        report = self.registry.map_all([web])
        assert any(w.startswith("aws_instance.web: SSH key pair") for w in report.warnings)

    def test_structural_error_stops_run(self):
        bad = Resource(id="aws_ecs_task_definition.app", name="app", type="aws_ecs_task_definition",
                       config={"container_definitions": "[]"})
        report = self.registry.map_all([_ec2("a", "a"), bad, _ec2("b", "b")])
        assert not report.ok
        assert report.failed_resource == "aws_ecs_task_definition.app"
        assert isinstance(report.error, MappingError)
        assert len(report.results) == 1
        with pytest.raises(MappingError):
            report.raise_for_error()

    def test_map_batch_keeps_going(self):
        bad = Resource(id="aws_ecs_task_definition.app", name="app", type="aws_ecs_task_definition",
                       config={"container_definitions": "[]"})
        results = self.registry.map_batch([bad, _ec2()])
        assert len(results) == 2
        assert results[0].docker_service is None
        assert "Failed to map aws_ecs_task_definition.app" in results[0].warnings[0]
        assert results[1].docker_service.name == "web"

    def test_mapper_validation_error_propagates(self):
        mapper = ECSTaskDefinitionMapper()
        with pytest.raises(ResourceValidationError):
            mapper.map(_ec2())
