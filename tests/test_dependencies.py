"""
Dependency resolution and extract() orchestration tests.
"""
import os

import pytest

from rehost.errors import ExtractionError
from rehost.models.resource import Infrastructure, Resource
from rehost.parsers import ExtractOptions, extract, find_state_file
from rehost.parsers.dependencies import find_resource, resolve_dependencies

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")


def _graph():
    infra = Infrastructure()
    infra.add_resource(Resource(id="aws_vpc.main", name="main", type="aws_vpc", config={"id": "vpc-1"}))
    infra.add_resource(Resource(id="aws_iam_role.app", name="app", type="aws_iam_role",
                                arn="arn:aws:iam::1:role/app"))
    infra.add_resource(Resource(
        id="aws_instance.web", name="web", type="aws_instance",
        config={
            "vpc_id": "vpc-1",
            "role_arn": "arn:aws:iam::1:role/app",
            "security_groups": ["sg-1", "sg-2"],
            "subnet_id": "${aws_subnet.a.id}",
        },
    ))
    return infra


class TestResolveDependencies:
    def setup_method(self):
        self.infra = _graph()
        resolve_dependencies(self.infra)
        self.web = self.infra.get_resource("aws_instance.web")

    def test_native_id_match(self):
        assert "aws_vpc.main" in self.web.dependencies

    def test_arn_match(self):
        assert "aws_iam_role.app" in self.web.dependencies

    def test_unresolved_kept_apart(self):
        assert self.web.unresolved_references == ["sg-1", "sg-2"]
        assert "sg-1" not in self.web.dependencies

    def test_expressions_ignored(self):
        assert not any("aws_subnet" in ref for ref in self.web.unresolved_references)

    def test_idempotent(self):
        resolve_dependencies(self.infra)
        assert self.web.dependencies == ["aws_vpc.main", "aws_iam_role.app"]
        assert self.web.unresolved_references == ["sg-1", "sg-2"]

    def test_surfaced_on_infrastructure(self):
        assert self.infra.unresolved_dependencies() == {"aws_instance.web": ["sg-1", "sg-2"]}

    def test_find_resource_by_graph_id(self):
        assert find_resource(self.infra, "aws_vpc.main").id == "aws_vpc.main"
        assert find_resource(self.infra, "nothing") is None

    def test_self_reference_not_an_edge(self):
        infra = Infrastructure()
        infra.add_resource(Resource(id="sg", name="sg", type="aws_vpc",
                                    config={"id": "sg-9", "security_groups": ["sg-9"]}))
        resolve_dependencies(infra)
        assert infra.get_resource("sg").dependencies == []


class TestExtract:
    def test_state_file_found_in_directory(self):
        assert find_state_file(os.path.join(FIXTURES, "terraform")).endswith("terraform.tfstate")
        assert find_state_file(os.path.join(FIXTURES, "hcl")) is None

    def test_snapshot_dependencies_resolved(self):
        infra = extract(os.path.join(FIXTURES, "terraform"))
        web = infra.get_resource("aws_instance.web[0]")
        assert "aws_vpc.main" in web.dependencies
        assert web.unresolved_references == ["sg-0deadbeef"]

    def test_state_file_path(self):
        infra = extract(os.path.join(FIXTURES, "terraform", "terraform.tfstate"))
        assert len(infra) == 6

    def test_filter_categories(self):
        infra = extract(os.path.join(FIXTURES, "terraform"), ExtractOptions(filter_categories=["compute"]))
        assert sorted(infra.resources) == ["aws_instance.web[0]", "aws_instance.web[1]"]

    def test_filter_types(self):
        infra = extract(os.path.join(FIXTURES, "terraform"), ExtractOptions(filter_types=["aws_alb"]))
        assert list(infra.resources) == ["aws_lb.front"]

    def test_region_filter(self):
        infra = extract(os.path.join(FIXTURES, "arm"), ExtractOptions(regions=["eastus"]))
        assert len(infra) == 0

    def test_resolution_can_be_disabled(self):
        infra = extract(os.path.join(FIXTURES, "terraform"), ExtractOptions(resolve_dependencies=False))
        assert infra.get_resource("aws_instance.web[0]").unresolved_references == []

    def test_missing_path(self):
        with pytest.raises(ExtractionError):
            extract(os.path.join(FIXTURES, "does-not-exist"))

    def test_nothing_supported(self, tmp_path):
        (tmp_path / "README.md").write_text("# nothing here")
        with pytest.raises(ExtractionError):
            extract(str(tmp_path))

    def test_source_only_directory(self):
        infra = extract(os.path.join(FIXTURES, "hcl"))
        assert len(infra) == 3
        assert infra.diagnostics
