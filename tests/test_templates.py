"""
Template extractor tests: CloudFormation (with nested stacks) and ARM.
"""
import json
import os

import pytest

from rehost.errors import ExtractionError

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")


# --------------------------------------------------------- CloudFormation
class TestCloudFormationParser:
    def setup_method(self):
        from rehost.parsers import cloudformation
        self.parser = cloudformation
        self.infra = cloudformation.parse_directory(os.path.join(FIXTURES, "cfn"))

    def test_resources_including_nested(self):
        assert sorted(self.infra.resources) == [
            "AppBucket",
            "Data/Cache",
            "Data/Database",
            "JobQueue",
            "WebServer",
        ]

    def test_types_mapped(self):
        assert self.infra.get_resource("Data/Database").type == "aws_db_instance"
        assert self.infra.get_resource("Data/Cache").type == "aws_elasticache_cluster"

    def test_snake_case_properties(self):
        db = self.infra.get_resource("Data/Database")
        assert db.config["db_instance_class"] == "db.t3.micro"
        assert db.config["allocated_storage"] == 20

    def test_parameters_passed_to_nested_stack(self):
        assert self.infra.get_resource("Data/Database").config["db_name"] == "prod"

    def test_ref_to_parameter_without_default(self):
        assert self.infra.get_resource("WebServer").config["user_data"] == "${DbPassword}"

    def test_join_and_sub(self):
        assert self.infra.get_resource("JobQueue").config["queue_name"] == "shop-prod-jobs"
        assert self.infra.get_resource("AppBucket").config["bucket_name"] == "shop-${Env}-assets"

    def test_depends_on(self):
        assert self.infra.get_resource("JobQueue").dependencies == ["AppBucket"]
        assert self.infra.get_resource("Data/Cache").dependencies == ["Data/Database"]

    def test_tags_and_name(self):
        bucket = self.infra.get_resource("AppBucket")
        assert bucket.name == "assets"
        assert bucket.tags == {"Name": "assets", "Env": "prod"}

    def test_remote_nested_stack_recorded(self):
        assert any("Shared" in d and "remote" in d for d in self.infra.diagnostics)

    def test_metadata(self):
        assert self.infra.metadata["description"] == "Shop application stack"
        assert self.infra.metadata["Data.description"] == "Shop data tier"
        assert self.infra.metadata["param.Env"] == "prod"
        assert self.infra.metadata["output.BucketName"] == "!Ref AppBucket"

    def test_cfn_type_kept(self):
        assert self.infra.get_resource("WebServer").config["cfn_type"] == "AWS::EC2::Instance"

    def test_snake_case(self):
        assert self.parser.to_snake_case("DBInstanceClass") == "db_instance_class"
        assert self.parser.to_snake_case("VpcId") == "vpc_id"

    def test_json_template(self, tmp_path):
        path = tmp_path / "stack.json"
        path.write_text(json.dumps({
            "AWSTemplateFormatVersion": "2010-09-09",
            "Resources": {
                "Vpc": {"Type": "AWS::EC2::VPC", "Properties": {"CidrBlock": "10.0.0.0/16"}},
                "Lb": {
                    "Type": "AWS::ElasticLoadBalancingV2::LoadBalancer",
                    "Properties": {"Subnets": [{"Ref": "Vpc"}]},
                },
            },
        }))
        infra = self.parser.parse_file(str(path))
        assert infra.get_resource("Lb").dependencies == ["Vpc"]

    def test_malformed_template(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ExtractionError):
            self.parser.parse_file(str(path))

    def test_malformed_template_ignored(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        infra = self.parser.parse_file(str(path), ignore_errors=True)
        assert len(infra) == 0
        assert len(infra.diagnostics) == 1

    def test_nesting_depth_limited(self, tmp_path):
        # a template that includes itself
        (tmp_path / "loop.yaml").write_text(
            "Resources:\n"
            "  Self:\n"
            "    Type: AWS::CloudFormation::Stack\n"
            "    Properties:\n"
            "      TemplateURL: ./loop.yaml\n"
            "  Q:\n"
            "    Type: AWS::SQS::Queue\n"
        )
        infra = self.parser.parse_file(str(tmp_path / "loop.yaml"))
        assert "Self/Self/Self/Self/Self/Q" in infra.resources
        assert any("exceeds depth" in d for d in infra.diagnostics)


# --------------------------------------------------------- ARM
class TestARMParser:
    def setup_method(self):
        from rehost.parsers import arm
        self.parser = arm
        self.infra = arm.parse_directory(os.path.join(FIXTURES, "arm"))

    def test_resources(self):
        assert sorted(self.infra.resources) == [
            "shop-cache",
            "shop-db",
            "shop-vnet",
            "shopstore",
            "shopstore/default/assets",
        ]

    def test_parameters_and_variables_resolved(self):
        cache = self.infra.get_resource("shop-cache")
        assert cache.region == "westeurope"
        assert self.infra.get_resource("shop-vnet").type == "azurerm_virtual_network"

    def test_resource_id_dependency(self):
        assert self.infra.get_resource("shop-cache").dependencies == ["shop-vnet"]

    def test_child_resource_flattened(self):
        container = self.infra.get_resource("shopstore/default/assets")
        assert container.type == "azurerm_storage_container"
        assert container.name == "assets"
        assert container.dependencies == ["shopstore"]

    def test_child_inherits_parent_location(self):
        assert self.infra.get_resource("shopstore/default/assets").region == "westeurope"

    def test_inline_nested_deployment(self):
        assert self.infra.get_resource("shop-db").type == "azurerm_postgresql_flexible_server"

    def test_linked_deployment_recorded(self):
        assert any("linked deployment monitoring" in d for d in self.infra.diagnostics)

    def test_sku_and_kind(self):
        store = self.infra.get_resource("shopstore")
        assert store.config["sku"] == {"name": "Standard_LRS"}
        assert store.config["kind"] == "StorageV2"

    def test_region_and_provider(self):
        assert self.infra.provider == "azure"
        assert self.infra.region == "westeurope"

    def test_windows_vm_detected(self, tmp_path):
        path = tmp_path / "vm.json"
        path.write_text(json.dumps({
            "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#",
            "contentVersion": "1.0.0.0",
            "resources": [{
                "type": "Microsoft.Compute/virtualMachines",
                "name": "win",
                "properties": {"osProfile": {"windowsConfiguration": {}}},
            }],
        }))
        infra = self.parser.parse_file(str(path))
        assert infra.get_resource("win").type == "azurerm_windows_virtual_machine"

    def test_bad_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{")
        with pytest.raises(ExtractionError):
            self.parser.parse_file(str(path))
