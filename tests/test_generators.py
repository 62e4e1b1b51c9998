"""
Generator tests: compose, swarm, kubernetes, k3s, hetzner, reports and output writing.
"""
import json
import os
import stat

import pytest
import yaml

from rehost.errors import (
    DuplicateRegistrationError,
    GenerationError,
    GenerationValidationError,
    GeneratorNotFoundError,
    RehostError,
)
from rehost.generators import default_generator_registry, write_output
from rehost.generators.compose import ComposeGenerator, SwarmGenerator, env_variables, topological_order
from rehost.generators.hetzner import HetznerGenerator
from rehost.generators.kubernetes import K3sGenerator, KubernetesGenerator, k8s_quantity_memory, replica_count
from rehost.mappers import default_registry
from rehost.models.mapping import DockerService, MappingResult
from rehost.models.resource import Resource
from rehost.models.target import HALevel, Platform, TargetConfig, TargetOutput


def _results():
    resources = [
        Resource(id="aws_instance.web", name="web", type="aws_instance", config={"instance_type": "t3.large"}),
        Resource(id="aws_db_instance.main", name="main", type="aws_db_instance",
                 config={"engine": "postgres", "engine_version": "15.4", "db_name": "shop",
                         "backup_retention_period": 7}),
        Resource(id="aws_ecs_task_definition.app", name="app", type="aws_ecs_task_definition",
                 config={"family": "shop", "container_definitions": json.dumps([
                     {"name": "app", "image": "shop/app:1.2", "portMappings": [{"containerPort": 8080}],
                      "environment": [{"name": "API_TOKEN", "value": "${API_TOKEN}"}]},
                 ])}),
        Resource(id="aws_vpc.main", name="main", type="aws_vpc"),
    ]
    report = default_registry().map_all(resources)
    report.raise_for_error()
    return report.results


def _config(platform, **kwargs):
    return TargetConfig(platform=platform, project_name="shop", **kwargs)


def _result(*services):
    result = MappingResult(source_category="compute", source_resource_type="aws_instance", source_resource_name="x")
    result.docker_service = services[0]
    for svc in services[1:]:
        result.add_service(svc)
    return result


class TestGeneratorRegistry:
    def setup_method(self):
        self.registry = default_generator_registry()

    def test_platforms(self):
        assert self.registry.platforms() == ["docker-compose", "docker-swarm", "kubernetes", "k3s", "hetzner"]
        assert self.registry.legacy_names() == ["json", "markdown"]

    def test_lookup_by_alias(self):
        assert isinstance(self.registry.get("compose"), ComposeGenerator)
        assert isinstance(self.registry.get(Platform.K3S), K3sGenerator)
        assert self.registry.has("k8s")

    def test_unknown_platform(self):
        with pytest.raises(GeneratorNotFoundError) as exc_info:
            self.registry.get("nomad")
        assert "docker-compose" in exc_info.value.suggestion
        assert not self.registry.has("nomad")

    def test_duplicate_platform(self):
        with pytest.raises(DuplicateRegistrationError):
            self.registry.register(ComposeGenerator())

    def test_registered_platform_not_implemented(self):
        with pytest.raises(GeneratorNotFoundError):
            self.registry.get(Platform.SCALEWAY)

    def test_validation_runs_before_generation(self):
        with pytest.raises(GenerationValidationError):
            self.registry.generate([], _config(Platform.DOCKER_COMPOSE))

    def test_unsupported_ha_level(self):
        with pytest.raises(GenerationValidationError) as exc_info:
            self.registry.generate(_results(), _config(Platform.DOCKER_COMPOSE, ha_level=HALevel.CLUSTER))
        assert "cluster" in str(exc_info.value)

    def test_results_without_services(self):
        vpc = default_registry().map(Resource(id="aws_vpc.main", name="main", type="aws_vpc"))
        with pytest.raises(GenerationValidationError):
            self.registry.generate([vpc], _config(Platform.KUBERNETES))

    def test_none_result_rejected(self):
        with pytest.raises(GenerationValidationError):
            self.registry.generate([None], _config(Platform.DOCKER_COMPOSE))

    def test_cost_filled_in(self):
        output = self.registry.generate(_results(), _config(Platform.DOCKER_COMPOSE))
        assert output.estimated_cost is not None
        assert output.estimated_cost.total == 10.0


class TestComposeGenerator:
    def setup_method(self):
        self.config = _config(Platform.DOCKER_COMPOSE, base_url="https://shop.example.com")
        self.output = ComposeGenerator().generate(_results(), self.config)
        self.doc = yaml.safe_load(self.output.files["docker-compose.yml"])

    def test_main_file(self):
        assert self.output.main_file == "docker-compose.yml"
        assert self.output.files["docker-compose.yml"].startswith("# shop: generated by rehost")
        assert self.doc["name"] == "shop"

    def test_services(self):
        assert set(self.doc["services"]) == {"web", "main", "main-backup", "shop-app", "traefik", "prometheus"}

    def test_dependency_order(self):
        names = list(self.doc["services"])
        assert names.index("main") < names.index("main-backup")

    def test_route_labels_for_public_service(self):
        labels = self.doc["services"]["shop-app"]["labels"]
        assert labels["traefik.http.routers.shop-app.rule"] == "Host(`shop-app.shop.example.com`)"
        assert labels["traefik.http.routers.shop-app.tls.certresolver"] == "letsencrypt"
        assert self.doc["services"]["shop-app"]["networks"] == ["web", "internal"]

    def test_database_not_routed(self):
        labels = self.doc["services"]["main"].get("labels", {})
        assert not any(k.startswith("traefik.http.routers") for k in labels)

    def test_volumes_and_networks(self):
        assert "main-data" in self.doc["volumes"]
        assert "prometheus-data" in self.doc["volumes"]
        assert self.doc["networks"]["internal"] == {"driver": "bridge"}

    def test_env_example(self):
        env = self.output.files[".env.example"]
        assert "ACME_EMAIL=" in env
        assert "MAIN_PASSWORD=changeme" in env
        assert "API_TOKEN=changeme" in env

    def test_supporting_files(self):
        files = self.output.files
        assert "scripts/setup_web.sh" in files
        assert "scripts/migrate_main.sh" in files
        assert "scripts/backup.sh" in files
        assert "config/traefik/traefik.yml" in files
        assert "config/prometheus/prometheus.yml" in files
        assert files["scripts/backup.sh"] is self.output.scripts["scripts/backup.sh"]

    def test_notes_carried(self):
        assert any("docker compose up -d" in s for s in self.output.manual_steps)
        assert "Copy .env.example to .env and set the secrets" in self.output.manual_steps

    def test_toggles(self):
        config = _config(Platform.DOCKER_COMPOSE, include_monitoring=False, include_backups=False, ssl_enabled=False)
        output = ComposeGenerator().generate(_results(), config)
        doc = yaml.safe_load(output.files["docker-compose.yml"])
        assert "prometheus" not in doc["services"]
        assert "traefik" not in doc["services"]
        assert "scripts/backup.sh" not in output.files
        assert "config/traefik/traefik.yml" not in output.files

    def test_identical_services_collapse(self):
        mapper = default_registry()
        a = mapper.map(Resource(id="q.a", name="a", type="aws_sqs_queue"))
        b = mapper.map(Resource(id="q.b", name="b", type="aws_sqs_queue"))
        output = ComposeGenerator().generate([a, b], _config(Platform.DOCKER_COMPOSE, include_monitoring=False))
        doc = yaml.safe_load(output.files["docker-compose.yml"])
        assert list(doc["services"]) == ["rabbitmq"]

    def test_conflicting_services_renamed(self):
        results = [_result(DockerService(name="app", image="one")), _result(DockerService(name="app", image="two"))]
        output = ComposeGenerator().generate(results, _config(Platform.DOCKER_COMPOSE, include_monitoring=False))
        doc = yaml.safe_load(output.files["docker-compose.yml"])
        assert doc["services"]["app-2"]["image"] == "two"
        assert any("renamed" in w for w in output.warnings)

    def test_same_image_different_environment_renamed(self):
        results = [
            _result(DockerService(name="main", image="postgres:15", environment={"POSTGRES_DB": "orders"})),
            _result(DockerService(name="main", image="postgres:15", environment={"POSTGRES_DB": "billing"})),
        ]
        output = ComposeGenerator().generate(results, _config(Platform.DOCKER_COMPOSE, include_monitoring=False))
        doc = yaml.safe_load(output.files["docker-compose.yml"])
        assert doc["services"]["main"]["environment"]["POSTGRES_DB"] == "orders"
        assert doc["services"]["main-2"]["environment"]["POSTGRES_DB"] == "billing"

    def test_cycle_is_an_error(self):
        results = [_result(
            DockerService(name="a", image="a", depends_on=["b"]),
            DockerService(name="b", image="b", depends_on=["a"]),
        )]
        with pytest.raises(GenerationError) as exc_info:
            ComposeGenerator().generate(results, _config(Platform.DOCKER_COMPOSE))
        assert "a, b" in str(exc_info.value)

    def test_topological_order_ties_alphabetical(self):
        services = {n: DockerService(name=n) for n in ("c", "a", "b")}
        services["a"].depends_on = ["c", "missing"]
        assert topological_order(services) == ["b", "c", "a"]

    def test_env_variables(self):
        svc = DockerService(name="x", environment={"A": "${ONE}", "B": "${TWO:-two}", "C": "plain"})
        assert dict(env_variables([svc])) == {"ONE": "", "TWO": "two"}


class TestSwarmGenerator:
    def setup_method(self):
        config = _config(Platform.DOCKER_SWARM, ha_level=HALevel.CLUSTER, base_url="shop.example.com")
        self.output = SwarmGenerator().generate(_results(), config)
        self.doc = yaml.safe_load(self.output.files["docker-stack.yml"])

    def test_main_file(self):
        assert self.output.main_file == "docker-stack.yml"
        assert "docker-compose.yml" not in self.output.files

    def test_replicas(self):
        services = self.doc["services"]
        assert services["web"]["deploy"]["replicas"] == 3
        assert services["shop-app"]["deploy"]["replicas"] == 3
        # services with named volumes stay single
        assert services["main"]["deploy"]["replicas"] == 1

    def test_swarm_specific_keys(self):
        services = self.doc["services"]
        assert "restart" not in services["web"]
        assert "depends_on" not in services["main-backup"]
        assert services["traefik"]["deploy"]["placement"] == {"constraints": ["node.role == manager"]}
        assert self.doc["networks"]["web"] == {"driver": "overlay"}

    def test_cost_scales_with_nodes(self):
        assert self.output.estimated_cost is None
        cost = SwarmGenerator().estimate_cost([], _config(Platform.DOCKER_SWARM, ha_level=HALevel.MULTI_SERVER))
        assert cost.total == 20.0


class TestKubernetesGenerator:
    def setup_method(self):
        config = _config(Platform.KUBERNETES, ha_level=HALevel.MULTI_SERVER, base_url="https://shop.example.com")
        self.output = KubernetesGenerator().generate(_results(), config)
        self.manifests = {name: yaml.safe_load(text) for name, text in self.output.k8s_manifests.items()
                          if name != "manifests.yaml"}

    def _kind(self, kind, name):
        for doc in self.manifests.values():
            if doc["kind"] == kind and doc["metadata"]["name"] == name:
                return doc
        raise AssertionError(f"no {kind} {name}")

    def test_namespace(self):
        assert self.manifests["00-namespace.yaml"]["metadata"]["name"] == "shop"

    def test_combined_manifest(self):
        combined = list(yaml.safe_load_all(self.output.files["manifests.yaml"]))
        assert len(combined) == len(self.manifests)
        assert self.output.main_file == "manifests.yaml"

    def test_deployments_and_replicas(self):
        assert self._kind("Deployment", "web")["spec"]["replicas"] == 2
        assert self._kind("Deployment", "main")["spec"]["replicas"] == 1

    def test_pvc(self):
        pvc = self._kind("PersistentVolumeClaim", "main-data")
        assert pvc["spec"]["resources"]["requests"]["storage"] == "10Gi"
        assert "storageClassName" not in pvc["spec"]
        mounts = self._kind("Deployment", "main")["spec"]["template"]["spec"]["containers"][0]["volumeMounts"]
        assert mounts == [{"name": "main-data", "mountPath": "/var/lib/postgresql/data"}]

    def test_config_and_secret_split(self):
        secret = self._kind("Secret", "main-secret")
        assert "POSTGRES_PASSWORD" in secret["stringData"]
        config = self._kind("ConfigMap", "main-config")
        assert config["data"]["POSTGRES_DB"] == "shop"
        assert any("placeholders" in s for s in self.output.manual_steps)

    def test_resources_converted(self):
        container = self._kind("Deployment", "web")["spec"]["template"]["spec"]["containers"][0]
        assert container["resources"]["limits"] == {"cpu": "2000m", "memory": "8Gi"}
        assert container["resources"]["requests"] == {"cpu": "100m", "memory": "128Mi"}

    def test_service_and_ingress(self):
        service = self._kind("Service", "shop-app")
        assert service["spec"]["ports"][0]["port"] == 8080
        ingress = self._kind("Ingress", "shop-app")
        assert ingress["spec"]["ingressClassName"] == "nginx"
        assert ingress["spec"]["rules"][0]["host"] == "shop-app.shop.example.com"
        assert ingress["spec"]["tls"][0]["secretName"] == "shop-app-tls"

    def test_probe_from_healthcheck(self):
        container = self._kind("Deployment", "main")["spec"]["template"]["spec"]["containers"][0]
        assert container["livenessProbe"]["exec"]["command"] == ["sh", "-c", "pg_isready -U postgres"]
        assert container["livenessProbe"]["periodSeconds"] == 10

    def test_helpers(self):
        assert replica_count(HALevel.GEO) == 3
        assert replica_count(HALevel.BASIC) == 1
        assert k8s_quantity_memory("512M") == "512Mi"
        assert k8s_quantity_memory("lots") is None

    def test_k3s_defaults(self):
        output = K3sGenerator().generate(_results(), _config(Platform.K3S, base_url="shop.example.com"))
        pvc = yaml.safe_load(output.k8s_manifests["01-pvc-main-data.yaml"])
        assert pvc["spec"]["storageClassName"] == "local-path"
        ingress = [yaml.safe_load(t) for n, t in output.k8s_manifests.items() if n.endswith("-ingress.yaml")]
        assert ingress[0]["spec"]["ingressClassName"] == "traefik"


class TestHetznerGenerator:
    def setup_method(self):
        self.config = _config(Platform.HETZNER, ha_level=HALevel.MULTI_SERVER, variables={"location": "nbg1"})
        self.output = HetznerGenerator().generate(_results(), self.config)

    def test_files(self):
        for name in ("main.tf", "variables.tf", "outputs.tf", "terraform.tfvars.example",
                     "cloud-init.yaml", "deploy.sh", "app/docker-compose.yml"):
            assert name in self.output.files, name
        assert self.output.main_file == "main.tf"

    def test_terraform_content(self):
        main = self.output.files["main.tf"]
        assert 'resource "hcloud_server" "app"' in main
        assert "hcloud_load_balancer" in main
        variables = self.output.files["variables.tf"]
        assert 'default     = "nbg1"' in variables
        assert "default     = 2" in variables

    def test_single_server_has_no_load_balancer(self):
        output = HetznerGenerator().generate(_results(), _config(Platform.HETZNER))
        assert "hcloud_load_balancer" not in output.files["main.tf"]

    def test_cloud_init(self):
        text = self.output.files["cloud-init.yaml"]
        assert text.startswith("#cloud-config\n")
        doc = yaml.safe_load(text)
        paths = [f["path"] for f in doc["write_files"]]
        assert "/opt/shop/docker-compose.yml" in paths
        assert doc["runcmd"][-1] == "cd /opt/shop && docker compose -p shop up -d"

    def test_cost(self):
        cost = self.output.estimated_cost
        assert cost.currency == "EUR"
        assert cost.compute > 0
        assert cost.total == round(cost.compute + cost.storage + cost.network, 2)
        assert "networking" in cost.details
        assert any("Load balancer" in n for n in cost.notes)

    def test_credentials(self):
        gen = HetznerGenerator()
        assert gen.requires_credentials()
        assert gen.required_credentials() == ["HCLOUD_TOKEN"]
        assert not ComposeGenerator().requires_credentials()

    def test_geo_unsupported(self):
        with pytest.raises(GenerationValidationError):
            HetznerGenerator().validate(_results(), _config(Platform.HETZNER, ha_level=HALevel.GEO))


class TestReports:
    def setup_method(self):
        self.registry = default_generator_registry()
        self.results = _results()

    def test_markdown(self):
        out = self.registry.get_legacy("markdown").generate(self.results)
        text = out.files["MIGRATION.md"]
        assert text.startswith("# Migration Report")
        assert "| `main` | `aws_db_instance` | main, main-backup | main-data |" in text
        assert "flowchart LR" in text
        assert "main_backup --> main" in text

    def test_json(self):
        out = self.registry.get_legacy("json").generate(self.results)
        report = json.loads(out.files["migration.json"])
        assert report["summary"]["resources"] == 4
        assert report["meta"]["tool"] == "rehost"
        assert report["results"][1]["source_resource_type"] == "aws_db_instance"

    def test_unknown_report(self):
        with pytest.raises(GeneratorNotFoundError):
            self.registry.get_legacy("pdf")


class TestWriteOutput:
    def test_writes_files(self, tmp_path):
        output = TargetOutput(platform="docker-compose")
        output.add_docker_file("docker-compose.yml", "services: {}\n")
        output.add_script("scripts/setup.sh", "#!/bin/sh\n")
        written = write_output(output, str(tmp_path / "out"))
        assert len(written) == 2
        assert (tmp_path / "out" / "docker-compose.yml").read_text() == "services: {}\n"
        mode = os.stat(tmp_path / "out" / "scripts" / "setup.sh").st_mode
        assert mode & stat.S_IXUSR

    def test_refuses_escaping_paths(self, tmp_path):
        output = TargetOutput(platform="docker-compose")
        output.add_file("../evil.txt", "x")
        with pytest.raises(RehostError):
            write_output(output, str(tmp_path / "out"))
        assert not (tmp_path / "evil.txt").exists()
