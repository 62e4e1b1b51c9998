"""
Docker Compose and Docker Swarm generators.

The compose bundle is also the payload other generators ship to a server
(see hetzner.py), so the service-collection helpers here are shared.
"""
import re
from collections import OrderedDict
from dataclasses import replace
from typing import Dict, List, Sequence, Tuple

import yaml
from rich.console import Console

from rehost.errors import GenerationError
from rehost.generators.base import Generator, collect_notes, require_services
from rehost.models.mapping import DockerService, MappingResult, Volume
from rehost.models.target import CostEstimate, HALevel, Platform, TargetConfig, TargetOutput, ha_levels_up_to

console = Console(stderr=True)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::?-([^}]*))?\}")

_SENSITIVE = ("PASSWORD", "SECRET", "KEY", "TOKEN", "CREDENTIAL", "AUTH", "PRIVATE")

TRAEFIK_IMAGE = "traefik:v3.0"
PROMETHEUS_IMAGE = "prom/prometheus:v2.53.0"

_PUBLIC_CATEGORIES = {"compute", "container", "serverless", "kubernetes"}


def is_sensitive_env(key: str, value: str = "") -> bool:
    upper = key.upper()
    return any(p in upper for p in _SENSITIVE) or "${" in str(value)


def is_named_volume(spec: str) -> bool:
    source = spec.split(":", 1)[0]
    return bool(source) and "/" not in source and not source.startswith(".") and ":" in spec


def has_traefik_labels(labels: Dict[str, str]) -> bool:
    return any(k.startswith("traefik.") for k in labels)


def env_variables(services: Sequence[DockerService]) -> "OrderedDict[str, str]":
    """${VAR} / ${VAR:-default} references across all service environments."""
    found: "OrderedDict[str, str]" = OrderedDict()
    for svc in services:
        for value in svc.environment.values():
            for name, default in _VAR_RE.findall(str(value)):
                found.setdefault(name, default or "")
    return found


def _definition(svc: DockerService) -> dict:
    """Compose body without the rehost.* provenance labels."""
    body = svc.to_compose()
    labels = {k: v for k, v in body.pop("labels", {}).items() if not k.startswith("rehost.")}
    if labels:
        body["labels"] = labels
    return body


def collect_services(results: Sequence[MappingResult]) -> Tuple["OrderedDict[str, DockerService]", List[str]]:
    """
    Flatten primary and auxiliary services into one name -> service table.
    A repeated name with an identical definition (a shared broker, one proxy
    for several load balancers) collapses to one entry; a conflicting
    definition is renamed with a numeric suffix.
    """
    services: "OrderedDict[str, DockerService]" = OrderedDict()
    notes: List[str] = []
    for result in results:
        for svc in result.services():
            existing = services.get(svc.name)
            if existing is None:
                services[svc.name] = svc
                continue
            if _definition(existing) == _definition(svc):
                continue
            n = 2
            while f"{svc.name}-{n}" in services:
                n += 1
            renamed = f"{svc.name}-{n}"
            notes.append(f"Service name '{svc.name}' used twice; second definition renamed to '{renamed}'")
            services[renamed] = replace(svc, name=renamed)
    return services, notes


def collect_volumes(results: Sequence[MappingResult], services: Dict[str, DockerService]) -> "OrderedDict[str, Volume]":
    volumes: "OrderedDict[str, Volume]" = OrderedDict()
    for result in results:
        for vol in result.volumes:
            volumes.setdefault(vol.name, vol)
    for svc in services.values():
        for spec in svc.volumes:
            if is_named_volume(spec):
                name = spec.split(":", 1)[0]
                volumes.setdefault(name, Volume(name=name))
    return volumes


def topological_order(services: Dict[str, DockerService], platform: str = "docker-compose") -> List[str]:
    """Kahn's algorithm; ties broken alphabetically. Unknown dependencies are ignored."""
    dependents: Dict[str, List[str]] = {name: [] for name in services}
    in_degree = {name: 0 for name in services}
    for name, svc in services.items():
        for dep in svc.depends_on:
            if dep in services and dep != name:
                dependents[dep].append(name)
                in_degree[name] += 1

    ready = sorted(n for n, d in in_degree.items() if d == 0)
    order = []
    while ready:
        current = ready.pop(0)
        order.append(current)
        for nxt in dependents[current]:
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                ready.append(nxt)
        ready.sort()

    if len(order) != len(services):
        cycle = sorted(n for n in services if n not in order)
        raise GenerationError(platform, f"circular dependency between services: {', '.join(cycle)}")
    return order


def _domain(base_url: str) -> str:
    return re.sub(r"^[a-z]+://", "", base_url).strip("/").split("/")[0]


def _container_port(port: str) -> str:
    return port.split("/")[0].split(":")[-1]


def _service_networks(svc: DockerService, public: bool) -> List[str]:
    networks = [n for n in svc.networks if n not in ("web", "internal")]
    if public or svc.ports or has_traefik_labels(svc.labels):
        networks.insert(0, "web")
    networks.append("internal")
    return networks


def _traefik_service(ssl: bool) -> DockerService:
    command = [
        "--providers.docker=true",
        "--providers.docker.exposedbydefault=false",
        "--providers.file.directory=/etc/traefik/dynamic",
        "--entrypoints.web.address=:80",
        "--entrypoints.websecure.address=:443",
    ]
    if ssl:
        command += [
            "--certificatesresolvers.letsencrypt.acme.httpchallenge=true",
            "--certificatesresolvers.letsencrypt.acme.httpchallenge.entrypoint=web",
            "--certificatesresolvers.letsencrypt.acme.email=${ACME_EMAIL}",
            "--certificatesresolvers.letsencrypt.acme.storage=/letsencrypt/acme.json",
        ]
    return DockerService(
        name="traefik",
        image=TRAEFIK_IMAGE,
        command=command,
        ports=["80:80", "443:443"],
        volumes=[
            "/var/run/docker.sock:/var/run/docker.sock:ro",
            "./config/traefik/dynamic:/etc/traefik/dynamic:ro",
            "traefik-certs:/letsencrypt",
        ],
        networks=["web"],
    )


def _route_labels(name: str, port: str, domain: str, ssl: bool) -> Dict[str, str]:
    router = f"traefik.http.routers.{name}"
    labels = {
        "traefik.enable": "true",
        f"{router}.rule": f"Host(`{name}.{domain}`)",
        f"{router}.entrypoints": "websecure" if ssl else "web",
        f"traefik.http.services.{name}.loadbalancer.server.port": port,
    }
    if ssl:
        labels[f"{router}.tls.certresolver"] = "letsencrypt"
    return labels


def traefik_static_config(ssl: bool) -> str:
    lines = [
        "entryPoints:",
        "  web:",
        "    address: \":80\"",
    ]
    if ssl:
        lines += [
            "    http:",
            "      redirections:",
            "        entryPoint:",
            "          to: websecure",
            "          scheme: https",
        ]
    lines += [
        "  websecure:",
        "    address: \":443\"",
        "providers:",
        "  docker:",
        "    exposedByDefault: false",
        "  file:",
        "    directory: /etc/traefik/dynamic",
        "    watch: true",
    ]
    if ssl:
        lines += [
            "certificatesResolvers:",
            "  letsencrypt:",
            "    acme:",
            "      email: \"${ACME_EMAIL}\"",
            "      storage: /letsencrypt/acme.json",
            "      httpChallenge:",
            "        entryPoint: web",
        ]
    return "\n".join(lines) + "\n"


def traefik_dynamic_config() -> str:
    return "\n".join([
        "http:",
        "  middlewares:",
        "    secure-headers:",
        "      headers:",
        "        stsSeconds: 31536000",
        "        contentTypeNosniff: true",
        "        frameDeny: true",
        "",
    ])


def prometheus_config(project: str, services: Sequence[str]) -> str:
    doc = {
        "global": {"scrape_interval": "30s", "external_labels": {"project": project}},
        "scrape_configs": [
            {"job_name": "prometheus", "static_configs": [{"targets": ["localhost:9090"]}]},
        ],
    }
    text = yaml.safe_dump(doc, sort_keys=False)
    # exporters are not generated; list the services so targets are easy to add
    return text + "".join(f"# - {name}\n" for name in services)


def backup_script(project: str, volumes: Sequence[str]) -> str:
    lines = [
        "#!/bin/sh",
        "# Archive every named volume into ./backups",
        "set -e",
        'STAMP=$(date +%Y%m%d-%H%M%S)',
        "mkdir -p backups",
    ]
    for vol in volumes:
        lines.append(
            f'docker run --rm -v {project}_{vol}:/data:ro -v "$(pwd)/backups:/backup" alpine '
            f'tar czf "/backup/{vol}-$STAMP.tar.gz" -C /data .'
        )
    lines.append('echo "Backups written to ./backups"')
    return "\n".join(lines) + "\n"


def env_example(variables: Dict[str, str], ssl: bool) -> str:
    lines = ["# Copy to .env and fill in the values", ""]
    if ssl:
        lines.append("ACME_EMAIL=admin@example.com")
    for name, default in variables.items():
        if name == "ACME_EMAIL":
            continue
        lines.append(f"{name}={default or 'changeme'}")
    return "\n".join(lines) + "\n"


class ComposeGenerator(Generator):
    """docker-compose.yml plus the configs and scripts the mappers produced."""

    main_file = "docker-compose.yml"

    def platform(self) -> Platform:
        return Platform.DOCKER_COMPOSE

    @property
    def description(self) -> str:
        return "Single-host Docker Compose bundle with Traefik"

    def supported_ha_levels(self) -> List[HALevel]:
        return [HALevel.NONE, HALevel.BASIC]

    def validate(self, results: Sequence[MappingResult], config: TargetConfig) -> None:
        super().validate(results, config)
        require_services(self.platform(), results)

    def replicas(self, config: TargetConfig) -> int:
        return 1

    def compose_document(self, results: Sequence[MappingResult], config: TargetConfig) -> Tuple[dict, List[str]]:
        """The compose file as a dict, plus notes about renamed services."""
        services, notes = collect_services(results)
        public = {svc.name for r in results if r.source_category in _PUBLIC_CATEGORIES for svc in r.services()}

        if config.base_url and "traefik" not in services:
            services["traefik"] = _traefik_service(config.ssl_enabled)
        if config.include_monitoring:
            services.setdefault("prometheus", DockerService(
                name="prometheus",
                image=PROMETHEUS_IMAGE,
                volumes=["./config/prometheus/prometheus.yml:/etc/prometheus/prometheus.yml:ro",
                         "prometheus-data:/prometheus"],
                networks=["internal"],
            ))

        domain = _domain(config.base_url)
        body: Dict[str, dict] = OrderedDict()
        for name in topological_order(services, self.platform().value):
            svc = services[name]
            rendered = svc.to_compose()
            if domain and name in public and svc.ports:
                labels = dict(rendered.get("labels", {}))
                labels.update(_route_labels(name, _container_port(svc.ports[0]), domain, config.ssl_enabled))
                rendered["labels"] = dict(sorted(labels.items()))
            rendered["networks"] = _service_networks(svc, domain != "" and name in public)
            self.adjust_service(rendered, svc, config)
            body[name] = rendered

        volumes = collect_volumes(results, services)
        networks = {"web": {"driver": self.network_driver()}, "internal": {"driver": self.network_driver()}}
        for svc in body.values():
            for net in svc["networks"]:
                networks.setdefault(net, {"driver": self.network_driver()})
        doc = {
            "name": config.project_name,
            "services": body,
            "networks": networks,
        }
        if volumes:
            doc["volumes"] = {name: vol.to_compose() for name, vol in volumes.items()}
        return doc, notes

    def network_driver(self) -> str:
        return "bridge"

    def adjust_service(self, rendered: dict, svc: DockerService, config: TargetConfig) -> None:
        pass

    def render(self, doc: dict) -> str:
        header = f"# {doc['name']}: generated by rehost\n"
        return header + yaml.safe_dump(_plain(doc), sort_keys=False, default_flow_style=False)

    def bundle(self, results: Sequence[MappingResult], config: TargetConfig, output: TargetOutput) -> dict:
        """Add the compose file and every supporting file to output; returns the compose dict."""
        doc, notes = self.compose_document(results, config)
        for note in notes:
            output.add_warning(note)
        output.add_docker_file(self.main_file, self.render(doc))
        output.main_file = self.main_file

        for r in results:
            for name, content in r.configs.items():
                if name.endswith("Dockerfile"):
                    output.add_docker_file(name, content)
                else:
                    output.add_config(name, content)
            for name, content in r.scripts.items():
                output.add_script(f"scripts/{name}", content)

        services = [DockerService(name=n, environment=s.get("environment", {})) for n, s in doc["services"].items()]
        variables = env_variables(services)
        acme = config.ssl_enabled and bool(config.base_url)
        if variables or acme:
            output.add_config(".env.example", env_example(variables, acme))
        if config.ssl_enabled or config.base_url:
            output.add_config("config/traefik/traefik.yml", traefik_static_config(config.ssl_enabled))
            output.add_config("config/traefik/dynamic/middlewares.yml", traefik_dynamic_config())
        if config.include_monitoring:
            output.add_config("config/prometheus/prometheus.yml", prometheus_config(config.project_name, list(doc["services"])))
        if config.include_backups and doc.get("volumes"):
            output.add_script("scripts/backup.sh", backup_script(config.project_name, list(doc["volumes"])))
        return doc

    def generate(self, results: Sequence[MappingResult], config: TargetConfig) -> TargetOutput:
        output = TargetOutput(platform=self.platform().value)
        doc = self.bundle(results, config, output)
        collect_notes(output, results)
        if ".env.example" in output.files:
            output.add_manual_step("Copy .env.example to .env and set the secrets")
        for step in self.deploy_steps():
            output.add_manual_step(step)
        output.summary = f"Generated {self.main_file} with {len(doc['services'])} services"
        console.print(f"[dim]{output.summary}[/dim]")
        return output

    def deploy_steps(self) -> List[str]:
        return [
            "Start services: docker compose up -d",
            "View logs: docker compose logs -f",
            "Stop services: docker compose down",
        ]

    def estimate_cost(self, results: Sequence[MappingResult], config: TargetConfig) -> CostEstimate:
        estimate = CostEstimate(currency="EUR")
        estimate.add_note("Docker Compose itself has no licensing cost")
        estimate.add_note("Costs depend on the underlying server and storage")
        if config.ha_level == HALevel.BASIC:
            estimate.compute = 15.0
            estimate.storage = 5.0
            estimate.add_note("Single server with backup storage")
        else:
            estimate.compute = 10.0
            estimate.add_note("Single server setup")
        estimate.calculate()
        return estimate


class SwarmGenerator(ComposeGenerator):
    """A compose file deployable with `docker stack deploy`, replicated per HA level."""

    main_file = "docker-stack.yml"

    def platform(self) -> Platform:
        return Platform.DOCKER_SWARM

    @property
    def description(self) -> str:
        return "Docker Swarm stack across one or more nodes"

    def supported_ha_levels(self) -> List[HALevel]:
        return ha_levels_up_to(HALevel.CLUSTER)

    def replicas(self, config: TargetConfig) -> int:
        return {HALevel.MULTI_SERVER: 2, HALevel.CLUSTER: 3}.get(config.ha_level, 1)

    def network_driver(self) -> str:
        return "overlay"

    def adjust_service(self, rendered: dict, svc: DockerService, config: TargetConfig) -> None:
        # swarm ignores these keys
        rendered.pop("restart", None)
        rendered.pop("depends_on", None)
        rendered.pop("build", None)
        deploy = dict(rendered.get("deploy", {}))
        deploy.setdefault("replicas", 1 if _stateful(svc) else self.replicas(config))
        deploy.setdefault("restart_policy", {"condition": "on-failure"})
        if svc.name == "traefik":
            deploy["placement"] = {"constraints": ["node.role == manager"]}
        rendered["deploy"] = deploy
        if svc.build_context and not svc.image:
            rendered["image"] = f"${{REGISTRY:-localhost:5000}}/{svc.name}:latest"

    def deploy_steps(self) -> List[str]:
        return [
            "Initialise the swarm: docker swarm init",
            "Build and push locally built images to ${REGISTRY}",
            f"Deploy: docker stack deploy -c {self.main_file} <stack>",
            "Check services: docker service ls",
        ]

    def estimate_cost(self, results: Sequence[MappingResult], config: TargetConfig) -> CostEstimate:
        estimate = CostEstimate(currency="EUR")
        nodes = max(1, self.replicas(config))
        estimate.compute = 10.0 * nodes
        estimate.add_note(f"{nodes} node(s), costs depend on the underlying servers")
        estimate.calculate()
        return estimate


def _stateful(svc: DockerService) -> bool:
    return any(is_named_volume(v) for v in svc.volumes)


def _plain(value):
    """OrderedDicts -> dicts so yaml.safe_dump accepts them."""
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value
