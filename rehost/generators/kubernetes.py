"""
Kubernetes and k3s manifests.

One Deployment per service, ConfigMap/Secret pairs split by variable
sensitivity, a PVC per named volume, a Service for anything with ports and an
Ingress per public service when a base URL is configured. Every manifest is
written individually and concatenated into manifests.yaml.
"""
import re
from typing import Dict, List, Optional, Sequence, Tuple

import yaml

from rehost.generators.base import Generator, collect_notes, require_services
from rehost.generators.compose import collect_services, collect_volumes, is_named_volume, is_sensitive_env
from rehost.mappers.base import sanitize_name
from rehost.models.mapping import DockerService, HealthCheck, MappingResult, ResourceLimits
from rehost.models.target import CostEstimate, HALevel, Platform, TargetConfig, TargetOutput
from rehost.sizing import volume_size

_PUBLIC_CATEGORIES = {"compute", "container", "serverless", "kubernetes"}

DEFAULT_REQUESTS = {"cpu": "100m", "memory": "128Mi"}
DEFAULT_LIMITS = {"cpu": "500m", "memory": "512Mi"}


def replica_count(level: HALevel) -> int:
    if level in (HALevel.CLUSTER, HALevel.GEO):
        return 3
    if level == HALevel.MULTI_SERVER:
        return 2
    return 1


def split_env(env: Dict[str, str]) -> Tuple[Dict[str, str], Dict[str, str]]:
    config, secrets = {}, {}
    for k, v in sorted(env.items()):
        (secrets if is_sensitive_env(k, v) else config)[k] = str(v)
    return config, secrets


def k8s_quantity_cpu(cpus: str) -> Optional[str]:
    try:
        return f"{int(round(float(cpus) * 1000))}m"
    except (TypeError, ValueError):
        return None


def k8s_quantity_memory(memory: str) -> Optional[str]:
    m = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([kKmMgGtT])?[bB]?\s*", str(memory or ""))
    if not m:
        return None
    num, unit = m.groups()
    if not unit:
        return num
    return f"{num}{unit.upper()}i"


def _resources(svc: DockerService) -> dict:
    def convert(limits: Optional[ResourceLimits], default: dict) -> dict:
        out = dict(default)
        if limits is not None:
            cpu = k8s_quantity_cpu(limits.cpus) if limits.cpus else None
            mem = k8s_quantity_memory(limits.memory) if limits.memory else None
            if cpu:
                out["cpu"] = cpu
            if mem:
                out["memory"] = mem
        return out

    deploy = svc.deploy
    return {
        "requests": convert(deploy.reservations if deploy else None, DEFAULT_REQUESTS),
        "limits": convert(deploy.limits if deploy else None, DEFAULT_LIMITS),
    }


def _seconds(value: str) -> int:
    m = re.fullmatch(r"(\d+)(ms|s|m|h)?", str(value).strip())
    if not m:
        return 30
    n, unit = int(m.group(1)), m.group(2) or "s"
    return {"ms": max(1, n // 1000), "s": n, "m": n * 60, "h": n * 3600}[unit]


def _probe(hc: HealthCheck) -> Optional[dict]:
    if not hc.test:
        return None
    kind, rest = hc.test[0], list(hc.test[1:])
    if kind == "NONE":
        return None
    if kind == "CMD-SHELL":
        command = ["sh", "-c", " ".join(rest)]
    elif kind == "CMD":
        command = rest
    else:
        command = list(hc.test)
    return {
        "exec": {"command": command},
        "periodSeconds": _seconds(hc.interval),
        "timeoutSeconds": _seconds(hc.timeout),
        "failureThreshold": hc.retries,
    }


def _port(spec: str) -> int:
    m = re.match(r"\d+", spec.split("/")[0].split(":")[-1])
    return int(m.group(0)) if m else 80


def _dump(doc: dict) -> str:
    return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False)


class KubernetesGenerator(Generator):
    """Plain Kubernetes manifests, applied with kubectl."""

    ingress_class = "nginx"
    storage_class = ""

    def platform(self) -> Platform:
        return Platform.KUBERNETES

    @property
    def description(self) -> str:
        return "Kubernetes manifests (Deployments, Services, ConfigMaps, Secrets, PVCs, Ingress)"

    def supported_ha_levels(self) -> List[HALevel]:
        return list(HALevel)

    def validate(self, results: Sequence[MappingResult], config: TargetConfig) -> None:
        super().validate(results, config)
        require_services(self.platform(), results)

    def generate(self, results: Sequence[MappingResult], config: TargetConfig) -> TargetOutput:
        output = TargetOutput(platform=self.platform().value)
        namespace = sanitize_name(config.project_name)
        replicas = replica_count(config.ha_level)
        services, notes = collect_services(results)
        for note in notes:
            output.add_warning(note)
        volumes = collect_volumes(results, services)
        public = {s.name for r in results if r.source_category in _PUBLIC_CATEGORIES for s in r.services()}
        host = re.sub(r"^[a-z]+://", "", config.base_url).strip("/")

        docs: List[Tuple[str, dict]] = [("00-namespace.yaml", {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": namespace, "labels": {"app.kubernetes.io/managed-by": "rehost"}},
        })]

        for name, vol in volumes.items():
            docs.append((f"01-pvc-{sanitize_name(name)}.yaml", self.pvc(sanitize_name(name), namespace, volume_size(vol))))

        for i, name in enumerate(sorted(services), start=10):
            svc = services[name]
            prefix = f"{i:02d}-{sanitize_name(name)}"
            config_vars, secret_vars = split_env(svc.environment)
            if config_vars:
                docs.append((f"{prefix}-configmap.yaml", {
                    "apiVersion": "v1",
                    "kind": "ConfigMap",
                    "metadata": {"name": f"{sanitize_name(name)}-config", "namespace": namespace},
                    "data": config_vars,
                }))
            if secret_vars:
                docs.append((f"{prefix}-secret.yaml", {
                    "apiVersion": "v1",
                    "kind": "Secret",
                    "metadata": {"name": f"{sanitize_name(name)}-secret", "namespace": namespace},
                    "type": "Opaque",
                    "stringData": secret_vars,
                }))
            stateful = any(is_named_volume(v) for v in svc.volumes)
            docs.append((f"{prefix}-deployment.yaml", self.deployment(
                svc, namespace, 1 if stateful else replicas, bool(config_vars), bool(secret_vars), output
            )))
            if svc.ports:
                docs.append((f"{prefix}-service.yaml", self.service(svc, namespace)))
                if host and name in public:
                    docs.append((f"{prefix}-ingress.yaml", self.ingress(svc, namespace, host, config.ssl_enabled)))

        combined = []
        for filename, doc in docs:
            text = _dump(doc)
            output.add_k8s_manifest(filename, text)
            combined.append(text)
        output.add_k8s_manifest("manifests.yaml", "---\n".join(combined))
        output.main_file = "manifests.yaml"

        for r in results:
            for fname, content in r.configs.items():
                output.add_config(fname, content)
            for fname, content in r.scripts.items():
                output.add_script(f"scripts/{fname}", content)
        collect_notes(output, results)

        if any(is_sensitive_env(k, v) and "${" in str(v) for s in services.values() for k, v in s.environment.items()):
            output.add_manual_step("Replace ${...} placeholders in the Secret manifests before applying")
        output.add_manual_step("Apply: kubectl apply -f manifests.yaml")
        output.add_manual_step(f"Check pods: kubectl get pods -n {namespace}")
        output.summary = f"Generated {len(output.k8s_manifests)} manifests for {len(services)} services"
        return output

    def pvc(self, name: str, namespace: str, size_gb: int) -> dict:
        spec = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": f"{size_gb}Gi"}},
        }
        if self.storage_class:
            spec["storageClassName"] = self.storage_class
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": {"name": name, "namespace": namespace},
            "spec": spec,
        }

    def deployment(self, svc: DockerService, namespace: str, replicas: int,
                   has_config: bool, has_secret: bool, output: TargetOutput) -> dict:
        name = sanitize_name(svc.name)
        image = svc.image
        if not image:
            image = f"registry.local/{name}:latest"
            output.add_warning(f"Service '{svc.name}' is built locally; push it as {image} or update the image")

        container: Dict[str, object] = {"name": name, "image": image, "imagePullPolicy": "IfNotPresent"}
        if svc.command:
            container["args"] = list(svc.command)
        if svc.ports:
            container["ports"] = [{"containerPort": _port(p)} for p in svc.ports]
        env_from = []
        if has_config:
            env_from.append({"configMapRef": {"name": f"{name}-config"}})
        if has_secret:
            env_from.append({"secretRef": {"name": f"{name}-secret"}})
        if env_from:
            container["envFrom"] = env_from

        mounts, volumes = [], []
        for spec in svc.volumes:
            parts = spec.split(":")
            if not is_named_volume(spec) or len(parts) < 2:
                continue
            vol = sanitize_name(parts[0])
            mount = {"name": vol, "mountPath": parts[1]}
            if len(parts) > 2 and parts[2] == "ro":
                mount["readOnly"] = True
            mounts.append(mount)
            if vol not in [v["name"] for v in volumes]:
                volumes.append({"name": vol, "persistentVolumeClaim": {"claimName": vol}})
        if mounts:
            container["volumeMounts"] = mounts
        probe = _probe(svc.healthcheck) if svc.healthcheck else None
        if probe:
            container["livenessProbe"] = probe
        container["resources"] = _resources(svc)

        pod: Dict[str, object] = {"containers": [container]}
        if volumes:
            pod["volumes"] = volumes
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": name, "namespace": namespace, "labels": {"app": name}},
            "spec": {
                "replicas": replicas,
                "selector": {"matchLabels": {"app": name}},
                "template": {"metadata": {"labels": {"app": name}}, "spec": pod},
            },
        }

    def service(self, svc: DockerService, namespace: str) -> dict:
        name = sanitize_name(svc.name)
        ports = []
        for p in svc.ports:
            port = _port(p)
            if port not in [x["port"] for x in ports]:
                ports.append({"name": f"p{port}", "port": port, "targetPort": port})
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": name, "namespace": namespace},
            "spec": {"selector": {"app": name}, "ports": ports},
        }

    def ingress(self, svc: DockerService, namespace: str, host: str, tls: bool) -> dict:
        name = sanitize_name(svc.name)
        fqdn = f"{name}.{host}"
        spec: Dict[str, object] = {
            "ingressClassName": self.ingress_class,
            "rules": [{
                "host": fqdn,
                "http": {"paths": [{
                    "path": "/",
                    "pathType": "Prefix",
                    "backend": {"service": {"name": name, "port": {"number": _port(svc.ports[0])}}},
                }]},
            }],
        }
        if tls:
            spec["tls"] = [{"hosts": [fqdn], "secretName": f"{name}-tls"}]
        return {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "Ingress",
            "metadata": {"name": name, "namespace": namespace},
            "spec": spec,
        }

    def estimate_cost(self, results: Sequence[MappingResult], config: TargetConfig) -> CostEstimate:
        estimate = CostEstimate(currency="EUR")
        estimate.add_note("Self-hosted cluster; costs depend on the nodes it runs on")
        estimate.calculate()
        return estimate


class K3sGenerator(KubernetesGenerator):
    """Same manifests, tuned for k3s defaults (Traefik ingress, local-path storage)."""

    ingress_class = "traefik"
    storage_class = "local-path"

    def platform(self) -> Platform:
        return Platform.K3S

    @property
    def description(self) -> str:
        return "k3s manifests using the bundled Traefik ingress and local-path storage"
