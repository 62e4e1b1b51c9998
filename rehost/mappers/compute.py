import base64
import binascii
import json
import re
from typing import Any, Dict, List, Tuple

from rehost.errors import MappingError
from rehost.mappers.base import (
    BaseMapper,
    config_block,
    config_bool,
    config_int,
    config_str,
    sanitize_name,
    tag_environment,
)
from rehost.models.mapping import DeployConfig, DockerService, MappingResult, ResourceLimits
from rehost.models.resource import Resource

# instance size suffix -> (cpus, memory); checked longest suffix first
_SIZE_LIMITS: List[Tuple[str, str, str]] = [
    ("8xlarge", "32.0", "128G"),
    ("4xlarge", "16.0", "64G"),
    ("2xlarge", "8.0", "32G"),
    ("xlarge", "4.0", "16G"),
    ("large", "2.0", "8G"),
    ("medium", "2.0", "4G"),
    ("small", "1.0", "2G"),
    ("micro", "0.5", "1G"),
    ("nano", "0.25", "512M"),
]

_OS_IMAGES = [
    ("ubuntu", "ubuntu:22.04"),
    ("debian", "debian:12"),
    ("alpine", "alpine:3.18"),
    ("amzn", "amazonlinux:2023"),
    ("amazon", "amazonlinux:2023"),
    ("rhel", "redhat/ubi9:latest"),
    ("redhat", "redhat/ubi9:latest"),
]


def instance_limits(instance_type: str) -> ResourceLimits:
    size = instance_type.rsplit(".", 1)[-1]
    for suffix, cpus, memory in _SIZE_LIMITS:
        if size.endswith(suffix):
            return ResourceLimits(cpus=cpus, memory=memory)
    return ResourceLimits(cpus="1.0", memory="1G")


def _base_image(resource: Resource) -> str:
    hints = " ".join([
        resource.tags.get("OS", ""),
        config_str(resource, "ami_name"),
    ]).lower()
    for needle, image in _OS_IMAGES:
        if needle in hints:
            return image
    return "ubuntu:22.04"


def _decode_user_data(raw: str) -> str:
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        return raw
    try:
        text = decoded.decode("utf-8")
    except UnicodeDecodeError:
        return raw
    printable = sum(1 for ch in text if ch.isprintable() or ch in "\n\r\t")
    return text if text and printable / len(text) > 0.95 else raw


class EC2Mapper(BaseMapper):
    TYPE = "aws_instance"

    def build(self, resource: Resource, result: MappingResult) -> None:
        svc = result.docker_service
        name = svc.name
        instance_type = config_str(resource, "instance_type")
        svc.image = _base_image(resource)
        svc.environment.update({"INSTANCE_NAME": resource.name, "INSTANCE_TYPE": instance_type})
        svc.environment.update(tag_environment(resource))
        svc.volumes.append(f"./data/{name}:/data")
        svc.labels["rehost.instance_type"] = instance_type
        svc.deploy = DeployConfig(limits=instance_limits(instance_type))

        user_data = config_str(resource, "user_data")
        if user_data:
            script = _decode_user_data(user_data)
            dockerfile = f"docker/{name}/Dockerfile"
            result.add_config(dockerfile, "\n".join([
                f"FROM {svc.image}",
                "COPY user-data.sh /usr/local/bin/user-data.sh",
                "RUN chmod +x /usr/local/bin/user-data.sh && /usr/local/bin/user-data.sh",
                'CMD ["sleep", "infinity"]',
                "",
            ]))
            result.add_config(f"docker/{name}/user-data.sh", script)
            svc.build_context = f"./docker/{name}"
            svc.image = f"{name}:latest"
            result.add_manual_step(f"Review docker/{name}/user-data.sh; boot-time scripts may assume a full VM")

        result.add_script(f"setup_{name}.sh", "\n".join([
            "#!/bin/sh",
            "set -e",
            f"# Prepare host directories for {resource.name}",
            f"mkdir -p ./data/{name}",
            "",
        ]))

        if resource.config.get("iam_instance_profile"):
            result.add_warning(
                f"IAM instance profile '{config_str(resource, 'iam_instance_profile')}' has no container equivalent; "
                "configure equivalent permissions manually."
            )
            result.add_manual_step("Review IAM policies and configure equivalent access controls")
        if config_bool(resource, "monitoring"):
            result.add_warning("Detailed monitoring is enabled; set up monitoring for the self-hosted environment.")
        if config_str(resource, "key_name"):
            result.add_warning("SSH key pair detected; configure SSH access to the Docker host as needed.")
        if config_bool(resource, "associate_public_ip_address") or config_str(resource, "public_ip"):
            result.add_warning("Instance had a public IP; publish ports explicitly or route through the reverse proxy.")
        result.add_manual_step("Ensure all required application dependencies are installed in the image")


# ------------------------------------------------------------------ ECS

def _lower_first(d: Dict[str, Any]) -> Dict[str, Any]:
    return {(k[:1].lower() + k[1:]) if k else k: v for k, v in d.items()}


def _container_definitions(resource: Resource) -> Any:
    raw = resource.config.get("container_definitions")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            if raw.lstrip().startswith("${"):
                return raw
            raise MappingError(resource.id, f"container_definitions is not valid JSON: {exc}") from exc
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise MappingError(resource.id, "container_definitions must be a list")
    return [_lower_first(c) for c in raw if isinstance(c, dict)]


def _to_int(val: Any) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return 0


def _container_service(container: Dict[str, Any], family: str) -> DockerService:
    svc = DockerService(name=sanitize_name(f"{family}-{container.get('name', 'container')}"))
    svc.image = str(container.get("image", ""))
    for pm in container.get("portMappings") or []:
        if not isinstance(pm, dict):
            continue
        pm = _lower_first(pm)
        cport = pm.get("containerPort")
        if cport:
            svc.ports.append(f"{pm.get('hostPort') or cport}:{cport}")
    for env in container.get("environment") or []:
        if isinstance(env, dict):
            env = _lower_first(env)
            svc.environment[str(env.get("name"))] = str(env.get("value", ""))
    command = container.get("command")
    if isinstance(command, list):
        svc.command = [str(c) for c in command]
    cpu = _to_int(container.get("cpu"))
    memory = _to_int(container.get("memory")) or _to_int(container.get("memoryReservation"))
    limits = ResourceLimits(
        cpus=f"{cpu / 1024:g}" if cpu else "",
        memory=f"{memory}M" if memory else "",
    )
    if limits.cpus or limits.memory:
        svc.deploy = DeployConfig(limits=limits)
    for dep in container.get("dependsOn") or []:
        if isinstance(dep, dict):
            dep = _lower_first(dep)
            if dep.get("containerName"):
                svc.depends_on.append(sanitize_name(f"{family}-{dep['containerName']}"))
    return svc


class ECSTaskDefinitionMapper(BaseMapper):
    TYPE = "aws_ecs_task_definition"

    def build(self, resource: Resource, result: MappingResult) -> None:
        family = config_str(resource, "family") or resource.name
        containers = _container_definitions(resource)
        if isinstance(containers, str):
            result.docker_service.image = "REPLACE_ME"
            result.add_warning("container_definitions is an unevaluated expression; containers could not be read.")
            result.add_manual_step(f"Fill in the containers of task family '{family}' by hand")
            return
        if not containers:
            raise MappingError(resource.id, "task definition declares no containers")

        services = [_container_service(c, family) for c in containers]
        primary = services[0]
        primary.labels.update(result.docker_service.labels)
        result.docker_service = primary
        for svc in services[1:]:
            result.add_service(svc)

        volumes = resource.config.get("volume") or []
        for vol in [volumes] if isinstance(volumes, dict) else volumes:
            if isinstance(vol, dict) and vol.get("name"):
                result.add_warning(f"Task volume '{vol['name']}' must be mapped to a host path or named volume.")
        if config_str(resource, "task_role_arn") or config_str(resource, "execution_role_arn"):
            result.add_warning("Task IAM roles have no container equivalent; provide credentials explicitly.")
        if "FARGATE" in str(resource.config.get("requires_compatibilities", "")):
            result.add_manual_step("Fargate sizing was per task; check the per-container limits that were derived")


# ------------------------------------------------------------------ Lambda

_RUNTIME_IMAGES = [
    (re.compile(r"^python(\d+\.\d+)"), "python:{}-slim"),
    (re.compile(r"^nodejs(\d+)"), "node:{}-alpine"),
    (re.compile(r"^java(\d+)"), "eclipse-temurin:{}-jre"),
    (re.compile(r"^dotnet(\d+)"), "mcr.microsoft.com/dotnet/runtime:{}.0"),
    (re.compile(r"^ruby(\d+\.\d+)"), "ruby:{}-slim"),
    (re.compile(r"^(go)"), "golang:1.22-alpine"),
    (re.compile(r"^(provided)"), "debian:12-slim"),
]


def runtime_image(runtime: str) -> str:
    for pattern, image in _RUNTIME_IMAGES:
        m = pattern.match(runtime)
        if m:
            return image.format(m.group(1))
    return "debian:12-slim"


class LambdaMapper(BaseMapper):
    TYPE = "aws_lambda_function"

    def build(self, resource: Resource, result: MappingResult) -> None:
        svc = result.docker_service
        runtime = config_str(resource, "runtime")
        if config_str(resource, "package_type") == "Image" or config_str(resource, "image_uri"):
            svc.image = config_str(resource, "image_uri") or "REPLACE_ME"
            result.add_manual_step("Push the function image to a registry reachable from the new host")
        else:
            svc.image = runtime_image(runtime)
            svc.build_context = f"./functions/{svc.name}"
            result.add_config(f"functions/{svc.name}/Dockerfile", "\n".join([
                f"FROM {svc.image}",
                "WORKDIR /app",
                "COPY . /app",
                f"# handler: {config_str(resource, 'handler')}",
                "",
            ]))
            result.add_manual_step(f"Copy the function source into functions/{svc.name}/ and set its entrypoint")

        env = config_block(resource, "environment").get("variables") or {}
        if isinstance(env, dict):
            svc.environment.update({str(k): str(v) for k, v in env.items()})
        svc.environment["FUNCTION_TIMEOUT"] = str(config_int(resource, "timeout", 3))
        svc.deploy = DeployConfig(limits=ResourceLimits(memory=f"{config_int(resource, 'memory_size', 128)}M"))

        result.add_warning(
            "Lambda functions become long-running containers; event triggers and scaling to zero are not reproduced."
        )
        if config_str(resource, "role"):
            result.add_warning("Execution role permissions must be granted another way (credentials, network policy).")
        if config_int(resource, "reserved_concurrent_executions", -1) >= 0:
            result.add_warning("Reserved concurrency has no container equivalent.")
        result.add_manual_step("Wire the function's triggers (HTTP route, queue consumer or cron) to the container")
