import json
from typing import Any, Dict

from rehost.mappers.base import BaseMapper, config_block, config_bool, config_int, config_str, env_ref, sanitize_name
from rehost.models.mapping import AccessPolicy, HealthCheck, MappingResult, PolicyKind, Volume
from rehost.models.resource import Resource


def _policy_document(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip().startswith("{"):
        try:
            return json.loads(raw)
        except ValueError:
            return {}
    return {}


class S3Mapper(BaseMapper):
    TYPE = "aws_s3_bucket"

    def build(self, resource: Resource, result: MappingResult) -> None:
        bucket = config_str(resource, "bucket") or resource.name
        svc = result.docker_service
        svc.name = sanitize_name(f"minio-{bucket}")
        svc.image = "minio/minio:latest"
        svc.command = ["server", "/data", "--console-address", ":9001"]
        svc.environment.update({
            "MINIO_ROOT_USER": env_ref(svc.name, "ACCESS_KEY"),
            "MINIO_ROOT_PASSWORD": env_ref(svc.name, "SECRET_KEY"),
        })
        svc.ports.extend(["9000:9000", "9001:9001"])
        svc.volumes.append(f"{svc.name}-data:/data")
        svc.healthcheck = HealthCheck(
            test=["CMD", "curl", "-f", "http://localhost:9000/minio/health/live"],
            interval="30s", timeout="20s", retries=3,
        )
        svc.labels["rehost.bucket"] = bucket
        result.add_volume(Volume(name=f"{svc.name}-data"))
        result.add_network("internal")
        svc.networks.append("internal")

        setup = [
            "#!/bin/sh",
            "set -e",
            'mc alias set local http://localhost:9000 "$MINIO_ROOT_USER" "$MINIO_ROOT_PASSWORD"',
            f"mc mb --ignore-existing local/{bucket}",
        ]
        versioning = config_block(resource, "versioning")
        if config_bool(resource, "versioning_enabled") or versioning.get("enabled") is True:
            setup.append(f"mc version enable local/{bucket}")
            result.add_warning("Versioning was enabled; MinIO versioning needs erasure-coded storage to take effect.")
        setup.append(f"mc mirror s3/{bucket} local/{bucket}  # after 'mc alias set s3 ...'")
        result.add_script(f"setup_bucket_{sanitize_name(bucket)}.sh", "\n".join(setup) + "\n")

        if config_str(resource, "acl") in ("public-read", "public-read-write"):
            result.add_warning(f"Bucket '{bucket}' was public; set an anonymous policy with 'mc anonymous set'.")
        doc = _policy_document(resource.config.get("policy"))
        if doc:
            result.add_policy(AccessPolicy(
                name=f"{bucket}-policy",
                kind=PolicyKind.RESOURCE,
                document=doc,
                source_resource_id=resource.id,
                notes=["Translate principals to MinIO users before applying with 'mc admin policy create'"],
            ))
        if resource.config.get("lifecycle_rule"):
            result.add_manual_step(f"Recreate lifecycle rules for {bucket} with 'mc ilm'")
        if resource.config.get("website"):
            result.add_warning("Static website hosting is not provided by MinIO; serve the bucket through the reverse proxy.")
        result.add_manual_step(f"Set {env_ref(svc.name, 'ACCESS_KEY')[2:-1]} and {env_ref(svc.name, 'SECRET_KEY')[2:-1]} in .env")
        result.add_manual_step(f"Copy objects from s3://{bucket} with the bucket setup script")


class EBSMapper(BaseMapper):
    TYPE = "aws_ebs_volume"

    def build(self, resource: Resource, result: MappingResult) -> None:
        # storage only, no container
        result.docker_service = None
        size = config_int(resource, "size", 10)
        name = sanitize_name(resource.name)
        result.add_volume(Volume(
            name=name,
            driver="local",
            driver_opts={"size": f"{size}G"},
            labels={"rehost.source": resource.type, "rehost.volume_type": config_str(resource, "type", "gp3")},
        ))
        if config_bool(resource, "encrypted"):
            result.add_warning("Volume was encrypted; use an encrypted filesystem on the host.")
        if config_int(resource, "iops"):
            result.add_warning("Provisioned IOPS are not guaranteed by local volumes.")
        if config_str(resource, "snapshot_id"):
            result.add_manual_step(f"Restore snapshot {config_str(resource, 'snapshot_id')} and copy its data into volume {name}")
        else:
            result.add_manual_step(f"Copy data from the EBS volume into volume {name}")
