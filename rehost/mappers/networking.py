from rehost.mappers.base import BaseMapper, config_bool, config_str, sanitize_name
from rehost.models.mapping import MappingResult
from rehost.models.resource import Resource

TRAEFIK_IMAGE = "traefik:v3.0"


class ALBMapper(BaseMapper):
    """Application / network load balancer -> Traefik reverse proxy."""

    TYPE = "aws_lb"

    def build(self, resource: Resource, result: MappingResult) -> None:
        svc = result.docker_service
        svc.name = "traefik"
        svc.image = TRAEFIK_IMAGE
        svc.command = [
            "--providers.docker=true",
            "--providers.docker.exposedbydefault=false",
            "--providers.file.directory=/etc/traefik/dynamic",
            "--entrypoints.web.address=:80",
            "--entrypoints.websecure.address=:443",
        ]
        svc.ports.extend(["80:80", "443:443"])
        svc.volumes.extend([
            "/var/run/docker.sock:/var/run/docker.sock:ro",
            "./config/traefik/dynamic:/etc/traefik/dynamic:ro",
        ])
        svc.networks.append("web")
        result.add_network("web")

        lb_type = config_str(resource, "load_balancer_type", "application")
        if lb_type == "network":
            result.add_warning("Network load balancer: configure TCP routers in Traefik for the forwarded ports.")
        if config_bool(resource, "internal"):
            result.add_warning("Load balancer was internal; do not publish ports 80/443 on a public interface.")
        if config_bool(resource, "enable_deletion_protection"):
            result.add_warning("Deletion protection has no equivalent.")
        result.add_config(f"config/traefik/dynamic/{sanitize_name(resource.name)}.yml", "\n".join([
            "# Routers and services migrated from the load balancer listeners",
            "http:",
            "  middlewares:",
            "    redirect-to-https:",
            "      redirectScheme:",
            "        scheme: https",
            "",
        ]))
        result.add_manual_step("Recreate listener rules as Traefik routers (labels on the target services)")
        result.add_manual_step("Point DNS records at the new host")


class VPCMapper(BaseMapper):
    """A VPC becomes an isolated container network; no service is produced."""

    TYPE = "aws_vpc"

    def build(self, resource: Resource, result: MappingResult) -> None:
        result.docker_service = None
        result.add_network("internal")
        cidr = config_str(resource, "cidr_block")
        if cidr:
            result.add_warning(f"VPC CIDR {cidr} is not reproduced; containers use the Docker network's address pool.")
        result.add_manual_step("Recreate security group rules as host firewall rules")
