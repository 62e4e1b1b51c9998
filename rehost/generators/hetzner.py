"""
Hetzner Cloud: Terraform for the servers, cloud-init that installs Docker and
drops the compose bundle in place, and a deploy script tying them together.
"""
from dataclasses import replace
from typing import List, Sequence

import yaml
from jinja2 import Environment

from rehost.generators.base import Generator, collect_notes, require_services
from rehost.generators.compose import ComposeGenerator
from rehost.mappers.base import sanitize_name
from rehost.models.mapping import MappingResult
from rehost.models.target import CostEstimate, HALevel, Platform, TargetConfig, TargetOutput, ha_levels_up_to
from rehost.pricing import get_pricing
from rehost.sizing import calculate_total_cost, extract_requirements, select_instance, server_count

DEFAULT_LOCATION = "fsn1"
FALLBACK_SERVER_TYPE = "cx21"
LOAD_BALANCER_PRICE = 5.49
FLOATING_IP_PRICE = 4.00
EGRESS_PER_SERVER_GB = 100
SYSTEM_DISK_PER_SERVER_GB = 20
BACKUP_DISK_PER_DATABASE_GB = 10

_DATABASE_CATEGORIES = {"sql_database", "nosql_database", "cache"}

_ENV = Environment(autoescape=False, keep_trailing_newline=True, trim_blocks=True, lstrip_blocks=True)

_MAIN_TF = """\
# Hetzner Cloud infrastructure for {{ project }}
# Generated by rehost

terraform {
  required_version = ">= 1.0.0"

  required_providers {
    hcloud = {
      source  = "hetznercloud/hcloud"
      version = "~> 1.45"
    }
  }
}

provider "hcloud" {
  token = var.hcloud_token
}

locals {
  project_name = "{{ project }}"
  common_labels = {
    project     = local.project_name
    managed_by  = "terraform"
    environment = var.environment
  }
}

resource "hcloud_ssh_key" "default" {
  name       = "${local.project_name}-key"
  public_key = var.ssh_public_key
}

resource "hcloud_network" "main" {
  name     = "${local.project_name}-net"
  ip_range = "10.0.0.0/16"
  labels   = local.common_labels
}

resource "hcloud_network_subnet" "main" {
  network_id   = hcloud_network.main.id
  type         = "cloud"
  network_zone = "eu-central"
  ip_range     = "10.0.1.0/24"
}

resource "hcloud_firewall" "default" {
  name   = "${local.project_name}-fw"
  labels = local.common_labels
{% for port in firewall_ports %}

  rule {
    direction  = "in"
    protocol   = "tcp"
    port       = "{{ port }}"
    source_ips = ["0.0.0.0/0", "::/0"]
  }
{% endfor %}
}

resource "hcloud_server" "app" {
  count        = var.server_count
  name         = "${local.project_name}-${count.index + 1}"
  server_type  = var.server_type
  image        = "ubuntu-24.04"
  location     = var.location
  ssh_keys     = [hcloud_ssh_key.default.id]
  firewall_ids = [hcloud_firewall.default.id]
  user_data    = file("${path.module}/cloud-init.yaml")
  labels       = local.common_labels

  network {
    network_id = hcloud_network.main.id
  }

  depends_on = [hcloud_network_subnet.main]
}
{% if storage_gb %}

resource "hcloud_volume" "data" {
  count     = var.server_count
  name      = "${local.project_name}-data-${count.index + 1}"
  size      = var.volume_size
  server_id = hcloud_server.app[count.index].id
  automount = true
  format    = "ext4"
  labels    = local.common_labels
}
{% endif %}
{% if multi_server %}

resource "hcloud_load_balancer" "web" {
  name               = "${local.project_name}-lb"
  load_balancer_type = "lb11"
  location           = var.location
  labels             = local.common_labels
}

resource "hcloud_load_balancer_network" "web" {
  load_balancer_id = hcloud_load_balancer.web.id
  network_id       = hcloud_network.main.id
}

resource "hcloud_load_balancer_target" "app" {
  count            = var.server_count
  type             = "server"
  load_balancer_id = hcloud_load_balancer.web.id
  server_id        = hcloud_server.app[count.index].id
  use_private_ip   = true

  depends_on = [hcloud_load_balancer_network.web]
}
{% for port in [80, 443] %}

resource "hcloud_load_balancer_service" "port_{{ port }}" {
  load_balancer_id = hcloud_load_balancer.web.id
  protocol         = "tcp"
  listen_port      = {{ port }}
  destination_port = {{ port }}
}
{% endfor %}

resource "hcloud_floating_ip" "main" {
  type          = "ipv4"
  home_location = var.location
  labels        = local.common_labels
}

resource "hcloud_floating_ip_assignment" "main" {
  floating_ip_id = hcloud_floating_ip.main.id
  server_id      = hcloud_server.app[0].id
}
{% endif %}
"""

_VARIABLES_TF = """\
variable "hcloud_token" {
  description = "Hetzner Cloud API token"
  type        = string
  sensitive   = true
}

variable "ssh_public_key" {
  description = "SSH public key used to log in to the servers"
  type        = string
}

variable "environment" {
  description = "Environment label"
  type        = string
  default     = "production"
}

variable "location" {
  description = "Hetzner location (fsn1, nbg1, hel1, ash, hil)"
  type        = string
  default     = "{{ location }}"
}

variable "server_type" {
  description = "Server type sized for {{ requirements }}"
  type        = string
  default     = "{{ server_type }}"
}

variable "server_count" {
  description = "Number of servers for HA level {{ ha_level }}"
  type        = number
  default     = {{ servers }}
}
{% if storage_gb %}

variable "volume_size" {
  description = "Data volume size per server in GB"
  type        = number
  default     = {{ storage_gb }}
}
{% endif %}
"""

_OUTPUTS_TF = """\
output "server_ips" {
  description = "Public IPv4 addresses of the servers"
  value       = hcloud_server.app[*].ipv4_address
}

output "server_names" {
  value = hcloud_server.app[*].name
}
{% if multi_server %}

output "load_balancer_ip" {
  value = hcloud_load_balancer.web.ipv4
}

output "floating_ip" {
  value = hcloud_floating_ip.main.ip_address
}
{% endif %}
"""

_TFVARS = """\
# Copy to terraform.tfvars and fill in
hcloud_token   = "your-hetzner-api-token"
ssh_public_key = "ssh-ed25519 AAAA... you@example.com"
location       = "{{ location }}"
server_type    = "{{ server_type }}"
server_count   = {{ servers }}
{% if storage_gb %}
volume_size    = {{ storage_gb }}
{% endif %}
"""

_DEPLOY_SH = """\
#!/bin/sh
# Provision {{ project }} on Hetzner Cloud
set -e

if [ -z "$HCLOUD_TOKEN" ] && [ ! -f terraform.tfvars ]; then
  echo "Set HCLOUD_TOKEN or create terraform.tfvars from terraform.tfvars.example" >&2
  exit 1
fi
if [ -n "$HCLOUD_TOKEN" ]; then
  export TF_VAR_hcloud_token="$HCLOUD_TOKEN"
fi

terraform init
terraform plan -out=tfplan
terraform apply tfplan

echo "Servers:"
terraform output server_ips
echo "cloud-init installs Docker and starts the stack in {{ app_dir }}; allow a few minutes."
"""


def _render(template: str, **context) -> str:
    return _ENV.from_string(template).render(**context)


def cloud_init(project: str, app_dir: str, files: dict) -> str:
    """cloud-config that installs Docker, writes the bundle and starts it."""
    doc = {
        "package_update": True,
        "packages": ["ca-certificates", "curl"],
        "write_files": [
            {"path": f"{app_dir}/{name}", "content": content,
             "permissions": "0755" if name.endswith(".sh") else "0644"}
            for name, content in sorted(files.items())
        ],
        "runcmd": [
            "curl -fsSL https://get.docker.com | sh",
            "systemctl enable --now docker",
            f"cd {app_dir} && [ -f .env ] || cp .env.example .env 2>/dev/null || true",
            f"cd {app_dir} && docker compose -p {project} up -d",
        ],
    }
    return "#cloud-config\n" + yaml.safe_dump(doc, sort_keys=False, default_flow_style=False)


class HetznerGenerator(Generator):
    def platform(self) -> Platform:
        return Platform.HETZNER

    @property
    def description(self) -> str:
        return "Hetzner Cloud servers via Terraform, running the Docker Compose bundle"

    def supported_ha_levels(self) -> List[HALevel]:
        return ha_levels_up_to(HALevel.CLUSTER)

    def required_credentials(self) -> List[str]:
        return ["HCLOUD_TOKEN"]

    def validate(self, results: Sequence[MappingResult], config: TargetConfig) -> None:
        super().validate(results, config)
        require_services(self.platform(), results)

    def generate(self, results: Sequence[MappingResult], config: TargetConfig) -> TargetOutput:
        output = TargetOutput(platform=self.platform().value)
        project = sanitize_name(config.project_name)
        location = config.variables.get("location", DEFAULT_LOCATION)
        app_dir = f"/opt/{project}"

        requirements = extract_requirements(results)
        instance = select_instance("hetzner", requirements)
        server_type = instance.type if instance else FALLBACK_SERVER_TYPE
        servers = server_count(config.ha_level)
        storage_gb = requirements.storage_gb if any(r.volumes for r in results) else 0
        context = dict(
            project=project,
            location=location,
            server_type=server_type,
            servers=servers,
            storage_gb=storage_gb,
            ha_level=config.ha_level.value,
            multi_server=config.ha_level.requires_multi_server,
            requirements=requirements.description,
            firewall_ports=[22, 80, 443],
            app_dir=app_dir,
        )

        # the compose bundle runs on every server
        bundle = TargetOutput(platform=Platform.DOCKER_COMPOSE.value)
        compose_config = replace(config, platform=Platform.DOCKER_COMPOSE, ha_level=HALevel.NONE)
        ComposeGenerator().bundle(results, compose_config, bundle)
        for name, content in bundle.files.items():
            output.add_file(f"app/{name}", content)
        for w in bundle.warnings:
            output.add_warning(w)

        output.add_terraform_file("main.tf", _render(_MAIN_TF, **context))
        output.add_terraform_file("variables.tf", _render(_VARIABLES_TF, **context))
        output.add_terraform_file("outputs.tf", _render(_OUTPUTS_TF, **context))
        output.add_terraform_file("terraform.tfvars.example", _render(_TFVARS, **context))
        output.add_config("cloud-init.yaml", cloud_init(project, app_dir, bundle.files))
        output.add_script("deploy.sh", _render(_DEPLOY_SH, **context))
        output.main_file = "main.tf"

        collect_notes(output, results)
        if config.ha_level.requires_multi_server:
            output.add_warning("Multi-server setups need shared or replicated storage for stateful services.")
            output.add_manual_step("Configure database replication between servers")
        output.add_manual_step("Create an API token in the Hetzner Cloud console and export HCLOUD_TOKEN")
        output.add_manual_step("Copy terraform.tfvars.example to terraform.tfvars and set ssh_public_key")
        output.add_manual_step("Run ./deploy.sh")
        if config.base_url:
            output.add_manual_step(f"Point DNS for {config.base_url} at the server (or load balancer) IP")

        output.estimated_cost = self.estimate_cost(results, config)
        output.summary = (
            f"{servers} x {server_type} in {location} for {len(bundle.files)} bundled files; "
            f"estimated {output.estimated_cost.total:.2f} {output.estimated_cost.currency}/month"
        )
        return output

    def estimate_cost(self, results: Sequence[MappingResult], config: TargetConfig) -> CostEstimate:
        pricing = get_pricing("hetzner")
        requirements = extract_requirements(results)
        servers = server_count(config.ha_level)
        databases = sum(1 for r in results if r is not None and r.source_category in _DATABASE_CATEGORIES)
        storage_gb = requirements.storage_gb + servers * SYSTEM_DISK_PER_SERVER_GB + databases * BACKUP_DISK_PER_DATABASE_GB
        egress_gb = servers * EGRESS_PER_SERVER_GB
        breakdown = calculate_total_cost("hetzner", requirements, config.ha_level, storage_gb, egress_gb)

        estimate = CostEstimate(currency=pricing.currency)
        if breakdown is None:
            estimate.add_note("No Hetzner instance pricing available")
            estimate.calculate()
            return estimate
        estimate.compute = breakdown.compute
        estimate.storage = breakdown.storage
        estimate.network = breakdown.network
        estimate.add_detail("servers", breakdown.compute)
        estimate.add_detail("volumes", round(breakdown.storage, 2))
        instance = pricing.find_instance(breakdown.instance_type)
        estimate.add_note(
            f"{servers} x {instance.type} @ {instance.price_per_month:.2f} EUR "
            f"({instance.vcpus} vCPU, {instance.memory_gb:.0f} GB RAM)"
        )
        estimate.add_note(f"{storage_gb} GB storage @ {pricing.storage.price_per_gb_month:.3f} EUR/GB")
        if config.ha_level.requires_multi_server:
            estimate.network += LOAD_BALANCER_PRICE + FLOATING_IP_PRICE
            estimate.add_note(f"Load balancer LB11 @ {LOAD_BALANCER_PRICE:.2f} EUR")
            estimate.add_note(f"Floating IP @ {FLOATING_IP_PRICE:.2f} EUR")
        estimate.add_detail("networking", round(estimate.network, 2))
        if databases:
            estimate.add_note(f"{databases} database(s) run as containers (included in compute)")
        estimate.add_note(f"Resource requirements: {requirements.description}")
        estimate.calculate()
        return estimate
