import json

from rehost.mappers.base import BaseMapper, config_bool, config_int, config_str, env_ref, sanitize_name
from rehost.models.mapping import HealthCheck, MappingResult, Volume
from rehost.models.resource import Resource


class SQSMapper(BaseMapper):
    """SQS queue -> RabbitMQ broker plus a definitions file declaring the queue."""

    TYPE = "aws_sqs_queue"

    def build(self, resource: Resource, result: MappingResult) -> None:
        queue = config_str(resource, "name") or resource.name
        svc = result.docker_service
        svc.name = "rabbitmq"
        svc.image = "rabbitmq:3.13-management-alpine"
        svc.environment.update({
            "RABBITMQ_DEFAULT_USER": "rehost",
            "RABBITMQ_DEFAULT_PASS": env_ref("rabbitmq", "PASSWORD"),
        })
        svc.ports.extend(["5672:5672", "15672:15672"])
        svc.volumes.extend([
            "rabbitmq-data:/var/lib/rabbitmq",
            "./config/rabbitmq/definitions.json:/etc/rabbitmq/definitions.json:ro",
        ])
        svc.healthcheck = HealthCheck(test=["CMD", "rabbitmq-diagnostics", "-q", "ping"], interval="30s", timeout="10s", retries=5)
        svc.networks.append("internal")
        result.add_volume(Volume(name="rabbitmq-data"))
        result.add_network("internal")

        arguments = {}
        retention = config_int(resource, "message_retention_seconds")
        if retention:
            arguments["x-message-ttl"] = retention * 1000
        if config_bool(resource, "fifo_queue"):
            arguments["x-single-active-consumer"] = True
            result.add_warning("FIFO ordering is approximated with a single active consumer; deduplication is not reproduced.")
        redrive = resource.config.get("redrive_policy")
        if redrive:
            if isinstance(redrive, str):
                try:
                    redrive = json.loads(redrive)
                except ValueError:
                    redrive = {}
            target = str((redrive or {}).get("deadLetterTargetArn", "")).rsplit(":", 1)[-1]
            if target:
                arguments["x-dead-letter-exchange"] = ""
                arguments["x-dead-letter-routing-key"] = target
            result.add_warning("Dead-letter redrive uses RabbitMQ dead-lettering; maxReceiveCount is not enforced.")

        definitions = {
            "queues": [{
                "name": queue,
                "vhost": "/",
                "durable": True,
                "auto_delete": False,
                "arguments": arguments,
            }],
        }
        result.add_config(f"config/rabbitmq/queues/{sanitize_name(queue)}.json", json.dumps(definitions, indent=2))
        if config_int(resource, "delay_seconds"):
            result.add_warning("Queue-level delivery delay needs the delayed-message plugin.")
        if config_int(resource, "visibility_timeout_seconds", 30) != 30:
            result.add_warning("Visibility timeout maps to consumer acknowledgement timeouts; review consumer settings.")
        result.add_manual_step("Switch producers and consumers from the SQS SDK to an AMQP client")
        result.add_manual_step("Merge config/rabbitmq/queues/*.json into config/rabbitmq/definitions.json")
