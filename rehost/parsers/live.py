"""
Live extractor: enumerate AWS resources through the cloud APIs (boto3).

Each scanner covers one service category in one region. A failing category
aborts the scan with LiveScanError unless ignore_errors is set, in which case
it is skipped and recorded as a diagnostic. Calls are never retried.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console

from rehost.errors import LiveScanError
from rehost.models.resource import Infrastructure, Resource, category_of

console = Console(stderr=True)

DEFAULT_REGION = "us-east-1"


def _tags(tag_list: Optional[Iterable[Dict[str, str]]]) -> Dict[str, str]:
    return {t.get("Key", ""): t.get("Value", "") for t in tag_list or [] if t.get("Key")}


def _pages(client, operation: str, key: str, **kwargs) -> Iterator[Dict[str, Any]]:
    for page in client.get_paginator(operation).paginate(**kwargs):
        yield from page.get(key, [])


def _created(value: Any) -> Optional[datetime]:
    return value if isinstance(value, datetime) else None


def scan_ec2(client, region: str, account_id: str) -> List[Resource]:
    out = []
    for reservation in _pages(client, "describe_instances", "Reservations"):
        for inst in reservation.get("Instances", []):
            if inst.get("State", {}).get("Name") == "terminated":
                continue
            iid = inst["InstanceId"]
            tags = _tags(inst.get("Tags"))
            out.append(Resource(
                id=iid,
                name=tags.get("Name") or iid,
                type="aws_instance",
                region=region,
                arn=f"arn:aws:ec2:{region}:{account_id}:instance/{iid}",
                config={
                    "id": iid,
                    "instance_type": inst.get("InstanceType", ""),
                    "ami": inst.get("ImageId", ""),
                    "key_name": inst.get("KeyName", ""),
                    "availability_zone": inst.get("Placement", {}).get("AvailabilityZone", ""),
                    "vpc_id": inst.get("VpcId", ""),
                    "subnet_id": inst.get("SubnetId", ""),
                    "private_ip": inst.get("PrivateIpAddress", ""),
                    "public_ip": inst.get("PublicIpAddress", ""),
                    "state": inst.get("State", {}).get("Name", ""),
                    "security_groups": [sg.get("GroupId") for sg in inst.get("SecurityGroups", [])],
                    "block_devices": [
                        {"device_name": bd.get("DeviceName"), "volume_id": bd["Ebs"].get("VolumeId")}
                        for bd in inst.get("BlockDeviceMappings", []) if "Ebs" in bd
                    ],
                },
                tags=tags,
                created_at=_created(inst.get("LaunchTime")),
            ))
    return out


def scan_s3(client, region: str, account_id: str) -> List[Resource]:
    out = []
    for bucket in client.list_buckets().get("Buckets", []):
        name = bucket["Name"]
        out.append(Resource(
            id=name,
            name=name,
            type="aws_s3_bucket",
            region=region,
            arn=f"arn:aws:s3:::{name}",
            config={"id": name, "bucket": name},
            created_at=_created(bucket.get("CreationDate")),
        ))
    return out


def scan_rds(client, region: str, account_id: str) -> List[Resource]:
    out = []
    for db in _pages(client, "describe_db_instances", "DBInstances"):
        ident = db["DBInstanceIdentifier"]
        endpoint = db.get("Endpoint") or {}
        config = {
            "id": ident,
            "identifier": ident,
            "engine": db.get("Engine", ""),
            "engine_version": db.get("EngineVersion", ""),
            "instance_class": db.get("DBInstanceClass", ""),
            "allocated_storage": db.get("AllocatedStorage", 0),
            "storage_type": db.get("StorageType", ""),
            "multi_az": db.get("MultiAZ", False),
            "publicly_accessible": db.get("PubliclyAccessible", False),
            "storage_encrypted": db.get("StorageEncrypted", False),
            "port": endpoint.get("Port"),
            "endpoint": endpoint.get("Address", ""),
            "db_name": db.get("DBName", ""),
            "username": db.get("MasterUsername", ""),
            "backup_retention_period": db.get("BackupRetentionPeriod", 0),
            "vpc_security_group_ids": [
                sg.get("VpcSecurityGroupId") for sg in db.get("VpcSecurityGroups", [])
            ],
        }
        if db.get("DBClusterIdentifier"):
            config["db_cluster_identifier"] = db["DBClusterIdentifier"]
        out.append(Resource(
            id=ident,
            name=ident,
            type="aws_db_instance",
            region=region,
            arn=db.get("DBInstanceArn", ""),
            config=config,
            tags=_tags(db.get("TagList")),
            created_at=_created(db.get("InstanceCreateTime")),
        ))
    return out


def scan_sqs(client, region: str, account_id: str) -> List[Resource]:
    out = []
    for url in _pages(client, "list_queues", "QueueUrls"):
        name = url.rstrip("/").rsplit("/", 1)[-1]
        attrs = client.get_queue_attributes(QueueUrl=url, AttributeNames=["All"]).get("Attributes", {})
        out.append(Resource(
            id=name,
            name=name,
            type="aws_sqs_queue",
            region=region,
            arn=attrs.get("QueueArn", ""),
            config={
                "id": url,
                "url": url,
                "name": name,
                "fifo_queue": attrs.get("FifoQueue") == "true",
                "visibility_timeout_seconds": int(attrs.get("VisibilityTimeout", 30)),
                "message_retention_seconds": int(attrs.get("MessageRetentionPeriod", 345600)),
                "delay_seconds": int(attrs.get("DelaySeconds", 0)),
                "redrive_policy": attrs.get("RedrivePolicy", ""),
            },
        ))
    return out


def scan_elasticache(client, region: str, account_id: str) -> List[Resource]:
    out = []
    for cluster in _pages(client, "describe_cache_clusters", "CacheClusters"):
        cid = cluster["CacheClusterId"]
        out.append(Resource(
            id=cid,
            name=cid,
            type="aws_elasticache_cluster",
            region=region,
            arn=cluster.get("ARN", ""),
            config={
                "id": cid,
                "cluster_id": cid,
                "engine": cluster.get("Engine", ""),
                "engine_version": cluster.get("EngineVersion", ""),
                "node_type": cluster.get("CacheNodeType", ""),
                "num_cache_nodes": cluster.get("NumCacheNodes", 1),
            },
            created_at=_created(cluster.get("CacheClusterCreateTime")),
        ))
    return out


def scan_lambda(client, region: str, account_id: str) -> List[Resource]:
    out = []
    for fn in _pages(client, "list_functions", "Functions"):
        name = fn["FunctionName"]
        out.append(Resource(
            id=name,
            name=name,
            type="aws_lambda_function",
            region=region,
            arn=fn.get("FunctionArn", ""),
            config={
                "id": name,
                "function_name": name,
                "runtime": fn.get("Runtime", ""),
                "handler": fn.get("Handler", ""),
                "memory_size": fn.get("MemorySize", 128),
                "timeout": fn.get("Timeout", 3),
                "package_type": fn.get("PackageType", "Zip"),
                "role": fn.get("Role", ""),
                "environment": {"variables": (fn.get("Environment") or {}).get("Variables", {})},
            },
        ))
    return out


def scan_elbv2(client, region: str, account_id: str) -> List[Resource]:
    out = []
    for lb in _pages(client, "describe_load_balancers", "LoadBalancers"):
        name = lb["LoadBalancerName"]
        out.append(Resource(
            id=name,
            name=name,
            type="aws_lb",
            region=region,
            arn=lb.get("LoadBalancerArn", ""),
            config={
                "id": lb.get("LoadBalancerArn", name),
                "name": name,
                "load_balancer_type": lb.get("Type", "application"),
                "internal": lb.get("Scheme") == "internal",
                "vpc_id": lb.get("VpcId", ""),
                "dns_name": lb.get("DNSName", ""),
                "security_groups": lb.get("SecurityGroups", []),
                "subnets": [az.get("SubnetId") for az in lb.get("AvailabilityZones", [])],
            },
            created_at=_created(lb.get("CreatedTime")),
        ))
    return out


Scanner = Callable[[Any, str, str], List[Resource]]

# (category, boto3 service, resource type, scanner, global service)
SCANNERS: List[Tuple[str, str, str, Scanner, bool]] = [
    ("ec2",         "ec2",         "aws_instance",            scan_ec2,         False),
    ("s3",          "s3",          "aws_s3_bucket",           scan_s3,          True),
    ("rds",         "rds",         "aws_db_instance",         scan_rds,         False),
    ("sqs",         "sqs",         "aws_sqs_queue",           scan_sqs,         False),
    ("elasticache", "elasticache", "aws_elasticache_cluster", scan_elasticache, False),
    ("lambda",      "lambda",      "aws_lambda_function",     scan_lambda,      False),
    ("elbv2",       "elbv2",       "aws_lb",                  scan_elbv2,       False),
]


def _unique_id(infra: Infrastructure, r: Resource, region: str) -> str:
    """Bare name first; names shared across regions or services get qualified."""
    candidates = [r.id, f"{region}/{r.id}", f"{r.type}.{r.id}", f"{region}/{r.type}.{r.id}"]
    for candidate in candidates:
        if candidate not in infra.resources:
            return candidate
    n = 2
    while f"{candidates[-1]}-{n}" in infra.resources:
        n += 1
    return f"{candidates[-1]}-{n}"


class LiveExtractor:
    def __init__(
        self,
        session: Optional[boto3.session.Session] = None,
        regions: Sequence[str] = (),
        ignore_errors: bool = False,
        filter_types: Sequence[str] = (),
        filter_categories: Sequence[str] = (),
    ):
        self.session = session or boto3.session.Session()
        self.regions = list(regions) or [self.session.region_name or DEFAULT_REGION]
        self.ignore_errors = ignore_errors
        self.filter_types = set(filter_types)
        self.filter_categories = set(filter_categories)

    def _wanted(self, resource_type: str) -> bool:
        if self.filter_types and resource_type not in self.filter_types:
            return False
        if self.filter_categories and category_of(resource_type).value not in self.filter_categories:
            return False
        return True

    def _fail(self, infra: Infrastructure, category: str, region: str, exc: Exception) -> None:
        err = LiveScanError(category, region, str(exc))
        if not self.ignore_errors:
            raise err from exc
        console.print(f"[yellow]Warning:[/yellow] skipping {category} in {region}: {exc}")
        infra.record(err.message)

    def _account_id(self, infra: Infrastructure) -> str:
        try:
            identity = self.session.client("sts", region_name=self.regions[0]).get_caller_identity()
        except (BotoCoreError, ClientError) as exc:
            self._fail(infra, "sts", self.regions[0], exc)
            return ""
        infra.metadata["account_id"] = identity.get("Account", "")
        infra.metadata["caller_arn"] = identity.get("Arn", "")
        return identity.get("Account", "")

    def extract(self) -> Infrastructure:
        infra = Infrastructure(provider="aws", region=self.regions[0] if len(self.regions) == 1 else "")
        infra.metadata["source"] = "live"
        infra.metadata["regions"] = ",".join(self.regions)
        account_id = self._account_id(infra)

        for category, service, rtype, scanner, is_global in SCANNERS:
            if not self._wanted(rtype):
                continue
            for region in self.regions[:1] if is_global else self.regions:
                try:
                    found = scanner(self.session.client(service, region_name=region), region, account_id)
                except (BotoCoreError, ClientError) as exc:
                    self._fail(infra, category, region, exc)
                    continue
                for r in found:
                    r.id = _unique_id(infra, r, region)
                    infra.add_resource(r)
        return infra


def extract(
    session: Optional[boto3.session.Session] = None,
    regions: Sequence[str] = (),
    ignore_errors: bool = False,
    filter_types: Sequence[str] = (),
    filter_categories: Sequence[str] = (),
) -> Infrastructure:
    return LiveExtractor(session, regions, ignore_errors, filter_types, filter_categories).extract()
