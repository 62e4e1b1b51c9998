"""
Template extractor for AWS CloudFormation (YAML or JSON).

Nested stacks (AWS::CloudFormation::Stack) whose TemplateURL is a local path
are followed; their resources are prefixed with the parent's logical ID.
"""
import json
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

import yaml
from rich.console import Console

from rehost.detect import detect_format
from rehost.errors import ExtractionError
from rehost.models.resource import Infrastructure, Resource

console = Console(stderr=True)

MAX_NESTING_DEPTH = 5

CFN_TYPE_MAP: Dict[str, str] = {
    "AWS::EC2::Instance":                           "aws_instance",
    "AWS::Lambda::Function":                        "aws_lambda_function",
    "AWS::ECS::Service":                            "aws_ecs_service",
    "AWS::ECS::TaskDefinition":                     "aws_ecs_task_definition",
    "AWS::EKS::Cluster":                            "aws_eks_cluster",
    "AWS::S3::Bucket":                              "aws_s3_bucket",
    "AWS::EC2::Volume":                             "aws_ebs_volume",
    "AWS::EFS::FileSystem":                         "aws_efs_file_system",
    "AWS::RDS::DBInstance":                         "aws_db_instance",
    "AWS::RDS::DBCluster":                          "aws_rds_cluster",
    "AWS::DynamoDB::Table":                         "aws_dynamodb_table",
    "AWS::ElastiCache::CacheCluster":               "aws_elasticache_cluster",
    "AWS::ElastiCache::ReplicationGroup":           "aws_elasticache_cluster",
    "AWS::ElasticLoadBalancingV2::LoadBalancer":    "aws_lb",
    "AWS::ApiGateway::RestApi":                     "aws_api_gateway_rest_api",
    "AWS::Route53::HostedZone":                     "aws_route53_zone",
    "AWS::CloudFront::Distribution":                "aws_cloudfront_distribution",
    "AWS::EC2::VPC":                                "aws_vpc",
    "AWS::Cognito::UserPool":                       "aws_cognito_user_pool",
    "AWS::SecretsManager::Secret":                  "aws_secretsmanager_secret",
    "AWS::IAM::Role":                               "aws_iam_role",
    "AWS::CertificateManager::Certificate":         "aws_acm_certificate",
    "AWS::SQS::Queue":                              "aws_sqs_queue",
    "AWS::SNS::Topic":                              "aws_sns_topic",
    "AWS::Events::Rule":                            "aws_cloudwatch_event_rule",
    "AWS::Kinesis::Stream":                         "aws_kinesis_stream",
    "AWS::KMS::Key":                                "aws_kms_key",
    "AWS::Logs::LogGroup":                          "aws_cloudwatch_log_group",
}

NESTED_STACK_TYPE = "AWS::CloudFormation::Stack"


# ------------------------------------------------------------------ CFN YAML loader
# yaml.safe_load can't handle CloudFormation short-form tags (!Ref, !Sub, ...).
# Turn them into the long-form dicts the JSON syntax uses.

class _CfnLoader(yaml.SafeLoader):
    pass


def _cfn_tag_constructor(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Any:
    key = "Ref" if tag_suffix == "Ref" else f"Fn::{tag_suffix}"
    if isinstance(node, yaml.ScalarNode):
        value: Any = loader.construct_scalar(node)
        if tag_suffix == "GetAtt":
            value = value.split(".", 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    elif isinstance(node, yaml.MappingNode):
        value = loader.construct_mapping(node, deep=True)
    else:
        value = None
    return {key: value}


_CfnLoader.add_multi_constructor("!", _cfn_tag_constructor)


_SNAKE_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def to_snake_case(name: str) -> str:
    """'DBInstanceClass' -> 'db_instance_class'"""
    return _SNAKE_RE.sub("_", name).lower()


def load_template(filepath: str) -> Dict[str, Any]:
    try:
        with open(filepath) as fh:
            if filepath.lower().endswith(".json"):
                template = json.load(fh)
            else:
                template = yaml.load(fh, Loader=_CfnLoader)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ExtractionError(filepath, str(exc)) from exc
    if not isinstance(template, dict) or not isinstance(template.get("Resources", {}), dict):
        raise ExtractionError(filepath, "not a CloudFormation template")
    return template


def _extract_refs(val: Any, refs: List[str]) -> None:
    """Collect logical IDs named by Ref / Fn::GetAtt anywhere in a value."""
    if isinstance(val, dict):
        ref = val.get("Ref")
        if isinstance(ref, str):
            refs.append(ref)
        att = val.get("Fn::GetAtt")
        if isinstance(att, list) and att and isinstance(att[0], str):
            refs.append(att[0])
        elif isinstance(att, str):
            refs.append(att.split(".")[0])
        for v in val.values():
            _extract_refs(v, refs)
    elif isinstance(val, list):
        for item in val:
            _extract_refs(item, refs)


def _resolve(val: Any, params: Dict[str, Any]) -> Any:
    if isinstance(val, dict):
        if isinstance(val.get("Ref"), str):
            ref = val["Ref"]
            if ref in params:
                default = params[ref]
                return default if default is not None else f"${{{ref}}}"
            return f"!Ref {ref}"
        sub = val.get("Fn::Sub")
        if isinstance(sub, str):
            return sub
        if isinstance(sub, list) and sub and isinstance(sub[0], str):
            return sub[0]
        join = val.get("Fn::Join")
        if isinstance(join, list) and len(join) == 2 and isinstance(join[0], str) and isinstance(join[1], list):
            items = [_resolve(i, params) for i in join[1]]
            if all(isinstance(i, (str, int, float)) for i in items):
                return join[0].join(str(i) for i in items)
        return {k: _resolve(v, params) for k, v in val.items()}
    if isinstance(val, list):
        return [_resolve(v, params) for v in val]
    return val


def _tags(props: Dict[str, Any]) -> Dict[str, str]:
    tags = props.get("Tags")
    out: Dict[str, str] = {}
    if isinstance(tags, list):
        for tag in tags:
            if isinstance(tag, dict) and "Key" in tag:
                out[str(tag["Key"])] = str(tag.get("Value", ""))
    elif isinstance(tags, dict):
        out = {str(k): str(v) for k, v in tags.items()}
    return out


def _depends_on(definition: Dict[str, Any]) -> List[str]:
    deps = definition.get("DependsOn")
    if isinstance(deps, str):
        return [deps]
    if isinstance(deps, list):
        return [d for d in deps if isinstance(d, str)]
    return []


def _is_local_url(url: str) -> bool:
    return "://" not in url and not url.startswith("s3:")


@dataclass
class _Walk:
    infra: Infrastructure
    ignore_errors: bool


def _parse_template(
    filepath: str,
    walk: _Walk,
    prefix: str = "",
    depth: int = 0,
    overrides: Optional[Dict[str, Any]] = None,
) -> None:
    template = load_template(filepath)
    infra = walk.infra

    params: Dict[str, Any] = {}
    for pname, pdef in (template.get("Parameters") or {}).items():
        params[pname] = pdef.get("Default") if isinstance(pdef, dict) else None
    params.update(overrides or {})

    meta_prefix = prefix.rstrip("/") + "." if prefix else ""
    if template.get("Description"):
        infra.metadata.setdefault(f"{meta_prefix}description", str(template["Description"]))
    if template.get("AWSTemplateFormatVersion"):
        infra.metadata.setdefault("template_version", str(template["AWSTemplateFormatVersion"]))
    for pname, value in params.items():
        if value is not None:
            infra.metadata[f"{meta_prefix}param.{pname}"] = str(value)

    pending_refs: Dict[str, List[str]] = {}
    for logical_id, definition in template["Resources"].items():
        if not isinstance(definition, dict):
            continue
        cfn_type = str(definition.get("Type", ""))
        props = definition.get("Properties") or {}

        if cfn_type == NESTED_STACK_TYPE:
            _nested_stack(filepath, walk, prefix + logical_id + "/", depth, props, params)
            continue

        rtype = CFN_TYPE_MAP.get(cfn_type)
        if rtype is None:
            continue

        tags = _tags(_resolve(props, params))
        rid = prefix + logical_id
        r = Resource(
            id=rid,
            name=tags.get("Name") or logical_id,
            type=rtype,
            config={to_snake_case(k): _resolve(v, params) for k, v in props.items()},
            tags=tags,
            source_file=filepath,
        )
        r.config["cfn_type"] = cfn_type
        if definition.get("Condition"):
            r.config["condition"] = definition["Condition"]
        for dep in _depends_on(definition):
            r.add_dependency(prefix + dep)
        refs: List[str] = []
        _extract_refs(props, refs)
        pending_refs[rid] = refs
        infra.add_resource(r)

    # Ref / GetAtt only become edges when they name a resource of this template
    for rid, refs in pending_refs.items():
        r = infra.resources[rid]
        for ref in refs:
            if prefix + ref in infra.resources:
                r.add_dependency(prefix + ref)

    for name, output in (template.get("Outputs") or {}).items():
        if isinstance(output, dict) and "Value" in output:
            value = _resolve(output["Value"], params)
            infra.metadata[f"{meta_prefix}output.{name}"] = (
                value if isinstance(value, str) else json.dumps(value, sort_keys=True, default=str)
            )


def _nested_stack(
    parent_file: str,
    walk: _Walk,
    prefix: str,
    depth: int,
    props: Dict[str, Any],
    params: Dict[str, Any],
) -> None:
    url = _resolve(props.get("TemplateURL", ""), params)
    if not isinstance(url, str) or not url or not _is_local_url(url):
        walk.infra.record(f"{parent_file}: nested stack {prefix.rstrip('/')} uses remote template {url!r}; not followed")
        return
    if depth + 1 > MAX_NESTING_DEPTH:
        walk.infra.record(f"{parent_file}: nested stack {prefix.rstrip('/')} exceeds depth {MAX_NESTING_DEPTH}")
        return
    child = os.path.normpath(os.path.join(os.path.dirname(parent_file), url))
    overrides = props.get("Parameters") or {}
    overrides = {k: _resolve(v, params) for k, v in overrides.items()} if isinstance(overrides, dict) else {}
    try:
        _parse_template(child, walk, prefix, depth + 1, overrides)
    except ExtractionError as exc:
        if not walk.ignore_errors:
            raise
        console.print(f"[yellow]Warning:[/yellow] skipping nested stack {child}: {exc.reason}")
        walk.infra.record(str(exc.message))


def _nested_references(filepath: str) -> Set[str]:
    try:
        template = load_template(filepath)
    except ExtractionError:
        return set()
    out = set()
    for definition in template["Resources"].values():
        if isinstance(definition, dict) and definition.get("Type") == NESTED_STACK_TYPE:
            url = (definition.get("Properties") or {}).get("TemplateURL")
            if isinstance(url, str) and _is_local_url(url):
                out.add(os.path.abspath(os.path.join(os.path.dirname(filepath), url)))
    return out


def parse_file(filepath: str, ignore_errors: bool = False) -> Infrastructure:
    infra = Infrastructure(provider="aws")
    walk = _Walk(infra, ignore_errors)
    try:
        _parse_template(filepath, walk)
    except ExtractionError as exc:
        if not ignore_errors:
            raise
        console.print(f"[yellow]Warning:[/yellow] failed to parse {filepath}: {exc.reason}")
        infra.record(exc.message)
    return infra


def parse_directory(path: str, ignore_errors: bool = False) -> Infrastructure:
    if os.path.isfile(path):
        return parse_file(path, ignore_errors)

    files: List[str] = []
    for root, dirs, fnames in os.walk(path):
        dirs.sort()
        for fname in sorted(fnames):
            fpath = os.path.join(root, fname)
            if detect_format(fpath) == "cloudformation":
                files.append(fpath)

    # templates pulled in as nested stacks are parsed through their parent
    nested: Set[str] = set()
    for fpath in files:
        nested |= _nested_references(fpath)

    infra = Infrastructure(provider="aws")
    walk = _Walk(infra, ignore_errors)
    for fpath in files:
        if os.path.abspath(fpath) in nested:
            continue
        try:
            _parse_template(fpath, walk)
        except ExtractionError as exc:
            if not ignore_errors:
                raise
            console.print(f"[yellow]Warning:[/yellow] failed to parse {fpath}: {exc.reason}")
            infra.record(exc.message)
    return infra
