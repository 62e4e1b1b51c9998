import json
import os

import yaml

# Loader that tolerates CloudFormation-specific YAML tags (!Ref, !Sub, etc.)
# so detect_format can read CFN templates.
class _TagTolerantLoader(yaml.SafeLoader):
    pass

_TagTolerantLoader.add_multi_constructor(
    "!",
    lambda loader, suffix, node: loader.construct_yaml_str(node)
    if isinstance(node, yaml.ScalarNode) else None,
)

ARM_SCHEMA_MARKER = "deploymentTemplate.json"


def _is_cloudformation(doc) -> bool:
    if not isinstance(doc, dict):
        return False
    if "AWSTemplateFormatVersion" in doc:
        return True
    resources = doc.get("Resources")
    return isinstance(resources, dict) and any(
        isinstance(v, dict) and str(v.get("Type", "")).startswith("AWS::")
        for v in resources.values()
    )


def _is_arm(doc) -> bool:
    if not isinstance(doc, dict):
        return False
    schema = str(doc.get("$schema", ""))
    if ARM_SCHEMA_MARKER in schema:
        return True
    return bool(doc.get("contentVersion")) and isinstance(doc.get("resources"), list)


def _is_tfstate(doc) -> bool:
    return isinstance(doc, dict) and "version" in doc and (
        "resources" in doc or "terraform_version" in doc or "modules" in doc
    )


def detect_format(filepath: str) -> str:
    """
    Return 'tfstate', 'terraform', 'cloudformation', 'arm', or 'unknown'.
    """
    name = os.path.basename(filepath.lower())
    _, ext = os.path.splitext(name)

    if ext == ".tf":
        return "terraform"

    if ext in (".tfstate", ".json"):
        try:
            with open(filepath) as fh:
                data = json.load(fh)
        except Exception:
            return "unknown"
        if ext == ".tfstate" or _is_tfstate(data):
            return "tfstate"
        if _is_arm(data):
            return "arm"
        if _is_cloudformation(data):
            return "cloudformation"
        return "unknown"

    if ext in (".yaml", ".yml", ".template"):
        try:
            with open(filepath) as fh:
                docs = list(yaml.load_all(fh, Loader=_TagTolerantLoader))
        except Exception:
            return "unknown"
        for doc in docs:
            if _is_cloudformation(doc):
                return "cloudformation"

    return "unknown"
