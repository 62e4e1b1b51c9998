"""
Snapshot extractor: Terraform state documents (format versions 3 and 4).

The snapshot is the resource-of-record, so any read or decode failure aborts
extraction instead of being skipped.
"""
import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from rehost.errors import ExtractionError, UnsupportedStateVersionError
from rehost.models.resource import Infrastructure, Resource, normalize_type, provider_of

SUPPORTED_VERSIONS = [3, 4]

_MODULE_PREFIX_RE = re.compile(r"^(module\.[^.\[]+(\[[^\]]*\])?\.)+")

_CREATED_KEYS = ("create_date", "creation_date", "created_at", "create_time", "creation_time")


def strip_module_path(address: str) -> str:
    """'module.app.module.db.aws_db_instance.main' -> 'aws_db_instance.main'"""
    return _MODULE_PREFIX_RE.sub("", address)


def _format_index(index_key: Any) -> str:
    if isinstance(index_key, str):
        return f'["{index_key}"]'
    return f"[{index_key}]"


def _parse_time(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _display_name(attrs: Dict[str, Any], fallback: str) -> str:
    name = attrs.get("name")
    if isinstance(name, str) and name:
        return name
    tags = attrs.get("tags")
    if isinstance(tags, dict):
        tag_name = tags.get("Name")
        if isinstance(tag_name, str) and tag_name:
            return tag_name
    return fallback


def _region(attrs: Dict[str, Any]) -> str:
    region = attrs.get("region")
    if isinstance(region, str) and region:
        return region
    az = attrs.get("availability_zone")
    if isinstance(az, str) and az:
        return az[:-1]
    return ""


def load_state(filepath: str) -> Dict[str, Any]:
    try:
        with open(filepath) as fh:
            state = json.load(fh)
    except (OSError, ValueError) as exc:
        raise ExtractionError(filepath, str(exc)) from exc

    if not isinstance(state, dict):
        raise ExtractionError(filepath, "state document is not a JSON object")
    version = state.get("version")
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedStateVersionError(filepath, version, SUPPORTED_VERSIONS)
    if not isinstance(state.get("resources", []), list):
        raise ExtractionError(filepath, "'resources' is not a list")
    return state


def _instance_resources(entry: Dict[str, Any], filepath: str) -> List[Resource]:
    tf_type = entry.get("type", "")
    tf_name = entry.get("name", "")
    instances = entry.get("instances") or []
    base = f"{normalize_type(tf_type)}.{tf_name}"
    out: List[Resource] = []

    for idx, instance in enumerate(instances):
        if not isinstance(instance, dict):
            raise ExtractionError(filepath, f"instance {idx} of {base} is not an object")
        attrs = instance.get("attributes") or {}
        if "index_key" in instance:
            rid = base + _format_index(instance["index_key"])
        elif len(instances) > 1:
            rid = base + _format_index(idx)
        else:
            rid = base

        r = Resource(
            id=rid,
            name=_display_name(attrs, tf_name),
            type=normalize_type(tf_type),
            region=_region(attrs),
            arn=attrs.get("arn") or "",
            config=dict(attrs),
            created_at=next(
                (t for t in (_parse_time(attrs.get(k)) for k in _CREATED_KEYS) if t), None
            ),
            provider=provider_of(tf_type).value,
            source_file=filepath,
        )
        tags = attrs.get("tags")
        if isinstance(tags, dict):
            r.tags = {k: v for k, v in tags.items() if isinstance(v, str)}
        for dep in instance.get("dependencies") or []:
            r.add_dependency(dep)
        out.append(r)
    return out


def _qualify(r: Resource, module: str) -> None:
    r.id = f"{module}.{r.id}"


def parse_file(filepath: str) -> Infrastructure:
    state = load_state(filepath)
    infra = Infrastructure()
    infra.metadata["terraform_version"] = str(state.get("terraform_version", ""))
    infra.metadata["state_version"] = str(state["version"])
    infra.metadata["source_file"] = filepath

    # resources added under their module-stripped ID, keyed to their module
    stripped: Dict[str, str] = {}
    for entry in state.get("resources", []):
        if not isinstance(entry, dict):
            raise ExtractionError(filepath, "resource entry is not an object")
        # data sources are observed, never deployable
        if entry.get("mode", "managed") != "managed":
            continue
        module = entry.get("module") or ""
        for r in _instance_resources(entry, filepath):
            if r.id in infra.resources:
                if module:
                    _qualify(r, module)
                elif r.id in stripped:
                    moved = infra.resources.pop(r.id)
                    _qualify(moved, stripped.pop(r.id))
                    infra.add_resource(moved)
            elif module:
                stripped[r.id] = module
            infra.add_resource(r)

    for name, output in (state.get("outputs") or {}).items():
        if isinstance(output, dict) and not output.get("sensitive"):
            value = output.get("value")
            if isinstance(value, (str, int, float, bool)):
                infra.metadata[f"output.{name}"] = str(value)

    _expand_counted_dependencies(infra)
    providers = {r.provider for r in infra}
    infra.provider = providers.pop() if len(providers) == 1 else ("multi" if providers else "")
    regions = {r.region for r in infra if r.region}
    if len(regions) == 1:
        infra.region = regions.pop()
    return infra


def _instances_of(infra: Infrastructure, address: str) -> List[str]:
    if address in infra.resources:
        return [address]
    return sorted(rid for rid in infra.resources if rid.startswith(address + "["))


def _expand_counted_dependencies(infra: Infrastructure) -> None:
    """
    State dependencies name the full resource address, not the instance. Match
    the address as written (module-qualified IDs), then with the module path
    stripped, and point it at every instance of a counted or for_each resource.
    """
    for r in infra:
        expanded: List[str] = []
        for dep in r.dependencies:
            local = strip_module_path(dep)
            expanded.extend(_instances_of(infra, dep) or _instances_of(infra, local) or [local])
        r.dependencies = []
        for dep in expanded:
            r.add_dependency(dep)

