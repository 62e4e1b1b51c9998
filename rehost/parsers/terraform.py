"""
Declarative-source extractor: Terraform .tf files.

Blocks are read without evaluating expressions. Anything python-hcl2 hands
back as an interpolation ("${...}") is kept verbatim as source text.
A file that fails to parse is skipped with a diagnostic.
"""
import json
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

import hcl2
from rich.console import Console

from rehost.detect import detect_format
from rehost.models.resource import Infrastructure, Resource, normalize_type, provider_of

console = Console(stderr=True)

# Cross-resource references inside interpolations, e.g. ${aws_vpc.main.id}
_REF_RE = re.compile(r'\b((?:aws|azurerm|google)_\w+\.[A-Za-z_][\w-]*)')
_INDEX_RE = re.compile(r'\[[^\]]*\]$')

_SKIP_DIRS = {".terraform", ".git"}


@dataclass
class HclResource:
    type: str
    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    source_file: str = ""

    @property
    def key(self) -> str:
        return f"{self.type}.{self.name}"


@dataclass
class HclConfig:
    resources: Dict[str, HclResource] = field(default_factory=dict)
    variables: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    locals: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    diagnostics: List[str] = field(default_factory=list)


def _unquote(val: Any) -> Any:
    # newer python-hcl2 releases keep the quotes on string literals
    if isinstance(val, str) and len(val) >= 2 and val[0] == val[-1] == '"':
        return val[1:-1]
    return val


def _unwrap(val: Any) -> Any:
    """
    python-hcl2 wraps single-element blocks in a list.
    Recursively unwrap single-element lists that contain dicts, and drop the
    __start_line__/__end_line__ bookkeeping keys.
    """
    if isinstance(val, list):
        if len(val) == 1 and isinstance(val[0], dict):
            return _unwrap(val[0])
        return [_unwrap(v) for v in val]
    if isinstance(val, dict):
        return {_unquote(k): _unwrap(v) for k, v in val.items() if not str(k).startswith("__")}
    return _unquote(val)


def _blocks(data: Dict[str, Any], kind: str) -> List[Dict[str, Any]]:
    blocks = data.get(kind, [])
    if isinstance(blocks, dict):
        blocks = [blocks]
    return [b for b in blocks if isinstance(b, dict)]


def to_text(val: Any) -> str:
    if isinstance(val, str):
        return val
    if isinstance(val, bool):
        return "true" if val else "false"
    return json.dumps(val, sort_keys=True, default=str)


def parse_file(filepath: str, config: HclConfig) -> None:
    try:
        with open(filepath) as fh:
            data = hcl2.load(fh)
    except Exception as exc:
        console.print(f"[yellow]Warning:[/yellow] failed to parse {filepath}: {exc}")
        config.diagnostics.append(f"{filepath}: {exc}")
        return

    for block in _blocks(data, "resource"):
        for resource_type, instances in block.items():
            resource_type = _unquote(resource_type)
            if isinstance(instances, dict):
                instances = [instances]
            for instance_map in instances:
                if not isinstance(instance_map, dict):
                    continue
                for name, raw_props in instance_map.items():
                    props = _unwrap(raw_props) if isinstance(raw_props, (dict, list)) else {}
                    if not isinstance(props, dict):
                        props = {}
                    r = HclResource(resource_type, _unquote(name), props, filepath)
                    config.resources[r.key] = r

    for block in _blocks(data, "variable"):
        for name, body in block.items():
            body = _unwrap(body) if isinstance(body, (dict, list)) else {}
            config.variables[_unquote(name)] = body if isinstance(body, dict) else {}

    for block in _blocks(data, "locals"):
        for name, value in _unwrap(block).items():
            config.locals[name] = value

    for block in _blocks(data, "output"):
        for name, body in block.items():
            body = _unwrap(body) if isinstance(body, (dict, list)) else {}
            config.outputs[_unquote(name)] = body if isinstance(body, dict) else {}


def parse_directory(path: str) -> HclConfig:
    config = HclConfig()

    if os.path.isfile(path):
        if detect_format(path) == "terraform":
            parse_file(path, config)
        return config

    for root, dirs, files in os.walk(path):
        dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
        for fname in sorted(files):
            fpath = os.path.join(root, fname)
            if detect_format(fpath) == "terraform":
                parse_file(fpath, config)

    return config


def _extract_refs(val: Any) -> List[str]:
    """Recursively scan property values for cross-resource references."""
    refs: List[str] = []
    if isinstance(val, str):
        refs.extend(_REF_RE.findall(val))
    elif isinstance(val, list):
        for item in val:
            refs.extend(_extract_refs(item))
    elif isinstance(val, dict):
        for v in val.values():
            refs.extend(_extract_refs(v))
    return refs


def _metadata(infra: Infrastructure, config: HclConfig) -> None:
    put = infra.metadata.setdefault
    for name, body in config.variables.items():
        if "default" in body:
            put(f"var.{name}", to_text(body["default"]))
        if "description" in body:
            put(f"var.{name}.description", to_text(body["description"]))
    for name, value in config.locals.items():
        put(f"local.{name}", to_text(value))
    for name, body in config.outputs.items():
        if "value" in body:
            put(f"output.{name}", to_text(body["value"]))
        if "description" in body:
            put(f"output.{name}.description", to_text(body["description"]))
    infra.diagnostics.extend(config.diagnostics)


def to_infrastructure(config: HclConfig) -> Infrastructure:
    """Build a graph from source alone, for projects without a state snapshot."""
    infra = Infrastructure()
    for key, hr in sorted(config.resources.items()):
        rtype = normalize_type(hr.type)
        name = hr.attributes.get("name")
        region = hr.attributes.get("region")
        r = Resource(
            id=f"{rtype}.{hr.name}",
            name=name if isinstance(name, str) and name else hr.name,
            type=rtype,
            region=region if isinstance(region, str) else "",
            config=dict(hr.attributes),
            source_file=hr.source_file,
            provider=provider_of(hr.type).value,
        )
        tags = hr.attributes.get("tags")
        if isinstance(tags, dict):
            r.tags = {k: v for k, v in tags.items() if isinstance(v, str)}
        infra.add_resource(r)

    keys = {normalize_type(hr.type) + "." + hr.name: hr for hr in config.resources.values()}
    for r in infra:
        attrs = dict(r.config)
        for ref in _extract_refs(attrs.pop("depends_on", [])):
            r.add_dependency(normalize_type(ref.split(".")[0]) + "." + ref.split(".")[1])
        for ref in _extract_refs(attrs):
            rtype, rname = ref.split(".", 1)
            dep = f"{normalize_type(rtype)}.{rname}"
            if dep in keys:
                r.add_dependency(dep)

    providers = {r.provider for r in infra}
    infra.provider = providers.pop() if len(providers) == 1 else ("multi" if providers else "")
    _metadata(infra, config)
    return infra


def merge_into(infra: Infrastructure, config: HclConfig) -> None:
    """
    Enrich a snapshot-derived graph with source-file context. Snapshot values
    win: only attribute keys missing from the snapshot are filled in.
    """
    by_key = {normalize_type(hr.type) + "." + hr.name: hr for hr in config.resources.values()}
    for r in infra:
        hr = by_key.get(_INDEX_RE.sub("", r.id))
        if hr is None:
            continue
        for k, v in hr.attributes.items():
            if k not in r.config:
                r.config[k] = v
    _metadata(infra, config)
