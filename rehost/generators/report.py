"""
Migration reports: the single-format generators kept in the registry's
legacy table. They describe what the mappers produced rather than deploy it.
"""
import json
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Sequence

from jinja2 import Environment

from rehost import __version__
from rehost.generators.base import LegacyGenerator, Output
from rehost.models.mapping import MappingResult

_CATEGORY_SUBGRAPH = {
    "compute": "Compute",
    "container": "Compute",
    "serverless": "Compute",
    "kubernetes": "Compute",
    "object_storage": "Data",
    "block_storage": "Data",
    "file_storage": "Data",
    "sql_database": "Data",
    "nosql_database": "Data",
    "cache": "Data",
    "queue": "Messaging",
    "pubsub": "Messaging",
    "stream": "Messaging",
    "load_balancer": "Networking",
    "vpc": "Networking",
    "cdn": "Networking",
    "dns": "Networking",
    "api_gateway": "Networking",
}


def _sanitize_node_id(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_]", "_", name)


def _subgraph(result: MappingResult) -> str:
    return _CATEGORY_SUBGRAPH.get(result.source_category, "Other")


def _node_shape(name: str, subgraph: str) -> str:
    if subgraph == "Data":
        return f"[({name})]"
    if subgraph == "Networking":
        return f"{{{name}}}"
    if subgraph == "Messaging":
        return f"[/{name}/]"
    return f"[{name}]"


def build_mermaid(results: Sequence[MappingResult]) -> str:
    """Services grouped by source category, edges from depends_on."""
    groups: Dict[str, List[str]] = {}
    known = set()
    edges = []
    for r in results:
        sg = _subgraph(r)
        for svc in r.services():
            if svc.name in known:
                continue
            known.add(svc.name)
            groups.setdefault(sg, []).append(svc.name)
            for dep in svc.depends_on:
                edges.append((svc.name, dep))

    lines = ["flowchart LR"]
    for sg in ["Networking", "Compute", "Messaging", "Data", "Other"]:
        if sg not in groups:
            continue
        lines.append(f"    subgraph {sg}")
        for name in groups[sg]:
            lines.append(f"        {_sanitize_node_id(name)}{_node_shape(name, sg)}")
        lines.append("    end")
    for src, dst in edges:
        if dst in known:
            lines.append(f"    {_sanitize_node_id(src)} --> {_sanitize_node_id(dst)}")
    return "\n".join(lines)


_TEMPLATE = """\
# Migration Report

**Generated:** {{ generated }}
**Tool:** rehost v{{ version }}

---

## Summary

**{{ resource_count }} resources** mapped to **{{ service_count }} services**, with {{ warnings|length }} warnings and {{ manual_steps|length }} manual steps.
{% for category, count in categories %}
- **{{ category }}**: {{ count }}{% endfor %}

---

## Resource Mapping

| # | Source | Type | Services | Volumes |
|---|--------|------|----------|---------|
{% for r in results %}| {{ loop.index }} | `{{ r.source_resource_name }}` | `{{ r.source_resource_type }}` | {{ r.services()|map(attribute="name")|join(", ") or "-" }} | {{ r.volumes|map(attribute="name")|join(", ") or "-" }} |
{% endfor %}

---

## Warnings
{% for w in warnings %}
- {{ w }}{% else %}
None.{% endfor %}

## Manual Steps
{% for s in manual_steps %}
{{ loop.index }}. {{ s }}{% else %}
None.{% endfor %}

## Service Diagram

```mermaid
{{ mermaid }}
```
"""


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


class MarkdownReportGenerator(LegacyGenerator):
    @property
    def name(self) -> str:
        return "markdown"

    def generate(self, results: Sequence[MappingResult]) -> Output:
        results = [r for r in results if r is not None]
        warnings = _dedupe([f"{r.source_resource_name}: {w}" for r in results for w in r.warnings])
        steps = _dedupe([s for r in results for s in r.manual_steps])
        categories = sorted(Counter(r.source_category for r in results).items())

        env = Environment(autoescape=False)
        content = env.from_string(_TEMPLATE).render(
            generated=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
            version=__version__,
            resource_count=len(results),
            service_count=len({s.name for r in results for s in r.services()}),
            categories=categories,
            results=results,
            warnings=warnings,
            manual_steps=steps,
            mermaid=build_mermaid(results),
        )
        out = Output(warnings=warnings)
        out.add_file("MIGRATION.md", content)
        return out


class JSONReportGenerator(LegacyGenerator):
    @property
    def name(self) -> str:
        return "json"

    def generate(self, results: Sequence[MappingResult]) -> Output:
        results = [r for r in results if r is not None]
        report = {
            "meta": {
                "generated": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                "tool": "rehost",
                "version": __version__,
            },
            "summary": {
                "resources": len(results),
                "services": len({s.name for r in results for s in r.services()}),
                "warnings": sum(len(r.warnings) for r in results),
                "manual_steps": len(_dedupe([s for r in results for s in r.manual_steps])),
            },
            "results": [r.to_dict() for r in results],
        }
        out = Output(warnings=[w for r in results for w in r.warnings])
        out.add_file("migration.json", json.dumps(report, indent=2))
        return out
