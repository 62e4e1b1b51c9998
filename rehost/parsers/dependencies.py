"""
Infer dependency edges from attributes that hold references to other resources.
"""
from typing import Any, Dict, List, Optional

from rehost.models.resource import Infrastructure, Resource

REFERENCE_ATTRIBUTES = (
    "vpc_id",
    "subnet_id",
    "subnet_ids",
    "subnets",
    "security_group_ids",
    "security_groups",
    "vpc_security_group_ids",
    "db_subnet_group_name",
    "load_balancer_arn",
    "target_group_arn",
    "role_arn",
    "kms_key_id",
    "source_security_group_id",
)


def _is_expression(value: str) -> bool:
    # unevaluated source text; resolved by the extractor that produced it
    return "${" in value or value.startswith("!") or value.startswith("[")


def _reference_values(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str) and v]
    return []


class _Index:
    """Lookup by graph ID, falling back to the resource's own advertised identifier."""

    def __init__(self, infra: Infrastructure):
        self.infra = infra
        self.native: Dict[str, Resource] = {}
        for r in infra:
            native_id = r.config.get("id")
            if isinstance(native_id, str) and native_id:
                self.native.setdefault(native_id, r)
            if r.arn:
                self.native.setdefault(r.arn, r)

    def find(self, ref: str) -> Optional[Resource]:
        if ref in self.infra.resources:
            return self.infra.resources[ref]
        return self.native.get(ref)


def find_resource(infra: Infrastructure, ref: str) -> Optional[Resource]:
    return _Index(infra).find(ref)


def resolve_dependencies(infra: Infrastructure) -> None:
    """
    Add an edge for every reference attribute that names another resource in
    the graph. References that match nothing are kept on
    Resource.unresolved_references, not turned into edges.
    """
    index = _Index(infra)
    for r in infra:
        for attr in REFERENCE_ATTRIBUTES:
            for ref in _reference_values(r.config.get(attr)):
                if _is_expression(ref):
                    continue
                target = index.find(ref)
                if target is not None:
                    if target.id != r.id:
                        r.add_dependency(target.id)
                elif ref not in r.unresolved_references:
                    r.unresolved_references.append(ref)
