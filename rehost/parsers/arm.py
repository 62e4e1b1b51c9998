"""
Template extractor for Azure Resource Manager (ARM) JSON templates.

Child resources declared inside a parent's ``resources`` array are flattened
into ``parent/child`` IDs with an implicit dependency on the parent. Inline
nested deployments (Microsoft.Resources/deployments with properties.template)
are walked as well.
"""
import json
import os
import re
from typing import Any, Dict, List, Optional

from rich.console import Console

from rehost.detect import detect_format
from rehost.errors import ExtractionError
from rehost.models.resource import Infrastructure, Resource

console = Console(stderr=True)

MAX_NESTING_DEPTH = 5

ARM_TYPE_MAP: Dict[str, str] = {
    "microsoft.compute/virtualmachines":                        "azurerm_linux_virtual_machine",
    "microsoft.compute/disks":                                  "azurerm_managed_disk",
    "microsoft.web/sites":                                      "azurerm_app_service",
    "microsoft.containerinstance/containergroups":              "azurerm_container_group",
    "microsoft.containerservice/managedclusters":               "azurerm_kubernetes_cluster",
    "microsoft.storage/storageaccounts":                        "azurerm_storage_account",
    "microsoft.storage/storageaccounts/blobservices/containers": "azurerm_storage_container",
    "microsoft.storage/storageaccounts/fileservices/shares":    "azurerm_storage_share",
    "microsoft.sql/servers/databases":                          "azurerm_mssql_database",
    "microsoft.dbforpostgresql/flexibleservers":                "azurerm_postgresql_flexible_server",
    "microsoft.dbformysql/flexibleservers":                     "azurerm_mysql_flexible_server",
    "microsoft.documentdb/databaseaccounts":                    "azurerm_cosmosdb_account",
    "microsoft.cache/redis":                                    "azurerm_redis_cache",
    "microsoft.network/loadbalancers":                          "azurerm_lb",
    "microsoft.network/applicationgateways":                    "azurerm_application_gateway",
    "microsoft.network/dnszones":                               "azurerm_dns_zone",
    "microsoft.cdn/profiles":                                   "azurerm_cdn_profile",
    "microsoft.network/frontdoors":                             "azurerm_frontdoor",
    "microsoft.network/virtualnetworks":                        "azurerm_virtual_network",
    "microsoft.network/azurefirewalls":                         "azurerm_firewall",
    "microsoft.keyvault/vaults":                                "azurerm_key_vault",
    "microsoft.servicebus/namespaces":                          "azurerm_servicebus_namespace",
    "microsoft.servicebus/namespaces/queues":                   "azurerm_servicebus_queue",
    "microsoft.eventhub/namespaces":                            "azurerm_eventhub",
    "microsoft.eventgrid/topics":                               "azurerm_eventgrid_topic",
    "microsoft.logic/workflows":                                "azurerm_logic_app_workflow",
}

DEPLOYMENT_TYPE = "microsoft.resources/deployments"

_PARAM_RE = re.compile(r"^\[parameters\('([^']+)'\)\]$")
_VAR_RE = re.compile(r"^\[variables\('([^']+)'\)\]$")
_RESOURCE_ID_RE = re.compile(r"resourceId\((.*)\)\]?$")
_ARG_RE = re.compile(r"parameters\('([^']+)'\)|variables\('([^']+)'\)|'([^']*)'")


class _Scope:
    def __init__(self, parameters: Dict[str, Any], variables: Dict[str, Any]):
        self.parameters = parameters
        self.variables = variables

    def resolve(self, val: Any) -> Any:
        """Substitute bare parameters()/variables() lookups; leave other expressions as text."""
        if isinstance(val, str):
            m = _PARAM_RE.match(val)
            if m and self.parameters.get(m.group(1)) is not None:
                return self.parameters[m.group(1)]
            m = _VAR_RE.match(val)
            if m and m.group(1) in self.variables:
                return self.resolve(self.variables[m.group(1)])
            return val
        if isinstance(val, dict):
            return {k: self.resolve(v) for k, v in val.items()}
        if isinstance(val, list):
            return [self.resolve(v) for v in val]
        return val

    def dependency_name(self, dep: str) -> str:
        """Reduce a dependsOn entry to the name of the resource it points at."""
        m = _RESOURCE_ID_RE.search(dep)
        if m:
            args: List[str] = []
            for pname, vname, literal in _ARG_RE.findall(m.group(1)):
                if pname:
                    args.append(str(self.parameters.get(pname) or pname))
                elif vname:
                    args.append(str(self.variables.get(vname) or vname))
                else:
                    args.append(literal)
            if args:
                return args[-1]
        resolved = self.resolve(dep)
        return str(resolved).rstrip("/").split("/")[-1]


def _scope(template: Dict[str, Any], supplied: Optional[Dict[str, Any]] = None) -> _Scope:
    params: Dict[str, Any] = {}
    for name, pdef in (template.get("parameters") or {}).items():
        params[name] = pdef.get("defaultValue") if isinstance(pdef, dict) else None
    for name, pval in (supplied or {}).items():
        params[name] = pval.get("value") if isinstance(pval, dict) else pval
    variables = template.get("variables") or {}
    return _Scope(params, variables if isinstance(variables, dict) else {})


def load_template(filepath: str) -> Dict[str, Any]:
    try:
        with open(filepath) as fh:
            template = json.load(fh)
    except (OSError, ValueError) as exc:
        raise ExtractionError(filepath, str(exc)) from exc
    if not isinstance(template, dict) or not isinstance(template.get("resources", []), list):
        raise ExtractionError(filepath, "not an ARM template")
    return template


def _map_type(arm_type: str, props: Dict[str, Any], kind: str) -> Optional[str]:
    key = arm_type.lower()
    rtype = ARM_TYPE_MAP.get(key)
    if rtype == "azurerm_linux_virtual_machine":
        os_profile = props.get("osProfile") or {}
        if isinstance(os_profile, dict) and "windowsConfiguration" in os_profile:
            return "azurerm_windows_virtual_machine"
    if rtype == "azurerm_app_service" and "functionapp" in kind.lower():
        return "azurerm_function_app"
    return rtype


def _walk_resources(
    entries: List[Any],
    scope: _Scope,
    infra: Infrastructure,
    filepath: str,
    parent_id: str = "",
    parent_type: str = "",
    depth: int = 0,
    parent_region: str = "",
) -> None:
    for entry in entries:
        if not isinstance(entry, dict):
            raise ExtractionError(filepath, "resource entry is not an object")
        arm_type = str(entry.get("type", ""))
        if parent_type and "." not in arm_type.split("/")[0]:
            arm_type = f"{parent_type}/{arm_type}"
        name = str(scope.resolve(entry.get("name", "")))
        rid = f"{parent_id}/{name}" if parent_id and not name.startswith(parent_id + "/") else name
        props = entry.get("properties") or {}
        location = scope.resolve(entry.get("location", ""))
        # child resources omit location and live where their parent does
        region = location if isinstance(location, str) and location and not location.startswith("[") else parent_region

        if arm_type.lower() == DEPLOYMENT_TYPE:
            inline = props.get("template") if isinstance(props, dict) else None
            if isinstance(inline, dict):
                if depth + 1 > MAX_NESTING_DEPTH:
                    infra.record(f"{filepath}: nested deployment {name} exceeds depth {MAX_NESTING_DEPTH}")
                else:
                    _walk_resources(inline.get("resources") or [], _scope(inline, props.get("parameters")),
                                    infra, filepath, depth=depth + 1)
            elif isinstance(props, dict) and props.get("templateLink"):
                infra.record(f"{filepath}: linked deployment {name} not followed")
            continue

        rtype = _map_type(arm_type, props if isinstance(props, dict) else {}, str(entry.get("kind", "")))
        if rtype is not None:
            r = Resource(
                id=rid,
                name=name.split("/")[-1] or rid,
                type=rtype,
                region=region,
                config=scope.resolve(props) if isinstance(props, dict) else {},
                source_file=filepath,
            )
            r.config["arm_type"] = arm_type
            if entry.get("sku") is not None:
                r.config["sku"] = scope.resolve(entry["sku"])
            if entry.get("kind"):
                r.config["kind"] = entry["kind"]
            tags = scope.resolve(entry.get("tags") or {})
            if isinstance(tags, dict):
                r.tags = {k: v for k, v in tags.items() if isinstance(v, str)}
            if parent_id in infra.resources:
                r.add_dependency(parent_id)
            for dep in entry.get("dependsOn") or []:
                if isinstance(dep, str):
                    r.add_dependency(scope.dependency_name(dep))
            infra.add_resource(r)

        children = entry.get("resources")
        if isinstance(children, list) and children:
            _walk_resources(children, scope, infra, filepath, rid, arm_type, depth, region)


def _link_dependencies(infra: Infrastructure) -> None:
    """dependsOn names point at the resource whose ID or last segment matches."""
    by_leaf: Dict[str, str] = {}
    for rid in infra.resources:
        by_leaf.setdefault(rid.split("/")[-1], rid)
    for r in infra:
        deps, r.dependencies = r.dependencies, []
        for dep in deps:
            r.add_dependency(dep if dep in infra.resources else by_leaf.get(dep, dep))


def _parse_template(filepath: str, infra: Infrastructure) -> None:
    template = load_template(filepath)
    scope = _scope(template)
    infra.metadata.setdefault("schema", str(template.get("$schema", "")))
    infra.metadata.setdefault("content_version", str(template.get("contentVersion", "")))
    for pname, value in scope.parameters.items():
        if isinstance(value, (str, int, float, bool)):
            infra.metadata[f"param.{pname}"] = str(value)
    _walk_resources(template.get("resources") or [], scope, infra, filepath)


def parse_file(filepath: str, ignore_errors: bool = False) -> Infrastructure:
    return _parse_files([filepath], ignore_errors)


def parse_directory(path: str, ignore_errors: bool = False) -> Infrastructure:
    if os.path.isfile(path):
        return parse_file(path, ignore_errors)
    files = []
    for root, dirs, fnames in os.walk(path):
        dirs.sort()
        for fname in sorted(fnames):
            fpath = os.path.join(root, fname)
            if detect_format(fpath) == "arm":
                files.append(fpath)
    return _parse_files(files, ignore_errors)


def _parse_files(files: List[str], ignore_errors: bool) -> Infrastructure:
    infra = Infrastructure(provider="azure")
    for fpath in files:
        try:
            _parse_template(fpath, infra)
        except ExtractionError as exc:
            if not ignore_errors:
                raise
            console.print(f"[yellow]Warning:[/yellow] failed to parse {fpath}: {exc.reason}")
            infra.record(exc.message)
    _link_dependencies(infra)
    regions = {r.region for r in infra if r.region}
    if len(regions) == 1:
        infra.region = regions.pop()
    return infra
