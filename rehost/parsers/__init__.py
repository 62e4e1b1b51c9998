"""
Source extraction entry points.

extract() picks the extractor(s) for a path, merges what they produce into one
Infrastructure, then resolves dependencies and validates the graph.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional, Set

from rehost.detect import detect_format
from rehost.errors import ExtractionError
from rehost.models.resource import Infrastructure
from rehost.parsers import arm, cloudformation, live, terraform, tfstate
from rehost.parsers.dependencies import resolve_dependencies

STATE_FILE_CANDIDATES = ("terraform.tfstate", os.path.join(".terraform", "terraform.tfstate"))


@dataclass
class ExtractOptions:
    terraform_dir: str = ""
    ignore_errors: bool = False
    filter_types: List[str] = field(default_factory=list)
    filter_categories: List[str] = field(default_factory=list)
    regions: List[str] = field(default_factory=list)
    resolve_dependencies: bool = True
    validate: bool = True


def find_state_file(directory: str) -> Optional[str]:
    for candidate in STATE_FILE_CANDIDATES:
        path = os.path.join(directory, candidate)
        if os.path.isfile(path):
            return path
    return None


def _formats_in(path: str) -> Set[str]:
    if os.path.isfile(path):
        return {detect_format(path)}
    found = set()
    for root, dirs, files in os.walk(path):
        dirs[:] = [d for d in dirs if d not in (".terraform", ".git")]
        for fname in files:
            found.add(detect_format(os.path.join(root, fname)))
    return found


def _has_tf_files(directory: str) -> bool:
    return os.path.isdir(directory) and any(
        f.endswith(".tf") for f in os.listdir(directory)
    )


def _from_snapshot(state_path: str, options: ExtractOptions) -> Infrastructure:
    infra = tfstate.parse_file(state_path)
    tf_dir = options.terraform_dir or os.path.dirname(os.path.abspath(state_path))
    if _has_tf_files(tf_dir) or options.terraform_dir:
        terraform.merge_into(infra, terraform.parse_directory(tf_dir))
    return infra


def _finish(infra: Infrastructure, options: ExtractOptions) -> Infrastructure:
    if options.filter_types or options.filter_categories:
        infra.filter(options.filter_types, options.filter_categories)
    if options.regions:
        for rid in [r.id for r in infra if r.region and r.region not in options.regions]:
            del infra.resources[rid]
    if options.resolve_dependencies:
        resolve_dependencies(infra)
    if options.validate:
        infra.validate()
    return infra


def extract(path: str, options: Optional[ExtractOptions] = None) -> Infrastructure:
    options = options or ExtractOptions()
    if not os.path.exists(path):
        raise ExtractionError(path, "path does not exist")

    if os.path.isfile(path) and detect_format(path) == "tfstate":
        return _finish(_from_snapshot(path, options), options)

    if os.path.isdir(path):
        state_path = find_state_file(path)
        if state_path:
            return _finish(_from_snapshot(state_path, options), options)

    formats = _formats_in(path)
    infra = Infrastructure()
    if "terraform" in formats:
        infra.merge(terraform.to_infrastructure(terraform.parse_directory(path)))
    if "cloudformation" in formats:
        infra.merge(cloudformation.parse_directory(path, options.ignore_errors))
    if "arm" in formats:
        infra.merge(arm.parse_directory(path, options.ignore_errors))
    if not formats - {"unknown"}:
        raise ExtractionError(path, "no supported infrastructure sources found",
                              "Expected terraform.tfstate, .tf files, CloudFormation or ARM templates.")
    return _finish(infra, options)


def extract_live(options: Optional[ExtractOptions] = None, session=None) -> Infrastructure:
    options = options or ExtractOptions()
    infra = live.extract(
        session=session,
        regions=options.regions,
        ignore_errors=options.ignore_errors,
        filter_types=options.filter_types,
        filter_categories=options.filter_categories,
    )
    return _finish(infra, options)
