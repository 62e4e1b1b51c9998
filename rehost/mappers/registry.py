"""
Type -> Mapper lookup table.

Writes take a lock and publish a fresh read-only mapping; reads grab the
current mapping without locking, so concurrent lookups never wait on each
other or on a registration in progress.
"""
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from rich.console import Console

from rehost.errors import DuplicateRegistrationError, MapperNotFoundError, RehostError, ResourceValidationError
from rehost.mappers.base import Mapper
from rehost.models.mapping import MappingResult
from rehost.models.resource import Resource, ResourceType, normalize_type

console = Console(stderr=True)


def _label(resource: Optional[Resource]) -> str:
    return resource.id if resource is not None else "<none>"


@dataclass
class MappingReport:
    results: List[MappingResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)          # resource IDs without a mapper
    warnings: List[str] = field(default_factory=list)
    manual_steps: List[str] = field(default_factory=list)
    error: Optional[RehostError] = None
    failed_resource: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class MapperRegistry:
    def __init__(self, mappers: Iterable[Mapper] = ()):
        self._lock = threading.Lock()
        self._mappers: Mapping[str, Mapper] = MappingProxyType({})
        for m in mappers:
            self.register(m)

    def register(self, mapper: Mapper) -> None:
        """Raises UnknownResourceTypeError or DuplicateRegistrationError; never overwrites."""
        rtype = ResourceType(str(mapper.resource_type()))
        with self._lock:
            if rtype in self._mappers:
                raise DuplicateRegistrationError("mapper", rtype)
            updated = dict(self._mappers)
            updated[rtype] = mapper
            self._mappers = MappingProxyType(updated)

    def get(self, resource_type: str) -> Mapper:
        try:
            return self._mappers[normalize_type(resource_type)]
        except KeyError:
            raise MapperNotFoundError(resource_type) from None

    lookup = get

    def has_mapper(self, resource_type: str) -> bool:
        return normalize_type(resource_type) in self._mappers

    def supported_types(self) -> List[str]:
        return sorted(self._mappers)

    def __len__(self) -> int:
        return len(self._mappers)

    def map(self, resource: Resource) -> MappingResult:
        if resource is None:
            raise ResourceValidationError("resource is None")
        return self.get(resource.type).map(resource)

    def map_all(self, resources: Iterable[Resource]) -> MappingReport:
        """
        Map resources in order. A resource without a mapper is skipped with a
        warning. The first structural error stops the run; results, warnings
        and manual steps gathered up to that point stay on the report.
        """
        report = MappingReport()
        for r in resources:
            if r is not None and not self.has_mapper(r.type):
                report.skipped.append(r.id)
                report.warnings.append(f"{r.id}: no mapper for {r.type}; resource not migrated")
                continue
            try:
                result = self.map(r)
            except RehostError as exc:
                report.error = exc
                report.failed_resource = _label(r)
                break
            report.results.append(result)
            report.warnings.extend(f"{r.id}: {w}" for w in result.warnings)
            report.manual_steps.extend(result.manual_steps)
        return report

    def map_batch(self, resources: Iterable[Resource]) -> List[MappingResult]:
        """Map every resource; failures become a result carrying only a warning."""
        results = []
        for r in resources:
            try:
                results.append(self.map(r))
            except RehostError as exc:
                console.print(f"[yellow]Warning:[/yellow] {exc.message}")
                failed = MappingResult(warnings=[f"Failed to map {_label(r)}: {exc.message}"])
                if r is not None:
                    failed.source_resource_type = r.type
                    failed.source_resource_name = r.name
                    failed.source_category = r.category.value
                results.append(failed)
        return results
