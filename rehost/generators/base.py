"""
Generator contract and registry.

A generator turns a list of MappingResults into a TargetOutput for one
platform. Generators only see the results and the TargetConfig; they never
reach back into the resource graph or the process environment.
"""
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from rehost.errors import (
    DuplicateRegistrationError,
    GenerationValidationError,
    GeneratorNotFoundError,
    RehostError,
)
from rehost.models.mapping import MappingResult
from rehost.models.target import CostEstimate, HALevel, Platform, TargetConfig, TargetOutput


class Generator(ABC):
    @abstractmethod
    def platform(self) -> Platform:
        ...

    @property
    def name(self) -> str:
        return self.platform().value

    @property
    def description(self) -> str:
        return ""

    @abstractmethod
    def supported_ha_levels(self) -> List[HALevel]:
        ...

    def requires_credentials(self) -> bool:
        return bool(self.required_credentials())

    def required_credentials(self) -> List[str]:
        return []

    def validate(self, results: Sequence[MappingResult], config: TargetConfig) -> None:
        """Raise GenerationValidationError if this generator cannot handle the input."""
        platform = self.platform().value
        if config is None:
            raise GenerationValidationError(platform, "target configuration is required")
        if not results:
            raise GenerationValidationError(platform, "no mapping results provided")
        if any(r is None for r in results):
            raise GenerationValidationError(platform, "mapping results contain None")
        if config.ha_level not in self.supported_ha_levels():
            supported = ", ".join(h.value for h in self.supported_ha_levels())
            raise GenerationValidationError(
                platform, f"HA level {config.ha_level.value!r} is not supported (supported: {supported})"
            )

    @abstractmethod
    def generate(self, results: Sequence[MappingResult], config: TargetConfig) -> TargetOutput:
        ...

    def estimate_cost(self, results: Sequence[MappingResult], config: TargetConfig) -> Optional[CostEstimate]:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.platform().value})"


def require_services(platform: Platform, results: Sequence[MappingResult]) -> None:
    if not any(r.docker_service is not None or r.additional_services for r in results):
        raise GenerationValidationError(platform.value, "no services found in mapping results")


def collect_notes(output: TargetOutput, results: Iterable[MappingResult]) -> None:
    """Carry every mapping warning and manual step over to the output."""
    for r in results:
        for w in r.warnings:
            output.add_warning(w)
        for step in r.manual_steps:
            output.add_manual_step(step)


# ── legacy single-format generators ─────────────────────────────────────────


@dataclass
class Output:
    """Result of a legacy generator: a flat set of files plus warnings."""
    files: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def add_file(self, name: str, content: str) -> None:
        self.files[name] = content

    @property
    def file_count(self) -> int:
        return len(self.files)


class LegacyGenerator(ABC):
    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def generate(self, results: Sequence[MappingResult]) -> Output:
        ...


# ── registry ────────────────────────────────────────────────────────────────


class GeneratorRegistry:
    """
    Platform -> Generator table, plus a separate name -> LegacyGenerator table.
    Same locking discipline as MapperRegistry: writers copy and swap under a
    lock, readers use whichever mapping is current.
    """

    def __init__(self, generators: Iterable[Generator] = (), legacy: Iterable[LegacyGenerator] = ()):
        self._lock = threading.Lock()
        self._generators: Mapping[Platform, Generator] = MappingProxyType({})
        self._legacy: Mapping[str, LegacyGenerator] = MappingProxyType({})
        for g in generators:
            self.register(g)
        for g in legacy:
            self.register_legacy(g.name, g)

    def register(self, generator: Generator) -> None:
        platform = generator.platform()
        with self._lock:
            if platform in self._generators:
                raise DuplicateRegistrationError("generator", platform.value)
            updated = dict(self._generators)
            updated[platform] = generator
            self._generators = MappingProxyType(updated)

    def register_legacy(self, name: str, generator: LegacyGenerator) -> None:
        with self._lock:
            if name in self._legacy:
                raise DuplicateRegistrationError("legacy generator", name)
            updated = dict(self._legacy)
            updated[name] = generator
            self._legacy = MappingProxyType(updated)

    def get(self, platform) -> Generator:
        try:
            key = platform if isinstance(platform, Platform) else Platform.parse(str(platform))
            return self._generators[key]
        except (KeyError, ValueError):
            raise GeneratorNotFoundError(str(getattr(platform, "value", platform)), self.platforms()) from None

    def get_legacy(self, name: str) -> LegacyGenerator:
        try:
            return self._legacy[name]
        except KeyError:
            raise GeneratorNotFoundError(name, sorted(self._legacy)) from None

    def has(self, platform) -> bool:
        try:
            self.get(platform)
        except GeneratorNotFoundError:
            return False
        return True

    def all(self) -> List[Generator]:
        return [self._generators[p] for p in Platform if p in self._generators]

    def platforms(self) -> List[str]:
        return [g.platform().value for g in self.all()]

    def legacy_names(self) -> List[str]:
        return sorted(self._legacy)

    def generate(self, results: Sequence[MappingResult], config: TargetConfig) -> TargetOutput:
        """
        Look up the generator for config.platform, validate, then generate.
        Any failure propagates before an output object is handed back.
        """
        generator = self.get(config.platform)
        generator.validate(results, config)
        output = generator.generate(results, config)
        if output.estimated_cost is None:
            output.estimated_cost = generator.estimate_cost(results, config)
        return output


def write_output(output: TargetOutput, directory: str) -> List[str]:
    """Write every file in the output below directory; returns the written paths."""
    written = []
    root = os.path.abspath(directory)
    for name, content in sorted(output.files.items()):
        path = os.path.abspath(os.path.join(root, name))
        if os.path.commonpath([root, path]) != root:
            raise RehostError(f"Refusing to write outside the output directory: {name}")
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(content)
        if name.endswith(".sh"):
            os.chmod(path, 0o755)
        written.append(path)
    return written
