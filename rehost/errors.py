"""
Error taxonomy.

Structural errors (bad input) and registry errors (programming or configuration
defects) are raised. Semantic gaps are never raised: mappers record them as
warnings or manual steps on the MappingResult instead.
"""
from typing import List, Optional


class RehostError(Exception):
    """Base exception carrying an optional recovery suggestion."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        full_message = message
        if suggestion:
            full_message = f"{message}\n\nSuggestion: {suggestion}"
        super().__init__(full_message)


# ------------------------------------------------------------------ extraction

class ExtractionError(RehostError):
    """A source could not be read or interpreted."""

    def __init__(self, path: str, reason: str, suggestion: Optional[str] = None):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Failed to extract {path}: {reason}",
            suggestion or "Check that the file is readable and well formed.",
        )


class UnsupportedStateVersionError(ExtractionError):
    def __init__(self, path: str, version, supported: List[int]):
        self.version = version
        self.supported = supported
        super().__init__(
            path,
            f"unsupported state version {version!r}",
            "Supported state versions: " + ", ".join(str(v) for v in supported)
            + ". Run 'terraform state pull' with a recent Terraform to upgrade the snapshot.",
        )


class LiveScanError(ExtractionError):
    def __init__(self, category: str, region: str, reason: str):
        self.category = category
        self.region = region
        super().__init__(
            f"live:{category}@{region}",
            reason,
            "Check credentials and permissions, or pass ignore_errors to skip failing categories.",
        )


# ------------------------------------------------------------------ resources

class ResourceValidationError(RehostError):
    def __init__(self, reason: str, resource_id: str = ""):
        self.resource_id = resource_id
        label = f"resource {resource_id!r}" if resource_id else "resource"
        super().__init__(f"Invalid {label}: {reason}")


class UnknownResourceTypeError(RehostError):
    def __init__(self, resource_type: str):
        self.resource_type = resource_type
        super().__init__(
            f"Unknown resource type: {resource_type!r}",
            "Use one of the types listed by 'rehost platforms --types'.",
        )


class DuplicateResourceError(RehostError):
    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Duplicate resource ID: {resource_id!r}")


class ResourceNotFoundError(RehostError):
    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Resource not found: {resource_id!r}")


# ------------------------------------------------------------------ registries

class DuplicateRegistrationError(RehostError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} already registered for {key!r}")


class MapperNotFoundError(RehostError):
    def __init__(self, resource_type: str):
        self.resource_type = resource_type
        super().__init__(f"No mapper registered for resource type {resource_type!r}")


class GeneratorNotFoundError(RehostError):
    def __init__(self, platform: str, available: Optional[List[str]] = None):
        self.platform = platform
        suggestion = None
        if available:
            suggestion = "Available platforms: " + ", ".join(sorted(available))
        super().__init__(f"No generator found for platform {platform!r}", suggestion)


# ------------------------------------------------------------------ mapping / generation

class MappingError(RehostError):
    def __init__(self, resource_id: str, reason: str):
        self.resource_id = resource_id
        self.reason = reason
        super().__init__(f"Cannot map {resource_id}: {reason}")


class GenerationValidationError(RehostError):
    def __init__(self, platform: str, reason: str):
        self.platform = platform
        self.reason = reason
        super().__init__(f"Validation failed for {platform}: {reason}")


class GenerationError(RehostError):
    def __init__(self, platform: str, reason: str):
        self.platform = platform
        self.reason = reason
        super().__init__(f"Generation failed for {platform}: {reason}")
