from rehost.generators.base import Generator, GeneratorRegistry, LegacyGenerator, Output, write_output
from rehost.generators.compose import ComposeGenerator, SwarmGenerator
from rehost.generators.hetzner import HetznerGenerator
from rehost.generators.kubernetes import K3sGenerator, KubernetesGenerator
from rehost.generators.report import JSONReportGenerator, MarkdownReportGenerator


def default_generator_registry() -> GeneratorRegistry:
    """A fresh registry with every built-in platform and report generator."""
    return GeneratorRegistry(
        generators=[ComposeGenerator(), SwarmGenerator(), KubernetesGenerator(), K3sGenerator(), HetznerGenerator()],
        legacy=[MarkdownReportGenerator(), JSONReportGenerator()],
    )


__all__ = [
    "Generator",
    "GeneratorRegistry",
    "LegacyGenerator",
    "Output",
    "default_generator_registry",
    "write_output",
]
