"""
rehost CLI entry point.
"""
import json
import os
import sys
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from rehost import __version__
from rehost.config import ConfigError, build_target_config, find_config, load_config
from rehost.errors import GenerationError, GenerationValidationError, GeneratorNotFoundError, RehostError
from rehost.generators import default_generator_registry, write_output
from rehost.mappers import default_registry
from rehost.mappers.registry import MappingReport
from rehost.models.resource import Category, Infrastructure, category_of
from rehost.models.target import HALevel, Platform, TargetOutput
from rehost.parsers import ExtractOptions, extract, extract_live

console = Console(stderr=True)

_CATEGORY_CHOICES = [c.value for c in Category]

# structural problems with the input exit 2; registry and generation failures exit 1
_EXIT_STRUCTURAL = 2
_EXIT_FAILURE = 1


def _source_options(fn):
    fn = click.option("--live", is_flag=True, default=False,
                      help="Scan the AWS account from the default credential chain instead of a path.")(fn)
    fn = click.option("--region", "regions", multiple=True,
                      help="Region to scan or keep (repeatable).")(fn)
    fn = click.option("--type", "filter_types", multiple=True,
                      help="Only keep resources of this type (repeatable).")(fn)
    fn = click.option("--category", "filter_categories", multiple=True,
                      type=click.Choice(_CATEGORY_CHOICES, case_sensitive=False),
                      help="Only keep resources in this category (repeatable).")(fn)
    fn = click.option("--terraform-dir", type=click.Path(file_okay=False), default="",
                      help="Directory of .tf files to merge into a state snapshot.")(fn)
    fn = click.option("--ignore-errors", is_flag=True, default=False,
                      help="Skip unreadable files and failing API categories instead of aborting.")(fn)
    return fn


def _load_infrastructure(stderr: Console, source: Optional[str], live: bool, options: ExtractOptions) -> Infrastructure:
    if not live and not source:
        stderr.print("[red]Error:[/red] give a SOURCE path or --live.")
        sys.exit(_EXIT_STRUCTURAL)
    label = "live AWS account" if live else source
    with stderr.status(f"[bold]Extracting resources from {label}…"):
        try:
            infra = extract_live(options) if live else extract(source, options)
        except RehostError as exc:
            stderr.print(f"[red]Extraction error:[/red] {exc}")
            sys.exit(_EXIT_STRUCTURAL)
    for msg in infra.diagnostics:
        stderr.print(f"[yellow]Warning:[/yellow] {msg}")
    stderr.print(f"Found [bold]{len(infra)}[/bold] resources.")
    return infra


def _map(stderr: Console, infra: Infrastructure) -> MappingReport:
    registry = default_registry()
    with stderr.status(f"[bold]Mapping {len(infra)} resource(s)…"):
        report = registry.map_all(sorted(infra, key=lambda r: r.id))
    if not report.ok:
        stderr.print(f"[red]Mapping error[/red] at {report.failed_resource}: {report.error}")
        for w in report.warnings:
            stderr.print(f"[yellow]Warning:[/yellow] {w}")
        _print_manual_steps(stderr, report.manual_steps)
        sys.exit(_EXIT_STRUCTURAL)
    return report


def _print_manual_steps(stderr: Console, steps: List[str]) -> None:
    if steps:
        stderr.print("[bold]Manual steps:[/bold]")
        for i, step in enumerate(steps, 1):
            stderr.print(f"  {i}. {step}")

def _print_resource_table(infra: Infrastructure, report: MappingReport) -> None:
    mapped = {(r.source_resource_type, r.source_resource_name) for r in report.results}
    skipped = set(report.skipped)
    tbl = Table(title="Resources", show_header=True, header_style="bold")
    tbl.add_column("ID", style="dim")
    tbl.add_column("Type")
    tbl.add_column("Category", width=16)
    tbl.add_column("Region", width=14)
    tbl.add_column("Deps", justify="right", width=5)
    tbl.add_column("Mapped", width=8)
    for r in sorted(infra, key=lambda r: r.id):
        if r.id in skipped:
            status = "[yellow]no[/yellow]"
        elif (r.type, r.name) in mapped:
            status = "[green]yes[/green]"
        else:
            status = "-"
        tbl.add_row(r.id, r.type, r.category.value, r.region or "-", str(len(r.dependencies)), status)
    Console(stderr=True).print(tbl)


def _print_output_table(output: TargetOutput) -> None:
    tbl = Table(title=f"{output.platform} output", show_header=True, header_style="bold")
    tbl.add_column("File")
    tbl.add_column("Bytes", justify="right", width=8)
    for name, content in sorted(output.files.items()):
        tbl.add_row(name, str(len(content.encode("utf-8"))))
    Console(stderr=True).print(tbl)


@click.group(invoke_without_command=True, context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(__version__)
@click.pass_context
def cli(ctx):
    """rehost: move cloud infrastructure-as-code onto self-hosted platforms."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit()


@cli.command()
@click.argument("source", required=False, type=click.Path())
@_source_options
@click.option(
    "--format", "output_format",
    type=click.Choice(["table", "json", "markdown"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.option("--output", "-o", type=click.Path(), default=None,
              help="Write the report to this file (default: stdout).")
def analyze(
    source: Optional[str],
    live: bool,
    regions: Tuple[str, ...],
    filter_types: Tuple[str, ...],
    filter_categories: Tuple[str, ...],
    terraform_dir: str,
    ignore_errors: bool,
    output_format: str,
    output: Optional[str],
) -> None:
    """
    Extract resources and show how they would be mapped.

    SOURCE is a terraform.tfstate, a directory of .tf files, or CloudFormation / ARM templates.
    """
    stderr = Console(stderr=True)
    options = ExtractOptions(
        terraform_dir=terraform_dir,
        ignore_errors=ignore_errors,
        filter_types=list(filter_types),
        filter_categories=[c.lower() for c in filter_categories],
        regions=list(regions),
    )
    infra = _load_infrastructure(stderr, source, live, options)
    report = _map(stderr, infra)

    for rid, refs in sorted(infra.unresolved_dependencies().items()):
        stderr.print(f"[yellow]Warning:[/yellow] {rid} references unknown resource(s): {', '.join(refs)}")

    fmt = output_format.lower()
    if fmt == "table":
        _print_resource_table(infra, report)
        stderr.print(
            f"Mapped [bold]{len(report.results)}[/bold], skipped [bold]{len(report.skipped)}[/bold], "
            f"{len(report.warnings)} warning(s), {len(report.manual_steps)} manual step(s)."
        )
        sys.exit(0)

    if fmt == "json":
        content = json.dumps({
            "meta": {"tool": "rehost", "version": __version__, "source": source or "live"},
            "infrastructure": {
                "provider": infra.provider,
                "region": infra.region,
                "metadata": infra.metadata,
                "diagnostics": infra.diagnostics,
                "resources": [r.to_dict() for r in sorted(infra, key=lambda r: r.id)],
                "unresolved_dependencies": infra.unresolved_dependencies(),
            },
            "skipped": report.skipped,
            "warnings": report.warnings,
            "manual_steps": report.manual_steps,
        }, indent=2)
    else:
        rendered = default_generator_registry().get_legacy("markdown").generate(report.results)
        content = rendered.files["MIGRATION.md"]

    if output:
        with open(output, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(content)
        stderr.print(f"Report written to [bold]{output}[/bold]")
    else:
        click.echo(content)
    sys.exit(0)


@cli.command()
@click.argument("source", required=False, type=click.Path())
@_source_options
@click.option("--target", "-t", "platform", default=None,
              help="Target platform (see `rehost platforms`).")
@click.option("--output", "-o", "output_dir", type=click.Path(file_okay=False), default=None,
              help="Directory to write the bundle to (default: ./rehost-<platform>).")
@click.option("--ha-level", default=None, help="none, basic, multi-server, cluster or geo.")
@click.option("--project-name", default=None, help="Project name used for resources and namespaces.")
@click.option("--base-url", default=None, help="Public base domain; enables ingress routes.")
@click.option("--ssl/--no-ssl", default=None, help="Request TLS certificates for public routes.")
@click.option("--monitoring/--no-monitoring", default=None, help="Add a Prometheus service.")
@click.option("--backups/--no-backups", default=None, help="Add a volume backup script.")
@click.option("--var", "variables", multiple=True, metavar="KEY=VALUE", help="Extra generator variable (repeatable).")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Project configuration file (default: rehost.yaml next to SOURCE).")
@click.option("--dry-run", is_flag=True, default=False, help="Show what would be written without writing.")
def generate(
    source: Optional[str],
    live: bool,
    regions: Tuple[str, ...],
    filter_types: Tuple[str, ...],
    filter_categories: Tuple[str, ...],
    terraform_dir: str,
    ignore_errors: bool,
    platform: Optional[str],
    output_dir: Optional[str],
    ha_level: Optional[str],
    project_name: Optional[str],
    base_url: Optional[str],
    ssl: Optional[bool],
    monitoring: Optional[bool],
    backups: Optional[bool],
    variables: Tuple[str, ...],
    config_path: Optional[str],
    dry_run: bool,
) -> None:
    """Generate a deployment bundle for a self-hosted platform."""
    stderr = Console(stderr=True)

    # 1. Configuration
    if config_path is None and source and os.path.isdir(source):
        config_path = find_config(source)
    try:
        file_values = load_config(config_path) if config_path else {}
    except ConfigError as exc:
        stderr.print(f"[red]Config error:[/red] {exc}")
        sys.exit(_EXIT_STRUCTURAL)
    merged_vars = dict(file_values.get("variables") or {})
    for item in variables:
        key, sep, value = item.partition("=")
        if not sep or not key:
            stderr.print(f"[red]Error:[/red] --var expects KEY=VALUE, got '{item}'")
            sys.exit(_EXIT_STRUCTURAL)
        merged_vars[key] = value
    try:
        config = build_target_config(
            file_values,
            platform=platform,
            ha_level=ha_level,
            project_name=project_name,
            base_url=base_url,
            ssl=ssl,
            monitoring=monitoring,
            backups=backups,
            dry_run=dry_run or None,
            variables=merged_vars,
        )
    except ValueError as exc:
        stderr.print(f"[red]Error:[/red] {exc}")
        sys.exit(_EXIT_STRUCTURAL)
    config.output_dir = output_dir or config.output_dir or f"rehost-{config.platform.value}"

    # 2. Extract and map
    options = ExtractOptions(
        terraform_dir=terraform_dir,
        ignore_errors=ignore_errors,
        filter_types=list(filter_types),
        filter_categories=[c.lower() for c in filter_categories],
        regions=list(regions),
    )
    infra = _load_infrastructure(stderr, source, live, options)
    report = _map(stderr, infra)
    if not report.results:
        stderr.print("[yellow]No resources could be mapped; nothing to generate.[/yellow]")
        sys.exit(0)

    # 3. Generate
    registry = default_generator_registry()
    out = None
    with stderr.status(f"[bold]Generating {config.platform.value} bundle…"):
        try:
            out = registry.generate(report.results, config)
        except (GeneratorNotFoundError, GenerationValidationError, GenerationError) as exc:
            stderr.print(f"[red]Generation error:[/red] {exc}")

    for w in report.warnings:
        stderr.print(f"[yellow]Warning:[/yellow] {w}")
    if out is None:
        _print_manual_steps(stderr, report.manual_steps)
        sys.exit(_EXIT_FAILURE)
    if out.summary:
        stderr.print(out.summary)

    # 4. Write
    if config.dry_run:
        _print_output_table(out)
        stderr.print("[dim]Dry run: nothing written.[/dim]")
    else:
        try:
            written = write_output(out, config.output_dir)
        except (RehostError, OSError) as exc:
            stderr.print(f"[red]Write error:[/red] {exc}")
            sys.exit(_EXIT_FAILURE)
        stderr.print(f"Wrote [bold]{len(written)}[/bold] file(s) to [bold]{config.output_dir}[/bold]")

    if out.estimated_cost is not None and out.estimated_cost.total:
        cost = out.estimated_cost
        stderr.print(f"Estimated cost: [bold]{cost.total:.2f} {cost.currency}[/bold]/month")
    _print_manual_steps(stderr, out.manual_steps)
    sys.exit(0)


@cli.command()
@click.option("--types", "show_types", is_flag=True, default=False,
              help="List the resource types that have a mapper instead.")
def platforms(show_types: bool) -> None:
    """List target platforms and report formats."""
    if show_types:
        mappers = default_registry()
        tbl = Table(title="Mapped Resource Types", show_header=True, header_style="bold")
        tbl.add_column("Type")
        tbl.add_column("Category")
        tbl.add_column("Mapper")
        for rtype in mappers.supported_types():
            tbl.add_row(rtype, category_of(rtype).value, type(mappers.get(rtype)).__name__)
        Console().print(tbl)
        return

    registry = default_generator_registry()
    tbl = Table(title="Target Platforms", show_header=True, header_style="bold")
    tbl.add_column("Platform")
    tbl.add_column("HA levels")
    tbl.add_column("Credentials")
    tbl.add_column("Description")
    for p in Platform:
        if not registry.has(p):
            continue
        gen = registry.get(p)
        levels: List[str] = [h.value for h in gen.supported_ha_levels()]
        tbl.add_row(p.value, ", ".join(levels), ", ".join(gen.required_credentials()) or "-", gen.description)
    Console().print(tbl)
    click.echo(f"Report formats: {', '.join(registry.legacy_names())}")
    click.echo(f"HA levels: {', '.join(h.value for h in HALevel)}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
