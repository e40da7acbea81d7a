"""
Command-line interface for the conformance harness.

Usage:
    di-conformance run config/runner.json
    di-conformance run --suite data-model --json-output
    di-conformance run --suite verify --cryptosuite eddsa-jcs-2022
    di-conformance decode z6MkhaXgBZDvotDkL5257faiztiGiC2QtKLGpbnnEGta2doK
"""

from __future__ import annotations

import asyncio
import sys

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from di_conformance import multiformats
from di_conformance.assertions import CRYPTOSUITES, RULE_SETS
from di_conformance.config import ConfigError, RunnerConfig, load_config
from di_conformance.did_resolver import DocumentLoader
from di_conformance.endpoints import Endpoint, ImplementationRegistry
from di_conformance.fixtures import TEMPLATES
from di_conformance.logging_config import configure_logging
from di_conformance.report import Matrix, print_matrix
from di_conformance.runner import MatrixRunner
from di_conformance.verification_method import VerificationMethodResolver


JCS_CRYPTOSUITE = "eddsa-jcs-2022"

console = Console()


def reference_issuer(
    registry: ImplementationRegistry, name: str, tags: list[str]
) -> Endpoint:
    """Issuer of the named implementation, preferring one with ``tags``."""
    implementation = registry.get(name)
    if implementation is None or not implementation.issuers:
        raise click.ClickException(f"No issuer found for implementation {name!r}")
    for issuer in implementation.issuers:
        if issuer.tags.is_superset_of(tags):
            return issuer
    return implementation.issuers[0]


def build_matrix(
    config: RunnerConfig,
    suite: str,
    cryptosuite: str,
    tags: list[str],
    fixture: str,
    issuer_name: str | None,
    concurrency: int,
    timeout: float,
    verify_ssl: bool,
) -> Matrix:
    """Run the selected suite against the configured implementations."""
    registry = config.registry(timeout=timeout, verify_ssl=verify_ssl)
    rules = RULE_SETS[suite](cryptosuite)
    runner = MatrixRunner(
        resolver=VerificationMethodResolver(
            DocumentLoader(timeout=timeout, verify_ssl=verify_ssl)
        ),
        fixture=fixture,
        required_tags=tags,
        concurrency=concurrency,
    )
    title = f"{cryptosuite} ({suite})"

    if suite == "verify":
        match, _ = registry.filter_by_tag(tags, role="verifiers")
        columns = {impl.name: match.get(impl.name) for impl in registry}
        if issuer_name is None:
            if cryptosuite != JCS_CRYPTOSUITE:
                raise click.UsageError(
                    f"--issuer-name is required for --suite verify with {cryptosuite}"
                )
            issuer_name = config.issuer_name_jcs
        issuer = reference_issuer(registry, issuer_name, tags)
        return asyncio.run(runner.run_verifiers(issuer, columns, rules, title=title))

    match, _ = registry.filter_by_tag(tags, role="issuers")
    columns = {impl.name: match.get(impl.name) for impl in registry}
    return asyncio.run(runner.run(columns, rules, title=title))


@click.group()
@click.option(
    "--log-level",
    default=None,
    help="Logging level (default: $DI_CONFORMANCE_LOG_LEVEL or WARNING)",
)
@click.version_option(package_name="di-conformance")
def main(log_level: str | None) -> None:
    """Conformance tests for EdDSA Data Integrity implementations."""
    configure_logging(log_level)


@main.command()
@click.argument("config_path", required=False)
@click.option(
    "--suite",
    type=click.Choice(sorted(RULE_SETS)),
    default="create",
    show_default=True,
    help="Rule set to run",
)
@click.option(
    "--cryptosuite",
    type=click.Choice(CRYPTOSUITES),
    default="eddsa-rdfc-2022",
    show_default=True,
)
@click.option(
    "--tag",
    "tags",
    multiple=True,
    help="Required capability tag (repeatable, default: tags from the config)",
)
@click.option(
    "--fixture",
    type=click.Choice(sorted(TEMPLATES)),
    default="validVc",
    show_default=True,
    help="Credential template sent to issuers",
)
@click.option(
    "--issuer-name",
    default=None,
    help="Reference issuer for --suite verify "
    "(required unless eddsa-jcs-2022, which defaults to $ISSUER_NAME_JCS)",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Implementations tested at the same time",
)
@click.option(
    "--no-ssl-verify",
    is_flag=True,
    help="Disable SSL certificate verification",
)
@click.option(
    "--json-output",
    is_flag=True,
    help="Output the matrix as JSON",
)
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    help="HTTP request timeout in seconds",
)
def run(
    config_path: str | None,
    suite: str,
    cryptosuite: str,
    tags: tuple[str, ...],
    fixture: str,
    issuer_name: str | None,
    concurrency: int,
    no_ssl_verify: bool,
    json_output: bool,
    timeout: float,
) -> None:
    """Run a conformance suite and print the matrix.

    CONFIG_PATH defaults to $DI_CONFORMANCE_CONFIG or config/runner.json.
    Exits 0 when no cell failed, 1 when any cell failed and 2 on errors.
    """
    try:
        config = load_config(config_path)
        required_tags = list(tags) or config.tags or [cryptosuite]
        matrix = build_matrix(
            config,
            suite=suite,
            cryptosuite=cryptosuite,
            tags=required_tags,
            fixture=fixture,
            issuer_name=issuer_name,
            concurrency=concurrency,
            timeout=timeout,
            verify_ssl=not no_ssl_verify,
        )

    except ConfigError as e:
        if json_output:
            console.print_json(data={"error": f"Configuration error: {e}"})
        else:
            console.print(f"[red]Error:[/] Configuration error: {e}")
        sys.exit(2)

    except httpx.HTTPError as e:
        if json_output:
            console.print_json(data={"error": f"HTTP error: {e}"})
        else:
            console.print(f"[red]Error:[/] HTTP error: {e}")
        sys.exit(2)

    if json_output:
        console.print_json(data=matrix.to_dict())
    else:
        print_matrix(matrix, console)

    sys.exit(1 if matrix.failed else 0)


@main.command("decode")
@click.argument("value")
def decode_command(value: str) -> None:
    """Decode a base58-btc multibase VALUE and describe its contents."""
    try:
        raw = multiformats.decode(value)
    except multiformats.DecodeError as e:
        raise click.ClickException(str(e)) from e

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Decoded length", f"{len(raw)} bytes")

    try:
        code, material = multiformats.strip_multicodec_prefix(raw)
    except multiformats.DecodeError:
        table.add_row("Multicodec", "[yellow]none[/]")
    else:
        table.add_row("Multicodec", multiformats.codec_name(code))
        table.add_row("Prefix length", f"{len(raw) - len(material)} bytes")
        table.add_row("Material length", f"{len(material)} bytes")

    console.print(Panel(table, title="Multibase value", border_style="blue"))


if __name__ == "__main__":
    main()
