"""
CLI Interface
=============
Command-line interface for the certificate anchoring engine.

Usage:
    python -m certanchor fingerprint <pdf_path>
    python -m certanchor info <pdf_path>
    python -m certanchor register <pdf_path|fingerprint> --issuer ... [options]
    python -m certanchor verify <pdf_path|fingerprint> [options]
    python -m certanchor scan <pdf_path|fingerprint> [options]
    python -m certanchor serve [options]

Ledger settings default to the CERTANCHOR_* environment variables.

Exit codes:
    0  success / certificate valid
    1  error (bad input, ledger unavailable, scan incomplete, ...)
    2  certificate not found within the search horizon
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .engine import AnchorConfig, AnchorEngine
from .errors import (
    CertAnchorError,
    ConfirmationTimeout,
    InputError,
    LedgerUnavailable,
    ScanIncomplete,
    SubmissionRejected,
)
from .fingerprint import inspect_pdf
from .models import CertificateMetadata, VerificationBasis

console = Console()

EXIT_NOT_FOUND = 2


_LEDGER_OPTIONS = [
    click.option("--rpc-url", default=None, help="Ledger JSON-RPC endpoint"),
    click.option(
        "--contract", "contract_address",
        default=None,
        help="Record contract address (omit for payload-only anchoring)",
    ),
    click.option(
        "--log-level",
        default=None,
        type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
        help="Logging level",
    ),
    click.option("--log-file", default=None, help="Path to log file"),
    click.option(
        "--json-output",
        is_flag=True,
        default=False,
        help="Output only JSON result to stdout (for programmatic use)",
    ),
]


def ledger_options(func):
    """Options shared by every command that talks to the ledger."""
    for option in reversed(_LEDGER_OPTIONS):
        func = option(func)
    return func


def _build_engine(
    rpc_url, contract_address, log_level, log_file, json_output, **overrides
) -> AnchorEngine:
    if json_output:
        # Keep stdout clean for the JSON document
        log_level = "ERROR"
    config = AnchorConfig.from_env(
        rpc_url=rpc_url,
        contract_address=contract_address,
        log_level=log_level,
        log_file=log_file,
        **overrides,
    )
    return AnchorEngine(config)


def _print_json(data: dict):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _fail(message: str, json_output: bool, error: Exception):
    if json_output:
        print(
            json.dumps({"error": str(error), "type": type(error).__name__}),
            file=sys.stderr,
        )
    else:
        console.print(f"[red]{message}:[/] {error}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="certanchor")
def cli():
    """Certificate anchoring engine: proof-of-existence for PDF certificates."""
    pass


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--any-file",
    is_flag=True,
    default=False,
    help="Accept non-PDF files",
)
def fingerprint(pdf_path: str, any_file: bool):
    """Print the fingerprint of a document."""
    from .fingerprint import fingerprint_file

    try:
        click.echo(fingerprint_file(pdf_path, require_pdf=not any_file))
    except InputError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
def info(pdf_path: str):
    """Display PDF file information and fingerprint."""
    try:
        details = inspect_pdf(pdf_path)
    except InputError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    console.print()
    table = Table(title="PDF Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", details["file"])
    table.add_row("Pages", str(details["pages"]))
    table.add_row("File Size", f"{details['size_bytes'] / 1024 / 1024:.2f} MB")
    for key, value in details["metadata"].items():
        table.add_row(key.title(), value)
    table.add_row("Fingerprint", details["fingerprint"])

    console.print(table)
    console.print()


@cli.command()
@click.argument("document")
@click.option("--issuer", "-i", required=True, help="Issuing identity")
@click.option("--subject", "-s", "subject_name", required=True, help="Certificate holder name")
@click.option("--label", "-l", required=True, help="Certification name")
@click.option(
    "--expiry",
    default=0,
    type=int,
    help="Expiry as Unix seconds (0 = never)",
)
@click.option(
    "--confirmations", "-c",
    default=None,
    type=int,
    help="Confirmations to wait for (0 = return once submitted)",
)
@click.option(
    "--allow-duplicate",
    is_flag=True,
    default=False,
    help="Register even if a record already exists",
)
@ledger_options
def register(
    document: str,
    issuer: str,
    subject_name: str,
    label: str,
    expiry: int,
    confirmations: int,
    allow_duplicate: bool,
    rpc_url: str,
    contract_address: str,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Anchor a document (PDF path or fingerprint) on the ledger."""
    overrides = {"confirmations": confirmations}
    if allow_duplicate:
        overrides["skip_if_registered"] = False

    try:
        with _build_engine(
            rpc_url, contract_address, log_level, log_file, json_output, **overrides
        ) as engine:
            metadata = CertificateMetadata(
                issuer=issuer,
                subject_name=subject_name,
                certification_label=label,
                expiry_timestamp=expiry,
            )
            fp = engine.resolve_fingerprint(document)
            if not json_output:
                console.print()
                console.print(Panel.fit(
                    f"[bold cyan]Registering certificate[/]\n"
                    f"[dim]Fingerprint: {fp}[/]\n"
                    f"[dim]Mode: {engine.config.mode.value}[/]",
                    border_style="cyan",
                ))
                with console.status("Waiting for the ledger..."):
                    ref = engine.register_certificate(fp, metadata)
            else:
                ref = engine.register_certificate(fp, metadata)
    except ConfirmationTimeout as e:
        # Outcome unknown: report the hash so the caller can check later
        if json_output:
            _print_json({
                "status": "unconfirmed",
                "transaction": e.transaction.model_dump(mode="json"),
            })
        else:
            console.print(f"[yellow]Unconfirmed:[/] {e}")
            console.print(f"[dim]Transaction: {e.transaction.hash}[/]")
        sys.exit(1)
    except SubmissionRejected as e:
        _fail("Rejected by ledger", json_output, e)
    except LedgerUnavailable as e:
        _fail("Ledger unavailable", json_output, e)
    except (CertAnchorError, ValueError) as e:
        _fail("Error", json_output, e)

    if json_output:
        _print_json({"fingerprint": fp, "transaction": ref.model_dump(mode="json")})
        return

    table = Table(title="Registration", border_style="green")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Transaction", ref.hash)
    table.add_row("Status", ref.status.value)
    table.add_row("Block", str(ref.block_number) if ref.block_number is not None else "-")
    table.add_row("Confirmations", str(ref.confirmations))
    console.print(table)
    console.print()


@cli.command()
@click.argument("document")
@click.option(
    "--window", "-w",
    default=None,
    type=int,
    help="Number of recent blocks to scan when no record exists",
)
@click.option(
    "--deadline", "-d",
    default=None,
    type=float,
    help="Seconds allowed for the scan",
)
@click.option(
    "--concurrency", "-j",
    default=None,
    type=int,
    help="Parallel block fetches during the scan",
)
@click.option(
    "--no-scan",
    is_flag=True,
    default=False,
    help="Record-only check (needs --contract): not found means no record, not invalid",
)
@ledger_options
def verify(
    document: str,
    window: int,
    deadline: float,
    concurrency: int,
    no_scan: bool,
    rpc_url: str,
    contract_address: str,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Verify a document (PDF path or fingerprint) against the ledger."""
    overrides = {"scan_concurrency": concurrency}
    if no_scan:
        overrides["fallback_scan"] = False

    try:
        with _build_engine(
            rpc_url, contract_address, log_level, log_file, json_output, **overrides
        ) as engine:
            if json_output:
                outcome = engine.verify_certificate(
                    document, window_size=window, deadline=deadline
                )
            else:
                with console.status("Verifying against the ledger..."):
                    outcome = engine.verify_certificate(
                        document, window_size=window, deadline=deadline
                    )
    except ScanIncomplete as e:
        _fail("Could not complete verification", json_output, e)
    except LedgerUnavailable as e:
        _fail("Could not verify, ledger unavailable", json_output, e)
    except (CertAnchorError, ValueError) as e:
        _fail("Error", json_output, e)

    if json_output:
        _print_json(outcome.model_dump(mode="json"))
    else:
        _display_outcome(outcome, scanned=not no_scan)

    if not outcome.valid:
        sys.exit(EXIT_NOT_FOUND)


@cli.command()
@click.argument("document")
@click.option("--window", "-w", default=None, type=int, help="Blocks to scan")
@click.option("--deadline", "-d", default=None, type=float, help="Seconds allowed")
@click.option("--concurrency", "-j", default=None, type=int, help="Parallel fetches")
@ledger_options
def scan(
    document: str,
    window: int,
    deadline: float,
    concurrency: int,
    rpc_url: str,
    contract_address: str,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Search recent blocks for a fingerprint, ignoring the record contract."""
    try:
        with _build_engine(
            rpc_url, contract_address, log_level, log_file, json_output,
            scan_concurrency=concurrency,
        ) as engine:
            fp = engine.resolve_fingerprint(document)
            report = engine.scanner.scan(fp, window_size=window, deadline=deadline)
    except ScanIncomplete as e:
        if json_output:
            _print_json({"status": "incomplete", "report": e.report.model_dump(mode="json")})
        else:
            console.print(f"[yellow]Scan incomplete:[/] {e}")
            _display_scan_report(e.report)
        sys.exit(1)
    except LedgerUnavailable as e:
        _fail("Ledger unavailable", json_output, e)
    except (CertAnchorError, ValueError) as e:
        _fail("Error", json_output, e)

    if json_output:
        _print_json(report.model_dump(mode="json"))
    else:
        _display_scan_report(report)

    if not report.matched:
        sys.exit(EXIT_NOT_FOUND)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP verification service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Certificate Anchoring Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _format_timestamp(value: int) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _display_outcome(outcome, scanned: bool = True):
    """Display a verification outcome."""
    console.print()
    if outcome.valid:
        console.print(Panel.fit(
            "[bold green]✓ Certificate valid[/]\n"
            f"[dim]Basis: {outcome.basis.value}[/]",
            border_style="green",
        ))
    elif not scanned:
        console.print(Panel.fit(
            "[bold yellow]No record for this certificate[/]\n"
            "[dim]Record-only check; recent blocks were not scanned[/]",
            border_style="yellow",
        ))
    else:
        console.print(Panel.fit(
            "[bold red]✗ Certificate not found[/]\n"
            "[dim]No record and no anchor within the search window[/]",
            border_style="red",
        ))

    table = Table(border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Fingerprint", outcome.fingerprint)

    if outcome.basis == VerificationBasis.STRUCTURED_RECORD and outcome.record:
        record = outcome.record
        table.add_row("Issuer", record.issuer)
        table.add_row("Subject", record.subject_name)
        table.add_row("Certification", record.certification_label)
        table.add_row("Issued", _format_timestamp(record.issue_timestamp))
        expiry = _format_timestamp(record.expiry_timestamp)
        if record.is_expired():
            expiry = f"[red]{expiry} (expired)[/]"
        table.add_row("Expires", expiry)
    elif outcome.basis == VerificationBasis.SCAN_MATCH:
        table.add_row("Transaction", outcome.transaction_hash or "-")
        table.add_row("Block", str(outcome.block_number))

    console.print(table)
    console.print()


def _display_scan_report(report):
    """Display a scan report as a rich table."""
    table = Table(title="Scan Report", border_style="cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Head", str(report.head) if report.head is not None else "-")
    table.add_row("Window", str(report.window_size))
    table.add_row("Blocks Scanned", str(report.blocks_scanned))
    table.add_row("Gaps", str(len(report.gaps)))
    table.add_row("Elapsed", f"{report.elapsed_seconds:.2f}s")
    table.add_row(
        "Match",
        f"[green]block {report.match_block}[/]" if report.matched else "[red]none[/]",
    )
    if report.match_transaction:
        table.add_row("Transaction", report.match_transaction)

    console.print()
    console.print(table)
    console.print()


# ─── Entry point (for python -m certanchor.cli) ──────────────────────────────


if __name__ == "__main__":
    cli()
