import argparse
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from scaudit import __version__
from scaudit.api import AuditAPI, serve
from scaudit.config import AuditConfig
from scaudit.errors import AuditError
from scaudit.models import AuditReport, severity_label
from scaudit.persistence import AuditStore, BackgroundPersistence
from scaudit.pipeline import AuditPipeline
from scaudit.report import render_report

console = Console()
logger = logging.getLogger(__name__)

RISK_STYLES = {'Low': 'green', 'Medium': 'yellow', 'High': 'red', 'Critical': 'bold red'}


def setup_logging(level: str | None = None) -> None:
    level = (level or os.getenv('SCAUDIT_LOG_LEVEL', 'INFO')).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='scaudit', description='Smart contract security audits')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('--log-level', default=None, help='Overrides SCAUDIT_LOG_LEVEL')
    parser.add_argument('--store', default=os.getenv('SCAUDIT_STORE'),
                        help='JSON-lines file for audit history')
    sub = parser.add_subparsers(dest='command', required=True)

    contract = sub.add_parser('contract', help='Audit a Solidity source file')
    contract.add_argument('path', type=Path)
    contract.add_argument('--name', default=None, help='Contract name to report')
    contract.add_argument('--format', choices=['json', 'markdown', 'html'], default='json')
    contract.add_argument('--output', type=Path, default=None)

    address = sub.add_parser('address', help='Audit a deployed contract')
    address.add_argument('address')
    address.add_argument('--chain', default='ethereum')
    address.add_argument('--format', choices=['json', 'markdown', 'html'], default='json')
    address.add_argument('--output', type=Path, default=None)

    server = sub.add_parser('serve', help='Run the HTTP API')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', type=int, default=8080)

    return parser


def print_summary(report: AuditReport) -> None:
    risk = report.risk_level.value
    style = RISK_STYLES.get(risk, 'white')
    console.print(Panel.fit(
        f"[bold]{report.contract_info.name}[/bold] ({report.type.value})\n"
        f"Score: [{style}]{report.overall_score}/100[/{style}]  Risk: [{style}]{risk}[/{style}]\n"
        f"[dim]{report.audit_id} in {report.execution_time_ms}ms[/dim]",
        title="Audit Complete",
        border_style=style,
    ))

    if report.findings:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Severity")
        table.add_column("Category")
        table.add_column("Lines")
        table.add_column("Source")
        table.add_column("Name")
        for f in report.findings:
            sev = severity_label(f.severity)
            table.add_row(
                f"[{RISK_STYLES.get(sev, 'white')}]{sev}[/]",
                f.category,
                ','.join(str(l) for l in f.affected_lines),
                f.source.value if f.source else '',
                f.name,
            )
        console.print(table)

    if report.bytecode_analysis is not None:
        for warning in report.bytecode_analysis.warnings:
            console.print(f"[yellow]  ! {warning}[/yellow]")


def emit(report: AuditReport, fmt: str, output: Path | None) -> None:
    text = render_report(report, fmt)
    if output is None:
        print_summary(report)
        if fmt == 'json':
            console.print_json(text)
        elif fmt == 'markdown':
            console.print(Markdown(text))
        else:
            console.print(text, markup=False, highlight=False, soft_wrap=True)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding='utf-8')
    print_summary(report)
    console.print(f"[green]Saved: {output}[/green]")


def main(argv: list | None = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = AuditConfig.from_env()
    except ValueError as e:
        console.print(Panel.fit(str(e), title="Invalid configuration", border_style="red"))
        sys.exit(1)

    store = AuditStore(args.store)
    persistence = BackgroundPersistence(store)
    pipeline = AuditPipeline(config, persistence=persistence)

    try:
        if args.command == 'serve':
            console.print(Panel.fit(
                f"[bold cyan]scaudit {__version__}[/bold cyan]\n"
                f"Model: {config.inference_model}\n"
                f"Inference API: {config.inference_api}\n"
                f"Chains: {', '.join(config.supported_chains)}",
                border_style="cyan",
            ))
            serve(AuditAPI(pipeline, store, config), args.host, args.port)
            return

        if args.command == 'contract':
            if not args.path.is_file():
                console.print(f"[red]File not found: {args.path}[/red]")
                sys.exit(1)
            source = args.path.read_text(encoding='utf-8')
            report = pipeline.audit_contract(source, contract_name=args.name)
        else:
            report = pipeline.audit_address(args.address, args.chain)

        emit(report, args.format, args.output)
    except AuditError as e:
        audit_id = e.record.audit_id if e.record is not None else '-'
        console.print(Panel.fit(
            f"[bold]{e.code}[/bold]\n{e.message}\n[dim]{audit_id}[/dim]",
            title="Audit Failed",
            border_style="red",
        ))
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        console.print_exception()
        sys.exit(1)
    finally:
        persistence.shutdown(wait=True)


if __name__ == '__main__':
    main()
