#!/usr/bin/env python3
"""
KUBESMITH CLI
-------------
Command line entry point:

    kubesmith build <manifest> -o <dir> [--chart] [--settings file] [--dry-run] [--diff]
    kubesmith show <manifest> [--chart] [--role name]

Author: KubeSmith Team
Date: 2026-01-16
"""

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    BarColumn,
    TaskProgressColumn
)

from kubesmith.cli.formatter import KubeFormatter
from kubesmith.core.engine import ExportEngine
from kubesmith.core.errors import ManifestError
from kubesmith.core.loader import load_role_manifest
from kubesmith.core.settings import ExportSettings

VERSION = "0.1.0"

console = Console()


class KubeSmithCLI:
    """
    Translates commands into engine runs and renders the results.
    """

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="kubesmith",
            description="KubeSmith - Role manifest to Kubernetes manifest and Helm chart exporter",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.formatter = KubeFormatter(console)
        self._setup_args()

    def _add_settings_args(self, parser: argparse.ArgumentParser):
        parser.add_argument("manifest", help="Path to the role manifest")
        parser.add_argument("--chart", action="store_true", help="Generate a Helm chart instead of plain manifests")
        parser.add_argument("--settings", help="YAML file with export settings")
        parser.add_argument("--registry", help="Docker registry host")
        parser.add_argument("--organization", help="Docker organization")
        parser.add_argument("--repository", help="Image name prefix")
        parser.add_argument("--auth-type", dest="auth_type", help="Authorization mode (e.g. rbac)")
        parser.add_argument("--use-memory-limits", dest="use_memory_limits", action="store_true", default=None,
                            help="Emit memory requests and limits")
        parser.add_argument("--use-cpu-limits", dest="use_cpu_limits", action="store_true", default=None,
                            help="Emit cpu requests and limits")
        parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    def _setup_args(self):
        self.parser.add_argument("-v", "--version", action="version", version=f"kubesmith v{VERSION}")
        subparsers = self.parser.add_subparsers(dest="command", metavar="Command")

        build_parser = subparsers.add_parser("build", help="Write manifests or a chart to a directory")
        self._add_settings_args(build_parser)
        build_parser.add_argument("-o", "--output", help="Output directory")
        build_parser.add_argument("--dry-run", action="store_true", help="Preview results without writing")
        build_parser.add_argument("--diff", action="store_true", help="Show changes against the files on disk")

        show_parser = subparsers.add_parser("show", help="Print the generated documents")
        self._add_settings_args(show_parser)
        show_parser.add_argument("--role", help="Only show resources with this name")

    def print_header(self, subtitle: str):
        console.print(Panel.fit(
            f"[bold cyan]KubeSmith v{VERSION}[/bold cyan]\n"
            "══════════════════════════════════════════════════",
            title=f"[bold white]{subtitle}[/bold white]",
            border_style="cyan"
        ))

    def _load_settings(self, args: argparse.Namespace) -> ExportSettings:
        overrides = {
            "create_chart": True if args.chart else None,
            "registry": args.registry,
            "organization": args.organization,
            "repository": args.repository,
            "auth_type": args.auth_type,
            "use_memory_limits": args.use_memory_limits,
            "use_cpu_limits": args.use_cpu_limits,
        }
        if args.settings:
            return ExportSettings.from_file(args.settings, **overrides)
        return ExportSettings(**{k: v for k, v in overrides.items() if v is not None})

    def _engine(self, args: argparse.Namespace, output_dir=None) -> ExportEngine:
        manifest = load_role_manifest(args.manifest)
        return ExportEngine(manifest, self._load_settings(args), output_dir)

    def _run_build(self, args: argparse.Namespace) -> int:
        if not args.output and not args.dry_run:
            console.print("[bold red]Error:[/bold red] --output is required unless --dry-run is given.")
            return 2
        engine = self._engine(args, args.output)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(bar_width=40),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console
        ) as progress:
            task_id = progress.add_task("Exporting resources...", total=None)

            def advance(done: int, total: int):
                progress.update(task_id, completed=done, total=total)

            reports = engine.export(dry_run=args.dry_run, progress_callback=advance)

        if args.diff:
            for r in reports:
                if r.get("success") and r["status"] != "UNCHANGED":
                    self.formatter.display_diff(r.get("previous", ""), r["content"], r["file_path"])

        self.formatter.show_diagnostics(reports)
        self.formatter.print_final_table(reports)
        summary = engine.generate_summary(reports)
        self.formatter.print_summary(summary)
        if args.dry_run:
            console.print("\n[bold cyan]Dry Run Mode:[/bold cyan] No files were written.")
        return 0 if summary["successful"] == summary["total_resources"] else 1

    def _run_show(self, args: argparse.Namespace) -> int:
        engine = self._engine(args)
        failed = False
        for result in engine.build():
            if args.role and result.name != args.role:
                continue
            title = f"{result.kind}/{result.name}"
            if not result.ok:
                console.print(f"[bold red]✗ {title}:[/bold red] {result.diagnostic}")
                failed = True
                continue
            self.formatter.show_document(title, engine.render(result))
        return 1 if failed else 0

    def run(self, argv=None) -> int:
        """Primary routing entry point."""
        args = self.parser.parse_args(argv)
        if not args.command:
            self.print_header("Manifest Exporter")
            self.parser.print_help()
            return 0

        logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
        if not Path(args.manifest).exists():
            console.print(f"[bold red]Error:[/bold red] Path '{args.manifest}' not found.")
            return 2

        try:
            if args.command == "build":
                self.print_header("Export")
                return self._run_build(args)
            return self._run_show(args)
        except ManifestError as e:
            console.print(f"[bold red]Manifest error:[/bold red] {e}")
            return 1


def main():
    """Application entry point with interrupt handling."""
    try:
        sys.exit(KubeSmithCLI().run())
    except KeyboardInterrupt:
        console.print("\n[bold red]Terminated by user.[/bold red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
