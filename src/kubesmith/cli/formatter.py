# src/kubesmith/cli/formatter.py
import difflib
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

console = Console()


class KubeFormatter:
    """
    Rendering helpers for the CLI: documents, diffs, diagnostics and the
    execution report.
    """

    def __init__(self, output: Console = None):
        self.console = output or console

    def show_document(self, title: str, content: str):
        """Prints emitted YAML with highlighting."""
        syntax = Syntax(content.rstrip("\n"), "yaml", theme="monokai", line_numbers=True)
        self.console.print(Panel(syntax, title=f"[bold cyan]{title}[/bold cyan]", border_style="cyan"))

    def display_diff(self, previous: str, content: str, file_name: str):
        """
        Unified diff between the file on disk and the newly generated
        content. New files are shown in full.
        """
        diff = list(difflib.unified_diff(
            previous.splitlines(),
            content.splitlines(),
            fromfile=f"current/{file_name}",
            tofile=f"generated/{file_name}",
            lineterm=""
        ))
        if not diff:
            self.console.print(f"[dim]No changes for {file_name}.[/dim]")
            return

        syntax = Syntax("\n".join(diff), "diff", theme="monokai", line_numbers=True)
        self.console.print(Panel(syntax, title=f"Changes: {file_name}", border_style="green"))

    def show_diagnostics(self, reports: List[Dict[str, Any]]):
        for r in reports:
            if r.get("error"):
                self.console.print(f"[bold red]✗ {r.get('kind')} {r.get('name')}:[/bold red] {r['error']}")

    def print_final_table(self, reports: List[Dict[str, Any]]):
        table = Table(title="KubeSmith Export Report", show_lines=True, header_style="bold magenta")
        table.add_column("File Path", style="cyan")
        table.add_column("Kind", style="white")
        table.add_column("Status", style="bold")
        table.add_column("Result", justify="center")

        for r in reports:
            success = r.get("success", False)
            status_color = "green" if success else "red"
            table.add_row(
                str(r.get("file_path")),
                str(r.get("kind", "Unknown")),
                f"[{status_color}]{r.get('status', 'FAILED')}[/{status_color}]",
                "✅" if success else "❌"
            )
        self.console.print(table)

    def print_summary(self, summary: Dict[str, Any]):
        self.console.print(Panel(
            f"[bold white]Summary Report[/bold white]\n"
            f"════════════════════════════════════════\n"
            f"Total Resources: {summary['total_resources']}\n"
            f"Success:         [green]{summary['successful']}[/green]\n"
            f"Failed:          [red]{summary['failed']}[/red]\n"
            f"System Errors:   [red]{summary['system_errors']}[/red]\n"
            f"Written:         {summary['written_to_disk']}",
            border_style="dim"
        ))
