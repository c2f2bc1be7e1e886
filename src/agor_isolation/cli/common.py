"""Shared CLI utilities - colors, console, helpers."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Palette
ELECTRIC_PURPLE = "#e135ff"
NEON_CYAN = "#80ffea"
CORAL = "#ff6ac1"
ELECTRIC_YELLOW = "#f1fa8c"
SUCCESS_GREEN = "#50fa7b"
ERROR_RED = "#ff6363"

# Shared console instance
console = Console()


def success(message: str) -> None:
    """Print a success message."""
    console.print(f"[{SUCCESS_GREEN}]✓[/{SUCCESS_GREEN}] {message}")


def error(message: str) -> None:
    """Print an error message."""
    console.print(f"[{ERROR_RED}]✗[/{ERROR_RED}] {message}")


def warn(message: str) -> None:
    """Print a warning message."""
    console.print(f"[{ELECTRIC_YELLOW}]![/{ELECTRIC_YELLOW}] {message}")


def info(message: str) -> None:
    """Print an info message."""
    console.print(f"[{NEON_CYAN}]→[/{NEON_CYAN}] {message}")


def hint(message: str) -> None:
    """Print a hint message."""
    console.print(f"[{ELECTRIC_YELLOW}]Hint:[/{ELECTRIC_YELLOW}] {message}")


def create_table(title: str | None = None, *columns: str) -> Table:
    """Create a styled table; ``Count`` columns are right-aligned."""
    table = Table(title=title, border_style=NEON_CYAN)
    for i, col in enumerate(columns):
        style = ELECTRIC_PURPLE if i == 0 else NEON_CYAN
        justify = "right" if col.lower() == "count" else "left"
        table.add_column(col, style=style, justify=justify)
    return table


def create_panel(content: str, title: str | None = None, subtitle: str | None = None) -> Panel:
    return Panel(
        content,
        title=f"[{ELECTRIC_PURPLE}]{title}[/{ELECTRIC_PURPLE}]" if title else None,
        subtitle=subtitle,
        border_style=NEON_CYAN,
    )


def format_result(ok: bool) -> str:
    """Colored ok/failed marker for table cells."""
    if ok:
        return f"[{SUCCESS_GREEN}]ok[/{SUCCESS_GREEN}]"
    return f"[{ERROR_RED}]failed[/{ERROR_RED}]"


def format_count(name: str, value: int) -> str:
    """Highlight non-zero counts; errors in red."""
    if value == 0:
        return "[dim]0[/dim]"
    color = ERROR_RED if name == "errors" else CORAL
    return f"[{color}]{value}[/{color}]"
