import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _fmt_date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _record_row(record: Any) -> Dict[str, Any]:
    book = getattr(record, "book", None) or {}
    user = getattr(record, "user", None) or {}
    return {
        "id": record.id,
        "book": book.get("title", record.book_id),
        "user": user.get("name", record.user_id),
        "borrow_date": _fmt_date(record.borrow_date),
        "due_date": _fmt_date(record.due_date),
        "return_date": _fmt_date(record.return_date),
        "status": record.status,
        "fine_amount": record.fine_amount,
    }


def print_records_result(records: List[Any], empty_message: str = "No borrow records.") -> None:
    """Print borrow records in the current output mode.
    - plain: 'id - book -> user [status] due ...' lines
    - json: JSON array
    - rich: Rich table
    """
    mode = get_output_mode()

    if not records:
        print(empty_message)
        return

    rows = [_record_row(r) for r in records]
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Loans", show_lines=True, header_style="bold cyan")
        for column in ("ID", "Book", "User", "Borrowed", "Due", "Returned", "Status", "Fine"):
            table.add_column(column)
        for row in rows:
            table.add_row(row["id"], row["book"], row["user"], row["borrow_date"], row["due_date"],
                          row["return_date"], row["status"], f"{row['fine_amount']:.2f}")
        _console.print(table)
    else:
        for row in rows:
            print(f"{row['id']} - {row['book']} -> {row['user']} [{row['status']}] due {row['due_date']}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k.replace('_', ' ').title()}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Circulation", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').title()}: {value}")
