import logging
import os
import subprocess
import sys
from datetime import timedelta
from typing import Optional

import typer
from rich.console import Console

import database
from config import settings
from errors import CirculationError
from library import Library
from ui_helpers import print_records_result, print_stats_result, set_output_mode
from validators import parse_datetime

APP_NAME = "Circulation CLI"

console = Console()
logging.basicConfig(level=settings.log_level.upper())

app = typer.Typer(help=APP_NAME)


def _library() -> Library:
    """Library bound to LIBRARY_DB_FILE, read at call time so tests can point elsewhere."""
    return Library(db_file=os.environ.get("LIBRARY_DB_FILE") or database.DATABASE_FILE)


def _fail(exc: CirculationError) -> None:
    print(f"Error [{exc.code}]: {exc.message}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)


@app.command("add-book")
def cli_add_book(
    isbn: str,
    title: str,
    author: str,
    copies: int = typer.Option(1, "--copies", "-c", help="Number of lendable copies"),
):
    """Add a book to the catalog."""
    lib = _library()
    try:
        book = lib.add_book(title, author, isbn, copies=copies)
    except CirculationError as e:
        _fail(e)
    print(f"Added: {book.title} by {book.author} ({book.id}, {book.total_copies} copies)")


@app.command("add-user")
def cli_add_user(
    name: str,
    email: str,
    role: str = typer.Option("member", "--role", help="admin | librarian | member"),
):
    """Register a library member."""
    lib = _library()
    try:
        user = lib.add_user(name, email, role)
    except CirculationError as e:
        _fail(e)
    print(f"Registered: {user.name} ({user.id}, membership {user.membership_id})")


@app.command("checkout")
def cli_checkout(
    user_id: str,
    book_id: str,
    due: Optional[str] = typer.Option(None, "--due", help="Due date (ISO-8601)"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Loan length in days"),
):
    """Lend a book to a member."""
    lib = _library()
    due_date = None
    if due:
        due_date = parse_datetime(due)
        if due_date is None:
            print(f"Invalid due date: {due}")
            raise typer.Exit(code=1)
    elif days is not None:
        due_date = lib.now() + timedelta(days=days)
    try:
        record = lib.checkout(user_id, book_id, due_date)
    except CirculationError as e:
        _fail(e)
    print(f"Borrowed: {record.id} due {record.due_date.strftime('%Y-%m-%d %H:%M')}")


@app.command("return")
def cli_return(borrow_id: str):
    """Return a borrowed book."""
    lib = _library()
    try:
        record = lib.return_book(borrow_id)
    except CirculationError as e:
        _fail(e)
    if record.fine_amount:
        print(f"Returned: {record.id} (fine: {record.fine_amount:.2f})")
    else:
        print(f"Returned: {record.id}")


@app.command("loans")
def cli_loans(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="borrowed | returned | overdue"),
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Only this member's loans"),
    page: int = typer.Option(1, "--page", "-p"),
    limit: int = typer.Option(settings.default_page_size, "--limit", "-l"),
):
    """List borrow records, newest first."""
    lib = _library()
    try:
        result = lib.queries.list_borrow_records(page=page, limit=limit, status=status, user_id=user_id)
    except CirculationError as e:
        _fail(e)
    print_records_result(result.borrow_records)
    if result.total:
        print(f"Page {result.current_page}/{result.total_pages} ({result.total} total)")


@app.command("overdue")
def cli_overdue():
    """List loans past their due date."""
    lib = _library()
    result = lib.queries.list_overdue(limit=settings.max_page_size)
    print_records_result(result.borrow_records, empty_message="No overdue loans.")


@app.command("stats")
def cli_stats():
    """Show circulation statistics."""
    print_stats_result(_library().queries.circulation_stats())


@app.command("reconcile")
def cli_reconcile():
    """Replay failed inventory compensations."""
    result = _library().circulation.reconcile()
    print(f"Resolved: {result['resolved']}, still pending: {result['pending']}")


@app.command("serve")
def cli_serve():
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    try:
        subprocess.run([
            sys.executable,
            "-m", "uvicorn",
            "api:app",
            "--host", host,
            "--port", str(port),
        ])
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
