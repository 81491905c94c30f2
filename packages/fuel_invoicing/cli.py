# ruff: noqa: I001
"""CLI for the ``fuel_invoicing`` package.

Command handlers (``cmd_*``) do the work and return a process exit code; the
Typer commands below are thin wrappers around them. ``DATABASE_URL`` and the
ledger access settings are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Business logic lives in
``fuel_invoicing.api`` and the modules it orchestrates.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated, Any
from collections.abc import Mapping, Sequence

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .access import Actor
from .logging_setup import configure_logging


# ---- Small module-level helpers used by CLI commands -------------------------


def _fail(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _handled_errors() -> tuple[type[BaseException], ...]:
    from sqlalchemy.exc import SQLAlchemyError

    from .errors import AggregationError, InvoiceNumberError, LedgerError

    # RuntimeError covers a missing DATABASE_URL.
    return (LedgerError, AggregationError, InvoiceNumberError, SQLAlchemyError, RuntimeError)


def _actor(actor_id: str, actor_email: str | None, roles: Sequence[str] | None) -> Actor:
    return Actor(id=actor_id, email=actor_email, roles=frozenset(roles or ()))


def _parse_today(raw: str | None):
    from .parsing import parse_timestamp

    if raw is None:
        return None
    ts = parse_timestamp(raw)
    if ts is None:
        raise ValueError(f"invalid --today date: {raw!r} (expected YYYY-MM-DD)")
    return ts.date()


def _load_payloads(json_path: str) -> list[Mapping[str, Any]]:
    """Read OCR payloads: a JSON list, ``{"receipts": [...]}``, or one object."""

    with open(json_path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, Mapping):
        data = data.get("receipts", [data])
    if not isinstance(data, list) or not all(isinstance(p, Mapping) for p in data):
        raise ValueError("expected a JSON array of receipt objects")
    return data


def _fmt_record_row(rec) -> str:
    valid_to = rec.valid_to.isoformat() if rec.valid_to is not None else "open"
    return "\t".join(
        [
            str(rec.id),
            rec.product_id,
            rec.product_label,
            f"{rec.price:.2f}",
            rec.valid_from.isoformat(),
            valid_to,
        ]
    )


# ---- Command handlers --------------------------------------------------------


def cmd_open_price(
    *,
    product: str,
    price: str,
    valid_from: str,
    actor: Actor,
    reason: str | None = None,
    product_id: str | None = None,
    database_url: str | None = None,
) -> int:
    """Open a new price interval and print the created record as one TSV row."""

    from .api import record_new_price

    try:
        rec = record_new_price(
            actor=actor,
            product_label=product,
            price=price,
            valid_from=valid_from,
            reason=reason,
            product_id=product_id,
            database_url=database_url,
        )
    except _handled_errors() as e:
        return _fail(str(e))

    print(_fmt_record_row(rec))
    return 0


def cmd_edit_price(
    *,
    record_id: int,
    actor: Actor,
    price: str | None = None,
    valid_from: str | None = None,
    valid_to: str | None = None,
    reopen: bool = False,
    reason: str | None = None,
    database_url: str | None = None,
) -> int:
    """Correct one interval; ``reopen`` clears its end date."""

    from .api import correct_price

    if reopen and valid_to is not None:
        return _fail("--reopen and --valid-to are mutually exclusive")
    changes: dict[str, Any] = {}
    if price is not None:
        changes["price"] = price
    if valid_from is not None:
        changes["valid_from"] = valid_from
    if valid_to is not None:
        changes["valid_to"] = valid_to
    if reopen:
        changes["valid_to"] = None
    if not changes:
        return _fail("nothing to change; pass --price, --valid-from, --valid-to or --reopen")

    try:
        rec = correct_price(
            actor=actor,
            record_id=record_id,
            changes=changes,
            reason=reason,
            database_url=database_url,
        )
    except _handled_errors() as e:
        return _fail(str(e))

    print(_fmt_record_row(rec))
    return 0


def cmd_list_prices(*, product_id: str | None = None, database_url: str | None = None) -> int:
    """Print current intervals, or one product's full history, as TSV."""

    from .api import list_current_prices, price_history

    try:
        if product_id:
            records = price_history(product_id, database_url=database_url)
        else:
            records = list_current_prices(database_url=database_url)
    except _handled_errors() as e:
        return _fail(str(e))

    for rec in records:
        print(_fmt_record_row(rec))
    return 0


def cmd_resolve(
    json_path: str,
    *,
    today: str | None = None,
    output_format: str = "tsv",
    database_url: str | None = None,
) -> int:
    """Resolve OCR payloads against the ledger.

    ``tsv`` prints ``<position>\\t<confidence>\\t<method>\\t<product_id>\\t<display>``
    per receipt; ``json`` prints the full resolved records.
    """

    from .api import resolve_ocr_payloads

    if output_format not in {"tsv", "json"}:
        return _fail(f"unknown --format {output_format!r}; use tsv or json")
    try:
        ref = _parse_today(today)
        payloads = _load_payloads(json_path)
    except FileNotFoundError:
        return _fail(f"File not found: {json_path}")
    except (ValueError, OSError) as e:
        return _fail(f"Failed to read receipts: {e}")

    try:
        resolved = resolve_ocr_payloads(payloads, today=ref, database_url=database_url)
    except _handled_errors() as e:
        return _fail(str(e))

    if output_format == "json":
        print(json.dumps([r.to_dict() for r in resolved], indent=2))
        return 0
    for pos, r in enumerate(resolved):
        print(
            f"{pos}\t{r.confidence}\t{r.method}\t{r.product_id or ''}\t{r.display_name or ''}"
        )
    return 0


def cmd_invoice(
    json_path: str,
    *,
    today: str | None = None,
    review: bool = False,
    vat_number: str | None = None,
    database_url: str | None = None,
) -> int:
    """Resolve, optionally review, and print invoice lines plus totals as TSV.

    With a station VAT number the invoice is numbered and the id printed first.
    """

    from .api import invoice_from_ocr_payloads

    try:
        ref = _parse_today(today)
        payloads = _load_payloads(json_path)
    except FileNotFoundError:
        return _fail(f"File not found: {json_path}")
    except (ValueError, OSError) as e:
        return _fail(f"Failed to read receipts: {e}")

    try:
        _resolved, invoice = invoice_from_ocr_payloads(
            payloads,
            review=review,
            today=ref,
            vat_number=vat_number,
            database_url=database_url,
        )
    except _handled_errors() as e:
        return _fail(str(e))

    if invoice.invoice_id:
        print(f"Invoice\t{invoice.invoice_id}")
    for line in invoice.lines:
        print(
            f"{line.description}\t{line.quantity:.6f}\t{line.unit_price:.6f}\t{line.amount:.2f}"
        )
    rate_pct = f"{invoice.vat_rate * 100:.0f}"
    print(f"Subtotal\t{invoice.subtotal:.2f}")
    print(f"VAT ({rate_pct}%)\t{invoice.vat:.2f}")
    print(f"Total\t{invoice.total:.2f}")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Maintain the fuel price ledger and turn OCR'd fuel receipts into invoice "
        "lines. Loads DATABASE_URL from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
JSON_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--json-path",
    help="Path to a JSON file of OCR receipt payloads",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports a missing file itself
)
ACTOR_OPTION: OptionInfo = typer.Option(
    ..., "--actor", help="Operator id recorded in the edit log."
)
ROLE_OPTION: OptionInfo = typer.Option(
    None, "--role", help="Role held by the operator (repeatable)."
)
VAT_NUMBER_ENV_VAR = "FUEL_STATION_VAT_NUMBER"


def _exit(code: int) -> None:
    if code:
        raise typer.Exit(code)


@app.command("open-price")
def open_price_cmd(
    actor: Annotated[str, ACTOR_OPTION],
    *,
    product: str = typer.Option(..., help="Product label, e.g. 'Petrol 95'."),
    price: str = typer.Option(..., help="Price per litre (VAT-inclusive)."),
    valid_from: str = typer.Option(..., help="Start of validity (YYYY-MM-DD or ISO)."),
    reason: str | None = typer.Option(None, help="Reason recorded in the edit log."),
    product_id: str | None = typer.Option(None, help="Product code for a new product."),
    actor_email: str | None = typer.Option(None, help="Operator email."),
    role: list[str] | None = ROLE_OPTION,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Record a new price, closing the product's current interval."""

    _exit(
        cmd_open_price(
            product=product,
            price=price,
            valid_from=valid_from,
            actor=_actor(actor, actor_email, role),
            reason=reason,
            product_id=product_id,
            database_url=database_url,
        )
    )


@app.command("edit-price")
def edit_price_cmd(
    actor: Annotated[str, ACTOR_OPTION],
    *,
    record_id: int = typer.Option(..., help="Price record id to correct."),
    price: str | None = typer.Option(None, help="Corrected price."),
    valid_from: str | None = typer.Option(None, help="Corrected start of validity."),
    valid_to: str | None = typer.Option(None, help="End of validity (closes the interval)."),
    reopen: bool = typer.Option(False, help="Clear the end date (re-open the interval)."),
    reason: str | None = typer.Option(None, help="Reason recorded in the edit log."),
    actor_email: str | None = typer.Option(None, help="Operator email."),
    role: list[str] | None = ROLE_OPTION,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Correct the price or validity of one interval."""

    _exit(
        cmd_edit_price(
            record_id=record_id,
            actor=_actor(actor, actor_email, role),
            price=price,
            valid_from=valid_from,
            valid_to=valid_to,
            reopen=reopen,
            reason=reason,
            database_url=database_url,
        )
    )


@app.command("list-prices")
def list_prices_cmd(
    *,
    product_id: str | None = typer.Option(None, help="Show this product's full history."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """List current prices (one open interval per product)."""

    _exit(cmd_list_prices(product_id=product_id, database_url=database_url))


@app.command("resolve")
def resolve_cmd(
    json_path: Annotated[Path, JSON_PATH_OPTION],
    *,
    today: str | None = typer.Option(None, help="Evaluation date (YYYY-MM-DD)."),
    output_format: str = typer.Option("tsv", "--format", help="tsv or json."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Resolve OCR receipt payloads to fuel products."""

    _exit(
        cmd_resolve(
            str(json_path), today=today, output_format=output_format, database_url=database_url
        )
    )


@app.command("invoice")
def invoice_cmd(
    json_path: Annotated[Path, JSON_PATH_OPTION],
    *,
    today: str | None = typer.Option(None, help="Evaluation date (YYYY-MM-DD)."),
    review: bool = typer.Option(
        True, help="Interactively place receipts the resolver could not."
    ),
    vat_number: str | None = typer.Option(
        None,
        "--vat-number",
        envvar=VAT_NUMBER_ENV_VAR,
        help="Station VAT number; numbers the invoice EV-<VAT>-YYYY-NNNN.",
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Build VAT-exclusive invoice lines from OCR receipt payloads."""

    _exit(
        cmd_invoice(
            str(json_path),
            today=today,
            review=review,
            vat_number=vat_number,
            database_url=database_url,
        )
    )


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


def main(argv: list[str] | None = None) -> int:
    """Run the CLI with ``argv`` and return the exit code instead of exiting."""

    rv = app(args=argv, prog_name="fuel-invoicing", standalone_mode=False)
    return rv if isinstance(rv, int) else 0


if __name__ == "__main__":  # pragma: no cover
    app()
