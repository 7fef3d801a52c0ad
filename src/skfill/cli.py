"""SKFill CLI: inspect and check PDF forms from the command line.

Usage:
    skfill fields <form.pdf|annotations.json> [--json] [--viewport-height 792]
    skfill validate <form> --values values.json
    skfill progress <form> --values values.json
    skfill sessions
    skfill serve [--port 8410]
"""

import json
import logging
import os
import sys
from functools import partial
from pathlib import Path
from typing import Any, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import FeatureFlagService, FormConfig
from .coords import to_viewport
from .errors import UnknownFieldError
from .extraction import extract_document, iter_fields
from .models import ButtonColor, ExtractionResult
from .sources import load_source
from .store import SessionStore
from .wizard import FormSession

console = Console()

_BUTTON_STYLES = {
    ButtonColor.PRIMARY: "blue",
    ButtonColor.WARNING: "yellow",
    ButtonColor.SECONDARY: "magenta",
    ButtonColor.SUCCESS: "green",
}


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(),
    default=None,
    help="SKFill data directory (default: ~/.skfill)",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, data_dir: Optional[str], verbose: bool) -> None:
    """SKFill: guided PDF form filling."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    config = FormConfig.from_env()
    if data_dir:
        config = config.model_copy(update={"data_dir": Path(data_dir)})
    ctx.obj["config"] = config
    ctx.obj["store"] = SessionStore(config.data_dir)


def _extract(config: FormConfig, form: str, smart: bool = True) -> ExtractionResult:
    try:
        source = load_source(form)
    except Exception as exc:
        console.print(f"[red]Cannot open {form}: {exc}[/]")
        sys.exit(1)
    pages = [
        {"page_number": n, "loader": partial(source.get_annotations, n)}
        for n in range(1, source.page_count() + 1)
    ]
    return extract_document(pages, config.denylist, smart_detection=smart)


def _load_values(values_path: Optional[str]) -> dict[str, Any]:
    if not values_path:
        return {}
    try:
        data = json.loads(Path(values_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[red]Cannot read values: {exc}[/]")
        sys.exit(1)
    if not isinstance(data, dict):
        console.print("[red]Values file must contain a JSON object[/]")
        sys.exit(1)
    return data


def _session_for(config: FormConfig, form: str, values_path: Optional[str]) -> FormSession:
    flags = FeatureFlagService()
    flags.init()
    session = FormSession(flags=flags, config=config)
    result = _extract(config, form, smart=flags.is_enabled("SMART_FIELD_DETECTION"))
    session.set_form_fields(result.page_fields)
    for field_id, value in _load_values(values_path).items():
        try:
            session.set_field_value(field_id, value)
        except UnknownFieldError as exc:
            console.print(f"[yellow]Ignoring value: {exc}[/]")
    return session


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------

@main.command()
@click.argument("form", type=click.Path(exists=True))
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the extraction as JSON")
@click.option("--no-smart", is_flag=True, default=False, help="Disable name-based type detection")
@click.option(
    "--viewport-height",
    type=float,
    default=None,
    help="Also show each field's box in a viewport of this height",
)
@click.pass_context
def fields(
    ctx: click.Context,
    form: str,
    as_json: bool,
    no_smart: bool,
    viewport_height: Optional[float],
) -> None:
    """List the fields of a PDF form (or an annotation JSON dump)."""
    result = _extract(ctx.obj["config"], form, smart=not no_smart)

    if as_json:
        click.echo(result.model_dump_json(indent=2, by_alias=True))
        return

    all_fields = list(iter_fields(result.page_fields))
    if not all_fields:
        console.print("[dim]No form fields found.[/]")
        return

    table = Table(title=f"Fields: {Path(form).name}")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Page", justify="right")
    table.add_column("Required", justify="center")
    if viewport_height:
        table.add_column("Viewport box", style="dim")

    for field in all_fields:
        required = "[bold yellow]yes[/]" if field.required else "[dim]no[/]"
        if field.read_only:
            required += " [dim](read-only)[/]"
        row = [
            field.id,
            field.name,
            field.field_type.value,
            str(field.page_number),
            required,
        ]
        if viewport_height:
            box = to_viewport(field.rect, viewport_height)
            row.append(f"{box.x:.0f},{box.y:.0f} {box.width:.0f}x{box.height:.0f}")
        table.add_row(*row)

    console.print(table)
    console.print(
        f"[dim]{len(result.field_index)} unique fields on {len(result.page_fields)} pages[/]"
    )


# ---------------------------------------------------------------------------
# Validate
# ---------------------------------------------------------------------------

@main.command()
@click.argument("form", type=click.Path(exists=True))
@click.option("--values", "values_path", type=click.Path(exists=True), default=None, help="JSON object of field id -> value")
@click.pass_context
def validate(ctx: click.Context, form: str, values_path: Optional[str]) -> None:
    """Validate filled-in values against a form's fields."""
    session = _session_for(ctx.obj["config"], form, values_path)
    result = session.validate_form()

    if result.is_valid:
        console.print(
            Panel(
                f"[bold green]All {len(result.field_results)} fields valid[/]",
                title="SKFill",
                border_style="green",
            )
        )
        return

    table = Table(title="Validation errors")
    table.add_column("Field", style="cyan")
    table.add_column("Error", style="red")
    for error in result.errors:
        table.add_row(error.field_id, error.message)
    console.print(table)
    if result.missing_required:
        console.print(
            f"[yellow]Missing required:[/] {', '.join(result.missing_required)}"
        )
    sys.exit(1)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

@main.command()
@click.argument("form", type=click.Path(exists=True))
@click.option("--values", "values_path", type=click.Path(exists=True), default=None, help="JSON object of field id -> value")
@click.pass_context
def progress(ctx: click.Context, form: str, values_path: Optional[str]) -> None:
    """Show completion and what the wizard would do next."""
    session = _session_for(ctx.obj["config"], form, values_path)
    session.start_wizard()
    prog = session.get_form_progress()
    button = session.get_wizard_button_state()
    nxt = session.get_next_required_field()
    style = _BUTTON_STYLES.get(button.color, "white")

    console.print(
        Panel(
            f"  Required: {prog.completed}/{prog.total} ({prog.percentage}%)\n"
            f"  Phase:    {session.current_phase.value}\n"
            f"  Button:   [{style}]{button.text}[/]\n"
            f"  Next:     {nxt.name + ' (page ' + str(nxt.page_number) + ')' if nxt else '-'}\n"
            f"  {session.get_guidance_message()}",
            title=f"SKFill: {Path(form).name}",
            border_style=style,
        )
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@main.command()
@click.pass_context
def sessions(ctx: click.Context) -> None:
    """List saved form sessions."""
    store: SessionStore = ctx.obj["store"]
    records = store.list_sessions()

    if not records:
        console.print("[dim]No sessions found.[/]")
        return

    table = Table(title="SKFill Sessions")
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Title", style="cyan")
    table.add_column("Values", justify="right")
    table.add_column("Submitted", justify="center")
    table.add_column("Updated")

    for record in records:
        state = record.state
        table.add_row(
            record.session_id[:12],
            record.title or "[dim]untitled[/]",
            str(len(state.values)),
            "[green]yes[/]" if state.is_submitted else "[dim]no[/]",
            record.updated_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Serve
# ---------------------------------------------------------------------------

@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8410, help="Port")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Start the SKFill API server."""
    import uvicorn

    os.environ["SKFILL_DATA_DIR"] = str(ctx.obj["config"].data_dir)

    console.print(
        f"[bold]SKFill API[/] listening on [cyan]http://{host}:{port}[/]"
    )
    uvicorn.run("skfill.api:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
