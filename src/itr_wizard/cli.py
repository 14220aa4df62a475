"""CLI commands for the ITR filing wizard."""

import asyncio
import json
import logging
import os
from functools import wraps
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, FloatPrompt, Prompt
from rich.table import Table

from itr_wizard import __version__
from itr_wizard.config import ENV_API_KEY, get_config
from itr_wizard.env import load_env
from itr_wizard.errors import (
    GenerationRejectedError,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from itr_wizard.merger import merge_income
from itr_wizard.models.filing import DownloadFormat, RecommendationResult, TaxCalculationResult
from itr_wizard.models.income import IncomeComposition
from itr_wizard.models.taxpayer import Gender, MaritalStatus
from itr_wizard.models.wizard import STEP_INFO, WizardStep
from itr_wizard.recommendation import recommend
from itr_wizard.service.client import FilingServiceClient
from itr_wizard.storage.snapshot_store import get_snapshot_store
from itr_wizard.utils import format_inr, get_enum_value
from itr_wizard.wizard import WizardController

# Load .env file early so all env vars are available
load_env()


def async_command(f):
    """Decorator to run async commands with asyncio.run()."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


app = typer.Typer(
    name="itr-wizard",
    help="Step-by-step income-tax return filing with save/resume and ITR form recommendation.",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Manage configuration")
app.add_typer(config_app, name="config")
console = Console()

PERSONAL_PROMPTS = (
    ("employee_name", "Full name (as on PAN)"),
    ("pan", "PAN"),
    ("date_of_birth", "Date of birth (YYYY-MM-DD)"),
    ("father_name", "Father's name"),
    ("email_address", "Email address"),
    ("mobile_number", "Mobile number"),
    ("address", "Address"),
    ("city", "City"),
    ("state", "State"),
    ("pincode", "PIN code"),
    ("aadhaar_number", "Aadhaar number"),
    ("bank_account_number", "Bank account number"),
    ("bank_ifsc_code", "Bank IFSC code"),
    ("bank_name", "Bank name"),
)

TAX_DATA_PROMPTS = (
    ("salary_section17", "Salary under section 17(1)"),
    ("perquisites", "Perquisites"),
    ("interest_on_savings", "Savings account interest"),
    ("interest_on_fixed_deposits", "Fixed deposit interest"),
    ("dividend_income", "Dividend income"),
    ("total_tax_deducted", "TDS deducted"),
    ("stocks_stcg", "Short-term gains on stocks"),
    ("stocks_ltcg", "Long-term gains on stocks"),
    ("intraday_trading_income", "Intraday trading income"),
    ("trading_business_expenses", "Trading expenses"),
)


def _load_json(path: Path) -> dict[str, Any]:
    """Read a JSON object from a file, exiting with a message on failure."""
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        rprint(f"[red]Could not read {path}: {e}[/red]")
        raise typer.Exit(1)
    if not isinstance(data, dict):
        rprint(f"[red]{path} must contain a JSON object[/red]")
        raise typer.Exit(1)
    return data


def _build_controller() -> WizardController:
    config = get_config()
    try:
        store = get_snapshot_store()
    except PersistenceError as e:
        rprint(f"[red]Local storage unavailable: {e}[/red]")
        raise typer.Exit(1)
    return WizardController(
        store,
        FilingServiceClient.from_config(),
        default_age=config.default_age,
    )


def _print_recommendation(result: RecommendationResult, title: str = "Recommended Form") -> None:
    lines = [f"[bold green]{result.category.display_name}[/bold green]", "", result.reason]
    if result.requirements:
        lines.append("\n[bold]Requirements[/bold]")
        lines.extend(f"  • {item}" for item in result.requirements)
    if result.limitations:
        lines.append("\n[bold]Limitations[/bold]")
        lines.extend(f"  • {item}" for item in result.limitations)
    rprint(Panel.fit("\n".join(lines), title=title))


def _print_calculation(result: TaxCalculationResult) -> None:
    table = Table(title="Tax Calculation")
    table.add_column("Item", style="cyan")
    table.add_column("Amount", style="green", justify="right")
    table.add_row("Total income", format_inr(result.total_income))
    table.add_row("Taxable income", format_inr(result.taxable_income))
    table.add_row("Income tax", format_inr(result.income_tax))
    table.add_row("Surcharge", format_inr(result.surcharge))
    table.add_row("Health & education cess", format_inr(result.cess))
    table.add_row("Total tax", format_inr(result.total_tax))
    table.add_row("TDS paid", format_inr(result.tax_paid))
    if result.is_refund_due:
        table.add_row("[bold]Refund due[/bold]", f"[bold green]{format_inr(result.refund_amount)}[/bold green]")
    else:
        table.add_row("[bold]Tax payable[/bold]", f"[bold red]{format_inr(result.additional_tax_due)}[/bold red]")
    console.print(table)

    if result.slabs:
        slabs = Table(title="Slab Breakdown")
        slabs.add_column("Slab")
        slabs.add_column("Income", justify="right")
        slabs.add_column("Rate", justify="right")
        slabs.add_column("Tax", justify="right")
        for slab in result.slabs:
            slabs.add_row(
                slab.slab_description,
                format_inr(slab.income_in_slab),
                f"{slab.tax_rate:g}%",
                format_inr(slab.tax_amount),
            )
        console.print(slabs)


def _print_validation(error: ValidationError) -> None:
    rprint(f"[red]{error}[/red]")


def _prompt_personal_details(controller: WizardController) -> dict[str, Any]:
    profile = controller.state.profile
    payload: dict[str, Any] = {}
    for name, label in PERSONAL_PROMPTS:
        payload[name] = Prompt.ask(label, default=getattr(profile, name) or None) or ""

    genders = [g.name.lower() for g in Gender]
    current = {"default": profile.gender.name.lower()} if profile.gender is not None else {}
    gender = Prompt.ask("Gender", choices=genders, **current)
    payload["gender"] = Gender[gender.upper()]

    statuses = [m.name.lower() for m in MaritalStatus]
    current = (
        {"default": profile.marital_status.name.lower()}
        if profile.marital_status is not None else {}
    )
    status_choice = Prompt.ask("Marital status", choices=statuses, **current)
    payload["marital_status"] = MaritalStatus[status_choice.upper()]
    return payload


def _prompt_tax_data(controller: WizardController) -> dict[str, Any]:
    config = get_config()
    composition = controller.state.composition
    payload: dict[str, Any] = {
        "assessment_year": Prompt.ask(
            "Assessment year", default=composition.assessment_year or config.assessment_year
        ),
        "financial_year": Prompt.ask(
            "Financial year", default=composition.financial_year or config.financial_year
        ),
        "employer_name": Prompt.ask("Employer name", default=composition.employer_name or ""),
    }
    for name, label in TAX_DATA_PROMPTS:
        payload[name] = FloatPrompt.ask(label, default=getattr(composition, name))
    return payload


@app.callback()
def main(
    version: Annotated[bool, typer.Option("--version", help="Show version")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    """
    ITR Filing Wizard - guided income-tax return preparation.
    """
    if version:
        rprint(f"itr-wizard version {__version__}")
        raise typer.Exit()
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )


@app.command()
def status() -> None:
    """Show saved progress and the current form recommendation."""
    controller = _build_controller()
    config = get_config()

    table = Table(title="Filing Status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    if controller.restore():
        state = controller.state
        table.add_row("Current step", STEP_INFO[state.step]["title"])
        table.add_row("Last saved", controller.last_saved_message())
        table.add_row("Taxpayer", state.profile.employee_name or "[dim]Not set[/dim]")
        table.add_row("Financial year", state.composition.financial_year or "[dim]Not set[/dim]")
        table.add_row("Total income", format_inr(state.composition.total_income()))
        if state.import_sourced_areas:
            table.add_row(
                "Imported areas",
                ", ".join(sorted(get_enum_value(a) for a in state.import_sourced_areas)),
            )
    else:
        table.add_row("Saved progress", "[dim]None[/dim]")
    table.add_row("Service URL", config.service_base_url)
    console.print(table)

    if controller.has_saved_data():
        _print_recommendation(controller.recommendation(), title="Recommendation Preview")


@app.command()
@async_command
async def run(
    data: Annotated[
        Optional[Path], typer.Option("--data", help="JSON file with tax data to use instead of prompting")
    ] = None,
    import_file: Annotated[
        Optional[Path], typer.Option("--import", help="JSON summary extracted from a Form 16")
    ] = None,
    output: Annotated[
        Path, typer.Option("--output", "-o", help="Directory for the generated return files")
    ] = Path("."),
    form_type: Annotated[
        Optional[str], typer.Option("--form", help="Preferred form type, e.g. ITR2")
    ] = None,
) -> None:
    """Walk through the filing wizard interactively."""
    controller = _build_controller()

    if controller.has_saved_data():
        if controller.restore() and Confirm.ask(
            f"Resume your saved filing? [dim]({controller.last_saved_message()})[/dim]",
            default=True,
        ):
            rprint(f"[green]Resuming at {controller.step.title}[/green]")
        else:
            controller.start_over()

    if import_file:
        try:
            controller.receive_import(_load_json(import_file))
        except ValidationError as e:
            _print_validation(e)
            raise typer.Exit(1)
        rprint("[green]Imported summary merged into your filing.[/green]")

    while True:
        step = controller.step
        rprint(f"\n[bold blue]Step {int(step) + 1} of {len(WizardStep)}: {step.title}[/bold blue]")

        try:
            if step == WizardStep.PERSONAL_DETAILS:
                controller.advance(step, _prompt_personal_details(controller))

            elif step == WizardStep.TAX_DATA_INPUT:
                payload = _load_json(data) if data else _prompt_tax_data(controller)
                with console.status("[bold cyan]Calculating tax...[/bold cyan]"):
                    await controller.request_calculation(payload)

            elif step == WizardStep.TAX_RESULTS:
                _print_calculation(controller.state.calculation)
                _print_recommendation(controller.recommendation())
                if not Confirm.ask("Continue to ITR generation?", default=True):
                    controller.retreat(WizardStep.TAX_DATA_INPUT)
                    data = None
                    continue
                controller.advance(step)

            else:
                with console.status("[bold cyan]Generating your return...[/bold cyan]"):
                    generation = await controller.request_recommendation_and_generation(form_type)
                state = controller.state
                if state.service_recommendation:
                    rprint(Panel.fit(
                        state.service_recommendation.summary or state.service_recommendation.reason,
                        title=f"Service recommends {state.service_recommendation.recommended_type}",
                    ))
                for warning in generation.warnings:
                    rprint(f"[yellow]Warning: {warning}[/yellow]")

                output.mkdir(parents=True, exist_ok=True)
                for fmt in DownloadFormat:
                    payload = await controller.download(fmt)
                    path = output / payload.file_name
                    path.write_bytes(payload.content)
                    rprint(f"[green]Saved {fmt.value.upper()}: {path}[/green]")
                if generation.generation_summary:
                    rprint(f"\n{generation.generation_summary}")
                break

        except ValidationError as e:
            _print_validation(e)
            if data and step == WizardStep.TAX_DATA_INPUT:
                raise typer.Exit(1)
        except GenerationRejectedError as e:
            rprint("[red]The return could not be generated:[/red]")
            for item in e.validation_errors:
                rprint(f"  [red]• {item}[/red]")
            raise typer.Exit(1)
        except ServiceError as e:
            rprint(f"[red]{e}[/red]")
            if not Confirm.ask("Retry?", default=True):
                raise typer.Exit(1)

    if controller.save_pending:
        rprint("[yellow]Progress could not be saved to local storage.[/yellow]")


@app.command(name="import")
def import_summary(
    file: Annotated[Path, typer.Argument(help="JSON summary extracted from a Form 16")],
) -> None:
    """Merge an imported income summary into your saved filing."""
    controller = _build_controller()
    controller.restore()
    try:
        state = controller.receive_import(_load_json(file))
    except ValidationError as e:
        _print_validation(e)
        raise typer.Exit(1)

    areas = sorted(get_enum_value(a) for a in state.import_sourced_areas)
    rprint(f"[green]Imported summary merged.[/green] Areas: {', '.join(areas) or 'none'}")
    derived = [item for item in controller.merged_composition().business_income_items if item.derived]
    for item in derived:
        rprint(f"  • {item.income_type}: {format_inr(item.gross_receipts)}")
    _print_recommendation(controller.recommendation())


@app.command("recommend")
def recommend_form(
    file: Annotated[Path, typer.Argument(help="JSON file with an income composition")],
    total_income: Annotated[
        Optional[float], typer.Option("--total-income", help="Override the computed total income")
    ] = None,
) -> None:
    """Recommend an ITR form for an income composition without filing."""
    try:
        composition = IncomeComposition.model_validate(_load_json(file))
    except ValueError as e:
        rprint(f"[red]Invalid income composition: {e}[/red]")
        raise typer.Exit(1)

    merged = merge_income(composition)
    income = total_income if total_income is not None else merged.total_income()
    rprint(f"Total income: [bold]{format_inr(income)}[/bold]")
    _print_recommendation(recommend(merged, income))


@app.command()
def reset(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Discard saved progress and start a new filing."""
    if not yes and not Confirm.ask("[yellow]Discard all saved filing progress?[/yellow]"):
        raise typer.Exit()
    controller = _build_controller()
    controller.start_over()
    rprint("[green]Saved progress cleared.[/green]")


@config_app.command("show")
def config_show() -> None:
    """Show configuration values."""
    config = get_config()
    table = Table(title="Configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in config.to_dict().items():
        table.add_row(key, str(value) if value is not None else "[dim]Not set[/dim]")

    if os.environ.get(ENV_API_KEY):
        table.add_row("api_key", "Configured [dim](from env)[/dim]")
    elif config.get_api_key():
        table.add_row("api_key", "Configured [dim](from keyring)[/dim]")
    else:
        table.add_row("api_key", "[dim]Not set[/dim]")
    table.add_row("data_dir", str(config.data_dir))
    console.print(table)


@config_app.command("set-url")
def config_set_url(
    url: Annotated[str, typer.Argument(help="Base URL of the filing service")],
) -> None:
    """Set the filing service base URL."""
    config = get_config()
    try:
        config.service_base_url = url
    except ValueError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)
    rprint(f"[green]Service URL set to {config.service_base_url}[/green]")


@config_app.command("set-year")
def config_set_year(
    financial_year: Annotated[str, typer.Argument(help="Financial year, e.g. 2024-25")],
) -> None:
    """Set the default financial year (and matching assessment year)."""
    config = get_config()
    try:
        start = int(financial_year[:4])
    except ValueError:
        rprint(f"[red]Invalid financial year: {financial_year}[/red]")
        raise typer.Exit(1)
    config.financial_year = f"{start}-{str(start + 1)[-2:]}"
    config.assessment_year = f"{start + 1}-{str(start + 2)[-2:]}"
    rprint(
        f"[green]Financial year {config.financial_year}, "
        f"assessment year {config.assessment_year}[/green]"
    )


@config_app.command("set-api-key")
def config_set_api_key() -> None:
    """Store the filing service API key in the system keyring."""
    config = get_config()
    api_key = Prompt.ask("[bold]Enter the filing service API key[/bold]", password=True)
    if not api_key.strip():
        rprint("[yellow]No key entered. API key not changed.[/yellow]")
        return
    config.set_api_key(api_key.strip())
    rprint("[green]API key updated successfully.[/green]")


if __name__ == "__main__":
    app()
