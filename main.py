import json
from typing import Optional

import typer
from dotenv import load_dotenv

from moneybird_agent.config.exception import AppException, ConfigurationError
from moneybird_agent.config.settings import Settings, load_settings
from moneybird_agent.graph.workflow import InvoiceProcessingWorkflow
from moneybird_agent.notifications.dispatcher import NotificationDispatcher
from moneybird_agent.notifications.summary import format_daily_summary, generate_daily_summary
from moneybird_agent.reports.btw import build_quarterly_report, format_report_csv, validate_report
from moneybird_agent.scheduler import PipelineScheduler
from moneybird_agent.storage.state_store import StateStore
from moneybird_agent.tools.mcp_connection import MCPConnection
from moneybird_agent.tools.moneybird_client import MoneybirdClient

load_dotenv()

app = typer.Typer(no_args_is_help=True, help="Moneybird purchase invoice agent.")


def _settings() -> Settings:
    try:
        return load_settings()
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from e


def _daily_summary(settings: Settings, store: StateStore, day: Optional[str] = None, send: bool = True):
    summary = generate_daily_summary(store, day)
    if send:
        NotificationDispatcher.from_settings(settings).send_daily_summary(summary)
    return summary


@app.command("run-once")
def run_once(
    document: Optional[str] = typer.Option(
        None, "--document", "-d", help="Local invoice document to use instead of fetching one"
    ),
):
    """Process the next unprocessed purchase invoice and print the run summary."""
    settings = _settings()
    try:
        workflow = InvoiceProcessingWorkflow(settings)
        result = workflow.run(document_path=document)
    except AppException as e:
        typer.echo(f"Run failed: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(json.dumps(result, indent=2, default=str))


@app.command()
def serve():
    """Run the pipeline on the configured interval until interrupted."""
    settings = _settings()
    try:
        workflow = InvoiceProcessingWorkflow(settings)
        scheduler = PipelineScheduler(
            run_once=workflow.run,
            interval_minutes=settings.run_interval_minutes,
            daily_summary=lambda: _daily_summary(settings, workflow.store),
            daily_summary_time=settings.daily_summary_time,
        )
    except (AppException, ConfigurationError) as e:
        typer.echo(f"Could not start scheduler: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Scheduler running every {settings.run_interval_minutes} minutes (Ctrl+C to stop)")
    scheduler.serve_forever()


@app.command("daily-summary")
def daily_summary(
    date: Optional[str] = typer.Option(None, "--date", help="Day to summarize (YYYY-MM-DD), default today"),
    send: bool = typer.Option(False, "--send", help="Also send the summary to the notification channels"),
):
    """Summarize the processing log for one day."""
    settings = _settings()
    store = StateStore(settings.database_path)
    summary = _daily_summary(settings, store, date, send=send)
    typer.echo(format_daily_summary(summary))


@app.command("btw-report")
def btw_report(
    year: int = typer.Argument(..., help="Year, e.g. 2026"),
    quarter: int = typer.Argument(..., min=1, max=4, help="Quarter 1-4"),
    csv: bool = typer.Option(False, "--csv", help="Print CSV instead of JSON"),
):
    """Aggregate purchase invoice VAT for one quarter."""
    settings = _settings()
    try:
        with MCPConnection(settings.mcp_server_url, settings.mcp_auth_token) as connection:
            client = MoneybirdClient(
                connection,
                administration_id=settings.administration_id,
                access_token=settings.rest_token,
                api_base=settings.moneybird_api_base,
            )
            report = build_quarterly_report(client, year, quarter)
    except Exception as e:
        typer.echo(f"Error communicating with Moneybird: {e}", err=True)
        raise typer.Exit(code=1) from e

    if csv:
        typer.echo(format_report_csv(report))
    else:
        typer.echo(json.dumps(report.model_dump(), indent=2))

    checks = validate_report(report)
    for message in checks["errors"]:
        typer.echo(f"Error: {message}", err=True)
    for message in checks["warnings"]:
        typer.echo(f"Warning: {message}", err=True)


@app.command("clear-processed")
def clear_processed(
    invoice_id: Optional[str] = typer.Argument(None, help="Invoice to clear; all invoices when omitted"),
):
    """Forget processed-invoice records so invoices are picked up again."""
    settings = _settings()
    store = StateStore(settings.database_path)
    removed = store.clear_processed(invoice_id)
    typer.echo(f"Cleared {removed} processed invoice record(s)")


def main():
    app()


if __name__ == "__main__":
    main()
