"""Command-line interface for the TradeLink marketplace backend."""

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .data.database import get_database, init_database
from .data.schema import MembershipTier, UserRole
from .models import get_settings
from .services import AccountService, CommissionJobService, CommissionService, CreditService, MarketplaceError

app = typer.Typer(
    name="tradelink",
    help="TradeLink B2B marketplace backend CLI",
    add_completion=False,
)
console = Console()


def print_error(message: str):
    """Print an error message."""
    console.print(
        Panel(
            f"[red]{message}[/red]",
            title="[bold red]Error[/bold red]",
            border_style="red",
        )
    )


def print_mapping(title: str, values: dict):
    table = Table(title=title, show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="white")

    for key, value in values.items():
        table.add_row(str(key), str(value))

    console.print(table)


@app.command()
def version():
    """Show version information."""
    from . import __version__

    console.print(f"TradeLink Marketplace v{__version__}")


@app.command()
def config():
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    # Only show non-sensitive settings
    table.add_row("Environment", settings.environment)
    table.add_row("Database URL", settings.database_url)
    table.add_row("Rate Limit Redis", settings.redis_url or "in-memory")
    table.add_row("RFQ Expiry (days)", str(settings.rfq_default_expiry_days))
    table.add_row("Commission Due (days)", str(settings.commission_due_days))
    table.add_row("Default Credit Limit", f"{settings.default_credit_limit:.2f}")
    table.add_row("Evidence Directory", settings.evidence_dir)
    table.add_row("Scheduler Enabled", str(settings.scheduler_enabled))
    table.add_row("Payment Gateway", settings.payment_gateway_url or "simulated")
    table.add_row("Gateway Key Set", "Yes" if settings.payment_gateway_api_key else "No")

    console.print(table)


@app.command("init-db")
def init_db():
    """Create all database tables."""
    database = init_database()
    console.print(f"[green]Database initialised at {database.url}[/green]")


@app.command("create-user")
def create_user(
    email: str = typer.Argument(..., help="Login email"),
    name: str = typer.Argument(..., help="Display name"),
    role: UserRole = typer.Option(UserRole.BUYER, "--role", "-r", help="Marketplace role"),
    business_name: str | None = typer.Option(None, "--business-name", help="Supplier business name"),
    tier: MembershipTier = typer.Option(MembershipTier.FREE, "--tier", help="Supplier membership tier"),
):
    """Create a buyer, supplier or admin account."""
    database = init_database()
    try:
        with database.session_scope() as session:
            user = AccountService(session).create_user(
                email, name, role, business_name=business_name, membership_tier=tier
            )
            user_id = user.id
    except MarketplaceError as e:
        print_error(e.message)
        raise typer.Exit(1)

    console.print(f"[green]Created {role.value} #{user_id} ({email})[/green]")


@app.command("daily-job")
def daily_job():
    """Mark overdue commissions, send reminders and expire RFQs and quotations."""
    database = init_database()
    with database.session_scope() as session:
        summary = CommissionJobService(session).run_daily_job()

    reminders = summary.pop("reminders_sent")
    summary.update({f"reminders_{kind}": count for kind, count in reminders.items()})
    print_mapping("Daily Job", summary)


@app.command("commission-rate")
def commission_rate(
    supplier_id: int = typer.Argument(..., help="Supplier user id"),
    category: int | None = typer.Option(None, "--category", "-c", help="Category id"),
):
    """Show the effective commission rate for a supplier."""
    database = get_database()
    try:
        with database.session_scope() as session:
            rate = CommissionService(session).calculate_commission_rate(supplier_id, category)
    except MarketplaceError as e:
        print_error(e.message)
        raise typer.Exit(1)

    console.print(f"Supplier #{supplier_id}: [bold]{rate:.2f}%[/bold]")


@app.command("credit-status")
def credit_status(supplier_id: int = typer.Argument(..., help="Supplier user id")):
    """Show a supplier's commission credit position."""
    database = get_database()
    try:
        with database.session_scope() as session:
            status = CreditService(session).get_credit_status(supplier_id)
    except MarketplaceError as e:
        print_error(e.message)
        raise typer.Exit(1)

    print_mapping(f"Credit Status: Supplier #{supplier_id}", status.model_dump())


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the API server with uvicorn."""
    import uvicorn

    uvicorn.run("tradelink.api.main:app", host=host, port=port, reload=reload)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
