"""
CLI interface for Provider Fallback.

Exposes the hooks, usage recording and OAuth setup on the command line.
"""

import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from provider_fallback.core.callback import CALLBACK_WAIT_SECONDS, CallbackListener
from provider_fallback.core.errors import AuthError
from provider_fallback.core.fallback import FallbackState
from provider_fallback.core.hooks import on_rate_limit, on_session_start
from provider_fallback.core.runtime import FallbackRuntime
from provider_fallback.core.status import provider_status

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def get_runtime() -> FallbackRuntime:
    """Runtime over the user config dir, with overrides from the current project."""
    return FallbackRuntime.from_home(project_dir=Path(os.getcwd()))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Provider Fallback CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    if ctx.invoked_subcommand is None:
        console.print("Provider Fallback - Use --help to see available commands")


@app.command()
def status(
    all_providers: bool = typer.Option(False, "--all", "-a", help="Include unconfigured providers"),
):
    """Show provider auth state, priority and usage."""
    runtime = get_runtime()
    config = runtime.effective_config()
    statuses = provider_status(runtime.catalog, config, runtime.ledger.load(), runtime.resolver)

    table = Table(title="Providers")
    table.add_column("#", justify="right")
    table.add_column("Provider")
    table.add_column("Auth")
    table.add_column("Token")
    table.add_column("Daily", justify="right")
    table.add_column("Monthly", justify="right")
    table.add_column("Available")

    ordered = sorted(statuses.values(), key=lambda s: (s.priority is None, s.priority or 0))
    for item in ordered:
        if not item.configured and not all_providers:
            continue
        if item.is_expired:
            token = "[red]expired[/]"
        elif item.needs_refresh:
            token = "[yellow]refresh due[/]"
        else:
            token = "ok" if item.configured else "-"
        table.add_row(
            str(item.priority) if item.priority else "-",
            item.id,
            item.auth_type,
            token,
            f"{item.daily_tokens:,} / {item.daily_limit or 0:,}",
            f"{item.monthly_tokens:,} / {item.monthly_limit or 0:,}",
            "[green]yes[/]" if item.available else "[red]no[/]",
        )

    console.print(f"Default model: {config.default_model}  Auto-switch: {config.auto_switch}")
    console.print(table)


@app.command("session-start")
def session_start():
    """Refresh OAuth tokens and check the active provider's capacity."""
    report = on_session_start(get_runtime())
    if not report.enabled:
        console.print("Provider fallback disabled for this project")
        sys.exit(EXIT_CODE_PASS)
    for provider_id in report.refreshed:
        console.print(f"[green]✓[/] Token refreshed for {provider_id}")
    for provider_id, error in report.refresh_errors.items():
        console.print(f"[yellow]![/] Failed to refresh {provider_id}: {escape(error)}")
    if report.switched_from:
        console.print(f"Auto-switched from {report.switched_from} to {report.active_provider} (limit reached)")
    if report.all_exhausted:
        console.print("[bold red]All providers have reached their limits![/]")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"Active: {report.active_provider or 'none'}")
    sys.exit(EXIT_CODE_PASS)


@app.command("rate-limit")
def rate_limit(
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Provider that was rate limited"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model that was requested"),
):
    """Switch away from a rate-limited provider."""
    result = on_rate_limit(get_runtime(), provider, model)
    if result is None:
        console.print("Rate limit detected but auto-switch is disabled")
        sys.exit(EXIT_CODE_PASS)
    if result.state == FallbackState.ALL_EXHAUSTED:
        console.print(f"[bold red]{escape(result.message)}[/]")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] {escape(result.message)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def record(
    provider: str = typer.Argument(..., help="Provider that served the request"),
    tokens: int = typer.Argument(..., help="Tokens consumed"),
):
    """Record token usage for a provider."""
    try:
        ledger = get_runtime().ledger.record(provider, tokens)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    entry = ledger.get(provider)
    console.print(f"{provider}: {entry.daily_tokens:,} today, {entry.monthly_tokens:,} this month")


@app.command("set-priority")
def set_priority(providers: List[str] = typer.Argument(..., help="Provider ids in preference order")):
    """Replace the provider priority list."""
    try:
        config = get_runtime().config_store.set_priority(providers)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Priority: {', '.join(config.provider_priority)}")


@app.command("set-limit")
def set_limit(
    provider: str = typer.Argument(..., help="Provider id"),
    daily: Optional[int] = typer.Option(None, "--daily", "-d", help="Daily token limit"),
    monthly: Optional[int] = typer.Option(None, "--monthly", "-M", help="Monthly token limit"),
):
    """Set usage limits for a provider."""
    try:
        config = get_runtime().config_store.set_usage_limit(provider, daily, monthly)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    limits = config.limits_for(provider)
    console.print(f"[green]✓[/] {provider}: {limits.daily_tokens:,} daily, {limits.monthly_tokens:,} monthly")


@app.command("reset-usage")
def reset_usage(provider: Optional[str] = typer.Argument(None, help="Provider id (all if omitted)")):
    """Reset usage counters."""
    try:
        get_runtime().ledger.reset(provider)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Usage reset for {provider or 'all providers'}")


@app.command("auth-url")
def auth_url(
    provider: str = typer.Argument(..., help="OAuth provider id"),
    client_id: str = typer.Option(..., "--client-id", help="OAuth client id"),
    client_secret: str = typer.Option(..., "--client-secret", help="OAuth client secret"),
    wait: bool = typer.Option(False, "--wait", "-w", help="Listen on the redirect URI and finish setup"),
    timeout: float = typer.Option(CALLBACK_WAIT_SECONDS, "--timeout", help="Seconds to wait for the callback"),
):
    """Start OAuth setup and print the authorization URL."""
    manager = get_runtime().manager
    try:
        request = manager.start_authorization_flow(provider, client_id, client_secret)
        listener = CallbackListener(manager, provider) if wait else None
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    console.print("Open this URL to authorize:")
    console.print(request.auth_url, soft_wrap=True)
    if listener is None:
        return

    try:
        credential = listener.wait(timeout)
    except (AuthError, ValueError) as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Authorized {provider}, token expires {credential.get('expiresAt')}")


@app.command("auth-complete")
def auth_complete(
    provider: str = typer.Argument(..., help="OAuth provider id"),
    code: str = typer.Argument(..., help="Authorization code from the callback"),
    state: str = typer.Argument(..., help="State value from the callback"),
):
    """Finish OAuth setup with the code returned to the callback."""
    try:
        credential = get_runtime().manager.complete_authorization_flow(provider, code, state)
    except (AuthError, ValueError) as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Authorized {provider}, token expires {credential.get('expiresAt')}")


@app.command()
def refresh(provider: str = typer.Argument(..., help="OAuth provider id")):
    """Refresh an OAuth token now."""
    try:
        credential = get_runtime().manager.refresh(provider)
    except (AuthError, ValueError) as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Refreshed {provider}, token expires {credential.get('expiresAt')}")


if __name__ == "__main__":
    app()
