#!/usr/bin/env python3
"""Main entry point for Personifeed."""

import argparse
import asyncio
import sys

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from personifeed.infrastructure.config import ApplicationConfig, load_config
from personifeed.infrastructure.database import init_database
from personifeed.infrastructure.error_handling import StoreUnavailable
from personifeed.infrastructure.logging import get_logger, setup_logging
from personifeed.models.state import RunResult
from personifeed.pipeline import build_pipeline

console = Console()
logger = get_logger(__name__)


class PersonifeedCLI:
    """Command-line interface for the newsletter pipeline."""

    def __init__(self, config: ApplicationConfig):
        self.config = config

    async def run_batch(self) -> bool:
        """Run one batch immediately and print its summary."""
        pipeline = await build_pipeline(self.config)
        try:
            with console.status("[bold green]Generating and sending newsletters..."):
                result = await pipeline.coordinator.run()
        finally:
            await pipeline.close()

        self._print_run(result)
        return result.success

    def _print_run(self, result: RunResult) -> None:
        if not result.success:
            console.print(Panel.fit(
                f"[bold red]Run failed to start[/bold red]\n{result.error}",
                title=f"Run {result.run_id}",
                border_style="red",
            ))
            return

        stats_table = Table(title=f"Run {result.run_id}")
        stats_table.add_column("Metric", style="cyan")
        stats_table.add_column("Value", style="white")
        stats_table.add_row("Total users", str(result.stats.total_users))
        stats_table.add_row("Sent", f"[green]{result.stats.success_count}[/green]")
        stats_table.add_row("Failed", f"[red]{result.stats.failure_count}[/red]")
        stats_table.add_row("Duration", f"{result.stats.duration_ms} ms")
        console.print(stats_table)

        if result.failures:
            failures_table = Table(title="Failures")
            failures_table.add_column("User", style="cyan", width=40)
            failures_table.add_column("Reason", style="red")
            failures_table.add_column("Detail", style="white")
            for failure in result.failures:
                failures_table.add_row(failure.user_id, failure.reason, failure.detail)
            console.print(failures_table)

    async def init_db(self) -> None:
        store = await init_database(self.config)
        await store.close()
        console.print("[green]✓[/green] Database tables ready")

    async def list_users(self) -> None:
        """List all subscribers."""
        store = await init_database(self.config)
        try:
            users = await store.list_users()
        finally:
            await store.close()

        if not users:
            console.print("[yellow]No users yet.[/yellow] Add one with [bold]personifeed add-user[/bold]")
            return

        users_table = Table(title=f"Subscribers ({len(users)})")
        users_table.add_column("ID", style="cyan", width=40)
        users_table.add_column("Email", style="blue")
        users_table.add_column("Active", style="green")
        users_table.add_column("Prompt", style="white")

        for user in users:
            users_table.add_row(
                user.id,
                user.email,
                "yes" if user.active else "no",
                user.prompt[:60] + ("..." if len(user.prompt) > 60 else ""),
            )

        console.print(users_table)

    async def add_user(self, email: str, prompt: str) -> None:
        """Seed a subscriber with its initial prompt."""
        store = await init_database(self.config)
        try:
            user = await store.create_user(email.strip().lower(), " ".join(prompt.split()))
        finally:
            await store.close()
        console.print(f"[green]✓[/green] Added {user.email} ({user.id})")

    async def set_active(self, user_id: str, active: bool) -> bool:
        store = await init_database(self.config)
        try:
            found = await store.set_user_active(user_id, active)
        finally:
            await store.close()
        if not found:
            console.print(f"[bold red]Error:[/bold red] User not found: {user_id}")
        else:
            console.print(f"[green]✓[/green] {user_id} {'activated' if active else 'deactivated'}")
        return found


def create_parser() -> argparse.ArgumentParser:
    """Create the command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="personifeed",
        description="Personalized newsletter pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  personifeed init-db
  personifeed add-user --email ada@example.com --prompt "daily AI news"
  personifeed run
  personifeed serve --port 8000
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run one newsletter batch for all active users")

    serve_parser = subparsers.add_parser("serve", help="Serve the trigger and webhook endpoints")
    serve_parser.add_argument("--host", help="Bind address (default from config)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default from config)")

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("list-users", help="List all subscribers")

    add_parser = subparsers.add_parser("add-user", help="Add a subscriber")
    add_parser.add_argument("--email", required=True, help="Subscriber email address")
    add_parser.add_argument("--prompt", required=True, help="What the newsletter should cover")

    for name, help_text in (("deactivate", "Stop sending to a user"), ("activate", "Resume sending to a user")):
        toggle_parser = subparsers.add_parser(name, help=help_text)
        toggle_parser.add_argument("user_id", help="User ID")

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser


async def run_command(args: argparse.Namespace, config: ApplicationConfig) -> int:
    cli = PersonifeedCLI(config)

    if args.command == "run":
        return 0 if await cli.run_batch() else 1
    if args.command == "init-db":
        await cli.init_db()
    elif args.command == "list-users":
        await cli.list_users()
    elif args.command == "add-user":
        await cli.add_user(args.email, args.prompt)
    elif args.command in ("activate", "deactivate"):
        return 0 if await cli.set_active(args.user_id, args.command == "activate") else 1
    return 0


def main() -> None:
    """Main application entry point."""
    parser = create_parser()
    args = parser.parse_args()

    config = load_config()
    setup_logging(
        level="DEBUG" if args.verbose else config.log_level,
        format_type=config.log_format,
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        import uvicorn
        from personifeed.api import create_app

        uvicorn.run(
            create_app(config),
            host=args.host or config.host,
            port=args.port or config.port,
        )
        return

    try:
        sys.exit(asyncio.run(run_command(args, config)))
    except StoreUnavailable as e:
        logger.error("Store unavailable", error=e.message)
        console.print(f"[bold red]Database error:[/bold red] {e.message}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    main()
