"""
Command-line entry point for Contract Desk.

Wraps the service operations for operators and scripts:
- Parse pasted contract text into items
- List a tenant's selectable contract items
- Check a contract item's limit
- Show (and export) a tenant's usage snapshot
- Create a ticket through the limit gate
"""

import functools
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Optional

import click
import yaml

from .background import BackgroundDispatcher
from .catalog import list_selectable_items
from .config import AppConfig, get_config
from .errors import ContractDeskError, LimitExceededError
from .limits import check_limit
from .models import CreateTicketInput
from .notifications import TicketNotifier
from .parser import parse_contract_text
from .store import StoreError, SupabaseStore
from .tickets import TicketService
from .usage import get_usage_stats, get_usage_trend
from .usage_report import UsageReportError, generate_usage_report


def setup_logging(level: str) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            # stdout carries command output
            logging.StreamHandler(sys.stderr),
        ],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Error that aborts a CLI command."""
    pass


def validate_config(config: AppConfig) -> None:
    """
    Validate configuration before touching the store.

    Args:
        config: Application configuration.

    Raises:
        CommandError: If configuration is invalid.
    """
    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise CommandError(
            f"Configuration validation failed with {len(errors)} error(s)"
        )


def handle_errors(command: Callable[..., Any]) -> Callable[..., Any]:
    """Map command failures to messages and exit codes."""

    @functools.wraps(command)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return command(*args, **kwargs)
        except LimitExceededError as e:
            click.echo(f"Limit exceeded: {e.message}", err=True)
            sys.exit(1)
        except ContractDeskError as e:
            click.echo(f"Error ({e.code}): {e.message}", err=True)
            sys.exit(1)
        except (CommandError, StoreError, UsageReportError) as e:
            click.echo(f"Command failed: {e}", err=True)
            sys.exit(1)
        except KeyboardInterrupt:
            click.echo("\nOperation cancelled by user", err=True)
            sys.exit(130)
        except Exception as e:
            click.echo(f"Unexpected error: {e}", err=True)
            if click.get_current_context().obj.log_level == "DEBUG":
                import traceback
                traceback.print_exc()
            sys.exit(1)

    return wrapper


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug logging",
)
@click.pass_context
def main(ctx: click.Context, debug: bool) -> None:
    """
    Contract Desk.

    Tracks contract entitlements per tenant and gates ticket creation
    against each contract item's usage limit.
    """
    config = get_config()
    if debug:
        config = replace(config, log_level="DEBUG")
    setup_logging(config.log_level)
    ctx.obj = config


@main.command()
@click.argument("source", type=click.File("r", encoding="utf-8"))
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "yaml"]),
    default="json",
    show_default=True,
    help="Output format for the parsed items",
)
@handle_errors
def parse(source, output_format: str) -> None:
    """Parse contract text (one item per line) into contract items."""
    items = [item.model_dump(exclude_none=True) for item in parse_contract_text(source.read())]
    if output_format == "yaml":
        click.echo(yaml.safe_dump({"items": items}, sort_keys=False), nl=False)
    else:
        _echo_json({"items": items})


@main.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")
@click.pass_obj
@handle_errors
def catalog(config: AppConfig, tenant_id: str) -> None:
    """List contract items a new ticket can be filed against."""
    validate_config(config)
    with SupabaseStore(config.store) as store:
        entries = list_selectable_items(store, tenant_id, tz_name=config.limits.period_timezone)
    _echo_json([entry.model_dump() for entry in entries])


@main.command("check-limit")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")
@click.argument("reference")
@click.pass_obj
@handle_errors
def check_limit_command(config: AppConfig, tenant_id: str, reference: str) -> None:
    """Check whether one more ticket fits a contract item's limit."""
    validate_config(config)
    with SupabaseStore(config.store) as store:
        result = check_limit(store, reference, tenant_id, tz_name=config.limits.period_timezone)
    _echo_json(result.model_dump())


@main.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")
@click.option(
    "--report",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also export the snapshot as an Excel workbook",
)
@click.pass_obj
@handle_errors
def usage(config: AppConfig, tenant_id: str, report: Optional[Path]) -> None:
    """Show usage of every active contract item in its current period."""
    validate_config(config)
    with SupabaseStore(config.store) as store:
        stats = get_usage_stats(
            store,
            tenant_id,
            tz_name=config.limits.period_timezone,
            near_limit_percent=config.limits.near_limit_percent,
        )
    _echo_json(stats.model_dump())

    if report:
        path = generate_usage_report(stats, config.output, report)
        click.echo(f"Report saved to: {path}", err=True)


@main.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")
@click.option("--days", type=click.IntRange(min=1), default=30, show_default=True)
@click.argument("reference")
@click.pass_obj
@handle_errors
def trend(config: AppConfig, tenant_id: str, days: int, reference: str) -> None:
    """Show daily ticket counts for a contract item."""
    validate_config(config)
    with SupabaseStore(config.store) as store:
        points = get_usage_trend(
            store,
            tenant_id,
            reference,
            days=days,
            tz_name=config.limits.period_timezone,
        )
    _echo_json([point.model_dump() for point in points])


@main.command("create-ticket")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")
@click.option("--user", "user_id", required=True, help="Creating user")
@click.option("--title", required=True, help="Ticket title")
@click.option(
    "--priority",
    type=click.Choice(["low", "medium", "high", "urgent"]),
    default=None,
    help="Ticket priority (default: medium)",
)
@click.option("--message", default=None, help="Initial message")
@click.option("--item", "contract_item_id", default=None, help="Contract item reference, or 'others'")
@click.pass_obj
@handle_errors
def create_ticket(
    config: AppConfig,
    tenant_id: str,
    user_id: str,
    title: str,
    priority: Optional[str],
    message: Optional[str],
    contract_item_id: Optional[str],
) -> None:
    """Create a ticket, enforcing the contract item's limit."""
    validate_config(config)
    ticket_input = CreateTicketInput(
        title=title,
        priority=priority,
        initial_message=message,
        contract_item_id=contract_item_id,
    )

    # The dispatcher drains before the store closes
    with SupabaseStore(config.store) as store, \
            BackgroundDispatcher(config.limits.notification_workers) as dispatcher:
        service = TicketService(
            store,
            dispatcher,
            notifier=TicketNotifier(store, config.email),
            tz_name=config.limits.period_timezone,
        )
        ticket = service.create_ticket(tenant_id, user_id, ticket_input)

    _echo_json(ticket.model_dump(mode="json"))


@main.command("validate-config")
@click.pass_obj
@handle_errors
def validate_config_command(config: AppConfig) -> None:
    """Only validate configuration."""
    logger.info("Validating configuration...")
    validate_config(config)
    logger.info("Configuration is valid!")
    click.echo("Configuration is valid")


if __name__ == "__main__":
    main()
