"""Main CLI entry point."""

import sys
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from waf_deploy.utils.logging import setup_logging, get_logger
from waf_deploy.config.models import check_region
from waf_deploy.config.parser import Config, ConfigValidationError
from waf_deploy.orchestrator.deployer import (
    DeploymentResult,
    ExecutionStatus,
    ResourceExecutionResult,
    WAFDeployer,
)
from waf_deploy.provisioners.regex_match_set import flatten_field_to_match
from waf_deploy.utils.aws_client import AWSClientManager, AssumeRoleConfig
from waf_deploy.utils.errors import WAFDeployError, error_handler
from waf_deploy.waf.retryer import ChangeTokenRetryer

console = Console()
logger = get_logger(__name__)

STATUS_ICONS = {
    ExecutionStatus.SUCCESS: "[green]✓[/green]",
    ExecutionStatus.FAILED: "[red]✗[/red]",
    ExecutionStatus.SKIPPED: "[yellow]-[/yellow]",
}


def validate_region_option(ctx, param, value):
    if value is None:
        return None
    try:
        return check_region(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', callback=validate_region_option, help='AWS region (overrides the config file)')
@click.option('--role-arn', help='IAM role to assume before calling WAF')
@click.option('--external-id', help='External ID for the assumed role')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.pass_context
def cli(ctx, profile, region, role_arn, external_id, log_level):
    """Provision AWS WAF Classic regex pattern and match sets."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['role_arn'] = role_arn
    ctx.obj['external_id'] = external_id
    ctx.obj['log_level'] = log_level

    setup_logging(log_level)


def load_config(config_path: str = "waf.yaml") -> Config:
    """Load and validate configuration file."""
    try:
        config = Config(config_path)
        config.load()
        return config
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(escape(str(e)))
        sys.exit(1)


def connect(ctx, region: Optional[str] = None) -> AWSClientManager:
    """Build a client manager and resolve the identity WAF calls will run as."""
    role_arn = ctx.obj.get('role_arn')
    assume_role_config = None
    if role_arn:
        assume_role_config = AssumeRoleConfig(role_arn, external_id=ctx.obj.get('external_id'))

    client_manager = AWSClientManager(
        profile=ctx.obj.get('profile'),
        region=region,
        assume_role_config=assume_role_config
    )
    if assume_role_config:
        client_manager.assume_role()
    else:
        client_manager.validate_credentials()
    return client_manager


def create_deployer(ctx, config: Config) -> WAFDeployer:
    """Create a deployer for the configured project."""
    if ctx.obj.get('region'):
        config.model.project.region = ctx.obj['region']
    client_manager = connect(ctx, config.model.project.region)
    return WAFDeployer(config, client_manager, progress_callback=print_progress)


def print_progress(outcome: ResourceExecutionResult) -> None:
    icon = STATUS_ICONS[outcome.status]
    change = f" ({outcome.change_type.value})" if outcome.change_type else ""
    console.print(f"  {icon} {outcome.resource_type} [bold]{escape(outcome.resource_id)}[/bold]{change}")


def print_summary(result: DeploymentResult, action: str) -> None:
    succeeded = result.count(ExecutionStatus.SUCCESS)
    failed = result.count(ExecutionStatus.FAILED)
    skipped = result.count(ExecutionStatus.SKIPPED)

    body = (
        f"Successful: {succeeded}\n"
        f"Failed: {failed}\n"
        f"Skipped: {skipped}\n"
        f"Duration: {result.duration:.2f}s"
    )
    if result.is_success():
        console.print(Panel.fit(f"[green]✓ {action} complete[/green]\n\n{body}",
                                title=action, border_style="green"))
        return

    console.print(Panel.fit(f"[red]✗ {action} failed[/red]\n\n{body}",
                            title=action, border_style="red"))
    for outcome in result.results:
        if outcome.is_failed() and outcome.error:
            console.print(escape(outcome.error.to_user_message()))


@cli.command()
@click.option('--config', '-c', 'config_path', default='waf.yaml', help='Path to configuration file')
@click.pass_context
def apply(ctx, config_path):
    """Create or update the configured WAF sets."""
    cfg = load_config(config_path)
    project = cfg.model.project
    console.print(Panel.fit(
        f"[bold]Applying {project.name}[/bold]\n"
        f"Scope: {project.scope}\n"
        f"Region: {ctx.obj.get('region') or project.region}\n"
        f"Regex pattern sets: {len(cfg.regex_pattern_sets)}\n"
        f"Regex match sets: {len(cfg.regex_match_sets)}",
        title="WAF Configuration",
        border_style="cyan"
    ))

    try:
        deployer = create_deployer(ctx, cfg)
        result = deployer.apply()
    except WAFDeployError as e:
        console.print(escape(e.to_user_message()))
        sys.exit(1)

    print_summary(result, "Apply")
    if not result.is_success():
        sys.exit(1)


@cli.command()
@click.option('--config', '-c', 'config_path', default='waf.yaml', help='Path to configuration file')
@click.option('--yes', is_flag=True, help='Skip the confirmation prompt')
@click.pass_context
def destroy(ctx, config_path, yes):
    """Delete the configured WAF sets."""
    cfg = load_config(config_path)

    if not yes and not click.confirm(
        f"Delete all WAF sets of project {cfg.model.project.name}?", default=False
    ):
        console.print("Aborted.")
        return

    try:
        deployer = create_deployer(ctx, cfg)
        result = deployer.destroy()
    except WAFDeployError as e:
        console.print(escape(e.to_user_message()))
        sys.exit(1)

    print_summary(result, "Destroy")
    if not result.is_success():
        sys.exit(1)


@cli.command()
@click.option('--config', '-c', 'config_path', default='waf.yaml', help='Path to configuration file')
@click.pass_context
def show(ctx, config_path):
    """Show the current remote state of the configured WAF sets."""
    cfg = load_config(config_path)

    try:
        deployer = create_deployer(ctx, cfg)
        resources = deployer.show()
    except Exception as e:
        error = error_handler.handle_exception(e)
        console.print(escape(error.to_user_message()))
        sys.exit(1)

    if not resources:
        console.print("[yellow]None of the configured sets exist yet.[/yellow]")
        return

    table = Table(title="WAF Classic sets")
    table.add_column("Type", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("ID")
    table.add_column("Contents")

    for resource in resources:
        if 'RegexPatternStrings' in resource.properties:
            contents = "\n".join(resource.properties['RegexPatternStrings'])
        else:
            lines = []
            for match_tuple in resource.properties.get('RegexMatchTuples', []):
                field = flatten_field_to_match(match_tuple['FieldToMatch'])
                target = f"{field['type']}:{field['data']}" if field['data'] else field['type']
                lines.append(f"{target} ~ {match_tuple['RegexPatternSetId']} "
                             f"({match_tuple['TextTransformation']})")
            contents = "\n".join(lines)
        table.add_row(resource.type, escape(resource.id), resource.physical_id, escape(contents))

    console.print(table)


@cli.command()
@click.option('--regional', is_flag=True, help='Use waf-regional instead of global waf')
@click.pass_context
def token(ctx, regional):
    """Fetch a change token and print its status."""
    try:
        client_manager = connect(ctx, ctx.obj.get('region'))
        retryer = ChangeTokenRetryer(client_manager.waf_client(regional=regional))
        change_token = retryer.fetch_token()
        status = retryer.get_change_token_status(change_token)
    except Exception as e:
        error = error_handler.handle_exception(e)
        console.print(escape(error.to_user_message()))
        sys.exit(1)

    console.print(f"Change token: [bold]{change_token}[/bold]")
    console.print(f"Status: [cyan]{status}[/cyan]")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
