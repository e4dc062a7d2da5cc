import asyncio
import sys

import click

from .exceptions import ConfigurationError
from .forms.diagnostics import check_configuration, duplicate_defaults
from .forms.ordering import ordered_fields, ordered_steps
from .forms.providers import StaticConfigurationProvider, StaticMetadataProvider


def echo_header(title):
    click.echo(click.style(title, fg="green"))
    click.echo(click.style("-" * len(title), fg="green"))


def load_definitions(path):
    """
    Load configurations and metadata from a definitions file.

    Exits with status 2 when the file cannot be read or does not match the
    configuration schema.
    """
    try:
        configurations = StaticConfigurationProvider.from_json_file(path)
        metadata = StaticMetadataProvider.from_json_file(path)
    except ConfigurationError as e:
        click.echo(click.style(f"Could not load {path}: {e.message}", fg="red"), err=True)
        sys.exit(2)
    return configurations, metadata


@click.command("check-config")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--strict", is_flag=True, help="Treat warnings as errors")
def check_config(path, strict):
    """Print a health report for every configuration in PATH."""
    configurations, metadata = load_definitions(path)
    error_count = 0
    warning_count = 0

    for entity_type_name, count in duplicate_defaults(configurations.configurations).items():
        click.echo(click.style(
            f"{count} active default configurations for {entity_type_name}", fg="red"
        ))
        error_count += 1

    for configuration in configurations.configurations:
        entity_metadata = asyncio.run(
            metadata.get_entity_metadata(configuration.entity_type_name)
        )
        report = check_configuration(configuration, entity_metadata)
        echo_header(
            f"{configuration.configuration_name or configuration.entity_type_name} "
            f"(id {report.configuration_id})"
        )
        for error in report.errors:
            click.echo(click.style(f"  ERROR   {error}", fg="red"))
        for warning in report.warnings:
            click.echo(click.style(f"  WARNING {warning}", fg="yellow"))
        if report.is_healthy and not report.warnings:
            click.echo(click.style("  OK", fg="green"))
        error_count += len(report.errors)
        warning_count += len(report.warnings)

    click.echo(f"{error_count} errors, {warning_count} warnings")
    if error_count or (strict and warning_count):
        sys.exit(1)


@click.command("show-order")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--configuration-id", "configuration_id", help="Only show this configuration")
def show_order(path, configuration_id):
    """Print steps and fields of PATH in their display order."""
    configurations, _ = load_definitions(path)
    shown = 0
    for configuration in configurations.configurations:
        if configuration_id is not None and str(configuration.id) != configuration_id:
            continue
        shown += 1
        echo_header(configuration.configuration_name or configuration.entity_type_name)
        for index, step in enumerate(ordered_steps(configuration), start=1):
            marker = " [many-to-many]" if step.is_many_to_many_relationship else ""
            click.echo(f"{index}. {step.title or step.step_name}{marker}")
            for form_field in ordered_fields(step):
                required = " *" if form_field.is_required else ""
                click.echo(f"     - {form_field.field_name} ({form_field.field_type}){required}")
    if not shown:
        click.echo(click.style("No matching configuration", fg="red"))
        sys.exit(1)


@click.group()
def cli():
    """Flask-FormWizard configuration tools."""


cli.add_command(check_config)
cli.add_command(show_order)
