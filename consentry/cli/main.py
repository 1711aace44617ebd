#!/usr/bin/env python3
"""Main CLI entry point for Consentry using Typer.

Operator commands for classifying cookie names, previewing Consent Mode
signals, inspecting configuration and refreshing the cookie reference
database.
"""

import asyncio
import json
from enum import IntEnum
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from typing_extensions import Annotated

from consentry import __version__
from consentry.consent.classification import CookieClassifier
from consentry.consent.config import (
    ConsentConfiguration,
    RegionMode,
    get_consent_config,
    load_consent_config_from_file,
    validate_consent_config
)
from consentry.consent.errors import ReferenceDatabaseError
from consentry.consent.integrations import IntegrationContext, IntegrationRegistry
from consentry.consent.reference_db import download_reference_csv, load_reference_snapshot
from consentry.consent.registry import CookieRegistry
from consentry.consent.signals import SignalTranslator


class ExitCode(IntEnum):
    """CLI exit codes."""
    SUCCESS = 0
    UNKNOWN_COOKIES = 1   # classify found cookies matching no rule
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4


# Create the main Typer app
app = typer.Typer(
    name="consentry",
    help="Consentry - cookie consent lifecycle and enforcement",
    add_completion=False,
    rich_markup_mode="rich"
)
config_app = typer.Typer(help="Inspect and validate consent configuration")
refdb_app = typer.Typer(help="Manage the cookie reference database")
app.add_typer(config_app, name="config")
app.add_typer(refdb_app, name="refdb")


ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to consent.yaml")
]
EnvOption = Annotated[
    Optional[str],
    typer.Option("--env", "-e", help="Configuration environment (overrides CONSENT_ENV)")
]


def _load_config(config_path: Optional[Path], env: Optional[str] = None) -> ConsentConfiguration:
    if config_path is None:
        return get_consent_config(environment=env, force_reload=env is not None)

    if not config_path.exists():
        typer.echo(f"❌ Config file not found: {config_path}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    try:
        return load_consent_config_from_file(config_path, environment=env)
    except (ValueError, yaml.YAMLError) as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)


@app.callback()
def main():
    """
    Consentry - cookie consent lifecycle and enforcement.
    """
    pass


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"Consentry CLI v{__version__}")


@app.command()
def classify(
    names: Annotated[
        List[str],
        typer.Argument(help="Cookie names to classify")
    ],
    plugins: Annotated[
        Optional[List[str]],
        typer.Option("--plugin", "-p", help="Active host plugin (repeatable), e.g. woocommerce")
    ] = None,
    config_path: ConfigOption = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print results as JSON")
    ] = False,
):
    """Classify cookie names with the configured rule layers."""
    config = _load_config(config_path)

    active_plugins = set(config.integrations.active_plugins) | set(plugins or [])
    integrations = IntegrationRegistry(
        config.storage.storage_key,
        disabled=config.integrations.disabled_integrations
    )
    reference = None
    if config.reference_db.enabled:
        reference = load_reference_snapshot(Path(config.reference_db.cache_path))

    classifier = CookieClassifier.for_integrations(
        integrations,
        IntegrationContext(active_plugins=active_plugins),
        registry=CookieRegistry(config.registry),
        reference=reference
    )
    results = classifier.classify_many(names)

    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
    else:
        for result in results:
            source = f" ({result.source})" if result.source else ""
            typer.echo(f"{result.name}: {result.category.value}{source} [{result.layer.value}]")

    if any(result.is_unknown for result in results):
        raise typer.Exit(code=ExitCode.UNKNOWN_COOKIES.value)


@app.command()
def translate(
    analytics: Annotated[bool, typer.Option("--analytics/--no-analytics", help="Analytics consent")] = False,
    functional: Annotated[bool, typer.Option("--functional/--no-functional", help="Functional consent")] = False,
    marketing: Annotated[bool, typer.Option("--marketing/--no-marketing", help="Marketing consent")] = False,
    region_mode: Annotated[
        Optional[RegionMode],
        typer.Option("--region-mode", help="Override the configured region mode")
    ] = None,
    defaults: Annotated[
        bool,
        typer.Option("--defaults", help="Print the consent default command instead")
    ] = False,
    config_path: ConfigOption = None,
):
    """Print the Consent Mode command for a category state."""
    config = _load_config(config_path)
    signal_config = config.signals
    if region_mode is not None:
        signal_config = signal_config.model_copy(update={"region_mode": region_mode})

    translator = SignalTranslator(signal_config)
    if defaults:
        command = translator.default_command()
    else:
        command = translator.update_command({
            "analytics": analytics,
            "functional": functional,
            "marketing": marketing,
        })

    typer.echo(json.dumps(command, indent=2))


@config_app.command("show")
def config_show(
    config_path: ConfigOption = None,
    env: EnvOption = None,
):
    """Print the effective configuration as YAML."""
    config = _load_config(config_path, env)
    data = config.model_dump(mode="json", exclude={"admin_token"})
    typer.echo(yaml.safe_dump(data, sort_keys=False))


@config_app.command("validate")
def config_validate(
    config_path: Annotated[Path, typer.Argument(help="Path to consent.yaml")],
):
    """Validate a configuration file."""
    issues = validate_consent_config(config_path)
    if issues:
        for issue in issues:
            typer.echo(f"❌ {issue}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    typer.echo(f"✅ {config_path} is valid")


@refdb_app.command("update")
def refdb_update(
    url: Annotated[
        Optional[str],
        typer.Option("--url", help="CSV download URL (defaults to the configured URL)")
    ] = None,
    cache_path: Annotated[
        Optional[Path],
        typer.Option("--cache-path", help="Where to store the CSV")
    ] = None,
    config_path: ConfigOption = None,
):
    """Download the Open Cookie Database CSV to the local cache."""
    config = _load_config(config_path)
    settings = config.reference_db
    target = cache_path or Path(settings.cache_path)

    try:
        count = asyncio.run(download_reference_csv(
            url or settings.url,
            target,
            timeout=settings.timeout_seconds
        ))
    except ReferenceDatabaseError as e:
        typer.echo(f"❌ {e.message}", err=True)
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)

    typer.echo(f"✅ Saved {count} reference rules to {target}")


if __name__ == "__main__":
    app()
