"""Snapshot commands: save, restore, export and import."""

from pathlib import Path
from typing import Annotated

import typer

from rtr.commands.common import (
    ConfigOption,
    DryRunOption,
    NoColorOption,
    VerboseOption,
    check_root,
    get_context,
    get_services,
    handle_error,
)
from rtr.core import RestoreError, RtrError, StoreError
from rtr.services.persist import PersistService, RestoreReport


def _print_report(ctx, report: RestoreReport) -> None:
    rows = []
    for result in report.results:
        if result.skipped:
            status = "[dim]nothing stored[/dim]"
        elif result.ok:
            status = "[green]ok[/green]"
        else:
            status = f"[red]{len(result.errors)} failed[/red]"
        rows.append([result.domain, str(result.applied), str(result.existing), status])
    ctx.console.table("Restore", ["Domain", "Applied", "Already present", "Status"], rows)


def save(
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Snapshot firewall, routes and policy rules into the store."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        persist = get_services(ctx, PersistService)
        ctx.console.step("Saving firewall")
        persist.save_firewall()
        ctx.console.step("Saving routes")
        routes = persist.save_routes()
        ctx.console.step("Saving policy rules")
        rules = persist.save_rules()
        ctx.console.success(f"Saved firewall, {routes} route(s), {rules} rule(s) to {persist.store_dir}")

    except RtrError as e:
        handle_error(e)


def restore(
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Replay the stored snapshot onto the kernel.

    Safe to run repeatedly: entries that already exist are counted, not
    treated as failures. Intended to run at boot.
    """
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        persist = get_services(ctx, PersistService)
        report = persist.restore_all()
        _print_report(ctx, report)

        if not report.ok:
            details = []
            for result in report.failures:
                details.extend(f"{result.domain}: {error}" for error in result.errors)
            raise RestoreError(
                f"{len(report.failures)} domain(s) failed to restore",
                details=details,
            )
        ctx.console.success("Restore complete")

    except RtrError as e:
        handle_error(e)


def export(
    file: Annotated[Path, typer.Argument(help="Archive to write (.tar.gz)", dir_okay=False)],
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Export the store as a gzip-compressed tar archive."""
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        persist = get_services(ctx, PersistService)
        data = persist.export_archive()
        try:
            file.write_bytes(data)
        except OSError as e:
            raise StoreError(f"Cannot write {file}: {e}", path=str(file))
        ctx.console.success(f"Exported {persist.store_dir} to {file}")

    except RtrError as e:
        handle_error(e)


def import_(
    file: Annotated[Path, typer.Argument(help="Archive created by 'rtr export'", exists=True, dir_okay=False)],
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Import an exported archive into the store.

    Run 'rtr restore' afterwards to apply it.
    """
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)

    try:
        persist = get_services(ctx, PersistService)
        try:
            data = file.read_bytes()
        except OSError as e:
            raise StoreError(f"Cannot read {file}: {e}", path=str(file))
        count = persist.import_archive(data)
        ctx.console.success(f"Imported {count} file(s) into {persist.store_dir}")
        ctx.console.hint("Run 'rtr restore' to apply the imported snapshot")

    except RtrError as e:
        handle_error(e)
