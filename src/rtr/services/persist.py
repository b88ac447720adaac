"""Snapshot store: save, idempotent restore, archive export/import.

Store layout under the configured store directory:

    iptables/rules.v4      iptables-save dump, replayed with iptables-restore
    routes/<table>.conf    one canonical route line per entry
    rules/ip-rules.conf    one canonical policy rule line per entry

Restore replays routes and rules one line at a time through the route and
rule services, and treats "File exists" refusals as already applied, so
running it twice, or at boot over partially configured state, converges on
the stored set.
"""

import io
import os
import tarfile
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from rtr.builders import IPTABLES_RESTORE, ip_rule_line, route_line
from rtr.core.audit import AuditEventType, AuditLogger, AuditResult, get_audit_logger
from rtr.core.context import ExecutionContext
from rtr.core.exceptions import ExecutionError, RtrError, StoreError, ValidationError
from rtr.core.executor import CommandExecutor
from rtr.core.files import write_atomic
from rtr.core.locks import KeyedLocks, get_default_locks
from rtr.models.firewall import Table
from rtr.models.route import MAIN_TABLE, RouteInput
from rtr.parsers.iproute import parse_route_line
from rtr.parsers.iprule import parse_rule_line
from rtr.services.iprule import IPRuleService
from rtr.services.iproute import IPRouteService
from rtr.services.iptables import IptablesService


FIREWALL_FILE = Path("iptables") / "rules.v4"
ROUTES_DIR = Path("routes")
RULES_FILE = Path("rules") / "ip-rules.conf"
ROUTE_FILE_SUFFIX = ".conf"

STORE_FILE_PERMS = 0o644

DOMAIN_FIREWALL = "firewall"
DOMAIN_ROUTES = "routes"
DOMAIN_RULES = "rules"
DOMAINS = (DOMAIN_FIREWALL, DOMAIN_ROUTES, DOMAIN_RULES)


@dataclass
class DomainResult:
    """Outcome of restoring one domain."""
    domain: str
    applied: int = 0
    existing: int = 0
    skipped: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class RestoreReport:
    """Per-domain outcomes of a full restore."""
    results: list[DomainResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failures(self) -> list[DomainResult]:
        return [r for r in self.results if not r.ok]

    def get(self, domain: str) -> Optional[DomainResult]:
        for result in self.results:
            if result.domain == domain:
                return result
        return None


def _stored_lines(text: str) -> list[str]:
    """Non-blank, non-comment lines of a store file."""
    lines = []
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            lines.append(line)
    return lines


def _route_input(line: str, table: str) -> RouteInput:
    """Read a stored route line of ``table`` back into an intent."""
    route = parse_route_line(line, default_table=table)
    if route is None:
        raise ValidationError(f"No destination in route line: {line}")
    return RouteInput(
        destination=route.destination,
        gateway=route.gateway,
        interface=route.interface,
        metric=route.metric,
        table=route.table,
        type="" if route.type == "unicast" else route.type,
    )


class PersistService:
    """Persistence and restore engine over a store directory.

    One gate per domain keeps ``save_x`` and ``restore_x`` of the same
    domain from interleaving. Export and import hold every gate.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        iptables: Optional[IptablesService] = None,
        routes: Optional[IPRouteService] = None,
        rules: Optional[IPRuleService] = None,
        audit: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
        store_dir: Optional[Path] = None,
    ) -> None:
        """Initialize persistence engine.

        Args:
            ctx: Execution context
            executor: Command executor
            iptables: Firewall coordinator (built from ctx/executor if None)
            routes: Route coordinator (built from ctx/executor if None)
            rules: Policy rule coordinator (built from ctx/executor if None)
            audit: Audit sink
            locks: Lock registry
            store_dir: Store root (configured store_dir if None)
        """
        self.ctx = ctx
        self.executor = executor
        self.audit = audit or get_audit_logger()
        self.locks = locks or get_default_locks()
        self.iptables = iptables or IptablesService(ctx, executor, audit=self.audit, locks=self.locks)
        self.routes = routes or IPRouteService(ctx, executor, audit=self.audit, locks=self.locks)
        self.rules = rules or IPRuleService(ctx, executor, audit=self.audit, locks=self.locks)
        self.store_dir = Path(store_dir or ctx.config.store_dir)

    @property
    def firewall_path(self) -> Path:
        return self.store_dir / FIREWALL_FILE

    @property
    def routes_dir(self) -> Path:
        return self.store_dir / ROUTES_DIR

    @property
    def rules_path(self) -> Path:
        return self.store_dir / RULES_FILE

    def gate(self, domain: str):
        """Context manager holding the gate of one persisted domain."""
        return self.locks.hold(("store", domain))

    # =========================================================================
    # Save
    # =========================================================================

    def save_firewall(self) -> None:
        """Snapshot the whole firewall as an iptables-save dump."""
        with self.gate(DOMAIN_FIREWALL):
            dump = self.iptables.get_raw_rules()
            self._write(self.firewall_path, dump)
        self._audit_save(DOMAIN_FIREWALL, {"bytes": len(dump)})

    def save_routes(self) -> int:
        """Snapshot user routes, one file per table.

        Kernel-generated routes are left out; the kernel recreates them
        when addresses come up. Multipath routes are left out with a
        warning. Files of tables that no longer hold any saved route are
        removed.

        Returns:
            Number of routes saved
        """
        with self.gate(DOMAIN_ROUTES):
            by_table: dict[str, list[str]] = {}
            for route in self.routes.list_all_routes():
                if route.is_kernel_generated:
                    continue
                if route.nexthops:
                    self.ctx.console.warn(
                        f"Skipping multipath route {route.destination}: nexthops are not stored"
                    )
                    continue
                by_table.setdefault(route.table or MAIN_TABLE, []).append(route_line(route))

            for table, lines in sorted(by_table.items()):
                self._write(self.routes_dir / f"{table}{ROUTE_FILE_SUFFIX}", "\n".join(lines) + "\n")

            self._remove_stale_route_files(set(by_table))

        count = sum(len(lines) for lines in by_table.values())
        self._audit_save(DOMAIN_ROUTES, {"routes": count, "tables": sorted(by_table)})
        return count

    def save_rules(self) -> int:
        """Snapshot policy rules other than the kernel's defaults.

        Returns:
            Number of rules saved
        """
        with self.gate(DOMAIN_RULES):
            lines = [
                ip_rule_line(rule)
                for rule in self.rules.list_rules()
                if not rule.is_reserved
            ]
            self._write(self.rules_path, "".join(f"{line}\n" for line in lines))

        self._audit_save(DOMAIN_RULES, {"rules": len(lines)})
        return len(lines)

    def save_all(self) -> None:
        self.save_firewall()
        self.save_routes()
        self.save_rules()

    # =========================================================================
    # Restore
    # =========================================================================

    def restore_firewall(self) -> DomainResult:
        """Load the stored dump with a single iptables-restore.

        Holds every firewall table lock while the dump is loaded.
        """
        result = DomainResult(domain=DOMAIN_FIREWALL)
        with self.gate(DOMAIN_FIREWALL), ExitStack() as stack:
            for table in Table:
                stack.enter_context(self.iptables.hold(table.value))
            dump = self._read(self.firewall_path)
            if dump is None:
                result.skipped = True
                return result
            try:
                self.executor.run(
                    [IPTABLES_RESTORE],
                    description="Restoring firewall rules",
                    input=dump,
                    combine_output=True,
                )
                result.applied = 1
            except ExecutionError as e:
                result.errors.append(e.output.strip() or e.message)

        self._audit_restore(result)
        return result

    def restore_routes(self) -> DomainResult:
        """Replay every stored route file through the route service.

        An unreadable file is recorded as an error and the other tables
        are still replayed.
        """
        result = DomainResult(domain=DOMAIN_ROUTES)
        with self.gate(DOMAIN_ROUTES):
            if not self.routes_dir.is_dir():
                result.skipped = True
                return result

            for path in sorted(self.routes_dir.glob(f"*{ROUTE_FILE_SUFFIX}")):
                if not path.is_file():
                    continue
                table = path.name[:-len(ROUTE_FILE_SUFFIX)]
                try:
                    text = self._read(path) or ""
                except StoreError as e:
                    result.errors.append(e.message)
                    continue
                for line in _stored_lines(text):
                    self._replay(result, line, lambda: self.routes.add_route(_route_input(line, table)))

        self._audit_restore(result)
        return result

    def restore_rules(self) -> DomainResult:
        """Replay stored policy rules through the rule service."""
        result = DomainResult(domain=DOMAIN_RULES)
        with self.gate(DOMAIN_RULES):
            text = self._read(self.rules_path)
            if text is None:
                result.skipped = True
                return result
            for line in _stored_lines(text):
                self._replay(result, line, lambda: self.rules.add_rule(parse_rule_line(line)))

        self._audit_restore(result)
        return result

    def restore_all(self) -> RestoreReport:
        """Restore firewall, then routes, then rules.

        Each domain is attempted even when an earlier one failed.
        """
        report = RestoreReport()
        steps = (
            (DOMAIN_FIREWALL, self.restore_firewall),
            (DOMAIN_ROUTES, self.restore_routes),
            (DOMAIN_RULES, self.restore_rules),
        )
        for domain, restore in steps:
            try:
                report.results.append(restore())
            except RtrError as e:
                self.ctx.console.debug(f"{domain} restore failed: {e}")
                report.results.append(DomainResult(domain=domain, errors=[str(e)]))
        return report

    # =========================================================================
    # Archive
    # =========================================================================

    def export_archive(self) -> bytes:
        """Pack the store tree into a gzip-compressed tar.

        Entries use paths relative to the store root and keep their
        permission bits.

        Raises:
            StoreError: If the store does not exist or cannot be read
        """
        if not self.store_dir.is_dir():
            raise StoreError(
                f"Store directory does not exist: {self.store_dir}",
                path=str(self.store_dir),
                hint="Run 'rtr save' first",
            )

        buffer = io.BytesIO()
        count = 0
        with ExitStack() as stack:
            for domain in DOMAINS:
                stack.enter_context(self.gate(domain))
            try:
                with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
                    for path in sorted(self.store_dir.rglob("*")):
                        if path.is_symlink() or not (path.is_dir() or path.is_file()):
                            self.ctx.console.warn(f"Skipping non-regular store entry: {path}")
                            continue
                        tar.add(path, arcname=path.relative_to(self.store_dir).as_posix(), recursive=False)
                        count += 1
            except OSError as e:
                raise StoreError(
                    f"Failed to archive store: {e}",
                    path=str(self.store_dir),
                )

        self.audit.log_success(
            AuditEventType.STORE_EXPORT,
            "store",
            str(self.store_dir),
            parameters={"entries": count},
        )
        return buffer.getvalue()

    def import_archive(self, data: bytes) -> int:
        """Unpack an exported archive into the store root.

        Every entry is checked before anything is written: only regular
        files and directories are accepted, and each must resolve inside
        the store root.

        Returns:
            Number of files written

        Raises:
            StoreError: If the archive is unreadable or has a bad entry
        """
        root = self.store_dir.resolve()
        try:
            tar = tarfile.open(fileobj=io.BytesIO(data), mode="r:gz")
        except (tarfile.TarError, OSError, EOFError) as e:
            raise StoreError(f"Invalid archive: {e}", hint="Expected a file created by 'rtr export'")

        written = 0
        with tar, ExitStack() as stack:
            for domain in DOMAINS:
                stack.enter_context(self.gate(domain))
            try:
                members = tar.getmembers()
            except (tarfile.TarError, OSError, EOFError) as e:
                raise StoreError(f"Invalid archive: {e}")

            targets = [(member, self._member_target(root, member)) for member in members]

            if self.ctx.dry_run:
                self.ctx.console.dry_run_msg(f"Would import {len(targets)} entries into {root}")
                return 0

            try:
                root.mkdir(mode=0o755, parents=True, exist_ok=True)
                for member, target in targets:
                    if member.isdir():
                        target.mkdir(mode=0o755, parents=True, exist_ok=True)
                        continue
                    content = tar.extractfile(member).read()
                    write_atomic(target, content, permissions=member.mode & 0o777)
                    written += 1
            except (OSError, tarfile.TarError) as e:
                raise StoreError(f"Failed to import archive: {e}", path=str(root))

        self.audit.log_success(
            AuditEventType.STORE_IMPORT,
            "store",
            str(root),
            parameters={"files": written},
        )
        return written

    # =========================================================================
    # Private Helpers
    # =========================================================================

    def _member_target(self, root: Path, member: tarfile.TarInfo) -> Path:
        """Resolve an archive entry inside ``root`` or raise."""
        if not (member.isfile() or member.isdir()):
            raise StoreError(
                f"Unsupported archive entry: {member.name}",
                path=member.name,
                hint="Only regular files and directories are allowed",
            )
        if os.path.isabs(member.name):
            raise StoreError(f"Absolute path in archive: {member.name}", path=member.name)
        target = (root / member.name).resolve()
        if target != root and not target.is_relative_to(root):
            raise StoreError(
                f"Archive entry escapes the store: {member.name}",
                path=member.name,
            )
        if member.isfile() and target == root:
            raise StoreError(f"Invalid archive entry: {member.name}", path=member.name)
        return target

    def _replay(self, result: DomainResult, line: str, apply: Callable[[], None]) -> None:
        """Apply one stored line and record how it went."""
        try:
            apply()
        except ExecutionError as e:
            if e.already_exists:
                self.ctx.console.debug(f"Already present: {line}")
                result.existing += 1
            else:
                result.errors.append(f"{line}: {e.output.strip() or e.message}")
            return
        except ValidationError as e:
            result.errors.append(f"{line}: {e.message}")
            return
        result.applied += 1

    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Cannot read {path}: {e}", path=str(path))
        except UnicodeDecodeError as e:
            raise StoreError(f"Cannot decode {path}: {e}", path=str(path))

    def _write(self, path: Path, content: str) -> None:
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Write {path}")
            return
        try:
            write_atomic(path, content, permissions=STORE_FILE_PERMS)
        except OSError as e:
            raise StoreError(f"Cannot write {path}: {e}", path=str(path))
        self.ctx.console.verbose(f"Wrote {path}")

    def _remove_stale_route_files(self, tables: set[str]) -> None:
        if not self.routes_dir.is_dir():
            return
        for path in self.routes_dir.glob(f"*{ROUTE_FILE_SUFFIX}"):
            table = path.name[:-len(ROUTE_FILE_SUFFIX)]
            if table in tables:
                continue
            if self.ctx.dry_run:
                self.ctx.console.dry_run_msg(f"Remove {path}")
                continue
            try:
                path.unlink()
            except OSError as e:
                raise StoreError(f"Cannot remove {path}: {e}", path=str(path))
            self.ctx.console.verbose(f"Removed stale {path}")

    def _audit_save(self, domain: str, parameters: dict) -> None:
        self.audit.log_success(
            AuditEventType.SNAPSHOT_SAVE,
            "store",
            domain,
            parameters=parameters,
        )

    def _audit_restore(self, result: DomainResult) -> None:
        if result.skipped:
            return
        self.audit.log_operation(
            AuditEventType.SNAPSHOT_RESTORE,
            AuditResult.SUCCESS if result.ok else AuditResult.PARTIAL,
            "store",
            result.domain,
            "restore",
            parameters={"applied": result.applied, "existing": result.existing},
            error="; ".join(result.errors) or None,
        )
