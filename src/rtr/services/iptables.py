"""Iptables firewall service.

Provides list and mutation operations against live iptables state:
- Chain listings parsed into ChainInfo/FirewallRule
- Rule add/delete by position and move by capture-then-reinsert
- Chain create/delete/flush and default policy
- Bulk dump via iptables-save

Positions are only valid against the listing that produced them, so every
list-then-mutate sequence runs under the table lock and then the chain lock.
Whole-table operations take the table lock alone, which keeps them out of
any chain sequence in progress.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from rtr.builders import (
    IPTABLES_SAVE,
    firewall_rule_args,
    insert_command,
    iptables_command,
)
from rtr.core.audit import AuditEventType, AuditLogger, get_audit_logger
from rtr.core.context import ExecutionContext
from rtr.core.exceptions import ExecutionError, NotFoundError, ValidationError
from rtr.core.executor import CommandExecutor, CommandResult
from rtr.core.locks import KeyedLocks, get_default_locks
from rtr.models.firewall import (
    ChainInfo,
    FirewallRuleInput,
    Policy,
    is_builtin_chain,
    validate_table,
)
from rtr.parsers.iptables import parse_chain_listing, parse_rule_specs


LOCK_DOMAIN = "firewall"

def _require_chain(chain: str) -> None:
    if not chain or not chain.strip():
        raise ValidationError("Chain is required")


class IptablesService:
    """Stateless coordinator for iptables (IPv4) rules and chains."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        audit: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        """Initialize iptables service.

        Args:
            ctx: Execution context
            executor: Command executor
            audit: Audit sink (process-wide logger if None)
            locks: Lock registry (process-wide registry if None)
        """
        self.ctx = ctx
        self.executor = executor
        self.audit = audit or get_audit_logger()
        self.locks = locks or get_default_locks()

    def table_lock_key(self, table: str) -> tuple[str, str]:
        """Key held by every mutation of a table."""
        return (LOCK_DOMAIN, table)

    def lock_key(self, table: str, chain: str) -> tuple[str, str, str]:
        """Key that serializes mutations of one chain."""
        return (LOCK_DOMAIN, table, chain)

    @contextmanager
    def hold(self, table: str, chain: Optional[str] = None) -> Generator[None, None, None]:
        """Hold the table lock, then the chain lock when a chain is given.

        Callers running their own list-then-mutate sequence wrap it in
        this; the service calls inside re-enter both locks.
        """
        with self.locks.hold(self.table_lock_key(table)):
            if chain is None:
                yield
            else:
                with self.locks.hold(self.lock_key(table, chain)):
                    yield

    # =========================================================================
    # Reads
    # =========================================================================

    def list_chains(self, table: str = "filter") -> list[ChainInfo]:
        """List every chain of a table with its rules.

        Raises:
            ValidationError: If the table is unknown
            ExecutionError: If iptables fails
            ParseError: If the output has no recognizable chain
        """
        table = validate_table(table)
        result = self._run(
            ["-L", "-n", "-v", "--line-numbers"],
            table=table,
            mutating=False,
        )
        return parse_chain_listing(result.stdout)

    def get_chain(self, table: str, chain: str) -> ChainInfo:
        """Fetch one chain.

        Raises:
            NotFoundError: If the chain does not exist
        """
        table = validate_table(table)
        _require_chain(chain)
        result = self._run(
            ["-L", chain, "-n", "-v", "--line-numbers"],
            table=table,
            mutating=False,
            check=False,
        )
        if not result.success:
            raise NotFoundError(
                f"Chain {chain} not found in table {table}",
                details=[result.output.strip()] if result.output.strip() else None,
            )
        for info in parse_chain_listing(result.stdout):
            if info.name == chain:
                return info
        raise NotFoundError(f"Chain {chain} not found in table {table}")

    def get_raw_rules(self) -> str:
        """Return the full ``iptables-save`` dump."""
        result = self.executor.run([IPTABLES_SAVE], mutating=False)
        return result.stdout

    # =========================================================================
    # Rule mutations
    # =========================================================================

    def add_rule(self, rule: FirewallRuleInput) -> None:
        """Append a rule, or insert it at ``rule.position``."""
        rule.validate()
        spec = firewall_rule_args(rule)
        command = insert_command(
            rule.table,
            rule.chain,
            spec,
            rule.position,
            wait=self.ctx.config.iptables_wait,
        )

        where = f"at {rule.position}" if rule.position else "at end"
        with self.hold(rule.table, rule.chain):
            self.executor.run(
                command,
                description=f"Adding rule to {rule.table}/{rule.chain} {where}",
                combine_output=True,
            )

        self.audit.log_success(
            AuditEventType.FIREWALL_RULE_ADD,
            "chain",
            f"{rule.table}/{rule.chain}",
            parameters={"position": rule.position, "spec": spec},
        )

    def delete_rule(self, table: str, chain: str, num: int) -> None:
        """Delete the rule at position ``num`` of a prior listing."""
        table = validate_table(table)
        _require_chain(chain)
        if num < 1:
            raise ValidationError(
                f"Invalid rule number: {num}",
                hint="Rule numbers start at 1",
            )

        with self.hold(table, chain):
            self._run(
                ["-D", chain, str(num)],
                table=table,
                description=f"Deleting rule {num} from {table}/{chain}",
            )

        self.audit.log_success(
            AuditEventType.FIREWALL_RULE_DELETE,
            "chain",
            f"{table}/{chain}",
            parameters={"num": num},
        )

    def move_rule(self, table: str, chain: str, from_pos: int, to_pos: int) -> None:
        """Move a rule to another position in the same chain.

        The rule's full specification is captured from ``-S`` output, the
        rule is deleted, and the specification is inserted again. If the
        insert fails after the delete, the rule is gone; the error says so.

        Args:
            table: Iptables table
            chain: Chain name
            from_pos: Current 1-based position
            to_pos: Wanted 1-based position, ``len + 1`` moves to the end

        Raises:
            NotFoundError: If from_pos is not a rule of the chain
            ValidationError: If to_pos is out of range
            ExecutionError: If delete or insert fails
        """
        table = validate_table(table)
        _require_chain(chain)

        with self.hold(table, chain):
            info = self.get_chain(table, chain)
            count = len(info.rules)

            if not 1 <= from_pos <= count:
                raise NotFoundError(
                    f"No rule {from_pos} in {table}/{chain}",
                    hint=f"Chain has {count} rule(s)",
                )
            if not 1 <= to_pos <= count + 1:
                raise ValidationError(
                    f"Invalid target position: {to_pos}",
                    hint=f"Use a position between 1 and {count + 1}",
                )
            if from_pos == to_pos:
                self.ctx.console.verbose(f"Rule {from_pos} already at position {to_pos}")
                return

            specs_result = self._run(["-S", chain], table=table, mutating=False)
            specs = parse_rule_specs(specs_result.stdout, chain)
            if len(specs) != count:
                raise NotFoundError(
                    f"Chain {table}/{chain} changed while moving rule {from_pos}",
                    hint="List the chain again and retry",
                )
            spec = specs[from_pos - 1]

            self._run(
                ["-D", chain, str(from_pos)],
                table=table,
                description=f"Removing rule {from_pos} from {table}/{chain}",
            )

            # Positions after the removed rule have shifted up by one
            insert_at = to_pos - 1 if to_pos > from_pos else to_pos

            try:
                self.executor.run(
                    insert_command(
                        table, chain, spec, insert_at,
                        wait=self.ctx.config.iptables_wait,
                    ),
                    description=f"Inserting rule at {insert_at} in {table}/{chain}",
                    combine_output=True,
                )
            except ExecutionError as e:
                e.hint = f"Rule was removed but not re-inserted: {' '.join(spec)}"
                raise

        self.audit.log_success(
            AuditEventType.FIREWALL_RULE_MOVE,
            "chain",
            f"{table}/{chain}",
            parameters={"from": from_pos, "to": to_pos, "spec": spec},
        )

    # =========================================================================
    # Chain lifecycle
    # =========================================================================

    def create_chain(self, table: str, chain: str) -> None:
        """Create a user-defined chain."""
        table = validate_table(table)
        _require_chain(chain)
        with self.hold(table, chain):
            self._run(
                ["-N", chain],
                table=table,
                description=f"Creating chain {table}/{chain}",
            )
        self.audit.log_success(AuditEventType.FIREWALL_CHAIN_CREATE, "chain", f"{table}/{chain}")

    def delete_chain(self, table: str, chain: str) -> None:
        """Delete a user-defined chain.

        The chain must already be empty and unreferenced; iptables'
        refusal is raised unchanged.
        """
        table = validate_table(table)
        _require_chain(chain)
        if is_builtin_chain(table, chain):
            raise ValidationError(f"Cannot delete built-in chain {chain}")
        with self.hold(table, chain):
            self._run(
                ["-X", chain],
                table=table,
                description=f"Deleting chain {table}/{chain}",
            )
        self.audit.log_success(AuditEventType.FIREWALL_CHAIN_DELETE, "chain", f"{table}/{chain}")

    def flush(self, table: str = "filter", chain: Optional[str] = None) -> None:
        """Remove all rules from a chain, or from every chain of the table."""
        table = validate_table(table)
        args = ["-F"]
        if chain:
            args.append(chain)
        target = f"{table}/{chain}" if chain else table

        with self.hold(table, chain):
            self._run(args, table=table, description=f"Flushing {target}")

        self.audit.log_success(AuditEventType.FIREWALL_FLUSH, "chain" if chain else "table", target)

    def set_policy(self, table: str, chain: str, policy: str) -> None:
        """Set the default policy of a built-in chain.

        Raises:
            ValidationError: If the policy is not ACCEPT/DROP or the chain
                is not built in
        """
        table = validate_table(table)
        _require_chain(chain)
        try:
            value = Policy(policy.upper()).value
        except ValueError:
            raise ValidationError(
                f"Invalid policy: {policy}",
                hint="Policy must be ACCEPT or DROP",
            )
        if not is_builtin_chain(table, chain):
            raise ValidationError(
                f"Chain {chain} has no default policy in table {table}",
                hint="Only built-in chains carry a policy",
            )

        with self.hold(table, chain):
            self._run(
                ["-P", chain, value],
                table=table,
                description=f"Setting {table}/{chain} policy to {value}",
            )

        self.audit.log_success(
            AuditEventType.FIREWALL_POLICY,
            "chain",
            f"{table}/{chain}",
            parameters={"policy": value},
        )

    # =========================================================================
    # Private Helpers
    # =========================================================================

    def _run(
        self,
        args: list[str],
        *,
        table: str,
        description: Optional[str] = None,
        mutating: bool = True,
        check: bool = True,
    ) -> CommandResult:
        """Run iptables against a table."""
        command = iptables_command(table, *args, wait=self.ctx.config.iptables_wait)
        return self.executor.run(
            command,
            description=description,
            check=check,
            combine_output=mutating,
            mutating=mutating,
        )
