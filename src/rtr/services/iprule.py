"""Policy routing rule service (``ip rule``)."""

from typing import Optional

from rtr.builders import IP, ip_rule_command
from rtr.core.audit import AuditEventType, AuditLogger, get_audit_logger
from rtr.core.context import ExecutionContext
from rtr.core.exceptions import NotFoundError, ValidationError
from rtr.core.executor import CommandExecutor
from rtr.core.locks import KeyedLocks, get_default_locks
from rtr.models.rule import IPRule, IPRuleInput
from rtr.parsers.iprule import parse_rule_listing


LOCK_DOMAIN = "rules"


class IPRuleService:
    """Stateless coordinator for policy routing rules.

    Rules share one namespace, so a single lock key covers every mutation.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        audit: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.audit = audit or get_audit_logger()
        self.locks = locks or get_default_locks()

    @property
    def lock_key(self) -> tuple[str]:
        return (LOCK_DOMAIN,)

    def list_rules(self) -> list[IPRule]:
        result = self.executor.run([IP, "rule", "show"], mutating=False)
        return parse_rule_listing(result.stdout)

    def add_rule(self, rule: IPRuleInput) -> None:
        """Add a policy rule.

        Raises:
            ValidationError: If the rule has neither a table nor a terminal action
            ExecutionError: If ip refuses the rule
        """
        rule.validate()
        command = ip_rule_command("add", rule)
        with self.locks.hold(self.lock_key):
            self.executor.run(
                command,
                description="Adding policy rule",
                combine_output=True,
            )
        self.audit.log_success(
            AuditEventType.IP_RULE_ADD,
            "rule",
            str(rule.priority or "auto"),
            parameters={"command": command[3:]},
        )

    def delete_rule(self, priority: int) -> None:
        """Delete the rule listed at ``priority``.

        The rule is looked up in a fresh listing and removed by priority
        together with its listed from/to selectors.

        Raises:
            ValidationError: For priority 0, the local table lookup
            NotFoundError: If no rule has that priority
        """
        if priority <= 0:
            raise ValidationError(
                f"Refusing to delete rule {priority}",
                hint="Priority 0 is the local table lookup the host needs to receive traffic",
            )
        with self.locks.hold(self.lock_key):
            match = next((r for r in self.list_rules() if r.priority == priority), None)
            if match is None:
                raise NotFoundError(f"No policy rule with priority {priority}")

            target = IPRuleInput(
                priority=match.priority,
                from_=match.from_,
                to=match.to,
            )
            self.executor.run(
                ip_rule_command("del", target),
                description=f"Deleting policy rule {priority}",
                combine_output=True,
            )

        self.audit.log_success(
            AuditEventType.IP_RULE_DELETE,
            "rule",
            str(priority),
            parameters={"selector": match.selector},
        )
