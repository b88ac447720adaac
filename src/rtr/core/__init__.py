"""Core framework components for the router configuration core."""

from rtr.core.exceptions import (
    RtrError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    PrerequisiteError,
    ParseError,
    NotFoundError,
    StoreError,
    RestoreError,
)

from rtr.core.context import ExecutionContext, create_context
from rtr.core.output import console, Console, Verbosity
from rtr.core.config import AppConfig, MachineConfig
from rtr.core.audit import AuditLogger, AuditEvent, AuditEventType, AuditResult, get_audit_logger
from rtr.core.executor import CommandExecutor, CommandResult
from rtr.core.locks import KeyedLocks, get_default_locks

__all__ = [
    # Exceptions
    "RtrError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "PrerequisiteError",
    "ParseError",
    "NotFoundError",
    "StoreError",
    "RestoreError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "MachineConfig",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
    # Locks
    "KeyedLocks",
    "get_default_locks",
]
