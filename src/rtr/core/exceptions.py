"""Custom exceptions for the router configuration core.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class RtrError(Exception):
    """Base exception for all rtr errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(RtrError):
    """Configuration file or settings errors.

    Raised when:
    - Config file not found or unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(RtrError):
    """Input validation errors.

    Raised when:
    - A mutation intent is missing a required field
    - Unknown firewall table or policy value
    - Position out of range for a move
    """
    exit_code = 3


class ExecutionError(RtrError):
    """Command execution failures.

    The tool's combined output is kept verbatim in ``output`` so callers
    can show operators the exact wording of the underlying tool.
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        output: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if output:
            details.append(f"Error output: {output}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.output = output or ""

    @property
    def already_exists(self) -> bool:
        """Check if the tool refused because the object is already present."""
        return "File exists" in self.output


class PrerequisiteError(RtrError):
    """Missing prerequisites.

    Raised when:
    - Required command not found
    - Insufficient permissions
    """
    exit_code = 6


class ParseError(RtrError):
    """Listing text did not match any recognized shape.

    This signals a defect (unexpected tool version or output format),
    not a user-facing condition.
    """
    exit_code = 8

    def __init__(
        self,
        message: str,
        *,
        text: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.text = text


class NotFoundError(RtrError):
    """Referenced chain, table, priority or position does not exist."""
    exit_code = 9


class StoreError(RtrError):
    """Persisted store errors.

    Raised when:
    - Snapshot file cannot be read or written
    - Archive is corrupt
    - Archive entry would escape the store root
    """
    exit_code = 10

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.path = path


class RestoreError(RtrError):
    """One or more domains failed to restore."""
    exit_code = 11
