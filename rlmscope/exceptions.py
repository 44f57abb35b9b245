"""
Typed exceptions for rlmscope.

Provides structured error handling with:
- RLMError: Base exception for all rlmscope errors
- RLMConfigError: Configuration and validation errors
- RLMProviderError: Model provider communication errors
- RLMSandboxError: Script sandbox errors (security, delegation ceiling)

All exceptions include structured attributes for programmatic handling.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RLMError(Exception):
    """Base exception for all rlmscope errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or result payloads."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class RLMConfigError(RLMError):
    """Configuration or validation error.

    Raised when:
    - A numeric setting from the environment is not a number
    - The user config file is unreadable JSON
    - No model can be resolved for a role

    Examples:
        RLMConfigError("RLM_MAX_TURNS must be an integer", details={"value": "ten"})
    """

    pass


class RLMProviderError(RLMError):
    """Model provider communication error.

    Attributes:
        provider: Name of the provider that failed
        model: Model id the request targeted
        status_code: HTTP status code if available
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if provider:
            details["provider"] = provider
        if model:
            details["model"] = model
        if status_code:
            details["status_code"] = status_code

        self.provider = provider
        self.model = model
        self.status_code = status_code

        super().__init__(message, code=code, details=details)

    @property
    def is_transient(self) -> bool:
        """True for server-side failures that a different model may survive."""
        if self.status_code is not None:
            return self.status_code >= 500
        return "500" in self.message or "Internal" in self.message

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class RLMSandboxError(RLMError):
    """Script sandbox error.

    Raised inside a running script; the sandbox turns it into a failed
    ExecutorResult so the text reaches the model on the next turn.
    """

    pass


class SecurityViolation(RLMSandboxError):
    """Script matched the deny-list or used a blocked construct."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason, code="security_violation", details={"reason": reason})


class DelegationLimitExceeded(RLMSandboxError):
    """Script tried to delegate past the per-session ceiling."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"Maximum sub-LLM calls ({limit}) exceeded",
            code="delegation_limit",
            details={"limit": limit},
        )
