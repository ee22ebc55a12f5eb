# src/cstr_engine/errors.py
"""Error types and standardized raise helpers for cstr_engine.

This module centralizes:
- explicit error classes with actionable messages, and
- small helpers that build consistent messages for configuration failures.

Design intent:
- configuration errors unwind to the caller of configure()/reconfigure()
- contract violations signal programming errors (capacity exhaustion,
  out-of-range AD directions or section indices) and are never used for
  control flow
- runtime evaluation failures (e.g. a singular Jacobian) are reported through
  integer status codes by the engine and never raised
"""

from __future__ import annotations

from typing import NoReturn


class CstrEngineError(Exception):
    """Base exception for cstr_engine errors."""


class ConfigurationError(CstrEngineError, ValueError):
    """Raised when unit or binding-model configuration is invalid or incomplete."""


class UnknownBindingModelError(ConfigurationError):
    """Raised when a binding model identifier is not registered."""


class ContractViolationError(CstrEngineError, RuntimeError):
    """Raised when a caller violates a structural contract (capacity, sizes)."""


class NotConfiguredError(CstrEngineError, RuntimeError):
    """Raised when an engine is used before configure() was called."""


def raise_invalid_configuration(
    *,
    missing: list[str] | None = None,
    detail: str | None = None,
) -> NoReturn:
    """Raise a standardized ConfigurationError.

    Args:
        missing: Required config keys that are missing.
        detail: Optional additional context.

    Raises:
        ConfigurationError: Always.
    """
    parts: list[str] = ["Invalid stirred tank configuration."]
    if missing:
        parts.append(f"Missing required field(s): {sorted(set(missing))}.")
    if detail:
        parts.append(f"Detail: {detail}")
    raise ConfigurationError(" ".join(parts))


def raise_unknown_binding_model(name: str, *, known: list[str]) -> NoReturn:
    """Raise a standardized UnknownBindingModelError.

    Args:
        name: Requested binding model identifier.
        known: Registered binding model identifiers.

    Raises:
        UnknownBindingModelError: Always.
    """
    msg = f"Unknown binding model {name!r}. Registered models: {sorted(known)}."
    raise UnknownBindingModelError(msg)


def raise_contract_violation(*, name: str, expected: str, got: object) -> NoReturn:
    """Raise a standardized ContractViolationError.

    Args:
        name: Name of the object violating the contract.
        expected: Human-readable description of the expected condition.
        got: Actual observed value.

    Raises:
        ContractViolationError: Always.
    """
    msg = f"{name} violates its contract. Expected {expected}. Got: {got!r}."
    raise ContractViolationError(msg)
