# payroll_services/errors.py
from __future__ import annotations

from typing import Optional


class PayrollError(RuntimeError):
    """Base class for every failure surfaced by the payroll core."""


# ===== Environment / session =====
class ExecutionEnvironmentError(PayrollError):
    """Raised when confidential operations are attempted outside an interactive client."""


class SessionInitError(PayrollError):
    """Coprocessor runtime could not be loaded, bootstrapped or bound."""


# ===== Encryption =====
class EncryptionError(PayrollError):
    pass


# ===== Decryption =====
class SignatureRejected(PayrollError):
    """The wallet owner declined to sign the decryption authorization."""


class PermissionPending(PayrollError):
    """The ledger ACL grant for a handle has not reached the coprocessor yet."""


class DecryptionExhausted(PermissionPending):
    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        msg = f"Decryption still not authorized after {attempts} attempts"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(msg)


class InvalidSignature(PayrollError):
    pass


class NoValueReturned(PayrollError):
    """The coprocessor answered but the requested handle was missing from the result."""


class DecryptionFailed(PayrollError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


# ===== Ledger =====
class LedgerCallFailed(PayrollError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class HandleNotFound(PayrollError):
    """The withdrawal request receipt did not carry a claimable-amount handle."""


class DuplicateStream(PayrollError):
    def __init__(self, employee: str):
        self.employee = employee
        super().__init__(
            f"Stream already exists for {employee}. Each employee can only have one active stream."
        )


class StreamLifecycleError(PayrollError):
    pass


# ===== Bulk =====
class RowValidationError(PayrollError):
    def __init__(self, line_number: int, errors: list[str]):
        self.line_number = line_number
        self.errors = list(errors)
        super().__init__(f"Row {line_number}: " + "; ".join(self.errors))


def describe_error(exc: BaseException) -> str:
    """
    Render a user-facing message for a payroll failure.
    Phase-tagged withdrawal errors are unwrapped so the message names the phase.
    """
    phase = getattr(exc, "phase", None)
    cause = getattr(exc, "cause", None)
    if phase is not None and cause is not None:
        return f"{phase.label} failed: {describe_error(cause)}"

    if isinstance(exc, SignatureRejected):
        return "Signature request was rejected in the wallet."
    if isinstance(exc, DecryptionExhausted):
        return (
            "Decryption permission has not propagated to the coprocessor yet. "
            "Wait a few blocks and try again."
        )
    if isinstance(exc, PermissionPending):
        return "Decryption permission is still propagating. Try again shortly."
    if isinstance(exc, InvalidSignature):
        return "The decryption signature was rejected as malformed or expired."
    if isinstance(exc, NoValueReturned):
        return "The coprocessor returned no value for this ciphertext."
    if isinstance(exc, HandleNotFound):
        return "The withdrawal request did not emit a claimable-amount handle."
    if isinstance(exc, ExecutionEnvironmentError):
        return "Confidential operations are only available from an interactive client."
    if isinstance(exc, DuplicateStream):
        return str(exc)
    if isinstance(exc, DecryptionFailed):
        return f"Decryption failed: {exc}"
    if isinstance(exc, LedgerCallFailed):
        return f"Ledger call failed: {exc}"
    return str(exc) or exc.__class__.__name__


__all__ = [
    "PayrollError",
    "ExecutionEnvironmentError",
    "SessionInitError",
    "EncryptionError",
    "SignatureRejected",
    "PermissionPending",
    "DecryptionExhausted",
    "InvalidSignature",
    "NoValueReturned",
    "DecryptionFailed",
    "LedgerCallFailed",
    "HandleNotFound",
    "DuplicateStream",
    "StreamLifecycleError",
    "RowValidationError",
    "describe_error",
]
