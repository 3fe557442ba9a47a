"""Error taxonomy and the `{success, error, message}` response envelopes."""

from typing import Any, Dict

from scaudit.models import FailedAudit


class AuditError(Exception):
    code = "INTERNAL_ERROR"
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.record: FailedAudit | None = None


# --- 400 ---

class ValidationError(AuditError):
    code = "VALIDATION_ERROR"
    status = 400


class EmptyInput(ValidationError):
    code = "EMPTY_INPUT"


class OversizedInput(ValidationError):
    code = "OVERSIZED_INPUT"


class NotAContract(ValidationError):
    code = "NOT_A_CONTRACT"


class InvalidAddress(ValidationError):
    code = "INVALID_ADDRESS"


class UnsupportedChainError(AuditError):
    code = "UNSUPPORTED_CHAIN"
    status = 400


class ParseError(AuditError):
    code = "PARSE_ERROR"
    status = 400


# --- 404 ---

class ContractNotFoundError(AuditError):
    code = "CONTRACT_NOT_FOUND"
    status = 404


class AuditNotFoundError(AuditError):
    code = "AUDIT_NOT_FOUND"
    status = 404


# --- 5xx ---

class ServiceUnavailable(AuditError):
    code = "SERVICE_UNAVAILABLE"
    status = 503


class AnalysisServiceUnavailable(ServiceUnavailable):
    code = "ANALYSIS_SERVICE_UNAVAILABLE"


class ChainServiceUnavailable(ServiceUnavailable):
    code = "CHAIN_SERVICE_UNAVAILABLE"


class ReportIntegrityError(AuditError):
    """An adapter returned data the report cannot account for."""
    code = "REPORT_INTEGRITY"
    status = 502


class AuditCancelled(AuditError):
    code = "AUDIT_CANCELLED"
    status = 499


# =============================================================================
# ENVELOPES
# =============================================================================

def ok(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data}


def err(code: str, message: str, **extra: Any) -> Dict[str, Any]:
    body = {"success": False, "error": code, "message": message}
    body.update(extra)
    return body


def error_envelope(exc: BaseException) -> tuple[int, Dict[str, Any]]:
    """Map any exception onto an HTTP status and a stable error body."""
    if isinstance(exc, AuditError):
        extra = {"auditId": exc.record.audit_id} if exc.record is not None else {}
        return exc.status, err(exc.code, exc.message, **extra)
    return 500, err(AuditError.code, "Unhandled server error.")
