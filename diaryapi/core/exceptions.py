from typing import Optional, Dict, Any


class PointsException(Exception):
    """Base exception for point ledger errors.

    전송 계층(HTTP 등)과 무관한 오류 분류. 상태 코드 매핑은
    core.exception_handlers 에서 담당합니다.
    """

    error_code = "POINTS_000"
    default_message = "Point ledger error"

    def __init__(
        self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            },
        }


class ValidationError(PointsException):
    """Validation errors - 변경 전에 거부됨"""

    error_code = "VALIDATION_001"
    default_message = "Validation failed"


class InvalidSettingError(ValidationError):
    """알 수 없는 설정 키 또는 허용되지 않는 설정 값"""

    error_code = "SETTING_001"
    default_message = "Invalid point setting"


class InsufficientBalanceError(PointsException):
    """Insufficient balance errors - 잔액이 음수가 되는 차감은 거부"""

    error_code = "BALANCE_001"
    default_message = "Insufficient balance"


class PointsDisabledError(PointsException):
    """포인트 시스템이 비활성화된 상태에서의 사용 요청"""

    error_code = "POINTS_DISABLED"
    default_message = "Point system is disabled"


class TransientStorageError(PointsException):
    """잠금 경합, 연결 오류 등 - 재시도 한도 소진 후에만 노출"""

    error_code = "STORAGE_001"
    default_message = "Temporary storage failure"


class InvariantViolationError(PointsException):
    """원장과 집계가 어긋나는 등 정상 동작에서 발생하면 안 되는 상태"""

    error_code = "INVARIANT_001"
    default_message = "Point ledger invariant violated"
