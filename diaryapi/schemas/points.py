from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from datetime import date, datetime
from enum import Enum

from diaryapi.models.points import TransactionReason, TransactionType


class PointSettingKey(str, Enum):
    """포인트 설정 키"""

    POINTS_ENABLED = "points_enabled"
    STREAK_ENABLED = "streak_enabled"
    DIARY_WRITE_POINTS = "diary_write_points"
    FIRST_DIARY_BONUS = "first_diary_bonus"
    STREAK_7_BONUS = "streak_7_bonus"
    STREAK_14_BONUS = "streak_14_bonus"
    STREAK_30_BONUS = "streak_30_bonus"
    STREAK_60_BONUS = "streak_60_bonus"
    STREAK_100_BONUS = "streak_100_bonus"


class AdjustDirection(str, Enum):
    """관리자 조정 방향"""

    GRANT = "grant"
    DEDUCT = "deduct"


class PointsSortField(str, Enum):
    BALANCE = "balance"
    STREAK = "streak"
    EARNED = "earned"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class UserPointsSnapshot(BaseModel):
    """사용자 포인트 집계 스냅샷"""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    balance: int = 0
    total_earned: int = 0
    total_spent: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_diary_date: Optional[date] = None
    first_diary_bonus_granted: bool = False


class PointTransactionEntry(BaseModel):
    """포인트 원장 항목"""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="원장 항목 ID")
    user_id: str = Field(..., description="사용자 ID")
    type: TransactionType = Field(..., description="거래 유형")
    amount: int = Field(..., description="포인트 변화량 (부호 포함)")
    balance_after: int = Field(..., description="거래 후 잔액")
    reason: TransactionReason = Field(..., description="거래 사유")
    reference_id: Optional[str] = Field(None, description="참조 ID")
    description: Optional[str] = Field(None, description="설명")
    created_at: datetime = Field(..., description="생성 시간")


class AwardedPoints(BaseModel):
    """일기 작성 시 지급된 개별 항목"""

    reason: TransactionReason
    amount: int


class DiaryWriteResult(BaseModel):
    """일기 작성 포인트 처리 결과"""

    user_id: str
    balance: int
    current_streak: int
    longest_streak: int
    points_earned: int = Field(0, description="이번 호출로 적립된 포인트 합계")
    bonuses_awarded: List[AwardedPoints] = Field(default_factory=list)
    already_processed: bool = Field(
        False, description="같은 일기에 대해 이미 처리된 요청인지 여부"
    )


class AdminAdjustResult(BaseModel):
    """관리자 포인트 조정 결과"""

    user_id: str
    direction: AdjustDirection
    amount: int
    balance: int
    transaction_id: Optional[int] = None
    already_processed: bool = False


class SpendPointsResult(BaseModel):
    """포인트 사용 결과"""

    user_id: str
    amount: int
    balance: int
    transaction_id: Optional[int] = None
    already_processed: bool = False


class NextStreakBonus(BaseModel):
    days_until: int = Field(..., description="다음 마일스톤까지 남은 일수")
    milestone: int = Field(..., description="다음 연속 작성 마일스톤")
    bonus_amount: int = Field(..., description="마일스톤 보너스 포인트")


class PointsResponse(BaseModel):
    """포인트 요약 응답"""

    balance: int
    current_streak: int
    longest_streak: int
    total_earned: int
    total_spent: int
    last_diary_date: Optional[date] = None
    next_streak_bonus: Optional[NextStreakBonus] = None


class TransactionFilter(BaseModel):
    """원장 조회 필터 - end_date는 해당 일자 전체를 포함"""

    type: Optional[TransactionType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class PointHistoryResponse(BaseModel):
    """포인트 원장 조회 응답"""

    transactions: List[PointTransactionEntry]
    total: int = Field(..., description="필터 조건의 전체 항목 수")
    page: int
    limit: int
    has_more: bool = Field(..., description="다음 페이지 존재 여부")
    snapshot_id: Optional[int] = Field(
        None, description="다음 페이지 요청 시 그대로 전달하는 원장 스냅샷 ID"
    )


class UserPointsListResponse(BaseModel):
    """관리자용 사용자 포인트 목록"""

    users: List[UserPointsSnapshot]
    total: int
    page: int
    limit: int


class PointSettingEntry(BaseModel):
    """포인트 설정 항목"""

    key: PointSettingKey
    value: int
    description: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class PointSettingsResponse(BaseModel):
    settings: Dict[str, int]
    entries: List[PointSettingEntry] = Field(default_factory=list)


class PointSettingsUpdateRequest(BaseModel):
    """관리자 설정 변경 요청"""

    settings: Dict[str, int] = Field(..., min_length=1)


class AdminAdjustRequest(BaseModel):
    """관리자 포인트 지급/차감 요청"""

    user_id: str = Field(..., min_length=1, max_length=64)
    amount: int = Field(..., gt=0, description="포인트 수량 (양수)")
    action: AdjustDirection
    description: Optional[str] = Field(None, max_length=255)
    reference_id: Optional[str] = Field(
        None, max_length=128, description="재시도 시 중복 처리 방지용 요청 ID"
    )


class DiaryWriteRequest(BaseModel):
    """일기 작성 플로우가 호출하는 적립 요청"""

    user_id: str = Field(..., min_length=1, max_length=64)
    entry_date: date = Field(..., description="일기 날짜 (YYYY-MM-DD)")
    reference_id: str = Field(..., min_length=1, max_length=128, description="일기 ID")


class SpendPointsRequest(BaseModel):
    """결제 플로우가 호출하는 포인트 사용 요청"""

    user_id: str = Field(..., min_length=1, max_length=64)
    amount: int = Field(..., gt=0)
    payment_id: str = Field(..., min_length=1, max_length=128)


class PointsIntegrityCheckResponse(BaseModel):
    """포인트 정합성 검증 응답"""

    status: str = Field(..., description="검증 상태 (OK, MISMATCH)")
    user_id: str
    calculated_balance: int = Field(..., description="원장 재생으로 계산된 잔액")
    recorded_balance: int = Field(..., description="집계 테이블에 기록된 잔액")
    entry_count: int
    error: Optional[str] = Field(None, description="오류 메시지")
    entry_id: Optional[int] = Field(None, description="오류 발생 항목 ID")
    verified_at: datetime
