"""
포인트 시스템 데이터 모델

이 파일은 일기 작성 포인트 시스템의 세 테이블을 정의합니다:
1. user_points: 사용자별 포인트/연속 작성 집계 (원장의 캐시된 투영)
2. point_transactions: 모든 포인트 변동을 기록하는 원장(Ledger)
3. point_settings: 관리자가 조정하는 포인트 지급 설정

포인트의 추가/차감은 모두 원장에 기록되어 완전한 감사 추적(Audit Trail)을 제공하며,
user_points 행은 원장과 같은 트랜잭션 안에서만 갱신됩니다.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from diaryapi.models.base import Base, BaseModel, utcnow

# sqlite에서는 INTEGER PRIMARY KEY만 자동 증가하므로 variant 지정
BigIntId = BigInteger().with_variant(Integer, "sqlite")


class TransactionType(str, Enum):
    """원장 거래 유형"""

    EARN = "earn"  # 일기 작성 적립
    SPEND = "spend"  # 결제 사용
    BONUS = "bonus"  # 첫 일기/연속 작성 보너스
    ADMIN = "admin"  # 관리자 지급/차감


class TransactionReason(str, Enum):
    """원장 거래 사유"""

    DIARY_WRITE = "diary_write"
    FIRST_DIARY = "first_diary"
    STREAK_7 = "streak_7"
    STREAK_14 = "streak_14"
    STREAK_30 = "streak_30"
    STREAK_60 = "streak_60"
    STREAK_100 = "streak_100"
    PAYMENT = "payment"
    ADMIN_GRANT = "admin_grant"
    ADMIN_DEDUCT = "admin_deduct"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class UserPoints(BaseModel):
    """
    사용자 포인트 집계 테이블 - 사용자당 한 행

    불변 조건:
    - balance == total_earned - total_spent
    - longest_streak >= current_streak >= 0
    - 원장(point_transactions)을 순서대로 재생한 합계가 balance와 일치
    """

    __tablename__ = "user_points"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_points_user_id"),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # 마지막으로 일기 작성 이벤트가 기록된 달력 날짜
    last_diary_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # 첫 일기 보너스 1회 지급 가드
    first_diary_bonus_granted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )


class PointTransaction(Base):
    """
    포인트 원장 테이블 - 모든 포인트 거래 내역을 저장

    이 테이블은 다음 원칙을 따릅니다:
    1. 불변성(Immutable): 한번 생성된 레코드는 수정되지 않음
    2. 완전성(Complete): 모든 포인트 변동사항이 기록됨
    3. 멱등성(Idempotent): (user_id, reference_id, reason) 유니크 제약으로 중복 지급 방지
    4. 정합성(Integrity): balance_after 필드로 잔액 추적
    """

    __tablename__ = "point_transactions"
    __table_args__ = (
        # reference_id가 NULL인 행끼리는 충돌하지 않음 (SQL NULL 비교 규칙)
        UniqueConstraint(
            "user_id", "reference_id", "reason", name="uq_point_tx_user_ref_reason"
        ),
        Index("ix_point_tx_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    type: Mapped[TransactionType] = mapped_column(
        SAEnum(
            TransactionType,
            native_enum=False,
            length=20,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    # 부호 있는 변동량 - 적립/보너스/관리자 지급은 양수, 사용/관리자 차감은 음수
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # 거래 후 잔액 - 이 거래 직후의 집계 잔액 스냅샷
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reason: Mapped[TransactionReason] = mapped_column(
        SAEnum(
            TransactionReason,
            native_enum=False,
            length=32,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    # 외부 연관 키 (예: 일기 ID, 결제 ID)
    reference_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


class PointSetting(Base):
    """관리자 조정 가능한 포인트 설정 (key/value)"""

    __tablename__ = "point_settings"
    __table_args__ = (UniqueConstraint("key", name="uq_point_settings_key"),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
