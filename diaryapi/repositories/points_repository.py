"""
포인트 리포지토리 - 원장/집계 테이블 데이터 접근

이 파일은 포인트 원장 엔진이 사용하는 저장소 연산을 담당합니다:
1. 사용자 집계 행 생성 및 행 잠금 (SELECT ... FOR UPDATE)
2. 멱등성 키 (user_id, reference_id, reason) 조회
3. 원장 항목 추가
4. 원장 조회 (필터/페이징/스냅샷)
5. 정합성 검증을 위한 원장 재생

핵심 특징:
- 리포지토리는 flush까지만 수행하고 커밋은 서비스가 트랜잭션 단위로 수행합니다
- 집계 행은 "없으면 기본값으로 삽입 후 잠금"을 같은 트랜잭션 안에서 처리합니다
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import asc, desc, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from diaryapi.models.points import (
    PointTransaction,
    TransactionReason,
    TransactionType,
    UserPoints,
)
from diaryapi.repositories.base import BaseRepository
from diaryapi.schemas.points import (
    PointsSortField,
    PointTransactionEntry,
    SortOrder,
    TransactionFilter,
)

_SORT_COLUMNS = {
    PointsSortField.BALANCE: UserPoints.balance,
    PointsSortField.STREAK: UserPoints.current_streak,
    PointsSortField.EARNED: UserPoints.total_earned,
}


class PointsRepository(BaseRepository[PointTransaction, PointTransactionEntry]):
    """
    포인트 리포지토리 - 포인트 관련 모든 데이터베이스 작업 처리

    주요 기능:
    1. 동시성 - 사용자 집계 행 잠금으로 같은 사용자의 요청을 직렬화
    2. 멱등성 - (user_id, reference_id, reason) 기반 중복 거래 조회
    3. 성능 - (user_id, created_at) 인덱스를 이용한 원장 조회
    """

    def __init__(self, db: Session):
        super().__init__(PointTransaction, PointTransactionEntry, db)

    # ------------------------------------------------------------------
    # 집계 (user_points)
    # ------------------------------------------------------------------

    def get_aggregate(self, user_id: str) -> Optional[UserPoints]:
        """잠금 없이 사용자 집계 조회 (읽기 전용 경로)"""
        return (
            self.db.query(UserPoints).filter(UserPoints.user_id == user_id).first()
        )

    def lock_aggregate(self, user_id: str) -> UserPoints:
        """
        사용자 집계 행을 생성(없을 때)하고 행 잠금을 획득

        Returns:
            UserPoints: 현재 트랜잭션이 끝날 때까지 잠긴 집계 행

        Note:
            - INSERT ... ON CONFLICT DO NOTHING 으로 동시 최초 생성 경쟁을 흡수
            - populate_existing으로 세션 캐시가 아닌 잠금 시점 값을 읽음
        """
        self._insert_default_aggregate(user_id)
        return (
            self.db.query(UserPoints)
            .filter(UserPoints.user_id == user_id)
            .with_for_update()
            .populate_existing()
            .one()
        )

    def _insert_default_aggregate(self, user_id: str) -> None:
        values = {
            "user_id": user_id,
            "balance": 0,
            "total_earned": 0,
            "total_spent": 0,
            "current_streak": 0,
            "longest_streak": 0,
            "first_diary_bonus_granted": False,
        }

        if self.dialect_name == "postgresql":
            stmt = pg_insert(UserPoints).values(**values)
        elif self.dialect_name == "sqlite":
            stmt = sqlite_insert(UserPoints).values(**values)
        else:
            self._insert_default_aggregate_with_savepoint(values)
            return

        self.db.execute(stmt.on_conflict_do_nothing(index_elements=["user_id"]))

    def _insert_default_aggregate_with_savepoint(self, values: dict) -> None:
        if self.get_aggregate(values["user_id"]) is not None:
            return
        try:
            with self.db.begin_nested():
                self.db.add(UserPoints(**values))
        except IntegrityError:
            # 다른 요청이 먼저 생성함
            pass

    def list_aggregates(
        self,
        sort_by: PointsSortField,
        sort_order: SortOrder,
        limit: int,
        offset: int,
    ) -> Tuple[List[UserPoints], int]:
        """관리자용 사용자 포인트 목록 (정렬/페이징)"""
        column = _SORT_COLUMNS[sort_by]
        ordering = asc(column) if sort_order == SortOrder.ASC else desc(column)

        total = self.db.query(func.count(UserPoints.id)).scalar() or 0
        rows = (
            self.db.query(UserPoints)
            .order_by(ordering, asc(UserPoints.id))
            .limit(limit)
            .offset(offset)
            .all()
        )
        return rows, total

    # ------------------------------------------------------------------
    # 원장 (point_transactions)
    # ------------------------------------------------------------------

    def find_transaction(
        self, user_id: str, reason: TransactionReason, reference_id: str
    ) -> Optional[PointTransaction]:
        """멱등성 키로 기존 거래 조회"""
        return (
            self.db.query(PointTransaction)
            .filter(
                PointTransaction.user_id == user_id,
                PointTransaction.reason == reason,
                PointTransaction.reference_id == reference_id,
            )
            .first()
        )

    def append_transaction(
        self,
        user_id: str,
        tx_type: TransactionType,
        amount: int,
        balance_after: int,
        reason: TransactionReason,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> PointTransaction:
        """원장 항목 추가 (flush만 수행)"""
        entry = PointTransaction(
            user_id=user_id,
            type=tx_type,
            amount=amount,
            balance_after=balance_after,
            reason=reason,
            reference_id=reference_id,
            description=description,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def _filtered_query(
        self,
        user_id: str,
        tx_filter: Optional[TransactionFilter],
        snapshot_id: Optional[int],
    ) -> Query:
        query = self.db.query(PointTransaction).filter(
            PointTransaction.user_id == user_id
        )

        if snapshot_id is not None:
            query = query.filter(PointTransaction.id <= snapshot_id)

        if tx_filter:
            if tx_filter.type is not None:
                query = query.filter(PointTransaction.type == tx_filter.type)
            if tx_filter.start_date is not None:
                query = query.filter(
                    PointTransaction.created_at >= _start_of_day(tx_filter.start_date)
                )
            if tx_filter.end_date is not None:
                # 종료일 당일 전체 포함
                query = query.filter(
                    PointTransaction.created_at
                    < _start_of_day(tx_filter.end_date + timedelta(days=1))
                )
        return query

    def get_max_transaction_id(self, user_id: str) -> Optional[int]:
        return (
            self.db.query(func.max(PointTransaction.id))
            .filter(PointTransaction.user_id == user_id)
            .scalar()
        )

    def get_transactions_page(
        self,
        user_id: str,
        limit: int,
        offset: int,
        tx_filter: Optional[TransactionFilter] = None,
        snapshot_id: Optional[int] = None,
    ) -> Tuple[List[PointTransactionEntry], int]:
        """원장 페이지 조회 (최신순, (created_at, id) 정렬)"""
        query = self._filtered_query(user_id, tx_filter, snapshot_id)
        total = query.order_by(None).count()

        rows = (
            query.order_by(
                desc(PointTransaction.created_at), desc(PointTransaction.id)
            )
            .limit(limit)
            .offset(offset)
            .all()
        )
        return self._to_schema_list(rows), total

    def get_ledger_in_order(self, user_id: str) -> List[PointTransaction]:
        """정합성 검증용 원장 전체 (오래된 순)"""
        return (
            self.db.query(PointTransaction)
            .filter(PointTransaction.user_id == user_id)
            .order_by(asc(PointTransaction.created_at), asc(PointTransaction.id))
            .all()
        )


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)
