import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from diaryapi.config import Settings
from diaryapi.core.exceptions import TransientStorageError, ValidationError
from diaryapi.repositories.points_repository import PointsRepository
from diaryapi.schemas.points import (
    PointHistoryResponse,
    PointsSortField,
    SortOrder,
    TransactionFilter,
    UserPointsListResponse,
    UserPointsSnapshot,
)

logger = logging.getLogger(__name__)


class PointHistoryService:
    """포인트 원장/집계 조회 서비스 (읽기 전용)

    원장 페이지는 최신순이며, 첫 페이지에서 발급한 snapshot_id를 다음 페이지
    요청에 그대로 전달하면 그 사이에 추가된 항목 때문에 페이지가 밀리지 않습니다.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.points_repo = PointsRepository(db)
        self.default_limit = settings.HISTORY_DEFAULT_LIMIT if settings else 20
        self.max_limit = settings.HISTORY_MAX_LIMIT if settings else 100

    def list_transactions(
        self,
        user_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        tx_filter: Optional[TransactionFilter] = None,
        snapshot_id: Optional[int] = None,
    ) -> PointHistoryResponse:
        """사용자 원장 조회

        Args:
            user_id: 사용자 ID
            page: 1부터 시작하는 페이지 번호
            limit: 페이지 크기 (1..max_limit)
            tx_filter: 유형/기간 필터 (end_date 당일 포함)
            snapshot_id: 이전 페이지 응답의 snapshot_id

        Raises:
            ValidationError: 잘못된 페이지/크기/기간
        """
        if not user_id:
            raise ValidationError("user_id is required")
        limit = self.default_limit if limit is None else limit
        self._validate_page(page, limit)
        if (
            tx_filter is not None
            and tx_filter.start_date is not None
            and tx_filter.end_date is not None
            and tx_filter.start_date > tx_filter.end_date
        ):
            raise ValidationError(
                "start_date must not be after end_date",
                details={
                    "start_date": tx_filter.start_date.isoformat(),
                    "end_date": tx_filter.end_date.isoformat(),
                },
            )
        if snapshot_id is not None and snapshot_id < 0:
            raise ValidationError(
                "snapshot_id must be non-negative", details={"snapshot_id": snapshot_id}
            )

        try:
            if snapshot_id is None:
                snapshot_id = self.points_repo.get_max_transaction_id(user_id)

            if snapshot_id is None:
                # 원장이 비어 있음
                return PointHistoryResponse(
                    transactions=[],
                    total=0,
                    page=page,
                    limit=limit,
                    has_more=False,
                    snapshot_id=None,
                )

            offset = (page - 1) * limit
            transactions, total = self.points_repo.get_transactions_page(
                user_id=user_id,
                limit=limit,
                offset=offset,
                tx_filter=tx_filter,
                snapshot_id=snapshot_id,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to list point transactions for user {user_id}: {str(e)}")
            raise TransientStorageError(
                "Failed to retrieve point history", details={"error": str(e)}
            )

        return PointHistoryResponse(
            transactions=transactions,
            total=total,
            page=page,
            limit=limit,
            has_more=offset + len(transactions) < total,
            snapshot_id=snapshot_id,
        )

    def list_user_points(
        self,
        page: int = 1,
        limit: Optional[int] = None,
        sort_by: PointsSortField = PointsSortField.BALANCE,
        sort_order: SortOrder = SortOrder.DESC,
    ) -> UserPointsListResponse:
        """관리자용 사용자 포인트 목록"""
        limit = self.default_limit if limit is None else limit
        self._validate_page(page, limit)
        try:
            rows, total = self.points_repo.list_aggregates(
                sort_by=PointsSortField(sort_by),
                sort_order=SortOrder(sort_order),
                limit=limit,
                offset=(page - 1) * limit,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to list user points: {str(e)}")
            raise TransientStorageError(
                "Failed to retrieve user points", details={"error": str(e)}
            )

        return UserPointsListResponse(
            users=[UserPointsSnapshot.model_validate(row) for row in rows],
            total=total,
            page=page,
            limit=limit,
        )

    def _validate_page(self, page: int, limit: int) -> None:
        if page < 1:
            raise ValidationError("page must be >= 1", details={"page": page})
        if limit < 1 or limit > self.max_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.max_limit}",
                details={"limit": limit},
            )
