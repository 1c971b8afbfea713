"""
포인트 API 라우터

사용자용 엔드포인트:
- GET /points: 내 포인트 요약 (잔액, 연속 작성, 다음 연속 작성 보너스)
- GET /points/history: 내 포인트 거래 내역 (유형/기간 필터, 스냅샷 페이징)

내부 엔드포인트 (일기 작성/결제 플로우에서 호출):
- POST /points/internal/diary-write: 일기 작성 포인트 적립
- POST /points/internal/spend: 결제 시 포인트 사용

인증 및 권한:
- 사용자 엔드포인트는 Bearer 토큰 인증 필요
- 내부 엔드포인트는 X-Internal-Token 헤더 필요

오류 응답은 core.exception_handlers 에서 공통 포맷으로 변환됩니다.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from diaryapi.core.security import AuthUser, get_current_user, verify_internal_token
from diaryapi.deps import get_point_history_service, get_point_service
from diaryapi.models.points import TransactionType
from diaryapi.schemas.points import (
    DiaryWriteRequest,
    DiaryWriteResult,
    PointHistoryResponse,
    PointsResponse,
    SpendPointsRequest,
    SpendPointsResult,
    TransactionFilter,
)
from diaryapi.services.point_history_service import PointHistoryService
from diaryapi.services.point_service import PointService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/points", tags=["points"])


@router.get("", response_model=PointsResponse)
def get_my_points(
    current_user: AuthUser = Depends(get_current_user),
    point_service: PointService = Depends(get_point_service),
) -> PointsResponse:
    """
    내 포인트 요약 조회

    Returns:
        PointsResponse: 잔액, 누적 적립/사용, 연속 작성 정보
        - next_streak_bonus: 다음으로 도달할 연속 작성 보너스 (연속 작성 비활성화 시 null)
    """
    return point_service.get_summary(current_user.user_id)


@router.get("/history", response_model=PointHistoryResponse)
def get_my_history(
    page: int = Query(1, ge=1, description="페이지 번호"),
    limit: Optional[int] = Query(
        None, ge=1, description="페이지 크기 (기본값/최대값은 설정 HISTORY_*_LIMIT)"
    ),
    type: Optional[TransactionType] = Query(None, description="거래 유형 필터"),
    start_date: Optional[date] = Query(None, description="시작 날짜 (YYYY-MM-DD)"),
    end_date: Optional[date] = Query(None, description="종료 날짜 (YYYY-MM-DD, 당일 포함)"),
    snapshot_id: Optional[int] = Query(
        None, ge=0, description="첫 페이지 응답의 snapshot_id"
    ),
    current_user: AuthUser = Depends(get_current_user),
    history_service: PointHistoryService = Depends(get_point_history_service),
) -> PointHistoryResponse:
    """
    내 포인트 거래 내역 조회 (최신순)

    사용 예시:
        GET /points/history?limit=20                    # 첫 페이지
        GET /points/history?page=2&snapshot_id=123      # 다음 페이지 (같은 스냅샷)
    """
    tx_filter = TransactionFilter(type=type, start_date=start_date, end_date=end_date)
    return history_service.list_transactions(
        user_id=current_user.user_id,
        page=page,
        limit=limit,
        tx_filter=tx_filter,
        snapshot_id=snapshot_id,
    )


# ============================================================================
# 내부 엔드포인트 - Internal Only
# ============================================================================


@router.post(
    "/internal/diary-write",
    response_model=DiaryWriteResult,
    dependencies=[Depends(verify_internal_token)],
)
def record_diary_write(
    request: DiaryWriteRequest,
    point_service: PointService = Depends(get_point_service),
) -> DiaryWriteResult:
    """
    일기 작성 포인트 적립

    멱등성:
        - 같은 reference_id(일기 ID)로 재호출하면 already_processed=true로 현재 상태 반환
    """
    return point_service.record_diary_write(
        user_id=request.user_id,
        entry_date=request.entry_date,
        reference_id=request.reference_id,
    )


@router.post(
    "/internal/spend",
    response_model=SpendPointsResult,
    dependencies=[Depends(verify_internal_token)],
)
def spend_points(
    request: SpendPointsRequest,
    point_service: PointService = Depends(get_point_service),
) -> SpendPointsResult:
    """결제 시 포인트 사용 (payment_id 기준 멱등)"""
    return point_service.spend_points(
        user_id=request.user_id,
        amount=request.amount,
        payment_id=request.payment_id,
    )
