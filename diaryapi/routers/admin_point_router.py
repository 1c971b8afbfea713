"""
관리자 포인트 API 라우터

- POST /admin/points/grant: 포인트 지급/차감
- GET /admin/points/settings: 포인트 설정 조회
- PATCH /admin/points/settings: 포인트 설정 변경
- GET /admin/points/users: 사용자 포인트 목록 (정렬/페이징)
- GET /admin/points/users/{user_id}/history: 사용자 거래 내역
- GET /admin/points/users/{user_id}/integrity: 사용자 포인트 정합성 검증

모든 엔드포인트는 is_admin 클레임이 있는 Bearer 토큰이 필요합니다.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from diaryapi.core.security import AuthUser, require_admin
from diaryapi.deps import (
    get_point_history_service,
    get_point_service,
    get_point_settings_service,
)
from diaryapi.models.points import TransactionType
from diaryapi.schemas.points import (
    AdminAdjustRequest,
    AdminAdjustResult,
    PointHistoryResponse,
    PointsIntegrityCheckResponse,
    PointSettingsResponse,
    PointSettingsUpdateRequest,
    PointsSortField,
    SortOrder,
    TransactionFilter,
    UserPointsListResponse,
)
from diaryapi.services.point_history_service import PointHistoryService
from diaryapi.services.point_service import PointService
from diaryapi.services.point_settings_service import PointSettingsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/points", tags=["admin-points"])


@router.post("/grant", response_model=AdminAdjustResult)
def grant_points(
    request: AdminAdjustRequest,
    current_user: AuthUser = Depends(require_admin),
    point_service: PointService = Depends(get_point_service),
) -> AdminAdjustResult:
    """
    관리자 포인트 지급/차감

    Request Body:
        - action: grant | deduct
        - amount: 양수
        - reference_id: (선택) 재시도 중복 방지용 요청 ID

    HTTP Status:
        200: 성공
        400: 잔액 부족 (차감)
        403: 관리자 권한 없음
        422: 유효성 검증 실패
    """
    return point_service.admin_adjust(
        user_id=request.user_id,
        amount=request.amount,
        direction=request.action,
        actor_id=current_user.user_id,
        description=request.description,
        reference_id=request.reference_id,
    )


@router.get("/settings", response_model=PointSettingsResponse)
def get_point_settings(
    current_user: AuthUser = Depends(require_admin),
    settings_service: PointSettingsService = Depends(get_point_settings_service),
) -> PointSettingsResponse:
    entries = settings_service.list_setting_entries()
    return PointSettingsResponse(
        settings={entry.key.value: entry.value for entry in entries},
        entries=entries,
    )


@router.patch("/settings", response_model=PointSettingsResponse)
def update_point_settings(
    request: PointSettingsUpdateRequest,
    current_user: AuthUser = Depends(require_admin),
    settings_service: PointSettingsService = Depends(get_point_settings_service),
) -> PointSettingsResponse:
    """포인트 설정 변경 - 모든 키/값을 검증한 뒤 한 번에 반영"""
    settings_service.update_settings(request.settings, actor_id=current_user.user_id)
    entries = settings_service.list_setting_entries()
    return PointSettingsResponse(
        settings={entry.key.value: entry.value for entry in entries},
        entries=entries,
    )


@router.get("/users", response_model=UserPointsListResponse)
def list_user_points(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    sort_by: PointsSortField = Query(PointsSortField.BALANCE),
    sort_order: SortOrder = Query(SortOrder.DESC),
    current_user: AuthUser = Depends(require_admin),
    history_service: PointHistoryService = Depends(get_point_history_service),
) -> UserPointsListResponse:
    return history_service.list_user_points(
        page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
    )


@router.get("/users/{user_id}/history", response_model=PointHistoryResponse)
def get_user_history(
    user_id: str = Path(..., min_length=1, max_length=64, description="조회할 사용자 ID"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    type: Optional[TransactionType] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    snapshot_id: Optional[int] = Query(None, ge=0),
    current_user: AuthUser = Depends(require_admin),
    history_service: PointHistoryService = Depends(get_point_history_service),
) -> PointHistoryResponse:
    """사용자 포인트 거래 내역 조회 (관리자 전용)"""
    return history_service.list_transactions(
        user_id=user_id,
        page=page,
        limit=limit,
        tx_filter=TransactionFilter(type=type, start_date=start_date, end_date=end_date),
        snapshot_id=snapshot_id,
    )


@router.get("/users/{user_id}/integrity", response_model=PointsIntegrityCheckResponse)
def verify_user_integrity(
    user_id: str = Path(..., min_length=1, max_length=64, description="검증할 사용자 ID"),
    current_user: AuthUser = Depends(require_admin),
    point_service: PointService = Depends(get_point_service),
) -> PointsIntegrityCheckResponse:
    """
    사용자 포인트 정합성 검증 (관리자 전용)

    원장을 재생하여 집계와 비교하며, 불일치는 보정하지 않고 MISMATCH로 보고합니다.
    """
    result = point_service.verify_user_integrity(user_id)
    logger.info(
        f"Admin {current_user.user_id} verified points integrity for {user_id}: {result.status}"
    )
    return result
