import pytest
from datetime import date, datetime, timezone
from fastapi.testclient import TestClient
from unittest.mock import Mock

from diaryapi.core.exceptions import (
    InsufficientBalanceError,
    InvalidSettingError,
    PointsDisabledError,
    TransientStorageError,
    ValidationError,
)
from diaryapi.core.security import create_access_token
from diaryapi.deps import (
    get_point_history_service,
    get_point_service,
    get_point_settings_service,
)
from diaryapi.main import create_app
from diaryapi.models.points import TransactionReason, TransactionType
from diaryapi.schemas.points import (
    AdjustDirection,
    AdminAdjustResult,
    AwardedPoints,
    DiaryWriteResult,
    NextStreakBonus,
    PointHistoryResponse,
    PointSettingEntry,
    PointSettingKey,
    PointsResponse,
    PointTransactionEntry,
    SpendPointsResult,
)


@pytest.fixture
def point_service():
    return Mock()


@pytest.fixture
def history_service():
    return Mock()


@pytest.fixture
def settings_service():
    return Mock()


@pytest.fixture
def client(point_service, history_service, settings_service):
    """테스트 클라이언트 픽스처 - 서비스는 Mock으로 대체"""
    app = create_app()
    app.dependency_overrides[get_point_service] = lambda: point_service
    app.dependency_overrides[get_point_history_service] = lambda: history_service
    app.dependency_overrides[get_point_settings_service] = lambda: settings_service
    return TestClient(app)


@pytest.fixture
def user_headers():
    token = create_access_token("user-1")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    token = create_access_token("admin-1", is_admin=True)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def internal_headers():
    return {"X-Internal-Token": "test-internal-token"}


class TestPointRoutes:
    """사용자 포인트 라우터 테스트"""

    def test_get_my_points(self, client, point_service, user_headers):
        # Given
        point_service.get_summary.return_value = PointsResponse(
            balance=1500,
            current_streak=7,
            longest_streak=7,
            total_earned=1500,
            total_spent=0,
            last_diary_date=date(2024, 3, 7),
            next_streak_bonus=NextStreakBonus(days_until=7, milestone=14, bonus_amount=700),
        )

        # When
        response = client.get("/api/v1/points", headers=user_headers)

        # Then
        assert response.status_code == 200
        data = response.json()
        assert data["balance"] == 1500
        assert data["next_streak_bonus"]["milestone"] == 14
        point_service.get_summary.assert_called_once_with("user-1")

    def test_requires_authentication(self, client):
        response = client.get("/api/v1/points")

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_rejects_invalid_token(self, client):
        response = client.get(
            "/api/v1/points", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    def test_get_my_history_passes_filters(self, client, history_service, user_headers):
        history_service.list_transactions.return_value = PointHistoryResponse(
            transactions=[
                PointTransactionEntry(
                    id=3,
                    user_id="user-1",
                    type=TransactionType.EARN,
                    amount=100,
                    balance_after=600,
                    reason=TransactionReason.DIARY_WRITE,
                    reference_id="diary-1",
                    created_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
                )
            ],
            total=1,
            page=2,
            limit=10,
            has_more=False,
            snapshot_id=3,
        )

        response = client.get(
            "/api/v1/points/history",
            params={
                "page": 2,
                "limit": 10,
                "type": "earn",
                "start_date": "2024-03-01",
                "end_date": "2024-03-31",
                "snapshot_id": 3,
            },
            headers=user_headers,
        )

        assert response.status_code == 200
        assert response.json()["transactions"][0]["reason"] == "diary_write"
        kwargs = history_service.list_transactions.call_args.kwargs
        assert kwargs["user_id"] == "user-1"
        assert kwargs["page"] == 2
        assert kwargs["snapshot_id"] == 3
        assert kwargs["tx_filter"].type == TransactionType.EARN
        assert kwargs["tx_filter"].end_date == date(2024, 3, 31)

    def test_history_limit_checked_by_service(self, client, history_service, user_headers):
        """페이지 크기 상한은 설정값을 사용하는 서비스에서 검증"""
        # Given
        history_service.list_transactions.side_effect = ValidationError(
            "limit must be between 1 and 100", details={"limit": 500}
        )

        # When
        response = client.get(
            "/api/v1/points/history", params={"limit": 500}, headers=user_headers
        )

        # Then
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_001"
        assert history_service.list_transactions.call_args.kwargs["limit"] == 500

    def test_history_default_limit_left_to_service(self, client, history_service, user_headers):
        history_service.list_transactions.return_value = PointHistoryResponse(
            transactions=[], total=0, page=1, limit=20, has_more=False
        )

        response = client.get("/api/v1/points/history", headers=user_headers)

        assert response.status_code == 200
        assert history_service.list_transactions.call_args.kwargs["limit"] is None

    def test_history_rejects_zero_limit(self, client, user_headers):
        response = client.get(
            "/api/v1/points/history", params={"limit": 0}, headers=user_headers
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_001"


class TestInternalRoutes:
    """내부 호출 라우터 테스트"""

    def test_diary_write(self, client, point_service, internal_headers):
        point_service.record_diary_write.return_value = DiaryWriteResult(
            user_id="user-1",
            balance=600,
            current_streak=1,
            longest_streak=1,
            points_earned=600,
            bonuses_awarded=[
                AwardedPoints(reason=TransactionReason.DIARY_WRITE, amount=100),
                AwardedPoints(reason=TransactionReason.FIRST_DIARY, amount=500),
            ],
        )

        response = client.post(
            "/api/v1/points/internal/diary-write",
            json={"user_id": "user-1", "entry_date": "2024-03-01", "reference_id": "diary-1"},
            headers=internal_headers,
        )

        assert response.status_code == 200
        assert response.json()["points_earned"] == 600
        point_service.record_diary_write.assert_called_once_with(
            user_id="user-1", entry_date=date(2024, 3, 1), reference_id="diary-1"
        )

    def test_diary_write_requires_internal_token(self, client, point_service):
        response = client.post(
            "/api/v1/points/internal/diary-write",
            json={"user_id": "user-1", "entry_date": "2024-03-01", "reference_id": "diary-1"},
            headers={"X-Internal-Token": "wrong"},
        )

        assert response.status_code == 403
        point_service.record_diary_write.assert_not_called()

    def test_spend_insufficient_balance(self, client, point_service, internal_headers):
        point_service.spend_points.side_effect = InsufficientBalanceError(
            details={"required": 500, "available": 100}
        )

        response = client.post(
            "/api/v1/points/internal/spend",
            json={"user_id": "user-1", "amount": 500, "payment_id": "pay-1"},
            headers=internal_headers,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "BALANCE_001"
        assert body["error"]["details"]["available"] == 100

    def test_spend_when_disabled(self, client, point_service, internal_headers):
        point_service.spend_points.side_effect = PointsDisabledError()

        response = client.post(
            "/api/v1/points/internal/spend",
            json={"user_id": "user-1", "amount": 10, "payment_id": "pay-1"},
            headers=internal_headers,
        )

        assert response.status_code == 409

    def test_spend_success(self, client, point_service, internal_headers):
        point_service.spend_points.return_value = SpendPointsResult(
            user_id="user-1", amount=10, balance=90, transaction_id=5
        )

        response = client.post(
            "/api/v1/points/internal/spend",
            json={"user_id": "user-1", "amount": 10, "payment_id": "pay-1"},
            headers=internal_headers,
        )

        assert response.status_code == 200
        assert response.json()["balance"] == 90

    def test_transient_error_maps_to_503(self, client, point_service, internal_headers):
        point_service.record_diary_write.side_effect = TransientStorageError()

        response = client.post(
            "/api/v1/points/internal/diary-write",
            json={"user_id": "user-1", "entry_date": "2024-03-01", "reference_id": "diary-1"},
            headers=internal_headers,
        )

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "STORAGE_001"


class TestAdminRoutes:
    """관리자 포인트 라우터 테스트"""

    def test_grant_requires_admin(self, client, point_service, user_headers):
        response = client.post(
            "/api/v1/admin/points/grant",
            json={"user_id": "user-1", "amount": 100, "action": "grant"},
            headers=user_headers,
        )

        assert response.status_code == 403
        point_service.admin_adjust.assert_not_called()

    def test_grant(self, client, point_service, admin_headers):
        point_service.admin_adjust.return_value = AdminAdjustResult(
            user_id="user-1",
            direction=AdjustDirection.GRANT,
            amount=200,
            balance=1700,
            transaction_id=9,
        )

        response = client.post(
            "/api/v1/admin/points/grant",
            json={
                "user_id": "user-1",
                "amount": 200,
                "action": "grant",
                "description": "event",
            },
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["balance"] == 1700
        kwargs = point_service.admin_adjust.call_args.kwargs
        assert kwargs["actor_id"] == "admin-1"
        assert kwargs["direction"] == AdjustDirection.GRANT

    def test_grant_rejects_non_positive_amount(self, client, admin_headers):
        response = client.post(
            "/api/v1/admin/points/grant",
            json={"user_id": "user-1", "amount": 0, "action": "deduct"},
            headers=admin_headers,
        )

        assert response.status_code == 422

    def test_update_settings_invalid(self, client, settings_service, admin_headers):
        settings_service.update_settings.side_effect = InvalidSettingError(
            "Unknown point setting: bogus", details={"key": "bogus"}
        )

        response = client.patch(
            "/api/v1/admin/points/settings",
            json={"settings": {"bogus": 1}},
            headers=admin_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "SETTING_001"

    def test_get_settings(self, client, settings_service, admin_headers):
        settings_service.list_setting_entries.return_value = [
            PointSettingEntry(key=PointSettingKey.DIARY_WRITE_POINTS, value=100),
            PointSettingEntry(key=PointSettingKey.POINTS_ENABLED, value=1),
        ]

        response = client.get("/api/v1/admin/points/settings", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["settings"] == {"diary_write_points": 100, "points_enabled": 1}
