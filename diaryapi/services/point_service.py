import logging
import time
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from diaryapi.config import Settings
from diaryapi.core.exceptions import (
    InsufficientBalanceError,
    InvariantViolationError,
    PointsDisabledError,
    PointsException,
    TransientStorageError,
    ValidationError,
)
from diaryapi.models.points import (
    PointTransaction,
    TransactionReason,
    TransactionType,
    UserPoints,
)
from diaryapi.repositories.points_repository import PointsRepository
from diaryapi.schemas.points import (
    AdjustDirection,
    AdminAdjustResult,
    AwardedPoints,
    DiaryWriteResult,
    NextStreakBonus,
    PointSettingKey,
    PointsIntegrityCheckResponse,
    PointsResponse,
    SpendPointsResult,
    UserPointsSnapshot,
)
from diaryapi.services.point_settings_service import PointSettingsService
from diaryapi.services.streak_policy import (
    MILESTONE_REWARDS,
    STREAK_MILESTONES,
    compute_streak,
    next_milestone,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# models.points 컬럼 길이와 일치
MAX_USER_ID_LENGTH = 64
MAX_REFERENCE_ID_LENGTH = 128


class PointService:
    """포인트 원장 엔진 - 일기 작성 적립, 관리자 조정, 포인트 사용, 요약 조회

    모든 쓰기 연산은 사용자 집계 행을 잠근 하나의 DB 트랜잭션 안에서
    원장 항목 추가와 집계 갱신을 함께 커밋합니다.
    """

    def __init__(
        self,
        db: Session,
        settings_store: PointSettingsService,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.points_repo = PointsRepository(db)
        self.settings_store = settings_store
        self.max_retries = settings.LEDGER_MAX_RETRIES if settings else 3
        self.retry_backoff_seconds = (
            settings.LEDGER_RETRY_BACKOFF_SECONDS if settings else 0.05
        )

    # ------------------------------------------------------------------
    # 쓰기 연산
    # ------------------------------------------------------------------

    def record_diary_write(
        self, user_id: str, entry_date: date, reference_id: str
    ) -> DiaryWriteResult:
        """일기 작성 포인트 적립 및 연속 작성 갱신

        Args:
            user_id: 사용자 ID
            entry_date: 일기 날짜 (datetime 불가)
            reference_id: 일기 ID (멱등성 키)

        Returns:
            DiaryWriteResult: 갱신된 잔액/연속 작성 및 이번 호출로 지급된 항목
        """
        self._validate_user_id(user_id)
        if not isinstance(entry_date, date) or isinstance(entry_date, datetime):
            raise ValidationError(
                "entry_date must be a calendar date",
                details={"entry_date": repr(entry_date)},
            )
        self._validate_reference_id(reference_id, "reference_id")

        # 설정은 트랜잭션 밖에서 읽음 (캐시/기본값, 실패하지 않음)
        point_settings = self.settings_store.get_settings()

        result = self._run_in_transaction(
            "record_diary_write",
            user_id,
            lambda: self._apply_diary_write(
                user_id, entry_date, reference_id, point_settings
            ),
        )

        if result.already_processed:
            logger.info(
                f"Diary write {reference_id} for user {user_id} already processed"
            )
        else:
            logger.info(
                f"Recorded diary write {reference_id} for user {user_id}: "
                f"+{result.points_earned} points, streak {result.current_streak}, "
                f"balance {result.balance}"
            )
        return result

    def _apply_diary_write(
        self,
        user_id: str,
        entry_date: date,
        reference_id: str,
        point_settings: Dict[str, int],
    ) -> DiaryWriteResult:
        aggregate = self.points_repo.lock_aggregate(user_id)

        # 멱등성 체크는 반드시 잠금 이후에 수행
        existing = self.points_repo.find_transaction(
            user_id, TransactionReason.DIARY_WRITE, reference_id
        )
        if existing is not None:
            return self._diary_result(aggregate, [], already_processed=True)

        points_enabled = bool(point_settings[PointSettingKey.POINTS_ENABLED.value])
        streak_enabled = bool(point_settings[PointSettingKey.STREAK_ENABLED.value])

        newly_crossed = ()
        if streak_enabled:
            outcome = compute_streak(
                aggregate.last_diary_date,
                aggregate.current_streak,
                entry_date,
                STREAK_MILESTONES,
            )
            aggregate.current_streak = outcome.new_streak
            aggregate.longest_streak = max(
                aggregate.longest_streak, outcome.new_streak
            )
            newly_crossed = outcome.newly_crossed
        aggregate.last_diary_date = entry_date

        awarded = []
        if points_enabled:
            now = datetime.now(timezone.utc)

            write_points = point_settings[PointSettingKey.DIARY_WRITE_POINTS.value]
            if write_points > 0:
                self._post(
                    aggregate,
                    TransactionType.EARN,
                    TransactionReason.DIARY_WRITE,
                    write_points,
                    reference_id=reference_id,
                    created_at=now,
                )
                awarded.append(
                    AwardedPoints(reason=TransactionReason.DIARY_WRITE, amount=write_points)
                )

            if not aggregate.first_diary_bonus_granted:
                first_bonus = point_settings[PointSettingKey.FIRST_DIARY_BONUS.value]
                if first_bonus > 0:
                    self._post(
                        aggregate,
                        TransactionType.BONUS,
                        TransactionReason.FIRST_DIARY,
                        first_bonus,
                        created_at=now,
                    )
                    awarded.append(
                        AwardedPoints(
                            reason=TransactionReason.FIRST_DIARY, amount=first_bonus
                        )
                    )
                aggregate.first_diary_bonus_granted = True

            for milestone in newly_crossed:
                setting_key, reason = MILESTONE_REWARDS[milestone]
                streak_bonus = point_settings[setting_key.value]
                if streak_bonus <= 0:
                    continue
                self._post(
                    aggregate,
                    TransactionType.BONUS,
                    reason,
                    streak_bonus,
                    reference_id=reference_id,
                    created_at=now,
                )
                awarded.append(AwardedPoints(reason=reason, amount=streak_bonus))

        self._check_invariants(aggregate)
        self.db.flush()
        return self._diary_result(aggregate, awarded, already_processed=False)

    def admin_adjust(
        self,
        user_id: str,
        amount: int,
        direction: AdjustDirection,
        actor_id: str,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> AdminAdjustResult:
        """관리자 포인트 지급/차감 (points_enabled 설정과 무관하게 항상 적용)

        Raises:
            ValidationError: 양수가 아닌 수량, 잘못된 방향, 관리자 ID 누락
            InsufficientBalanceError: 차감 수량이 현재 잔액보다 큰 경우
        """
        self._validate_user_id(user_id)
        self._validate_amount(amount)
        try:
            direction = AdjustDirection(direction)
        except ValueError:
            raise ValidationError(
                "direction must be 'grant' or 'deduct'",
                details={"direction": repr(direction)},
            )
        if not actor_id:
            raise ValidationError("actor_id is required")
        if reference_id is not None:
            self._validate_reference_id(reference_id, "reference_id")

        reason = (
            TransactionReason.ADMIN_GRANT
            if direction == AdjustDirection.GRANT
            else TransactionReason.ADMIN_DEDUCT
        )
        audit_description = f"[admin:{actor_id}] {description or reason.value}"

        def work() -> AdminAdjustResult:
            aggregate = self.points_repo.lock_aggregate(user_id)

            if reference_id is not None:
                existing = self.points_repo.find_transaction(
                    user_id, reason, reference_id
                )
                if existing is not None:
                    return AdminAdjustResult(
                        user_id=user_id,
                        direction=direction,
                        amount=amount,
                        balance=aggregate.balance,
                        transaction_id=existing.id,
                        already_processed=True,
                    )

            if direction == AdjustDirection.DEDUCT and amount > aggregate.balance:
                raise InsufficientBalanceError(
                    f"Insufficient balance. Required: {amount}, Available: {aggregate.balance}",
                    details={"required": amount, "available": aggregate.balance},
                )

            signed_amount = amount if direction == AdjustDirection.GRANT else -amount
            entry = self._post(
                aggregate,
                TransactionType.ADMIN,
                reason,
                signed_amount,
                reference_id=reference_id,
                description=audit_description,
            )
            self._check_invariants(aggregate)
            return AdminAdjustResult(
                user_id=user_id,
                direction=direction,
                amount=amount,
                balance=aggregate.balance,
                transaction_id=entry.id,
            )

        result = self._run_in_transaction("admin_adjust", user_id, work)
        logger.info(
            f"Admin {actor_id} {direction.value} {amount} points for user {user_id}, "
            f"balance {result.balance}"
        )
        return result

    def spend_points(
        self, user_id: str, amount: int, payment_id: str
    ) -> SpendPointsResult:
        """결제 시 포인트 사용 (payment_id 기준 멱등)

        Raises:
            PointsDisabledError: 포인트 시스템 비활성화
            InsufficientBalanceError: 잔액 부족
        """
        self._validate_user_id(user_id)
        self._validate_amount(amount)
        self._validate_reference_id(payment_id, "payment_id")

        if not self.settings_store.get(PointSettingKey.POINTS_ENABLED):
            raise PointsDisabledError()

        def work() -> SpendPointsResult:
            aggregate = self.points_repo.lock_aggregate(user_id)

            existing = self.points_repo.find_transaction(
                user_id, TransactionReason.PAYMENT, payment_id
            )
            if existing is not None:
                return SpendPointsResult(
                    user_id=user_id,
                    amount=-existing.amount,
                    balance=aggregate.balance,
                    transaction_id=existing.id,
                    already_processed=True,
                )

            if amount > aggregate.balance:
                raise InsufficientBalanceError(
                    f"Insufficient balance. Required: {amount}, Available: {aggregate.balance}",
                    details={"required": amount, "available": aggregate.balance},
                )

            entry = self._post(
                aggregate,
                TransactionType.SPEND,
                TransactionReason.PAYMENT,
                -amount,
                reference_id=payment_id,
            )
            self._check_invariants(aggregate)
            return SpendPointsResult(
                user_id=user_id,
                amount=amount,
                balance=aggregate.balance,
                transaction_id=entry.id,
            )

        result = self._run_in_transaction("spend_points", user_id, work)
        logger.info(
            f"User {user_id} spent {amount} points for payment {payment_id}, "
            f"balance {result.balance}"
        )
        return result

    # ------------------------------------------------------------------
    # 읽기 연산
    # ------------------------------------------------------------------

    def get_summary(self, user_id: str) -> PointsResponse:
        """포인트 요약 및 다음 연속 작성 보너스 미리보기 (집계 행을 생성하지 않음)"""
        self._validate_user_id(user_id)
        try:
            aggregate = self.points_repo.get_aggregate(user_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load points for user {user_id}: {str(e)}")
            raise TransientStorageError(
                "Failed to retrieve points", details={"error": str(e)}
            )

        snapshot = (
            UserPointsSnapshot.model_validate(aggregate)
            if aggregate is not None
            else UserPointsSnapshot(user_id=user_id)
        )
        point_settings = self.settings_store.get_settings()

        next_bonus = None
        if point_settings[PointSettingKey.STREAK_ENABLED.value]:
            milestone = next_milestone(snapshot.current_streak, STREAK_MILESTONES)
            while milestone is not None:
                setting_key, _ = MILESTONE_REWARDS[milestone]
                bonus_amount = point_settings[setting_key.value]
                if bonus_amount > 0:
                    next_bonus = NextStreakBonus(
                        days_until=milestone - snapshot.current_streak,
                        milestone=milestone,
                        bonus_amount=bonus_amount,
                    )
                    break
                milestone = next_milestone(milestone, STREAK_MILESTONES)

        return PointsResponse(
            balance=snapshot.balance,
            current_streak=snapshot.current_streak,
            longest_streak=snapshot.longest_streak,
            total_earned=snapshot.total_earned,
            total_spent=snapshot.total_spent,
            last_diary_date=snapshot.last_diary_date,
            next_streak_bonus=next_bonus,
        )

    def verify_user_integrity(self, user_id: str) -> PointsIntegrityCheckResponse:
        """
        특정 사용자의 포인트 정합성 검증

        검증 방식:
        1. 원장을 (created_at, id) 순서로 재생하며 balance_after와 누적 합 비교
        2. 누적 합, 양수 합, 음수 합을 집계의 balance/total_earned/total_spent와 비교
        3. 불일치 시 자동 보정하지 않고 MISMATCH로 보고
        """
        self._validate_user_id(user_id)
        try:
            entries = self.points_repo.get_ledger_in_order(user_id)
            aggregate = self.points_repo.get_aggregate(user_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load ledger for user {user_id}: {str(e)}")
            raise TransientStorageError(
                "Failed to verify point integrity", details={"error": str(e)}
            )

        running = 0
        earned = 0
        spent = 0
        error = None
        error_entry_id = None

        for entry in entries:
            running += entry.amount
            if entry.amount >= 0:
                earned += entry.amount
            else:
                spent += -entry.amount
            if error is None and entry.balance_after != running:
                error = (
                    f"balance_after {entry.balance_after} does not match "
                    f"running balance {running}"
                )
                error_entry_id = entry.id

        recorded_balance = aggregate.balance if aggregate is not None else 0
        recorded_earned = aggregate.total_earned if aggregate is not None else 0
        recorded_spent = aggregate.total_spent if aggregate is not None else 0

        if error is None and running != recorded_balance:
            error = f"ledger sum {running} does not match balance {recorded_balance}"
        if error is None and (earned, spent) != (recorded_earned, recorded_spent):
            error = (
                f"ledger totals earned={earned} spent={spent} do not match "
                f"aggregate earned={recorded_earned} spent={recorded_spent}"
            )

        status = "OK" if error is None else "MISMATCH"
        if error is not None:
            logger.error(f"Points integrity mismatch for user {user_id}: {error}")
        else:
            logger.info(f"Points integrity verified for user {user_id}")

        return PointsIntegrityCheckResponse(
            status=status,
            user_id=user_id,
            calculated_balance=running,
            recorded_balance=recorded_balance,
            entry_count=len(entries),
            error=error,
            entry_id=error_entry_id,
            verified_at=datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # 내부 헬퍼
    # ------------------------------------------------------------------

    def _post(
        self,
        aggregate: UserPoints,
        tx_type: TransactionType,
        reason: TransactionReason,
        amount: int,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> PointTransaction:
        """집계 갱신과 원장 항목 추가를 함께 수행 (잠긴 집계 행 전제)"""
        aggregate.balance += amount
        if amount >= 0:
            aggregate.total_earned += amount
        else:
            aggregate.total_spent += -amount

        return self.points_repo.append_transaction(
            user_id=aggregate.user_id,
            tx_type=tx_type,
            amount=amount,
            balance_after=aggregate.balance,
            reason=reason,
            reference_id=reference_id,
            description=description,
            created_at=created_at,
        )

    def _check_invariants(self, aggregate: UserPoints) -> None:
        problems = []
        if aggregate.balance != aggregate.total_earned - aggregate.total_spent:
            problems.append("balance != total_earned - total_spent")
        if aggregate.balance < 0:
            problems.append("negative balance")
        if aggregate.current_streak < 0 or aggregate.longest_streak < aggregate.current_streak:
            problems.append("streak counters out of range")

        if problems:
            details = {
                "user_id": aggregate.user_id,
                "balance": aggregate.balance,
                "total_earned": aggregate.total_earned,
                "total_spent": aggregate.total_spent,
                "current_streak": aggregate.current_streak,
                "longest_streak": aggregate.longest_streak,
                "problems": problems,
            }
            logger.critical(f"Point ledger invariant violated: {details}")
            raise InvariantViolationError(details=details)

    def _run_in_transaction(
        self, operation: str, user_id: str, work: Callable[[], T]
    ) -> T:
        """work를 하나의 트랜잭션으로 실행하고 커밋

        잠금 타임아웃/데드락/연결 끊김/예상치 못한 유니크 충돌은 롤백 후
        제한된 횟수만큼 재시도하며, 도메인 오류는 즉시 롤백 후 전파합니다.
        """
        attempts = self.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                result = work()
                self.db.commit()
                return result
            except PointsException:
                self.db.rollback()
                raise
            except DBAPIError as e:
                self.db.rollback()
                retryable = isinstance(e, (OperationalError, IntegrityError)) or (
                    e.connection_invalidated
                )
                if not retryable:
                    logger.error(f"{operation} failed for user {user_id}: {str(e)}")
                    raise TransientStorageError(
                        f"{operation} failed", details={"error": str(e)}
                    )
                last_error = e
                logger.warning(
                    f"{operation} storage conflict for user {user_id} "
                    f"(attempt {attempt}/{attempts}): {e.__class__.__name__}"
                )
                if attempt < attempts:
                    time.sleep(self.retry_backoff_seconds * attempt)
            except SQLAlchemyError:
                self.db.rollback()
                raise
            except Exception:
                self.db.rollback()
                raise

        logger.error(
            f"{operation} for user {user_id} failed after {attempts} attempts: {last_error}"
        )
        raise TransientStorageError(
            f"{operation} failed after {attempts} attempts",
            details={"error": str(last_error), "attempts": attempts},
        )

    @staticmethod
    def _diary_result(
        aggregate: UserPoints, awarded, already_processed: bool
    ) -> DiaryWriteResult:
        return DiaryWriteResult(
            user_id=aggregate.user_id,
            balance=aggregate.balance,
            current_streak=aggregate.current_streak,
            longest_streak=aggregate.longest_streak,
            points_earned=sum(item.amount for item in awarded),
            bonuses_awarded=awarded,
            already_processed=already_processed,
        )

    @staticmethod
    def _validate_user_id(user_id: str) -> None:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id is required", details={"user_id": repr(user_id)})
        if len(user_id) > MAX_USER_ID_LENGTH:
            raise ValidationError(
                f"user_id must be at most {MAX_USER_ID_LENGTH} characters",
                details={"length": len(user_id)},
            )

    @staticmethod
    def _validate_reference_id(value: str, field_name: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field_name} is required", details={field_name: repr(value)})
        if len(value) > MAX_REFERENCE_ID_LENGTH:
            raise ValidationError(
                f"{field_name} must be at most {MAX_REFERENCE_ID_LENGTH} characters",
                details={"length": len(value)},
            )

    @staticmethod
    def _validate_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(
                "amount must be a positive integer", details={"amount": repr(amount)}
            )
