from datetime import date, timedelta

from diaryapi.services.streak_policy import (
    STREAK_MILESTONES,
    compute_streak,
    next_milestone,
)


class TestComputeStreak:
    """연속 작성 계산 테스트"""

    def test_first_write_starts_streak(self):
        """첫 작성은 연속 1일"""
        outcome = compute_streak(None, 0, date(2024, 1, 1))

        assert outcome.new_streak == 1
        assert outcome.newly_crossed == ()
        assert outcome.same_day is False

    def test_same_day_keeps_streak(self):
        """같은 날 재작성은 연속 작성 유지, 마일스톤 재지급 없음"""
        outcome = compute_streak(date(2024, 1, 7), 7, date(2024, 1, 7))

        assert outcome.new_streak == 7
        assert outcome.same_day is True
        assert outcome.newly_crossed == ()

    def test_next_day_increments(self):
        outcome = compute_streak(date(2024, 1, 1), 3, date(2024, 1, 2))

        assert outcome.new_streak == 4

    def test_gap_resets_streak(self):
        """이틀 이상 공백이면 1로 초기화"""
        outcome = compute_streak(date(2024, 1, 1), 5, date(2024, 1, 3))

        assert outcome.new_streak == 1

    def test_backfilled_earlier_date_resets(self):
        outcome = compute_streak(date(2024, 1, 10), 5, date(2024, 1, 8))

        assert outcome.new_streak == 1

    def test_reaching_milestone_is_crossed(self):
        """6일 -> 7일 도달 시 7일 마일스톤"""
        outcome = compute_streak(date(2024, 1, 6), 6, date(2024, 1, 7))

        assert outcome.new_streak == 7
        assert outcome.newly_crossed == (7,)

    def test_month_boundary_counts_as_consecutive(self):
        outcome = compute_streak(date(2024, 1, 31), 13, date(2024, 2, 1))

        assert outcome.new_streak == 14
        assert outcome.newly_crossed == (14,)

    def test_custom_milestone_of_one_after_reset(self):
        """초기화 후 재시작도 새로운 상승으로 간주"""
        outcome = compute_streak(date(2024, 1, 1), 5, date(2024, 1, 5), milestones=(1, 3))

        assert outcome.new_streak == 1
        assert outcome.newly_crossed == (1,)

    def test_full_climb_crosses_each_milestone_once(self):
        """100일 연속 작성 동안 각 마일스톤은 정확히 한 번"""
        crossed = []
        last, streak = None, 0
        start = date(2024, 1, 1)
        for offset in range(100):
            day = start + timedelta(days=offset)
            outcome = compute_streak(last, streak, day)
            crossed.extend(outcome.newly_crossed)
            last, streak = day, outcome.new_streak

        assert streak == 100
        assert crossed == list(STREAK_MILESTONES)


class TestNextMilestone:
    def test_next_milestone_above_streak(self):
        assert next_milestone(0) == 7
        assert next_milestone(7) == 14
        assert next_milestone(99) == 100

    def test_no_milestone_after_last(self):
        assert next_milestone(100) is None
        assert next_milestone(250) is None
