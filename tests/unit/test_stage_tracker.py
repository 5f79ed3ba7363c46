"""Unit tests for StageTracker."""

import pytest
import pytest_check as check

from research_chat.streaming.stages import Stage, StageState, StageTracker, StageTransitionError

PENDING = StageState.PENDING
ACTIVE = StageState.ACTIVE
COMPLETE = StageState.COMPLETE


@pytest.fixture
def tracker() -> StageTracker:
    return StageTracker()


class TestTransitions:
    """Tests for forward progress."""

    def test_starts_all_pending(self, tracker: StageTracker) -> None:
        assert set(tracker.snapshot().values()) == {PENDING}
        assert tracker.is_busy is False

    def test_activate_completes_earlier_stages(self, tracker: StageTracker) -> None:
        tracker.activate(Stage.SEARCHING)
        tracker.activate(Stage.RESPONDING)

        check.equal(tracker.state(Stage.SEARCHING), COMPLETE)
        check.equal(tracker.state(Stage.RESPONDING), ACTIVE)
        check.equal(tracker.state(Stage.CHARTING), PENDING)

    def test_at_most_one_active(self, tracker: StageTracker) -> None:
        for stage in Stage:
            tracker.activate(stage)
            active = [s for s, state in tracker.snapshot().items() if state is ACTIVE]
            assert active == [stage]

    def test_stage_can_skip_straight_to_complete(self, tracker: StageTracker) -> None:
        tracker.complete(Stage.RESPONDING)

        check.equal(tracker.state(Stage.SEARCHING), COMPLETE)
        check.equal(tracker.state(Stage.RESPONDING), COMPLETE)
        check.is_none(tracker.active_stage)

    def test_full_turn(self, tracker: StageTracker) -> None:
        tracker.activate(Stage.SEARCHING)
        tracker.activate(Stage.RESPONDING)
        tracker.complete(Stage.RESPONDING)
        tracker.activate(Stage.CHARTING)
        tracker.complete(Stage.CHARTING)

        assert set(tracker.snapshot().values()) == {COMPLETE}


class TestRegression:
    """Tests that progress never goes backwards."""

    def test_cannot_activate_earlier_stage(self, tracker: StageTracker) -> None:
        tracker.activate(Stage.RESPONDING)

        with pytest.raises(StageTransitionError):
            tracker.activate(Stage.SEARCHING)

    def test_cannot_revert_complete_stage(self, tracker: StageTracker) -> None:
        tracker.complete(Stage.CHARTING)

        with pytest.raises(StageTransitionError):
            tracker.revert(Stage.CHARTING)

    def test_active_stage_reverts_to_pending(self, tracker: StageTracker) -> None:
        tracker.complete(Stage.RESPONDING)
        tracker.activate(Stage.CHARTING)

        tracker.revert(Stage.CHARTING)

        check.equal(tracker.state(Stage.CHARTING), PENDING)
        check.equal(tracker.state(Stage.RESPONDING), COMPLETE)

    def test_reset_returns_everything_to_pending(self, tracker: StageTracker) -> None:
        tracker.complete(Stage.CHARTING)

        tracker.reset()

        assert set(tracker.snapshot().values()) == {PENDING}


class TestListeners:
    """Tests for change notifications."""

    def test_listener_receives_snapshots(self, tracker: StageTracker) -> None:
        seen: list[dict[Stage, StageState]] = []
        tracker.subscribe(seen.append)

        tracker.activate(Stage.SEARCHING)
        tracker.activate(Stage.RESPONDING)

        assert [s[Stage.RESPONDING] for s in seen] == [PENDING, ACTIVE]

    def test_repeated_activation_does_not_notify(self, tracker: StageTracker) -> None:
        seen: list[dict[Stage, StageState]] = []
        tracker.subscribe(seen.append)

        tracker.activate(Stage.SEARCHING)
        tracker.activate(Stage.SEARCHING)

        assert len(seen) == 1

    def test_unsubscribe(self, tracker: StageTracker) -> None:
        seen: list[dict[Stage, StageState]] = []
        unsubscribe = tracker.subscribe(seen.append)

        unsubscribe()
        tracker.activate(Stage.SEARCHING)

        assert seen == []
