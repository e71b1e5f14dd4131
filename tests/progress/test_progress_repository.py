"""Tests for the progress repository's conditional writes."""

from fe1prep.db import progress_repository as repo

USER = "user-1"


class TestLessonProgressRows:
    """Tests for lesson progress upserts."""

    def test_ensure_is_noop_on_existing_row(self, seeded_course):
        """ensure_lesson_progress never resets an existing row."""
        repo.upsert_video_position(USER, "m1-l1", 42, time_spent_seconds=10)
        repo.ensure_lesson_progress(USER, "m1-l1")

        row = repo.get_lesson_progress(USER, "m1-l1")
        assert row.video_watched_seconds == 42
        assert row.time_spent_seconds == 10

    def test_position_is_latest_not_max(self, seeded_course):
        """The stored position is the last reported one."""
        repo.upsert_video_position(USER, "m1-l1", 80)
        repo.upsert_video_position(USER, "m1-l1", 20)

        assert repo.get_lesson_progress(USER, "m1-l1").video_watched_seconds == 20

    def test_mark_completed_flips_once(self, seeded_course):
        """Only the first completion call reports the transition."""
        repo.ensure_lesson_progress(USER, "m1-l1")

        assert repo.mark_lesson_completed(USER, "m1-l1") is True
        assert repo.mark_lesson_completed(USER, "m1-l1") is False

    def test_mark_completed_missing_row(self, seeded_course):
        """No row means no transition."""
        assert repo.mark_lesson_completed(USER, "m1-l2") is False

    def test_position_update_keeps_completion(self, seeded_course):
        """Video pings never touch completion columns."""
        repo.ensure_lesson_progress(USER, "m1-l1")
        repo.mark_lesson_completed(USER, "m1-l1")
        repo.upsert_video_position(USER, "m1-l1", 1)

        row = repo.get_lesson_progress(USER, "m1-l1")
        assert row.is_completed is True
        assert row.completed_at is not None


class TestModuleProgressRows:
    """Tests for module progress upserts."""

    def test_touch_keeps_aggregates(self, seeded_course):
        """Touching an existing row only bumps last_accessed_at."""
        repo.upsert_module_progress(USER, "tort-m1", 1, 2, 50.0, "IN_PROGRESS")
        repo.touch_module_progress(USER, "tort-m1", total_lessons=99)

        row = repo.get_module_progress(USER, "tort-m1")
        assert row.total_lessons == 2
        assert row.progress_percent == 50.0
        assert row.status == "IN_PROGRESS"

    def test_lesson_states_only_published(self, seeded_course):
        """Draft lessons are excluded from module lesson states."""
        states = repo.list_module_lesson_states(USER, "tort-m2")

        assert [s.lesson_id for s in states] == ["m2-l1"]
        assert states[0].is_completed is False
        assert states[0].video_watched_seconds == 0

    def test_subject_rows_by_module(self, seeded_course):
        """Module rows are keyed by module id for the subject."""
        repo.upsert_module_progress(USER, "tort-m2", 1, 1, 100.0, "COMPLETED")

        rows = repo.list_module_progress_for_subject(USER, "tort")

        assert set(rows) == {"tort-m2"}
        assert rows["tort-m2"].status == "COMPLETED"
