"""Tests for the job progress state machine."""

from datetime import datetime, timedelta

import pytest

from mediaflow.models.events import (
    JobCompleted,
    JobCreated,
    JobFailed,
    StageCompleted,
    StageFailed,
    StageProgress,
    StageSkipped,
    StageStarted,
)
from mediaflow.models.schemas import JobStatus, MediaType, StageDefinition, StageStatus
from mediaflow.services.pipeline.progress_tracker import JobProgressTracker, StageTransitionError

STAGES = [
    StageDefinition(name="validation", label="Validating", required=True),
    StageDefinition(name="ocr", label="Reading text"),
    StageDefinition(name="thumbnails", label="Thumbnails"),
    StageDefinition(name="quality", label="Quality"),
]


@pytest.fixture
def tracker():
    return JobProgressTracker()


@pytest.fixture
def events(tracker):
    received = []
    tracker.subscribe(received.append)
    return received


def test_full_lifecycle_emits_typed_events(tracker, events):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES, {"filename": "a.jpg"})
    tracker.start_stage("job_1", "validation")
    tracker.update_stage_progress("job_1", "validation", 50)
    tracker.complete_stage("job_1", "validation")
    tracker.skip_stage("job_1", "ocr", "Feature disabled")
    tracker.start_stage("job_1", "thumbnails")
    tracker.fail_stage("job_1", "thumbnails", "disk full")
    tracker.start_stage("job_1", "quality")
    tracker.complete_stage("job_1", "quality")

    assert [type(e) for e in events] == [
        JobCreated,
        StageStarted,
        StageProgress,
        StageCompleted,
        StageSkipped,
        StageStarted,
        StageFailed,
        StageStarted,
        StageCompleted,
        JobCompleted,
    ]
    assert events[0].stages == ("validation", "ocr", "thumbnails", "quality")

    job = tracker.get_job("job_1")
    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100.0
    assert job.current_stage is None
    assert job.get_stage("thumbnails").error == "disk full"
    assert job.get_stage("ocr").skip_reason == "Feature disabled"


def test_overall_progress_is_monotonic_and_bounded(tracker, events):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES)
    tracker.start_stage("job_1", "validation")
    tracker.update_stage_progress("job_1", "validation", 80)
    tracker.update_stage_progress("job_1", "validation", 40)  # never lowered
    tracker.update_stage_progress("job_1", "validation", 250)  # clamped
    tracker.complete_stage("job_1", "validation")
    for name in ("ocr", "thumbnails", "quality"):
        tracker.start_stage("job_1", name)
        tracker.update_stage_progress("job_1", name, 30)
        tracker.complete_stage("job_1", name)

    progress = [e.overall_progress for e in events if hasattr(e, "overall_progress")]
    assert progress == sorted(progress)
    assert all(0 <= p <= 100 for p in progress)
    assert progress[-1] == 100.0


def test_equal_weight_per_stage(tracker):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES)
    tracker.start_stage("job_1", "validation")
    tracker.complete_stage("job_1", "validation")
    tracker.start_stage("job_1", "ocr")

    overall = tracker.update_stage_progress("job_1", "ocr", 50)

    assert overall == pytest.approx(37.5)


def test_stage_cannot_start_twice(tracker):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES)
    tracker.start_stage("job_1", "validation")

    with pytest.raises(StageTransitionError):
        tracker.start_stage("job_1", "validation")


def test_terminal_stage_cannot_transition(tracker):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES)
    tracker.start_stage("job_1", "validation")
    tracker.complete_stage("job_1", "validation")

    with pytest.raises(StageTransitionError):
        tracker.fail_stage("job_1", "validation", "late error")
    with pytest.raises(StageTransitionError):
        tracker.skip_stage("job_1", "validation", "late skip")
    assert tracker.get_job("job_1").get_stage("validation").status == StageStatus.COMPLETED


def test_stages_start_in_declared_order(tracker):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES)

    with pytest.raises(StageTransitionError, match="validation"):
        tracker.start_stage("job_1", "ocr")


def test_required_stage_failure_fails_job(tracker, events):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES[:2])
    tracker.start_stage("job_1", "validation")
    tracker.fail_stage("job_1", "validation", "Empty media buffer")
    tracker.skip_stage("job_1", "ocr", "Stage not reached")

    job = tracker.get_job("job_1")
    assert job.status == JobStatus.FAILED
    assert job.error == "Empty media buffer"
    assert isinstance(events[-1], JobFailed)


def test_job_cannot_leave_terminal_state(tracker):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES[:1])
    tracker.start_stage("job_1", "validation")
    tracker.complete_stage("job_1", "validation")

    assert tracker.fail_job("job_1", "too late") is False
    assert tracker.get_job("job_1").status == JobStatus.COMPLETED


def test_fail_job_closes_open_stages(tracker, events):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES)
    tracker.start_stage("job_1", "validation")

    assert tracker.fail_job("job_1", "boom") is True
    assert tracker.fail_job("job_1", "boom again") is False

    job = tracker.get_job("job_1")
    assert job.status == JobStatus.FAILED
    assert job.get_stage("validation").status == StageStatus.FAILED
    assert {s.status for s in job.stages[1:]} == {StageStatus.SKIPPED}
    assert sum(isinstance(e, JobFailed) for e in events) == 1


def test_progress_for_idle_stage_is_ignored(tracker):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES)

    assert tracker.update_stage_progress("job_1", "validation", 50) is None


def test_observer_errors_do_not_break_tracking(tracker):
    def broken(event):
        raise RuntimeError("observer down")

    tracker.subscribe(broken)
    tracker.create_job("job_1", MediaType.IMAGE, STAGES[:1])
    tracker.start_stage("job_1", "validation")
    tracker.complete_stage("job_1", "validation")

    assert tracker.get_job("job_1").status == JobStatus.COMPLETED


def test_duplicate_job_rejected(tracker):
    tracker.create_job("job_1", MediaType.AUDIO, STAGES)

    with pytest.raises(ValueError, match="already exists"):
        tracker.create_job("job_1", MediaType.AUDIO, STAGES)


def test_snapshots_are_isolated(tracker):
    tracker.create_job("job_1", MediaType.IMAGE, STAGES)
    snapshot = tracker.get_job("job_1")
    snapshot.stages[0].status = StageStatus.COMPLETED

    assert tracker.get_job("job_1").stages[0].status == StageStatus.PENDING


def test_statistics_and_cleanup(tracker):
    tracker.create_job("done", MediaType.IMAGE, STAGES[:1])
    tracker.start_stage("done", "validation")
    tracker.complete_stage("done", "validation")
    tracker.create_job("running", MediaType.AUDIO, STAGES)
    tracker.add_warning("running", "transcription skipped")

    stats = tracker.get_statistics()
    assert (stats.total_jobs, stats.processing, stats.completed, stats.failed) == (2, 1, 1, 0)
    assert tracker.get_job_summary("running").warnings == 1
    assert [s.job_id for s in tracker.list_jobs(JobStatus.PROCESSING)] == ["running"]

    assert tracker.cleanup(max_age_seconds=60) == 0
    assert tracker.cleanup(max_age_seconds=60, now=datetime.now() + timedelta(minutes=5)) == 1
    assert tracker.get_job("done") is None
    assert tracker.get_job("running") is not None
