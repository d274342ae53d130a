"""
卡住任务巡检测试
"""
from datetime import datetime, timedelta
import pytest
from cvplus.models.cv_job import CVJob, ProcessingStatus
from cvplus.services.job_monitoring import get_job_processing_stats, monitor_stuck_jobs


def add_job(db, user, status=ProcessingStatus.GENERATING, minutes_ago=30, **fields):
    job = CVJob(
        user_id=user.id,
        status=status.value,
        processing_started_at=datetime.utcnow() - timedelta(minutes=minutes_ago),
        completed_steps=[],
        warnings=[],
        **fields
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


class TestMonitorStuckJobs:
    """卡住任务恢复测试"""

    def test_missing_features_initialization(self, db_session, user):
        job = add_job(db_session, user, selected_features=["qr_code", "ai_podcast"])

        summary = monitor_stuck_jobs(db_session, stuck_minutes=10)

        assert summary["recovered"] == 1
        assert summary["reasons"] == {"missing_features_initialization": 1}
        assert job.status == "failed"
        assert job.enhanced_features["qr_code"]["retryable"] is True
        assert job.recovery_reason == "missing_features_initialization"
        assert job.recovered_at is not None

    def test_partial_processing_timeout(self, db_session, user):
        job = add_job(
            db_session, user,
            selected_features=["qr_code", "ai_podcast"],
            enhanced_features={"qr_code": {"status": "completed"}, "ai_podcast": {"status": "processing"}},
        )

        monitor_stuck_jobs(db_session, stuck_minutes=10)

        assert job.status == "failed"
        assert job.error_details["code"] == "PARTIAL_PROCESSING_TIMEOUT"
        assert job.error_details["recoverable"] is True
        assert job.error_details["context"]["feature_counts"] == {"completed": 1, "processing": 1}

    def test_status_update_missed(self, db_session, user):
        job = add_job(
            db_session, user,
            selected_features=["qr_code"],
            enhanced_features={"qr_code": {"status": "completed"}},
            generated_output={"qr_code": {"format": "url"}},
            progress=95,
        )

        monitor_stuck_jobs(db_session, stuck_minutes=10)

        assert job.status == "completed"
        assert job.progress == 100
        assert job.recovery_reason == "status_update_missed"

    def test_unknown_state_timeout(self, db_session, user):
        job = add_job(db_session, user, selected_features=[])

        monitor_stuck_jobs(db_session, stuck_minutes=10)

        assert job.status == "failed"
        assert job.recovery_reason == "unknown_state_timeout"

    def test_ignores_recent_and_other_statuses(self, db_session, user):
        recent = add_job(db_session, user, minutes_ago=2)
        analyzing = add_job(db_session, user, status=ProcessingStatus.ANALYZING, minutes_ago=60)
        completed = add_job(db_session, user, status=ProcessingStatus.COMPLETED, minutes_ago=60)

        summary = monitor_stuck_jobs(db_session, stuck_minutes=10)

        assert summary["checked"] == 0
        assert (recent.status, analyzing.status, completed.status) == ("generating", "analyzing", "completed")


class TestProcessingStats:
    """处理统计测试"""

    def test_stats(self, db_session, user):
        add_job(db_session, user, status=ProcessingStatus.COMPLETED)
        add_job(db_session, user, status=ProcessingStatus.COMPLETED)
        add_job(db_session, user, status=ProcessingStatus.COMPLETED)
        add_job(db_session, user, status=ProcessingStatus.FAILED)
        add_job(db_session, user, status=ProcessingStatus.GENERATING)
        add_job(db_session, user, status=ProcessingStatus.PENDING)

        stats = get_job_processing_stats(db_session)

        assert stats["last_24h"] == {"completed": 3, "failed": 1, "success_rate": 75.0}
        assert stats["current"] == {"generating": 1, "analyzing": 0, "pending": 1}

    def test_empty_stats(self, db_session):
        stats = get_job_processing_stats(db_session)
        assert stats["last_24h"]["success_rate"] == 0.0
