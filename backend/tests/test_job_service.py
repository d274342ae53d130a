"""
CV任务生命周期和处理流水线测试
"""
import asyncio
import json
import logging
from datetime import datetime, timedelta
import pytest
from unittest.mock import AsyncMock, Mock
from cvplus.core.config import settings
from cvplus.core.database import SessionLocal
from cvplus.core.errors import ConflictError, NotFoundError, ValidationError
from cvplus.core.structured_logging import StructuredFormatter
from cvplus.models.cv_job import CVJob, ProcessingStatus
from cvplus.services.job_service import (
    CVJobService,
    calculate_total_credit_cost,
    calculate_total_processing_time,
    has_timed_out,
    process_job,
    run_pipeline,
    status_description,
    validate_job_input,
)
from cvplus.services.llm_service import LLMAuthError, LLMServerError
from cvplus.services.resilience import RESILIENCE_PRESETS, ResilienceConfig, RetryConfig
from conftest import make_user

RAW_TEXT = "Jane Smith\nSenior Software Engineer\nAcme Cloud 2020-Present"


def make_llm(parsed_cv, chat_response="Host A: Welcome! Host B: Today we talk about Jane."):
    llm = Mock()
    llm.provider = "anthropic"
    llm.complete_json = AsyncMock(return_value=parsed_cv)
    llm.chat_completion = AsyncMock(return_value=chat_response)
    return llm


def create_job(db, user, features=None, **kwargs):
    return CVJobService(db).create_job(
        user, file_name="cv.txt", file_size=len(RAW_TEXT), input_type="txt",
        features=features or [], raw_text=RAW_TEXT, **kwargs
    )


class TestJobInputValidation:
    """任务参数和估算测试"""

    def test_valid_input(self):
        assert validate_job_input(1024, "pdf", ["ats_optimization"], progress=50) == []

    def test_invalid_input(self):
        errors = validate_job_input(-1, "rtf", ["hologram"], progress=120)
        assert len(errors) == 4

    def test_file_size_limit(self):
        assert validate_job_input(6 * 1024 * 1024, "txt") != []
        assert validate_job_input(6 * 1024 * 1024, "pdf") == []

    def test_processing_time_and_cost(self):
        features = ["ats_optimization", "video_introduction", "qr_code"]
        assert calculate_total_processing_time(features) == 30000 + 30000 + 180000 + 5000
        assert calculate_total_credit_cost(features) == 6
        assert calculate_total_processing_time([]) == 30000

    def test_status_description(self):
        assert status_description("analyzing") == "正在分析CV内容"
        assert status_description("bogus") == "未知状态"


class TestJobLifecycle:
    """状态流转测试"""

    def test_create_job(self, db_session, premium_user):
        job = create_job(db_session, premium_user, ["ats_optimization", "ats_optimization", "qr_code"],
                         customizations={"target_role": "Staff Engineer"})

        assert job.status == "pending"
        assert job.priority == "high"
        assert job.selected_features == ["ats_optimization", "qr_code"]
        assert len(job.file_hash) == 64
        assert job.estimated_completion_at > datetime.utcnow()

    def test_create_job_rejects_unknown_feature(self, db_session, user):
        with pytest.raises(ValidationError):
            create_job(db_session, user, ["hologram"])

    def test_valid_transitions(self, db_session, user):
        service = CVJobService(db_session)
        job = create_job(db_session, user)

        service.transition(job, ProcessingStatus.ANALYZING)
        assert job.processing_started_at is not None
        service.transition(job, ProcessingStatus.GENERATING)
        service.transition(job, ProcessingStatus.COMPLETED)

        assert job.progress == 100
        assert job.processing_completed_at is not None
        assert job.total_processing_time_ms >= 0

    @pytest.mark.parametrize("path", [
        [ProcessingStatus.COMPLETED],
        [ProcessingStatus.ANALYZING, ProcessingStatus.PENDING],
        [ProcessingStatus.CANCELLED, ProcessingStatus.ANALYZING],
    ])
    def test_invalid_transitions(self, db_session, user, path):
        service = CVJobService(db_session)
        job = create_job(db_session, user)

        with pytest.raises(ConflictError) as exc_info:
            for status in path:
                service.transition(job, status)
        assert exc_info.value.details["requested_status"] == path[-1].value

    def test_update_progress(self, db_session, user):
        service = CVJobService(db_session)
        job = create_job(db_session, user)

        service.update_progress(job, 40, "parse")
        service.update_progress(job, 60, "ats")

        db_session.expire_all()
        job = service.get_job(job.id)
        assert job.progress == 60
        assert [s["step"] for s in job.completed_steps] == ["parse", "ats"]
        with pytest.raises(ValidationError):
            service.update_progress(job, 101)

    def test_fail_job(self, db_session, user, caplog):
        service = CVJobService(db_session)
        job = create_job(db_session, user)

        with caplog.at_level(logging.ERROR, logger="cvplus.services.job_service"):
            service.fail_job(job, "LLM_ERROR", "provider down", failed_step="parse", recoverable=True)

        record = caplog.records[-1]
        assert record.extra_fields == {
            "job_id": job.id, "user_id": user.id, "failed_step": "parse", "error_code": "LLM_ERROR",
        }
        assert json.loads(StructuredFormatter().format(record))["job_id"] == job.id

        assert job.status == "failed"
        assert job.error_details["failed_step"] == "parse"
        assert job.error_details["recoverable"] is True
        assert job.error_details["retry_count"] == 0

    def test_cancel_job(self, db_session, user):
        service = CVJobService(db_session)
        job = create_job(db_session, user)

        service.cancel_job(job)
        assert job.status == "cancelled"
        with pytest.raises(ConflictError):
            service.cancel_job(job)

    def test_get_job_scoped_to_owner(self, db_session, user):
        job = create_job(db_session, user)
        other = make_user(db_session, email="other@example.com")

        assert CVJobService(db_session).get_job(job.id, user).id == job.id
        with pytest.raises(NotFoundError):
            CVJobService(db_session).get_job(job.id, other)

    def test_list_jobs(self, db_session, user):
        service = CVJobService(db_session)
        first = create_job(db_session, user)
        create_job(db_session, user)
        service.cancel_job(first)

        assert len(service.list_jobs(user)) == 2
        assert [j.id for j in service.list_jobs(user, status="cancelled")] == [first.id]

    def test_timeouts(self, db_session, user):
        service = CVJobService(db_session)
        stale = create_job(db_session, user)
        fresh = create_job(db_session, user)
        done = create_job(db_session, user)
        service.transition(stale, ProcessingStatus.ANALYZING)
        stale.processing_started_at = datetime.utcnow() - timedelta(minutes=10)
        service.cancel_job(done)
        db_session.commit()

        assert has_timed_out(stale, timeout_seconds=300) is True
        assert has_timed_out(fresh, timeout_seconds=300) is False
        assert has_timed_out(done, timeout_seconds=0) is False

        assert service.expire_timed_out_jobs(timeout_seconds=300) == 1
        assert stale.status == "expired"
        assert fresh.status == "pending"


class TestPipeline:
    """处理流水线测试"""

    @pytest.mark.asyncio
    async def test_full_pipeline(self, db_session, premium_user, sample_cv):
        features = ["ats_optimization", "interactive_timeline", "ai_podcast", "public_profile"]
        job = create_job(db_session, premium_user, features)
        llm = make_llm(sample_cv)

        await run_pipeline(db_session, job, llm)

        assert job.status == "completed"
        assert job.progress == 100
        assert [s["step"] for s in job.completed_steps] == ["parse", "ats", "roles", "recommendations", "features"]
        assert job.parsed_cv["personal_info"]["name"] == "Jane Smith"
        assert job.ats_result["score"] == 95
        assert job.role_analysis["primary_role"]["role_id"] == "software_engineer"
        assert job.recommendations
        assert all(state["status"] == "completed" for state in job.enhanced_features.values())
        assert set(job.generated_output) == set(features)
        assert job.generated_output["ai_podcast"]["script"].startswith("Host A")
        assert job.generated_output["public_profile"]["url"].startswith("https://cvplus.app/p/jane-smith-")

    @pytest.mark.asyncio
    async def test_feature_failure_is_a_warning(self, db_session, premium_user, sample_cv):
        job = create_job(db_session, premium_user, ["ai_podcast", "qr_code"])
        llm = make_llm(sample_cv)
        llm.chat_completion = AsyncMock(side_effect=ValueError("script rejected"))

        await run_pipeline(db_session, job, llm)

        assert job.status == "completed"
        assert job.enhanced_features["ai_podcast"] == {
            "status": "failed", "error": "script rejected", "retryable": True,
        }
        assert job.enhanced_features["qr_code"]["status"] == "completed"
        assert job.warnings == ["ai_podcast: script rejected"]

    @pytest.mark.asyncio
    async def test_parse_failure_fails_job(self, db_session, user, sample_cv):
        job = create_job(db_session, user)
        llm = make_llm(sample_cv)
        llm.complete_json = AsyncMock(side_effect=LLMAuthError("ANTHROPIC鉴权失败", 401))

        await run_pipeline(db_session, job, llm)

        assert job.status == "failed"
        assert job.error_details["code"] == "LLM_ERROR"
        assert job.error_details["failed_step"] == "parse"
        assert job.error_details["recoverable"] is False
        assert job.parsed_cv is None

    @pytest.mark.asyncio
    async def test_cancel_during_processing(self, db_session, user, sample_cv):
        """测试处理过程中被取消时停止后续步骤"""
        job = create_job(db_session, user, ["ats_optimization"])
        job_id = job.id

        async def parse_then_cancel(*args, **kwargs):
            other = SessionLocal()
            try:
                other.query(CVJob).filter(CVJob.id == job_id).update({"status": "cancelled"})
                other.commit()
            finally:
                other.close()
            return sample_cv

        llm = make_llm(sample_cv)
        llm.complete_json = AsyncMock(side_effect=parse_then_cancel)

        await run_pipeline(db_session, job, llm)

        assert job.status == "cancelled"
        assert job.progress == 40
        assert job.ats_result is None


class TestProcessJob:
    """后台任务入口测试"""

    @pytest.mark.asyncio
    async def test_process_job_uses_own_session(self, db_session, user, sample_cv):
        job = create_job(db_session, user, ["qr_code"])

        await process_job(job.id, llm_service=make_llm(sample_cv))

        db_session.expire_all()
        job = CVJobService(db_session).get_job(job.id)
        assert job.status == "completed"
        assert job.generated_output["qr_code"]["format"] == "url"

    @pytest.mark.asyncio
    async def test_skips_non_pending(self, db_session, user, sample_cv):
        job = create_job(db_session, user)
        CVJobService(db_session).cancel_job(job)
        llm = make_llm(sample_cv)

        await process_job(job.id, llm_service=llm)
        await process_job("missing-job", llm_service=llm)

        llm.complete_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_overall_timeout_expires_job(self, db_session, user, sample_cv, monkeypatch):
        job = create_job(db_session, user)

        async def hang(*args, **kwargs):
            await asyncio.sleep(5)

        llm = make_llm(sample_cv)
        llm.complete_json = AsyncMock(side_effect=hang)
        monkeypatch.setattr(settings, "job_timeout_seconds", 0.1)

        await process_job(job.id, llm_service=llm)

        db_session.expire_all()
        job = CVJobService(db_session).get_job(job.id)
        assert job.status == "expired"
        assert "超时" in job.error_message

    @pytest.mark.asyncio
    async def test_recoverable_error_recorded(self, db_session, user, sample_cv, monkeypatch):
        """测试可重试错误耗尽重试后记为可恢复失败"""
        job = create_job(db_session, user)
        llm = make_llm(sample_cv)
        llm.complete_json = AsyncMock(side_effect=LLMServerError("ANTHROPIC服务不可用", 502))
        monkeypatch.setitem(RESILIENCE_PRESETS, "anthropic", ResilienceConfig(
            name="anthropic-test", retry=RetryConfig(max_attempts=3, initial_delay=0, max_delay=0),
        ))

        await process_job(job.id, llm_service=llm)

        db_session.expire_all()
        job = CVJobService(db_session).get_job(job.id)
        assert job.status == "failed"
        assert job.error_details["recoverable"] is True
        assert llm.complete_json.await_count == 3
