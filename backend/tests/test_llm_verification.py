"""
LLM输出校验测试
"""
import pytest
from unittest.mock import AsyncMock, Mock
from cvplus.core.errors import RateLimitError
from cvplus.models.verification import VerificationAuditLog
from cvplus.services.llm_service import LLMServerError
from cvplus.services.llm_verification import LLMVerificationService, decide_outcome, redact_pii

GOOD_RESPONSE = "Jane led the migration of the billing platform to Kubernetes and mentored four engineers."


def verdict(score=85, confidence=0.9, verified=True, issues=None, recommendation="approve"):
    return {
        "verified": verified,
        "confidence": confidence,
        "overall_score": score,
        "detailed_scores": {"accuracy": score, "safety": 95},
        "issues": issues or [],
        "recommendation": recommendation,
        "feedback": "",
    }


def make_verifier(*verdicts, db=None, **kwargs):
    llm = Mock()
    llm.complete_json = AsyncMock(side_effect=list(verdicts))
    return LLMVerificationService(db_session=db, llm_service=llm, retry_delay=0, **kwargs), llm


class TestHelpers:
    """脱敏和判定测试"""

    def test_redact_pii(self):
        text = "Mail jane@example.com, call 555-010-2030, SSN 123-45-6789"
        redacted = redact_pii(text)
        assert "[EMAIL_REDACTED]" in redacted
        assert "[PHONE_REDACTED]" in redacted
        assert "[SSN_REDACTED]" in redacted
        assert "jane@example.com" not in redacted

    def test_decide_outcome(self):
        assert decide_outcome(verdict()) == "approved"
        assert decide_outcome(verdict(score=60, recommendation="manual_review")) == "manual_review"
        assert decide_outcome(verdict(score=60, verified=False, recommendation="reject")) == "rejected"


class TestVerifyResponse:
    """单次校验测试"""

    @pytest.mark.asyncio
    async def test_approved_and_audited(self, db_session):
        service, _ = make_verifier(verdict(), db=db_session)

        result = await service.verify_response("cv_analysis", "Summarize Jane's CV", GOOD_RESPONSE)

        assert result["outcome"] == "approved"
        assert result["request_id"].startswith("verify_")
        assert result["detailed_scores"]["completeness"] == 0.0
        log = db_session.query(VerificationAuditLog).one()
        assert log.outcome == "approved"
        assert log.service == "cv_analysis"

    @pytest.mark.asyncio
    async def test_pii_and_short_response_flagged(self, db_session):
        service, _ = make_verifier(verdict(), db=db_session)

        result = await service.verify_response("chat", "Contact?", "Email jane@example.com")

        categories = [i["category"] for i in result["issues"]]
        assert "safety" in categories
        assert "completeness" in categories
        assert result["detailed_scores"]["safety"] == 30
        log = db_session.query(VerificationAuditLog).one()
        assert "jane@example.com" not in log.response

    @pytest.mark.asyncio
    async def test_verifier_failure_needs_manual_review(self):
        service, _ = make_verifier(LLMServerError("down", 502))

        result = await service.verify_response("chat", "prompt", GOOD_RESPONSE)

        assert result["outcome"] == "manual_review"
        assert result["verified"] is False
        assert result["issues"][0]["severity"] == "critical"

    @pytest.mark.asyncio
    async def test_rate_limit_per_service(self):
        service, _ = make_verifier(verdict(), verdict(), max_requests_per_minute=1)

        await service.verify_response("chat", "prompt", GOOD_RESPONSE)
        with pytest.raises(RateLimitError) as exc_info:
            await service.verify_response("chat", "prompt", GOOD_RESPONSE)
        assert exc_info.value.details["retry_after"] >= 1

        result = await service.verify_response("podcast", "prompt", GOOD_RESPONSE)
        assert result["outcome"] == "approved"


class TestVerifyWithRetry:
    """带重新生成的校验测试"""

    @pytest.mark.asyncio
    async def test_regenerates_until_passing(self):
        failing = verdict(score=40, verified=False, recommendation="reject", issues=[
            {"category": "accuracy", "severity": "high", "description": "Invented employer", "suggestion": "Use CV facts"},
        ])
        service, _ = make_verifier(failing, verdict())
        regenerate = AsyncMock(return_value=GOOD_RESPONSE + " Fixed.")

        result = await service.verify_with_retry("chat", "Summarize", "Jane worked at Google.", regenerate)

        assert result["passed"] is True
        assert result["response"].endswith("Fixed.")
        assert [a["attempt"] for a in result["attempts"]] == [1, 2]
        retry_prompt = regenerate.await_args.args[0]
        assert "[accuracy] Invented employer: Use CV facts" in retry_prompt

    @pytest.mark.asyncio
    async def test_stops_after_max_retries(self):
        failing = verdict(score=40, verified=False, recommendation="reject")
        service, llm = make_verifier(failing, failing, max_retries=2)

        result = await service.verify_with_retry("chat", "Summarize", GOOD_RESPONSE)

        assert result["passed"] is False
        assert len(result["attempts"]) == 2
        assert llm.complete_json.await_count == 2


class TestStats:
    """审计统计测试"""

    @pytest.mark.asyncio
    async def test_stats(self, db_session):
        service, _ = make_verifier(verdict(score=80), verdict(score=40, verified=False, recommendation="reject"),
                                   db=db_session)
        await service.verify_response("chat", "p", GOOD_RESPONSE)
        await service.verify_response("chat", "p", "short")

        stats = service.get_stats()

        assert stats["total_verifications"] == 2
        assert stats["success_rate"] == 50.0
        assert stats["average_score"] == 60.0
        assert stats["issue_breakdown"] == {"completeness": 1}

    def test_stats_without_db(self):
        service, _ = make_verifier()
        assert service.get_stats()["total_verifications"] == 0
