"""
LLM输出校验服务

使用独立的校验模型（OpenAI）对生成结果打分，附加PII和完整性检查，
结果写入脱敏后的审计日志；支持按问题反馈重新生成并重试校验。
"""
import asyncio
import logging
import re
import time
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from ..core.errors import RateLimitError
from ..models.verification import VerificationAuditLog
from .llm_service import LLMService, LLMError

logger = logging.getLogger(__name__)

SCORE_CATEGORIES = ["accuracy", "completeness", "relevance", "consistency", "safety", "format"]

PII_PATTERNS = [
    ("ssn", re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"), "[SSN_REDACTED]"),
    ("card", re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"), "[CARD_REDACTED]"),
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL_REDACTED]"),
    ("phone", re.compile(r"\b\d{3}[\s.-]?\d{3}[\s.-]?\d{4}\b"), "[PHONE_REDACTED]"),
]

MIN_RESPONSE_LENGTH = 50
APPROVAL_SCORE = 70
CONFIDENCE_THRESHOLD = 0.7

VERIFIER_SYSTEM_PROMPT = (
    "You are an expert AI response validator. Evaluate the quality, accuracy and appropriateness "
    "of AI-generated responses objectively. Respond with JSON only."
)


def redact_pii(text: str) -> str:
    """按 SSN、银行卡、邮箱、电话的顺序脱敏"""
    for _, pattern, replacement in PII_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def failed_verdict(reason: str) -> Dict[str, Any]:
    return {
        "verified": False,
        "confidence": 0.0,
        "overall_score": 0,
        "detailed_scores": {category: 0 for category in SCORE_CATEGORIES},
        "issues": [{
            "category": "safety",
            "severity": "critical",
            "description": f"Verification failed: {reason}",
            "suggestion": "Review the response manually",
        }],
        "recommendation": "manual_review",
        "feedback": reason,
    }


def decide_outcome(verdict: Dict[str, Any]) -> str:
    if verdict.get("verified") and verdict.get("overall_score", 0) >= APPROVAL_SCORE:
        return "approved"
    if verdict.get("recommendation") == "manual_review":
        return "manual_review"
    return "rejected"


class LLMVerificationService:
    """LLM输出校验"""

    def __init__(
        self,
        db_session: Optional[Session] = None,
        llm_service: Optional[LLMService] = None,
        max_requests_per_minute: int = 60,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        self.db = db_session
        self.llm_service = llm_service or LLMService(db_session=db_session, provider="openai")
        self.max_requests_per_minute = max_requests_per_minute
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._requests: Dict[str, Deque[float]] = {}

    def _check_rate_limit(self, service: str):
        now = time.monotonic()
        window = self._requests.setdefault(service, deque())
        while window and window[0] <= now - 60:
            window.popleft()
        if len(window) >= self.max_requests_per_minute:
            retry_after = int(window[0] + 60 - now) + 1
            raise RateLimitError(f"{service} 校验请求过于频繁", retry_after=retry_after)
        window.append(now)

    def build_verification_prompt(self, prompt: str, response: str, context: Optional[str] = None) -> str:
        parts = [
            "Evaluate the AI response below against these criteria:",
            "- ACCURACY: Is the information factually correct and based on the provided context?",
            "- COMPLETENESS: Does the response fully address all aspects of the prompt?",
            "- RELEVANCE: Is the response directly relevant to the question asked?",
            "- CONSISTENCY: Is the response internally consistent and logical?",
            "- SAFETY: Does the response avoid harmful, biased, or inappropriate content?",
            "- FORMAT: Is the response properly structured and formatted as requested?",
            "",
            f"ORIGINAL PROMPT:\n{prompt}",
        ]
        if context:
            parts.append(f"CONTEXT:\n{context}")
        parts.extend([
            f"AI RESPONSE:\n{response}",
            "",
            'Return JSON: {"verified": boolean, "confidence": number (0-1), "overall_score": number (0-100), '
            '"detailed_scores": {"accuracy": n, "completeness": n, "relevance": n, "consistency": n, "safety": n, "format": n}, '
            '"issues": [{"category": "accuracy|completeness|relevance|consistency|safety|format|custom", '
            '"severity": "low|medium|high|critical", "description": "", "suggestion": ""}], '
            '"recommendation": "approve|reject|manual_review", "feedback": ""}',
        ])
        return "\n".join(parts)

    async def _run_verifier(self, prompt: str, response: str, context: Optional[str]) -> Dict[str, Any]:
        try:
            data = await self.llm_service.complete_json(
                [{"role": "user", "content": self.build_verification_prompt(prompt, response, context)}],
                temperature=0.1,
                max_tokens=1500,
                system=VERIFIER_SYSTEM_PROMPT,
            )
        except LLMError as e:
            logger.error(f"[LLM校验] 校验模型调用失败: {e}")
            return failed_verdict(str(e))

        scores = data.get("detailed_scores") or {}
        return {
            "verified": bool(data.get("verified")),
            "confidence": float(data.get("confidence") or 0),
            "overall_score": float(data.get("overall_score") or 0),
            "detailed_scores": {c: float(scores.get(c) or 0) for c in SCORE_CATEGORIES},
            "issues": [i for i in data.get("issues") or [] if isinstance(i, dict)],
            "recommendation": data.get("recommendation") or "reject",
            "feedback": data.get("feedback") or "",
        }

    @staticmethod
    def apply_safety_checks(verdict: Dict[str, Any], response: str):
        for name, pattern, _ in PII_PATTERNS:
            if pattern.search(response):
                verdict["issues"].append({
                    "category": "safety",
                    "severity": "high",
                    "description": f"Potential PII detected in response ({name})",
                    "suggestion": "Remove or redact sensitive information",
                })
                verdict["detailed_scores"]["safety"] = min(verdict["detailed_scores"].get("safety", 0), 30)

        if len(response.strip()) < MIN_RESPONSE_LENGTH:
            verdict["issues"].append({
                "category": "completeness",
                "severity": "medium",
                "description": "Response appears too short to be complete",
                "suggestion": "Provide more detailed analysis",
            })

    async def verify_response(
        self,
        service: str,
        prompt: str,
        response: str,
        context: Optional[str] = None,
        attempt: int = 1
    ) -> Dict[str, Any]:
        """校验一次LLM输出，返回 verdict + outcome + request_id"""
        self._check_rate_limit(service)
        start = time.time()

        verdict = await self._run_verifier(prompt, response, context)
        self.apply_safety_checks(verdict, response)
        outcome = decide_outcome(verdict)
        processing_ms = int((time.time() - start) * 1000)
        request_id = f"verify_{uuid.uuid4().hex[:16]}"

        self._store_audit_log(request_id, service, prompt, response, verdict, outcome, processing_ms, attempt)
        logger.info(
            f"[LLM校验] {service}: 结果 {outcome}, 得分 {verdict['overall_score']}, "
            f"置信度 {verdict['confidence']}, 问题 {len(verdict['issues'])} 个"
        )
        return {**verdict, "outcome": outcome, "request_id": request_id, "processing_time_ms": processing_ms}

    def _store_audit_log(
        self,
        request_id: str,
        service: str,
        prompt: str,
        response: str,
        verdict: Dict[str, Any],
        outcome: str,
        processing_ms: int,
        attempt: int
    ):
        if self.db is None:
            return
        log = VerificationAuditLog(
            request_id=request_id,
            service=service,
            prompt=redact_pii(prompt),
            response=redact_pii(response),
            verified=verdict["verified"],
            overall_score=verdict["overall_score"],
            confidence=verdict["confidence"],
            outcome=outcome,
            issues=verdict["issues"],
            processing_time_ms=processing_ms,
            attempt=attempt,
        )
        self.db.add(log)
        self.db.commit()

    @staticmethod
    def passes(result: Dict[str, Any]) -> bool:
        return (
            bool(result.get("verified"))
            and result.get("overall_score", 0) >= APPROVAL_SCORE
            and result.get("confidence", 0) >= CONFIDENCE_THRESHOLD
        )

    @staticmethod
    def build_retry_prompt(original_prompt: str, result: Dict[str, Any]) -> str:
        serious = [i for i in result.get("issues") or [] if i.get("severity") in ("critical", "high")]
        lines = [original_prompt, "", "The previous response had these issues:"]
        for issue in serious:
            lines.append(f"- [{issue.get('category')}] {issue.get('description')}: {issue.get('suggestion', '')}")
        if result.get("feedback"):
            lines.append(f"Feedback: {result['feedback']}")
        lines.append("Please provide a corrected response that addresses all the issues above while maintaining accuracy and completeness.")
        return "\n".join(lines)

    async def verify_with_retry(
        self,
        service: str,
        prompt: str,
        response: str,
        regenerate: Optional[Callable[[str], Awaitable[str]]] = None,
        context: Optional[str] = None
    ) -> Dict[str, Any]:
        """校验不通过时带着问题反馈重新生成，最多 max_retries 次"""
        attempts: List[Dict[str, Any]] = []
        current = response
        result: Dict[str, Any] = {}

        for attempt in range(1, self.max_retries + 1):
            result = await self.verify_response(service, prompt, current, context, attempt)
            attempts.append({"attempt": attempt, "score": result["overall_score"], "outcome": result["outcome"]})
            if self.passes(result):
                break
            if attempt >= self.max_retries:
                break

            retry_prompt = self.build_retry_prompt(prompt, result)
            await asyncio.sleep(self.retry_delay * attempt)
            if regenerate is not None:
                current = await regenerate(retry_prompt)

        return {**result, "response": current, "attempts": attempts, "passed": self.passes(result)}

    def get_stats(self) -> Dict[str, Any]:
        """审计日志统计"""
        if self.db is None:
            return {"total_verifications": 0, "success_rate": 0, "average_score": 0,
                    "average_processing_time": 0, "issue_breakdown": {}}

        total = self.db.query(func.count(VerificationAuditLog.id)).scalar() or 0
        if total == 0:
            return {"total_verifications": 0, "success_rate": 0, "average_score": 0,
                    "average_processing_time": 0, "issue_breakdown": {}}

        approved = self.db.query(func.count(VerificationAuditLog.id)).filter(
            VerificationAuditLog.outcome == "approved"
        ).scalar() or 0
        avg_score = self.db.query(func.avg(VerificationAuditLog.overall_score)).scalar() or 0
        avg_time = self.db.query(func.avg(VerificationAuditLog.processing_time_ms)).scalar() or 0

        breakdown: Dict[str, int] = {}
        for (issues,) in self.db.query(VerificationAuditLog.issues).all():
            for issue in issues or []:
                category = issue.get("category", "custom")
                breakdown[category] = breakdown.get(category, 0) + 1

        return {
            "total_verifications": total,
            "success_rate": round(approved / total * 100, 2),
            "average_score": round(float(avg_score), 2),
            "average_processing_time": round(float(avg_time), 2),
            "issue_breakdown": breakdown,
        }
