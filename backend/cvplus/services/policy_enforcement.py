"""
上传策略检查

用量限制、唯一CV数量、跨账号重复上传、CV姓名与账号姓名一致性、同IP多账号共享。
"""
import logging
import re
from datetime import datetime, timedelta
from difflib import SequenceMatcher
from typing import Dict, Any, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from ..core.constants import ACCOUNT_SHARING_USER_THRESHOLD, ACCOUNT_SHARING_WINDOW_HOURS
from ..models.subscription import UploadRecord, PolicyViolation
from ..models.user import User
from .cv_parser import compute_content_hash
from .subscription_service import get_or_create_subscription, plan_limits

logger = logging.getLogger(__name__)

NAME_LINE_PATTERN = re.compile(r"^[A-Za-zÀ-ɏ'.-]+(?:\s+[A-Za-zÀ-ɏ'.-]+){1,3}$")
CJK_NAME_PATTERN = re.compile(r"^[一-鿿]{2,4}$")
HEADER_WORDS = {"curriculum", "vitae", "resume", "cv", "profile", "summary", "contact"}


def extract_names(cv_text: str, max_lines: int = 5) -> List[str]:
    """从CV开头几行中提取可能的姓名"""
    names = []
    lines = [line.strip() for line in cv_text.splitlines() if line.strip()][:max_lines]
    for line in lines:
        if any(ch.isdigit() for ch in line) or "@" in line:
            continue
        if line.lower().split()[0] in HEADER_WORDS:
            continue
        if NAME_LINE_PATTERN.match(line) or CJK_NAME_PATTERN.match(line):
            names.append(line)
    return names


def _tokens(name: str) -> set:
    return {t for t in re.split(r"[\s.'-]+", name.lower()) if t}


def compare_names(extracted: str, account_name: str) -> Dict[str, Any]:
    """
    返回 {"match_type": exact|fuzzy|mismatch, "confidence": 0-1}
    token重合率≥0.5 或字符相似度≥0.8 视为相近
    """
    a, b = extracted.strip().lower(), account_name.strip().lower()
    if not a or not b:
        return {"match_type": "mismatch", "confidence": 0.0}
    if a == b or _tokens(a) == _tokens(b):
        return {"match_type": "exact", "confidence": 1.0}

    tokens_a, tokens_b = _tokens(a), _tokens(b)
    overlap = len(tokens_a & tokens_b) / max(len(tokens_a | tokens_b), 1)
    similarity = SequenceMatcher(None, a, b).ratio()
    confidence = round(max(overlap, similarity), 4)
    if overlap >= 0.5 or similarity >= 0.8:
        return {"match_type": "fuzzy", "confidence": confidence}
    return {"match_type": "mismatch", "confidence": confidence}


def _violation(violation_type: str, severity: str, description: str, **evidence: Any) -> Dict[str, Any]:
    return {"type": violation_type, "severity": severity, "description": description, "evidence": evidence}


class PolicyEnforcementService:
    """CV上传策略"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def usage(self, user: User) -> Dict[str, Any]:
        subscription = get_or_create_subscription(self.db, user)
        limits = plan_limits(subscription)
        month_start = datetime.utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        uploads = self.db.query(func.count(UploadRecord.id)).filter(
            UploadRecord.user_id == user.id,
            UploadRecord.created_at >= month_start,
        ).scalar() or 0
        unique_hashes = [h for (h,) in self.db.query(UploadRecord.content_hash).filter(
            UploadRecord.user_id == user.id
        ).distinct().all()]

        monthly_limit = limits["monthly_uploads"]
        remaining = -1 if monthly_limit < 0 else max(0, monthly_limit - uploads)
        return {
            "monthly_uploads": uploads,
            "monthly_limit": monthly_limit,
            "remaining_uploads": remaining,
            "unique_cvs": len(unique_hashes),
            "unique_cv_limit": limits["unique_cvs"],
            "unique_hashes": unique_hashes,
        }

    def check_upload_policy(
        self,
        user: User,
        cv_text: str,
        file_name: str,
        file_size: int,
        file_type: str,
        ip_address: Optional[str] = None
    ) -> Dict[str, Any]:
        """检查上传是否允许，允许时记录上传"""
        content_hash = compute_content_hash(cv_text)
        violations: List[Dict[str, Any]] = []
        warnings: List[Dict[str, Any]] = []
        actions: List[Dict[str, Any]] = []

        usage = self.usage(user)
        if usage["remaining_uploads"] == 0:
            violations.append(_violation(
                "usage_limit_exceeded", "high",
                f"本月上传次数已用完（{usage['monthly_uploads']}/{usage['monthly_limit']}）",
                monthly_uploads=usage["monthly_uploads"],
            ))
            actions.append({"type": "block_upload", "reason": "usage_limit_exceeded"})
        elif usage["remaining_uploads"] == 1:
            warnings.append({"type": "approaching_limit", "message": "本月仅剩1次上传机会"})

        if content_hash not in usage["unique_hashes"] and usage["unique_cvs"] >= usage["unique_cv_limit"]:
            violations.append(_violation(
                "unique_cv_limit_exceeded", "high",
                f"当前计划最多允许 {usage['unique_cv_limit']} 份不同的CV",
                unique_cvs=usage["unique_cvs"],
            ))
            actions.append({"type": "block_upload", "reason": "unique_cv_limit_exceeded"})

        other_owner = self.db.query(UploadRecord.user_id).filter(
            UploadRecord.content_hash == content_hash,
            UploadRecord.user_id != user.id,
        ).first()
        if other_owner is not None:
            violations.append(_violation(
                "exact_duplicate", "critical", "该CV已被其他账号上传",
                content_hash=content_hash,
            ))
            actions.append({"type": "require_verification", "reason": "exact_duplicate"})

        names = extract_names(cv_text)
        name_check: Dict[str, Any] = {"extracted_names": names}
        if names and user.full_name:
            best = max((compare_names(n, user.full_name) for n in names), key=lambda r: r["confidence"])
            name_check.update(best)
            if best["match_type"] == "mismatch":
                violations.append(_violation(
                    "name_mismatch", "critical" if best["confidence"] < 0.3 else "high",
                    "CV中的姓名与账号姓名不一致",
                    extracted_name=names[0], account_name=user.full_name, confidence=best["confidence"],
                ))
                actions.append({"type": "require_verification", "reason": "name_mismatch"})
            elif best["match_type"] == "fuzzy":
                warnings.append({"type": "name_similarity", "message": "CV姓名与账号姓名相近但不完全一致"})

        if ip_address:
            since = datetime.utcnow() - timedelta(hours=ACCOUNT_SHARING_WINDOW_HOURS)
            user_ids = {uid for (uid,) in self.db.query(UploadRecord.user_id).filter(
                UploadRecord.ip_address == ip_address,
                UploadRecord.created_at >= since,
            ).distinct().all()}
            user_ids.add(user.id)
            if len(user_ids) > ACCOUNT_SHARING_USER_THRESHOLD:
                violations.append(_violation(
                    "account_sharing", "medium",
                    f"24小时内同一IP有 {len(user_ids)} 个账号上传",
                    ip_address=ip_address, accounts=len(user_ids),
                ))
                actions.append({"type": "flag_account", "reason": "account_sharing"})

        blocking = {"block_upload", "require_verification"}
        allowed = not any(a["type"] in blocking for a in actions)

        for violation in violations:
            self.db.add(PolicyViolation(
                user_id=user.id,
                violation_type=violation["type"],
                severity=violation["severity"],
                description=violation["description"],
                evidence=violation["evidence"],
            ))
        if allowed:
            self.db.add(UploadRecord(
                user_id=user.id,
                content_hash=content_hash,
                file_name=file_name,
                file_size=file_size,
                file_type=file_type,
                ip_address=ip_address,
            ))
        self.db.commit()

        if violations:
            logger.warning(f"[上传策略] 用户 {user.id}: {[v['type'] for v in violations]}, 允许={allowed}")
        return {
            "allowed": allowed,
            "content_hash": content_hash,
            "violations": violations,
            "warnings": warnings,
            "actions": actions,
            "name_verification": name_check,
            "usage": {k: v for k, v in usage.items() if k != "unique_hashes"},
        }
