"""
任务增强功能生成

每个功能接收结构化CV，返回写入 generated_output 的结果；
视频介绍只提交远端生成任务，状态通过媒体接口查询。
"""
import hashlib
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional
from sqlalchemy.orm import Session
from ..models.cv_job import CVJob, FeatureType
from .cv_insights import (
    analyze_achievements,
    analyze_language_proficiency,
    build_certification_badges,
    build_skills_visualization,
)
from .cv_parser import flatten_cv_text
from .llm_service import LLMService
from .video_providers import SCRIPT_DURATIONS, VideoGenerationService

logger = logging.getLogger(__name__)

PERSONALITY_DIMENSIONS = {
    "leadership": (["led", "managed", "directed", "supervised", "coordinated", "organized", "mentored"], 1.2),
    "communication": (["presented", "wrote", "documented", "collaborated", "negotiated", "liaised"], 1.0),
    "innovation": (["created", "designed", "developed", "pioneered", "innovated", "invented", "initiated"], 1.1),
    "teamwork": (["collaborated", "partnered", "coordinated", "supported", "assisted", "contributed"], 1.0),
    "problem_solving": (["solved", "resolved", "analyzed", "troubleshot", "debugged", "optimized", "improved"], 1.1),
    "attention_to_detail": (["reviewed", "audited", "tested", "validated", "verified", "documented", "quality"], 0.9),
    "adaptability": (["adapted", "learned", "transitioned", "pivoted", "adjusted", "evolved"], 0.9),
    "strategic_thinking": (["strategized", "planned", "forecasted", "envisioned", "architected", "roadmap"], 1.2),
}

PUBLIC_PROFILE_BASE_URL = "https://cvplus.app/p"


def profile_slug(job: CVJob) -> str:
    name = ((job.parsed_cv or {}).get("personal_info") or {}).get("name") or "profile"
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "profile"
    suffix = hashlib.sha1(job.id.encode("utf-8")).hexdigest()[:6]
    return f"{base}-{suffix}"


def build_timeline(parsed_cv: Dict[str, Any]) -> Dict[str, Any]:
    events = []
    for exp in parsed_cv.get("experience") or []:
        events.append({
            "id": f"work-{len(events)}",
            "type": "work",
            "title": exp.get("position", ""),
            "organization": exp.get("company", ""),
            "start_date": exp.get("start_date", ""),
            "end_date": exp.get("end_date", ""),
            "is_current": exp.get("is_current", False),
            "achievements": exp.get("achievements") or [],
        })
    for edu in parsed_cv.get("education") or []:
        events.append({
            "id": f"edu-{len(events)}",
            "type": "education",
            "title": f"{edu.get('degree', '')} {edu.get('field', '')}".strip(),
            "organization": edu.get("institution", ""),
            "start_date": edu.get("start_date", ""),
            "end_date": edu.get("end_date", ""),
        })
    for cert in parsed_cv.get("certifications") or []:
        if isinstance(cert, dict):
            events.append({
                "id": f"cert-{len(events)}",
                "type": "certification",
                "title": cert.get("name", ""),
                "organization": cert.get("issuer", ""),
                "start_date": cert.get("date", ""),
            })

    # 无日期的事件排在最后
    events.sort(key=lambda e: (not e.get("start_date"), e.get("start_date") or ""))
    work = [e for e in events if e["type"] == "work"]
    return {
        "events": events,
        "summary": {
            "total_positions": len(work),
            "total_education": sum(1 for e in events if e["type"] == "education"),
            "total_certifications": sum(1 for e in events if e["type"] == "certification"),
            "companies": sorted({e["organization"] for e in work if e["organization"]}),
        },
    }


def analyze_personality(parsed_cv: Dict[str, Any]) -> Dict[str, Any]:
    """按动作词出现次数估算工作风格维度，分数0-100"""
    text = flatten_cv_text(parsed_cv).lower()
    raw = {}
    for dimension, (indicators, weight) in PERSONALITY_DIMENSIONS.items():
        hits = sum(len(re.findall(rf"\b{re.escape(word)}\b", text)) for word in indicators)
        raw[dimension] = hits * weight

    peak = max(raw.values()) if raw else 0
    scores = {d: (round(v / peak * 100) if peak else 0) for d, v in raw.items()}
    top = sorted(scores, key=scores.get, reverse=True)[:3]
    return {"scores": scores, "top_traits": [t for t in top if scores[t] > 0]}


class FeatureGenerator:
    """按功能类型分派生成逻辑"""

    def __init__(self, db_session: Session, llm_service: Optional[LLMService] = None):
        self.db = db_session
        self.llm_service = llm_service or LLMService(db_session=db_session)
        self._handlers: Dict[str, Callable[[CVJob], Awaitable[Dict[str, Any]]]] = {
            FeatureType.ATS_OPTIMIZATION.value: self._ats_optimization,
            FeatureType.PERSONALITY_INSIGHTS.value: self._personality_insights,
            FeatureType.INTERACTIVE_TIMELINE.value: self._timeline,
            FeatureType.PORTFOLIO_GALLERY.value: self._portfolio,
            FeatureType.PUBLIC_PROFILE.value: self._public_profile,
            FeatureType.QR_CODE.value: self._qr_code,
            FeatureType.AI_PODCAST.value: self._podcast,
            FeatureType.VIDEO_INTRODUCTION.value: self._video_introduction,
            FeatureType.SKILLS_VISUALIZATION.value: self._skills_visualization,
            FeatureType.CERTIFICATION_BADGES.value: self._certification_badges,
            FeatureType.LANGUAGE_PROFICIENCY.value: self._language_proficiency,
            FeatureType.ACHIEVEMENTS_ANALYSIS.value: self._achievements,
        }

    async def generate(self, feature: str, job: CVJob) -> Dict[str, Any]:
        handler = self._handlers.get(feature)
        if handler is None:
            raise ValueError(f"未知的功能: {feature}")
        return await handler(job)

    async def _ats_optimization(self, job: CVJob) -> Dict[str, Any]:
        ats = job.ats_result or {}
        return {
            "score": ats.get("score"),
            "passes": ats.get("passes"),
            "optimized_content": ats.get("optimized_content") or {},
            "keywords": ats.get("keywords") or {},
        }

    async def _personality_insights(self, job: CVJob) -> Dict[str, Any]:
        return analyze_personality(job.parsed_cv or {})

    async def _timeline(self, job: CVJob) -> Dict[str, Any]:
        return build_timeline(job.parsed_cv or {})

    async def _portfolio(self, job: CVJob) -> Dict[str, Any]:
        items = []
        for project in (job.parsed_cv or {}).get("projects") or []:
            items.append({
                "title": project.get("name", ""),
                "description": project.get("description", ""),
                "technologies": project.get("technologies") or [],
                "url": project.get("url") or None,
            })
        return {"items": items, "total": len(items)}

    async def _public_profile(self, job: CVJob) -> Dict[str, Any]:
        cv = job.parsed_cv or {}
        personal = cv.get("personal_info") or {}
        slug = profile_slug(job)
        return {
            "slug": slug,
            "url": f"{PUBLIC_PROFILE_BASE_URL}/{slug}",
            "name": personal.get("name", ""),
            "title": personal.get("title", ""),
            "summary": cv.get("summary", ""),
            # 公开页不展示联系方式
            "sections": [s for s in ("experience", "education", "skills", "projects") if cv.get(s)],
        }

    async def _qr_code(self, job: CVJob) -> Dict[str, Any]:
        return {"target_url": f"{PUBLIC_PROFILE_BASE_URL}/{profile_slug(job)}", "format": "url"}

    async def _podcast(self, job: CVJob) -> Dict[str, Any]:
        cv = job.parsed_cv or {}
        name = (cv.get("personal_info") or {}).get("name") or "the candidate"
        prompt = (
            f"Write a short two-host podcast conversation (Host A and Host B, about 300 words) discussing "
            f"the career of {name}. Use only these facts:\n\n{flatten_cv_text(cv)[:3000]}"
        )
        script = await self.llm_service.chat_completion(
            [{"role": "user", "content": prompt}], temperature=0.8, max_tokens=1200
        )
        return {"script": script.strip(), "word_count": len(script.split())}

    async def _video_introduction(self, job: CVJob) -> Dict[str, Any]:
        options = dict((job.customizations or {}).get("video") or {})
        duration = options.pop("duration", "medium")
        style = options.pop("style", "professional")
        service = VideoGenerationService(db_session=self.db, llm_service=self.llm_service)
        script = await service.generate_script(job.parsed_cv or {}, duration, style)
        options["duration_seconds"] = SCRIPT_DURATIONS[duration]["seconds"]
        result = await service.generate_video(script, options)
        return {**result, "script": script, "duration": duration, "style": style}

    async def _skills_visualization(self, job: CVJob) -> Dict[str, Any]:
        return build_skills_visualization(job.parsed_cv or {})

    async def _certification_badges(self, job: CVJob) -> Dict[str, Any]:
        return build_certification_badges(job.parsed_cv or {})

    async def _language_proficiency(self, job: CVJob) -> Dict[str, Any]:
        return analyze_language_proficiency(job.parsed_cv or {})

    async def _achievements(self, job: CVJob) -> Dict[str, Any]:
        return analyze_achievements(job.parsed_cv or {})
