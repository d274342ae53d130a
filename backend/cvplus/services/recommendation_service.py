"""
CV改进建议服务

汇总ATS分析、优先级规则和岗位识别结果生成可执行的改进建议，
相同请求并发时共享同一个生成任务，结果写入Redis缓存；
用户选择建议后生成改进后的CV及对比报告。
"""
import asyncio
import copy
import logging
import re
import time
from datetime import datetime
from typing import Dict, Any, List, Optional
from ..core.constants import OPTIMAL_KEYWORD_DENSITY
from ..core.errors import ValidationError
from ..core.monitoring import record_cache_access
from .ats_optimization import ACTION_VERBS, suggest_action_verb
from .cache_service import cache_service
from .cv_parser import all_skills, flatten_cv_text

logger = logging.getLogger(__name__)

PRIORITY_LEVELS = {"critical": 1, "high": 2, "medium": 3, "low": 4, "info": 5}
IMPACT_ORDER = {"high": 0, "medium": 1, "low": 2}
SCORE_IMPROVEMENT = {"high": 8, "medium": 5, "low": 2}

# 缺失时建议新增的章节及其空结构
SECTION_SCAFFOLDS: Dict[str, Any] = {
    "experience": [],
    "education": [],
    "skills": {"technical": [], "soft": [], "languages": [], "tools": []},
    "achievements": [],
    "certifications": [],
    "projects": [],
}
ESSENTIAL_SECTIONS = ["experience", "education", "skills"]

SEVERITY_PRIORITY = {"error": "high", "warning": "medium", "info": "low"}


def build_request_key(
    job_id: str,
    user_id: int,
    target_role: Optional[str] = None,
    industry_keywords: Optional[List[str]] = None,
    force_regenerate: bool = False
) -> str:
    """请求去重键：任务、用户、目标岗位、关键词和是否强制刷新"""
    keywords = ",".join(sorted({k.strip().lower() for k in industry_keywords or [] if k.strip()}))
    return f"{job_id}:{user_id}:{(target_role or '').strip().lower()}:{keywords}:{int(force_regenerate)}"


def sort_recommendations(recommendations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(recommendations, key=lambda r: (r["priority"], IMPACT_ORDER.get(r["impact"], 3)))


class RecommendationBuilder:
    """按章节生成稳定的建议ID：rec_<section>_<n>"""

    def __init__(self):
        self.items: List[Dict[str, Any]] = []
        self._counters: Dict[str, int] = {}

    def add(
        self,
        rec_type: str,
        category: str,
        section: str,
        title: str,
        description: str,
        impact: str = "medium",
        priority: str = "medium",
        current_content: Optional[str] = None,
        suggested_content: Optional[str] = None,
        **extra: Any
    ) -> Dict[str, Any]:
        self._counters[section] = self._counters.get(section, 0) + 1
        rec = {
            "id": f"rec_{section}_{self._counters[section]}",
            "type": rec_type,
            "category": category,
            "section": section,
            "title": title,
            "description": description,
            "current_content": current_content,
            "suggested_content": suggested_content,
            "impact": impact,
            "priority": PRIORITY_LEVELS[priority],
            "estimated_score_improvement": SCORE_IMPROVEMENT.get(impact, 2),
        }
        rec.update(extra)
        self.items.append(rec)
        return rec

    def find(self, section: str, rec_type: str, with_keywords: bool = False) -> Optional[Dict[str, Any]]:
        for rec in self.items:
            if with_keywords and "keywords" not in rec:
                continue
            if rec["section"] == section and rec["type"] == rec_type:
                return rec
        return None


class RecommendationService:
    """CV改进建议生成与应用"""

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Task] = {}

    def generate_recommendations(
        self,
        parsed_cv: Dict[str, Any],
        ats_result: Optional[Dict[str, Any]] = None,
        role_analysis: Optional[Dict[str, Any]] = None,
        target_role: Optional[str] = None,
        industry_keywords: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """生成按优先级和影响排序的建议列表"""
        builder = RecommendationBuilder()
        ats_result = ats_result or {}

        self._add_rule_recommendations(builder, parsed_cv, ats_result, role_analysis)
        self._add_ats_recommendations(builder, parsed_cv, ats_result)
        self._add_role_recommendations(builder, role_analysis)
        self._add_industry_keywords(builder, parsed_cv, industry_keywords)

        if not builder.items:
            self._add_fallback_recommendations(builder, parsed_cv)

        recommendations = sort_recommendations(builder.items)
        logger.info(
            f"[改进建议] 生成 {len(recommendations)} 条建议"
            + (f", 目标岗位: {target_role}" if target_role else "")
        )
        return recommendations

    def _add_rule_recommendations(
        self,
        builder: RecommendationBuilder,
        cv: Dict[str, Any],
        ats_result: Dict[str, Any],
        role_analysis: Optional[Dict[str, Any]]
    ):
        for section in ESSENTIAL_SECTIONS:
            value = cv.get(section)
            empty = not value or (isinstance(value, dict) and not any(value.values()))
            if empty:
                builder.add(
                    "section_addition", "structure", section,
                    f"Add a {section} section",
                    f"ATS systems expect a {section} section; without it your CV may be filtered out",
                    impact="high", priority="critical",
                )

        if not (cv.get("summary") or "").strip():
            optimized = (ats_result.get("optimized_content") or {}).get("summary")
            template = None
            if role_analysis and role_analysis.get("primary_role"):
                template = role_analysis["primary_role"].get("summary_template")
            builder.add(
                "content", "professional_summary", "summary",
                "Add a professional summary",
                "A compelling 2-3 sentence summary at the top of your CV highlights your key strengths",
                impact="high", priority="high",
                suggested_content=optimized or template,
            )

        keywords = ats_result.get("keywords") or {}
        tracked = list(keywords.get("found") or []) + list(keywords.get("recommended") or [])
        if not tracked:
            return

        density = keywords.get("density") or 0.0
        if density < OPTIMAL_KEYWORD_DENSITY * 0.7:
            text = flatten_cv_text(cv).lower()
            absent = [k for k in (keywords.get("missing") or []) + (keywords.get("recommended") or []) if k.lower() not in text]
            builder.add(
                "keyword_optimization", "keywords", "skills",
                "Increase keyword density",
                f"Keyword density is {density * 100:.1f}% against an optimal {OPTIMAL_KEYWORD_DENSITY * 100:.1f}%",
                impact="high", priority="high",
                keywords=absent[:10],
            )
        elif density > OPTIMAL_KEYWORD_DENSITY * 1.3:
            builder.add(
                "keyword_optimization", "keywords", "skills",
                "Reduce keyword repetition",
                f"Keyword density is {density * 100:.1f}%, which may look like keyword stuffing",
                impact="medium", priority="medium",
            )

        text = flatten_cv_text(cv).lower()
        single_use = [k for k in keywords.get("found") or [] if text.count(k.lower()) == 1]
        if len(single_use) > 3:
            builder.add(
                "keyword_optimization", "keywords", "experience",
                "Reinforce keywords that appear only once",
                f"{len(single_use)} important keywords appear only once: {', '.join(single_use[:5])}",
                impact="medium", priority="medium",
            )

    def _add_ats_recommendations(self, builder: RecommendationBuilder, cv: Dict[str, Any], ats_result: Dict[str, Any]):
        for suggestion in ats_result.get("suggestions") or []:
            section = suggestion.get("section") or "general"
            impact = suggestion.get("impact") or "medium"
            priority = "high" if impact == "high" else "medium"

            if section == "skills":
                existing = builder.find("skills", "keyword_optimization", with_keywords=True)
                missing = [k.strip() for k in suggestion.get("suggested", "").split(",")
                           if k.strip() and k.strip().lower() not in all_skills(cv)]
                if existing is not None:
                    existing.setdefault("keywords", [])
                    existing["keywords"] += [k for k in missing if k not in existing["keywords"]]
                    continue
                builder.add(
                    "keyword_optimization", "skills", "skills",
                    "Add missing skills", suggestion.get("reason", ""),
                    impact=impact, priority=priority,
                    current_content=suggestion.get("original"),
                    keywords=missing,
                )
            elif section == "experience":
                index, is_achievement = self._locate_experience(cv, suggestion.get("original") or "")
                if is_achievement:
                    builder.add(
                        "content", "achievements", "experience",
                        "Start with a strong action verb", suggestion.get("reason", ""),
                        impact=impact, priority=priority,
                        current_content=suggestion.get("original"),
                        suggested_content=suggestion.get("suggested"),
                        experience_index=index,
                    )
                else:
                    builder.add(
                        "content", "achievements", "experience",
                        "Add achievement bullet points", suggestion.get("reason", ""),
                        impact=impact, priority=priority,
                        current_content=None,
                        suggested_content=self._bullet_from_description(suggestion.get("original") or ""),
                        experience_index=index,
                    )
            elif section == "summary":
                builder.add(
                    "content", "professional_summary", "summary",
                    "Improve your professional summary", suggestion.get("reason", ""),
                    impact=impact, priority=priority,
                    current_content=suggestion.get("original"),
                    suggested_content=suggestion.get("suggested"),
                )

        for issue in ats_result.get("issues") or []:
            # 结构性缺失已由规则覆盖
            if issue.get("type") == "structure":
                continue
            section = issue.get("section") or "general"
            if section == "summary" and builder.find("summary", "content"):
                continue
            if issue.get("type") == "format":
                rec_type = "formatting"
            elif issue.get("type") == "keyword":
                rec_type = "keyword_optimization"
            else:
                rec_type = "content"
            severity = issue.get("severity", "info")
            builder.add(
                rec_type, issue.get("type", "content"), section,
                issue.get("message", ""), issue.get("fix", ""),
                impact="high" if severity == "error" else "medium" if severity == "warning" else "low",
                priority=SEVERITY_PRIORITY.get(severity, "low"),
            )

    @staticmethod
    def _locate_experience(cv: Dict[str, Any], original: str):
        """返回 (经历下标, 是否为已有成就条目)"""
        for index, exp in enumerate(cv.get("experience") or []):
            if original and original in (exp.get("achievements") or []):
                return index, True
        for index, exp in enumerate(cv.get("experience") or []):
            if not exp.get("achievements") and (exp.get("description") or "") == original:
                return index, False
        return 0, False

    @staticmethod
    def _bullet_from_description(description: str) -> Optional[str]:
        sentence = re.split(r"(?<=[.!?])\s+", description.strip())[0] if description.strip() else ""
        if not sentence:
            return None
        first = sentence.split()[0].lower()
        if first in ACTION_VERBS:
            return sentence
        return f"{suggest_action_verb(sentence)} {sentence[0].lower()}{sentence[1:]}"

    def _add_role_recommendations(self, builder: RecommendationBuilder, role_analysis: Optional[Dict[str, Any]]):
        if not role_analysis or role_analysis.get("fallback_used"):
            return
        primary = role_analysis.get("primary_role") or {}
        missing = (primary.get("gap_analysis") or {}).get("missing_required_skills") or []
        if not missing:
            return
        existing = builder.find("skills", "keyword_optimization", with_keywords=True)
        if existing is not None:
            existing.setdefault("keywords", [])
            existing["keywords"] += [k for k in missing if k not in existing["keywords"]]
            return
        builder.add(
            "keyword_optimization", "role_alignment", "skills",
            f"Close the skill gap for {primary.get('role_name', 'your target role')}",
            f"Core skills not visible in your CV: {', '.join(missing[:5])}",
            impact="high", priority="high",
            keywords=missing[:5],
        )

    def _add_industry_keywords(
        self,
        builder: RecommendationBuilder,
        cv: Dict[str, Any],
        industry_keywords: Optional[List[str]]
    ):
        if not industry_keywords:
            return
        text = flatten_cv_text(cv).lower()
        missing = [k for k in industry_keywords if k.strip() and k.lower() not in text]
        if not missing:
            return
        existing = builder.find("skills", "keyword_optimization", with_keywords=True)
        if existing is not None:
            existing.setdefault("keywords", [])
            existing["keywords"] += [k for k in missing if k not in existing["keywords"]]
            return
        builder.add(
            "keyword_optimization", "industry", "skills",
            "Add industry keywords",
            f"Industry terms missing from your CV: {', '.join(missing)}",
            impact="medium", priority="medium",
            keywords=missing,
        )

    def _add_fallback_recommendations(self, builder: RecommendationBuilder, cv: Dict[str, Any]):
        """没有其他来源时的通用建议"""
        if not cv.get("achievements"):
            builder.add(
                "section_addition", "achievements", "achievements",
                "Add a key achievements section",
                "A dedicated achievements section highlights your most impressive accomplishments",
                impact="medium", priority="medium",
            )
        if not cv.get("projects"):
            builder.add(
                "section_addition", "projects", "projects",
                "Showcase key projects",
                "Projects demonstrate practical application of your skills",
                impact="low", priority="low",
            )
        builder.add(
            "content", "professional_summary", "summary",
            "Quantify your impact",
            "Add measurable results such as \"Increased efficiency by 30%\" or \"Led a team of 10+\"",
            impact="medium", priority="low",
        )

    async def get_recommendations(
        self,
        job_id: str,
        user_id: int,
        parsed_cv: Dict[str, Any],
        ats_result: Optional[Dict[str, Any]] = None,
        role_analysis: Optional[Dict[str, Any]] = None,
        target_role: Optional[str] = None,
        industry_keywords: Optional[List[str]] = None,
        force_regenerate: bool = False
    ) -> Dict[str, Any]:
        """
        获取建议（带请求去重和缓存）

        返回: {"recommendations", "summary", "generated_at", "cached", "cache_age"}
        """
        request_key = build_request_key(job_id, user_id, target_role, industry_keywords, force_regenerate)
        task = self._in_flight.get(request_key)
        if task is not None:
            logger.info(f"[改进建议] 复用进行中的请求: {request_key}")
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._load_or_generate(
            job_id, user_id, parsed_cv, ats_result, role_analysis,
            target_role, industry_keywords, force_regenerate
        ))
        self._in_flight[request_key] = task
        try:
            return await asyncio.shield(task)
        finally:
            self._in_flight.pop(request_key, None)

    async def _load_or_generate(
        self,
        job_id: str,
        user_id: int,
        parsed_cv: Dict[str, Any],
        ats_result: Optional[Dict[str, Any]],
        role_analysis: Optional[Dict[str, Any]],
        target_role: Optional[str],
        industry_keywords: Optional[List[str]],
        force_regenerate: bool
    ) -> Dict[str, Any]:
        # 强制刷新与普通请求共用缓存条目，刷新结果覆盖旧缓存
        cache_key = build_request_key(job_id, user_id, target_role, industry_keywords, False)

        if not force_regenerate:
            cached = await cache_service.get_recommendations(cache_key)
            if cached:
                record_cache_access(True)
                payload = dict(cached["payload"])
                payload["cached"] = True
                payload["cache_age"] = round(time.time() - cached.get("cached_at", time.time()), 1)
                return payload
            record_cache_access(False)

        recommendations = self.generate_recommendations(
            parsed_cv, ats_result, role_analysis, target_role, industry_keywords
        )
        payload = {
            "recommendations": recommendations,
            "summary": self.summarize(recommendations),
            "generated_at": datetime.utcnow().isoformat(),
        }
        await cache_service.set_recommendations(cache_key, payload)
        return {**payload, "cached": False, "cache_age": 0}

    @staticmethod
    def summarize(recommendations: List[Dict[str, Any]]) -> Dict[str, Any]:
        by_impact: Dict[str, int] = {}
        for rec in recommendations:
            by_impact[rec["impact"]] = by_impact.get(rec["impact"], 0) + 1
        return {
            "total": len(recommendations),
            "by_impact": by_impact,
            "estimated_score_improvement": sum(r["estimated_score_improvement"] for r in recommendations),
        }

    def apply_recommendations(
        self,
        parsed_cv: Dict[str, Any],
        recommendations: List[Dict[str, Any]],
        selected_ids: List[str]
    ) -> Dict[str, Any]:
        """
        应用用户选择的建议

        返回: improved_cv, applied, skipped, transformation_summary, comparison_report
        """
        wanted = set(selected_ids or [])
        selected = [r for r in recommendations or [] if r.get("id") in wanted]
        if not selected:
            raise ValidationError("没有找到有效的已选建议", details={"selected_ids": list(wanted)})

        improved = copy.deepcopy(parsed_cv)
        applied: List[Dict[str, Any]] = []
        skipped: List[Dict[str, Any]] = []

        for rec in selected:
            reason = self._apply_one(improved, rec)
            if reason is None:
                applied.append({
                    "id": rec["id"],
                    "type": rec["type"],
                    "section": rec["section"],
                    "title": rec["title"],
                    "estimated_score_improvement": rec.get("estimated_score_improvement", 0),
                })
            else:
                skipped.append({"id": rec["id"], "reason": reason})

        known = {r.get("id") for r in selected}
        for rec_id in dict.fromkeys(selected_ids):
            if rec_id not in known:
                skipped.append({"id": rec_id, "reason": "unknown_id"})

        summary = self._transformation_summary(applied, skipped)
        comparison = self._comparison_report(parsed_cv, improved, applied)
        logger.info(f"[改进建议] 已应用 {len(applied)} 条，跳过 {len(skipped)} 条")
        return {
            "improved_cv": improved,
            "applied": applied,
            "skipped": skipped,
            "transformation_summary": summary,
            "comparison_report": comparison,
        }

    def _apply_one(self, cv: Dict[str, Any], rec: Dict[str, Any]) -> Optional[str]:
        """应用单条建议，成功返回None，否则返回跳过原因"""
        section = rec.get("section")
        suggested = rec.get("suggested_content")

        if rec.get("type") == "section_addition":
            current = cv.get(section)
            if current and not (isinstance(current, dict) and not any(current.values())):
                return "section_exists"
            if section not in SECTION_SCAFFOLDS:
                return "unknown_section"
            cv[section] = copy.deepcopy(SECTION_SCAFFOLDS[section])
            return None

        if rec.get("keywords"):
            skills = cv.setdefault("skills", copy.deepcopy(SECTION_SCAFFOLDS["skills"]))
            technical = skills.setdefault("technical", [])
            existing = {s.lower() for s in all_skills(cv)}
            added = 0
            for keyword in rec["keywords"]:
                if keyword.lower() not in existing:
                    technical.append(keyword)
                    existing.add(keyword.lower())
                    added += 1
            return None if added else "keywords_present"

        if not suggested or not str(suggested).strip():
            return "no_suggested_content"

        if section == "summary":
            cv["summary"] = suggested.strip()
            return None

        if section == "experience":
            experience = cv.get("experience") or []
            if not experience:
                return "no_experience"
            current = rec.get("current_content")
            if current:
                for exp in experience:
                    achievements = exp.get("achievements") or []
                    if current in achievements:
                        achievements[achievements.index(current)] = suggested
                        return None
                return "original_not_found"
            index = rec.get("experience_index") or 0
            target = experience[index] if index < len(experience) else experience[0]
            target.setdefault("achievements", []).append(suggested)
            return None

        return "unsupported_section"

    @staticmethod
    def _transformation_summary(applied: List[Dict[str, Any]], skipped: List[Dict[str, Any]]) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        by_section: Dict[str, int] = {}
        for item in applied:
            by_type[item["type"]] = by_type.get(item["type"], 0) + 1
            by_section[item["section"]] = by_section.get(item["section"], 0) + 1
        return {
            "total_changes": len(applied),
            "skipped": len(skipped),
            "by_type": by_type,
            "by_section": by_section,
            "estimated_score_increase": sum(i["estimated_score_improvement"] for i in applied),
        }

    @staticmethod
    def _comparison_report(original: Dict[str, Any], improved: Dict[str, Any], applied: List[Dict[str, Any]]) -> Dict[str, Any]:
        sections = sorted({item["section"] for item in applied})
        return {
            section: {"before": original.get(section), "after": improved.get(section)}
            for section in sections
        }


recommendation_service = RecommendationService()
