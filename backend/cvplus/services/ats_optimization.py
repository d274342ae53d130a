"""
ATS（招聘系统）兼容性分析

按结构、联系方式、摘要、工作经历、技能五类规则检查CV，
按问题严重程度扣分，并在提供目标岗位时使用LLM推荐关键词和生成优化摘要。
"""
import logging
import re
from typing import Dict, Any, List, Optional
from ..core.constants import (
    ATS_PASS_SCORE,
    ATS_ERROR_PENALTY,
    ATS_WARNING_PENALTY,
    ATS_INFO_PENALTY,
)
from .cv_parser import flatten_cv_text
from .llm_service import LLMService, LLMError

logger = logging.getLogger(__name__)

ACTION_VERBS = [
    'achieved', 'administered', 'analyzed', 'built', 'collaborated', 'created',
    'decreased', 'delivered', 'designed', 'developed', 'directed', 'enhanced',
    'established', 'executed', 'generated', 'implemented', 'improved', 'increased',
    'launched', 'led', 'managed', 'optimized', 'organized', 'performed',
    'planned', 'produced', 'reduced', 'resolved', 'streamlined', 'supervised',
]

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SEVERITY_PENALTIES = {
    "error": ATS_ERROR_PENALTY,
    "warning": ATS_WARNING_PENALTY,
    "info": ATS_INFO_PENALTY,
}


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def suggest_action_verb(text: str) -> str:
    """按内容选择合适的动作动词"""
    context = text.lower()
    if "manage" in context or "team" in context:
        return "Led"
    if "create" in context or "develop" in context:
        return "Developed"
    if "improve" in context or "enhance" in context:
        return "Enhanced"
    if "analyze" in context or "data" in context:
        return "Analyzed"
    return "Achieved"


def calculate_ats_score(issues: List[Dict[str, Any]]) -> int:
    score = 100
    for issue in issues:
        score -= SEVERITY_PENALTIES.get(issue.get("severity"), 0)
    return max(0, score)


def calculate_keyword_density(text: str, keywords: List[str]) -> float:
    """关键词出现次数占总词数的比例"""
    words = re.findall(r"\w+", text.lower())
    if not words or not keywords:
        return 0.0
    lowered = text.lower()
    occurrences = sum(lowered.count(k.lower()) for k in keywords if k)
    return occurrences / len(words)


def get_summary(cv: Dict[str, Any]) -> str:
    personal = cv.get("personal_info") or {}
    return (cv.get("summary") or personal.get("summary") or "").strip()


def _issue(issue_type: str, severity: str, message: str, section: str, fix: str) -> Dict[str, Any]:
    return {"type": issue_type, "severity": severity, "message": message, "section": section, "fix": fix}


def _suggestion(section: str, original: str, suggested: str, reason: str, impact: str) -> Dict[str, Any]:
    return {"section": section, "original": original, "suggested": suggested, "reason": reason, "impact": impact}


class ATSOptimizationService:
    """ATS兼容性分析服务"""

    def __init__(self, llm_service: Optional[LLMService] = None):
        self.llm_service = llm_service or LLMService()

    async def analyze_cv(
        self,
        parsed_cv: Dict[str, Any],
        target_role: Optional[str] = None,
        target_keywords: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """分析CV的ATS兼容性"""
        issues: List[Dict[str, Any]] = []
        suggestions: List[Dict[str, Any]] = []

        self.check_structure(parsed_cv, issues)
        self.check_contact_info(parsed_cv, issues)
        self.check_summary(parsed_cv, issues, suggestions)
        self.check_experience(parsed_cv, issues, suggestions)
        skills_analysis = self.check_skills(parsed_cv, issues, suggestions, target_keywords)
        keywords = await self.analyze_keywords(parsed_cv, target_role, target_keywords)

        score = calculate_ats_score(issues)
        optimized_content = await self.generate_optimized_content(
            parsed_cv, issues, target_role, keywords["recommended"]
        )

        all_keywords = list(target_keywords or []) + keywords["recommended"]
        keywords["density"] = round(calculate_keyword_density(flatten_cv_text(parsed_cv), all_keywords), 4)

        logger.info(f"[ATS] 分析完成: 得分 {score}, 问题 {len(issues)} 个, 建议 {len(suggestions)} 条")
        return {
            "score": score,
            "passes": score >= ATS_PASS_SCORE,
            "issues": issues,
            "suggestions": suggestions,
            "optimized_content": optimized_content,
            "keywords": keywords,
            "skills_analysis": skills_analysis,
        }

    def check_structure(self, cv: Dict[str, Any], issues: List[Dict[str, Any]]):
        personal = cv.get("personal_info") or {}
        if not any(personal.values()):
            issues.append(_issue(
                "structure", "error", "Missing contact information section", "personal_info",
                "Add a clear contact information section at the top of your CV"
            ))
        if not cv.get("experience"):
            issues.append(_issue(
                "structure", "error", "Missing work experience section", "experience",
                "Add a work experience section with your professional history"
            ))
        if not cv.get("education"):
            issues.append(_issue(
                "structure", "warning", "Missing education section", "education",
                "Add an education section with your academic background"
            ))
        if not cv.get("skills"):
            issues.append(_issue(
                "structure", "warning", "Missing skills section", "skills",
                "Add a dedicated skills section listing your technical and soft skills"
            ))

    def check_contact_info(self, cv: Dict[str, Any], issues: List[Dict[str, Any]]):
        info = cv.get("personal_info") or {}
        if not any(info.values()):
            return

        if not info.get("name"):
            issues.append(_issue(
                "content", "error", "Missing name in contact information", "personal_info",
                "Add your full name at the top of your CV"
            ))
        if not info.get("email"):
            issues.append(_issue(
                "content", "error", "Missing email address", "personal_info",
                "Add a professional email address"
            ))
        if not info.get("phone"):
            issues.append(_issue(
                "content", "warning", "Missing phone number", "personal_info",
                "Add a contact phone number"
            ))
        if info.get("email") and not is_valid_email(info["email"]):
            issues.append(_issue(
                "format", "error", "Invalid email format", "personal_info",
                "Use a standard email format (e.g., name@domain.com)"
            ))

    def check_summary(self, cv: Dict[str, Any], issues: List[Dict[str, Any]], suggestions: List[Dict[str, Any]]):
        summary = get_summary(cv)
        if not summary:
            issues.append(_issue(
                "content", "warning", "Missing professional summary", "summary",
                "Add a 2-3 sentence professional summary highlighting your key qualifications"
            ))
            return

        word_count = len(summary.split())
        if word_count < 20:
            suggestions.append(_suggestion(
                "summary", summary,
                f"{summary} [Add more detail about your experience and key skills]",
                "Summary is too brief. Aim for 50-150 words.", "medium"
            ))
        elif word_count > 200:
            sentences = [s for s in summary.split(".") if s.strip()]
            suggestions.append(_suggestion(
                "summary", summary, ".".join(sentences[:3]).strip() + ".",
                "Summary is too long. Keep it concise (50-150 words).", "medium"
            ))

        lowered = summary.lower()
        if not any(verb in lowered for verb in ACTION_VERBS):
            issues.append(_issue(
                "keyword", "info", "Summary lacks strong action verbs", "summary",
                'Start with action verbs like "Experienced", "Skilled", or "Accomplished"'
            ))

    def check_experience(self, cv: Dict[str, Any], issues: List[Dict[str, Any]], suggestions: List[Dict[str, Any]]):
        for index, exp in enumerate(cv.get("experience") or [], start=1):
            if not exp.get("company"):
                issues.append(_issue(
                    "content", "error", f"Missing company name in experience #{index}", "experience",
                    "Add the company name for each position"
                ))
            if not exp.get("position"):
                issues.append(_issue(
                    "content", "error", f"Missing job title in experience #{index}", "experience",
                    "Add your job title for each position"
                ))
            if not exp.get("start_date"):
                issues.append(_issue(
                    "content", "warning", f"Missing dates in experience #{index}", "experience",
                    "Add start and end dates (MM/YYYY format)"
                ))

            achievements = exp.get("achievements") or []
            if not achievements:
                suggestions.append(_suggestion(
                    "experience", exp.get("description") or "",
                    "Add 2-4 bullet points highlighting key achievements and quantifiable results",
                    "Bullet points are easier for ATS to parse than paragraphs", "high"
                ))
                continue

            for achievement in achievements:
                words = achievement.split()
                first_word = words[0].lower() if words else ""
                if first_word not in ACTION_VERBS:
                    suggestions.append(_suggestion(
                        "experience", achievement,
                        f"{suggest_action_verb(achievement)} {achievement}",
                        "Start each bullet point with a strong action verb", "medium"
                    ))

    def check_skills(
        self,
        cv: Dict[str, Any],
        issues: List[Dict[str, Any]],
        suggestions: List[Dict[str, Any]],
        target_keywords: Optional[List[str]] = None
    ) -> Dict[str, List[str]]:
        skills = cv.get("skills") or {}
        listed: List[str] = []
        for key in ("technical", "soft", "tools"):
            listed.extend(skills.get(key) or [])

        if not listed:
            issues.append(_issue(
                "content", "error", "No skills listed", "skills",
                "Add relevant technical and soft skills"
            ))

        found: List[str] = []
        missing: List[str] = []
        if target_keywords:
            for keyword in target_keywords:
                if any(keyword.lower() in skill.lower() for skill in listed):
                    found.append(keyword)
                else:
                    missing.append(keyword)
            if missing:
                suggestions.append(_suggestion(
                    "skills", ", ".join(listed), ", ".join(listed + missing),
                    f"Add missing relevant skills: {', '.join(missing)}", "high"
                ))

        return {"found": found, "missing": missing}

    async def analyze_keywords(
        self,
        cv: Dict[str, Any],
        target_role: Optional[str] = None,
        target_keywords: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """统计目标关键词命中情况，并按目标岗位推荐关键词"""
        cv_text = flatten_cv_text(cv)
        lowered = cv_text.lower()
        found = [k for k in target_keywords or [] if k.lower() in lowered]
        missing = [k for k in target_keywords or [] if k.lower() not in lowered]
        recommended: List[str] = []

        if target_role:
            prompt = (
                f'Given this CV content and target role "{target_role}", suggest 10 relevant keywords '
                f"that should be included for ATS optimization. Return only the keywords as a "
                f"comma-separated list.\n\nCV Summary: {cv_text[:1000]}..."
            )
            try:
                response = await self.llm_service.chat_completion(
                    [{"role": "user", "content": prompt}], temperature=0.3, max_tokens=100
                )
                recommended = [k.strip() for k in response.strip().split(",") if k.strip()][:10]
            except LLMError as e:
                logger.error(f"[ATS] 关键词推荐失败: {e}")

        return {"found": found, "missing": missing, "recommended": recommended}

    async def generate_optimized_content(
        self,
        cv: Dict[str, Any],
        issues: List[Dict[str, Any]],
        target_role: Optional[str] = None,
        keywords: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """摘要缺失时生成ATS友好的摘要"""
        optimized: Dict[str, Any] = {}
        needs_summary = any(
            issue["section"] == "summary" and "summary" in issue["message"].lower() and issue["severity"] != "info"
            for issue in issues
        )
        if not needs_summary:
            return optimized

        experience = ", ".join(f"{e.get('position')} at {e.get('company')}" for e in cv.get("experience") or [])
        skills = cv.get("skills") or {}
        skill_text = ", ".join((skills.get("technical") or []) + (skills.get("soft") or [])) or "Various"
        prompt = (
            f"Create an ATS-optimized professional summary for a {target_role or 'professional'} with the "
            f"following background. Include these keywords naturally: {', '.join(keywords or []) or 'relevant skills'}.\n\n"
            f"Experience: {experience}\nSkills: {skill_text}\n\n"
            f"Write a 2-3 sentence summary starting with an action verb:"
        )
        try:
            summary = (await self.llm_service.chat_completion(
                [{"role": "user", "content": prompt}], temperature=0.7, max_tokens=150
            )).strip()
            if summary:
                optimized["summary"] = summary
        except LLMError as e:
            logger.error(f"[ATS] 生成优化摘要失败: {e}")

        return optimized
