"""
基于结构化CV的可视化分析

技能矩阵、证书徽章、语言能力和关键成就，全部由规则计算，不调用外部服务
"""
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from .cv_parser import normalize_date
from .role_detection import contains_keyword

logger = logging.getLogger(__name__)

SKILL_CATEGORIES = {
    "Programming Languages": [
        "python", "java", "javascript", "typescript", "go", "golang", "c++", "c#", "ruby", "rust",
        "kotlin", "swift", "php", "scala", "r",
    ],
    "Frontend": ["react", "vue", "angular", "html", "css", "svelte", "next.js", "redux", "tailwind"],
    "Backend": ["node.js", "django", "flask", "fastapi", "spring", "express", "rails", "graphql", "rest"],
    "Cloud & DevOps": [
        "aws", "azure", "gcp", "docker", "kubernetes", "terraform", "ansible", "jenkins", "ci/cd", "linux",
    ],
    "Data": [
        "sql", "postgresql", "mysql", "mongodb", "redis", "spark", "pandas", "tableau", "excel",
        "machine learning", "statistics",
    ],
}

LANGUAGE_LEVEL_SCORES = {"Native": 100, "Fluent": 90, "Professional": 70, "Conversational": 50, "Basic": 30}

CEFR_LEVELS = {
    "Native": "C2+", "Fluent": "C2", "Professional": "C1", "Conversational": "B2", "Basic": "A2-B1",
}

# 按顺序匹配，先命中者优先
LEVEL_MARKERS = [
    ("Native", ["native", "mother"]),
    ("Fluent", ["fluent", "c2", "superior", "excellent"]),
    ("Professional", ["professional", "c1", "advanced", "proficient"]),
    ("Conversational", ["conversational", "b2", "intermediate", "good"]),
    ("Basic", ["basic", "beginner", "a1", "a2", "elementary"]),
]

LANGUAGE_CERTIFICATIONS = [
    "toefl", "ielts", "toeic", "cambridge", "dele", "delf", "dalf", "testdaf", "goethe",
    "jlpt", "hsk", "topik", "celi", "cils", "torfl", "siele", "actfl", "telc",
]

CERTIFICATION_CATEGORIES = [
    ("cloud", ["aws", "azure", "google cloud", "gcp", "kubernetes", "cka", "terraform"]),
    ("security", ["security", "cissp", "cism", "ceh", "oscp", "comptia"]),
    ("project_management", ["pmp", "prince2", "scrum", "agile", "safe", "itil"]),
    ("data", ["data", "analytics", "tableau", "machine learning", "tensorflow"]),
    ("language", LANGUAGE_CERTIFICATIONS),
]

ACHIEVEMENT_CATEGORIES = [
    ("leadership", r"\b(lead|led|manag|direct|head)"),
    ("technical", r"develop|architect|implement|migrat|built"),
    ("business", r"revenue|cost|efficien|sales"),
    ("innovation", r"innovat|\bnew\b|\bfirst\b"),
    ("team", r"team|mentor|\bhir(e|ed|ing)\b"),
]

MAX_ACHIEVEMENTS = 5


def _skill_category(skill: str) -> str:
    lowered = skill.lower().strip()
    for category, keywords in SKILL_CATEGORIES.items():
        if lowered in keywords:
            return category
    return "Other"


def build_skills_visualization(parsed_cv: Dict[str, Any]) -> Dict[str, Any]:
    """
    技能矩阵：按类别分组技术技能，并根据工作经历中的出现情况估算熟练度(1-10)

    最近的经历权重更高；只在技能列表中出现、经历中从未提到的技能记为基础分3
    """
    skills = parsed_cv.get("skills") or {}
    if not isinstance(skills, dict):
        skills = {"technical": list(skills)}
    experience = parsed_cv.get("experience") or []

    def level(skill: str) -> Dict[str, Any]:
        mentions = 0
        weight = 0.0
        for index, exp in enumerate(experience):
            text = " ".join(
                [exp.get("description") or ""] + list(exp.get("achievements") or []) + list(exp.get("technologies") or [])
            ).lower()
            if contains_keyword(text, skill.lower()):
                mentions += 1
                weight += max(0.4, 1.0 - index * 0.3)
        return {"name": skill, "level": min(10, 3 + round(weight * 3)), "mentions": mentions}

    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for skill in list(skills.get("technical") or []) + list(skills.get("tools") or []):
        grouped.setdefault(_skill_category(skill), []).append(level(skill))

    technical = [
        {"category": category, "skills": sorted(items, key=lambda s: s["level"], reverse=True)}
        for category, items in grouped.items()
    ]
    soft = [{"category": "Soft Skills", "skills": [{"name": s, "level": None} for s in skills.get("soft") or []]}]
    chart = {
        "labels": [c["category"] for c in technical],
        "values": [round(sum(s["level"] for s in c["skills"]) / len(c["skills"]), 1) for c in technical],
    }
    return {
        "technical": technical,
        "soft": soft if soft[0]["skills"] else [],
        "languages": list(skills.get("languages") or []),
        "certifications": [
            c.get("name", "") if isinstance(c, dict) else str(c) for c in parsed_cv.get("certifications") or []
        ],
        "chart_data": chart,
        "total_skills": sum(len(c["skills"]) for c in technical) + len(skills.get("soft") or []),
    }


def _certification_category(name: str) -> str:
    lowered = name.lower()
    for category, keywords in CERTIFICATION_CATEGORIES:
        if any(k in lowered for k in keywords):
            return category
    return "professional"


def build_certification_badges(parsed_cv: Dict[str, Any], today: Optional[datetime] = None) -> Dict[str, Any]:
    """证书徽章：有凭证编号或验证链接的证书视为已验证，过期日早于本月视为过期"""
    current_month = (today or datetime.utcnow()).strftime("%Y-%m")
    badges = []
    categories: Dict[str, List[str]] = {}

    for index, cert in enumerate(parsed_cv.get("certifications") or []):
        if not isinstance(cert, dict):
            cert = {"name": str(cert)}
        name = (cert.get("name") or "").strip()
        if not name:
            continue
        expiry = normalize_date(cert.get("expiry_date"))
        expired = bool(re.match(r"^\d{4}-\d{2}$", expiry)) and expiry < current_month
        badge = {
            "id": f"badge-{index}",
            "name": name,
            "issuer": cert.get("issuer", ""),
            "issue_date": normalize_date(cert.get("date")),
            "expiry_date": expiry or None,
            "credential_id": cert.get("credential_id") or None,
            "url": cert.get("url") or None,
            "category": _certification_category(name),
            "verified": bool(cert.get("credential_id") or cert.get("url")),
            "status": "expired" if expired else "active",
        }
        badges.append(badge)
        categories.setdefault(badge["category"], []).append(badge["id"])

    return {
        "badges": badges,
        "categories": categories,
        "statistics": {
            "total_certifications": len(badges),
            "verified_certifications": sum(1 for b in badges if b["verified"]),
            "active_certifications": sum(1 for b in badges if b["status"] == "active"),
            "expired_certifications": sum(1 for b in badges if b["status"] == "expired"),
        },
    }


def normalize_language_level(text: str) -> str:
    lowered = text.lower()
    for level, markers in LEVEL_MARKERS:
        if any(contains_keyword(lowered, m) for m in markers):
            return level
    return "Professional"


def parse_language(entry: str) -> Optional[Dict[str, Any]]:
    """解析 "German (Native)"、"French - B2"、"Spanish: fluent" 等写法，未写等级时按 Professional"""
    entry = (entry or "").strip()
    if not entry:
        return None
    match = re.match(r"^(.+?)\s*[(:\-–]\s*(.+?)\s*\)?$", entry)
    if match:
        language, level = match.group(1).strip(), normalize_language_level(match.group(2))
    else:
        language, level = entry, "Professional"
    return {
        "language": language,
        "level": level,
        "cefr": CEFR_LEVELS[level],
        "score": LANGUAGE_LEVEL_SCORES[level],
        "certifications": [],
    }


def analyze_language_proficiency(parsed_cv: Dict[str, Any]) -> Dict[str, Any]:
    skills = parsed_cv.get("skills") or {}
    entries = skills.get("languages") or [] if isinstance(skills, dict) else []
    proficiencies = [p for p in (parse_language(e) for e in entries) if p]

    cert_names = [
        (c.get("name") or "") if isinstance(c, dict) else str(c)
        for c in parsed_cv.get("certifications") or []
    ]
    language_certs = [n for n in cert_names if any(k in n.lower() for k in LANGUAGE_CERTIFICATIONS)]
    for proficiency in proficiencies:
        lowered = proficiency["language"].lower()
        proficiency["certifications"] = [
            n for n in language_certs
            if lowered in n.lower() or (lowered == "english" and any(k in n.lower() for k in ("toefl", "ielts", "toeic", "cambridge")))
        ]
        proficiency["verified"] = bool(proficiency["certifications"])

    certified = [p["language"] for p in proficiencies if p["verified"]]
    recommendations = []
    if len(proficiencies) == 1:
        recommendations.append("Consider learning a second language to enhance global opportunities")
    if len(proficiencies) > 1 and not certified:
        recommendations.append("Consider obtaining language certifications to validate your skills")
    conversational = [p for p in proficiencies if p["level"] == "Conversational"]
    if conversational:
        recommendations.append(
            f"Improve {conversational[0]['language']} to professional level for career advancement"
        )
    if proficiencies and not any(p["language"].lower() == "english" for p in proficiencies):
        recommendations.append("Consider adding English for broader international opportunities")

    proficiencies.sort(key=lambda p: p["score"], reverse=True)
    return {
        "proficiencies": proficiencies,
        "insights": {
            "total_languages": len(proficiencies),
            "fluent_languages": sum(1 for p in proficiencies if p["level"] in ("Native", "Fluent")),
            "business_ready": [p["language"] for p in proficiencies if p["score"] >= 70],
            "certified_languages": certified,
            "recommendations": recommendations,
        },
    }


def categorize_achievement(text: str) -> str:
    lowered = text.lower()
    for category, pattern in ACHIEVEMENT_CATEGORIES:
        if re.search(pattern, lowered):
            return category
    return "project"


def achievement_significance(text: str) -> int:
    """重要度1-10：量化结果+2，领导力、影响力、规模相关用词各+1"""
    lowered = text.lower()
    score = 5
    if re.search(r"\d+%|\$\d+|\d+x\b|million|billion", lowered):
        score += 2
    if re.search(r"\b(lead|led|manag|direct|head|vp|director)", lowered):
        score += 1
    if re.search(r"improv|increas|reduc|sav|deliver|launch", lowered):
        score += 1
    if re.search(r"enterprise|global|organization|company-wide", lowered):
        score += 1
    return min(10, score)


def analyze_achievements(parsed_cv: Dict[str, Any]) -> Dict[str, Any]:
    """提取工作经历和独立成就列表中的成就，按重要度取前5条"""
    achievements = []
    for exp in parsed_cv.get("experience") or []:
        end = exp.get("end_date") or ("Present" if exp.get("is_current") else "")
        timeframe = f"{exp.get('start_date', '')} - {end}".strip(" -")
        for text in exp.get("achievements") or []:
            achievements.append({
                "description": text,
                "company": exp.get("company", ""),
                "timeframe": timeframe,
            })
    for text in parsed_cv.get("achievements") or []:
        achievements.append({"description": text, "company": "Career Overview", "timeframe": ""})

    for item in achievements:
        item["category"] = categorize_achievement(item["description"])
        item["significance"] = achievement_significance(item["description"])
        item["metrics"] = re.findall(r"\$?\d[\d,.]*\s?(?:%|x\b|million|billion|k\b)?", item["description"])

    # 稳定排序，同分保持原顺序
    ranked = sorted(achievements, key=lambda a: a["significance"], reverse=True)[:MAX_ACHIEVEMENTS]
    by_category: Dict[str, int] = {}
    for item in ranked:
        by_category[item["category"]] = by_category.get(item["category"], 0) + 1
    logger.debug(f"[成就分析] 共 {len(achievements)} 条，保留 {len(ranked)} 条")
    return {"achievements": ranked, "total_found": len(achievements), "by_category": by_category}
