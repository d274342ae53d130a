"""
岗位识别服务
基于内置岗位画像对CV做多维度加权匹配，未命中时按通用技能模式兜底
"""
import logging
import re
from typing import Dict, Any, List, Optional, Tuple
from .cv_parser import all_skills, flatten_cv_text
from .role_profiles import ROLE_PROFILES, FALLBACK_SKILL_PATTERNS

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "title": 0.30,
    "skill": 0.35,
    "experience": 0.20,
    "industry": 0.10,
    "education": 0.05,
}

# 各维度达到满分所需的加权命中数；None 表示按画像关键词数量的40%计算
SATURATION = {
    "title": 1.0,
    "skill": None,
    "experience": None,
    "industry": 2.0,
    "education": 1.0,
}

CONFIDENCE_THRESHOLD = 0.5
MAX_RESULTS = 3
OLDEST_EXPERIENCE_WEIGHT = 0.4

CONFIDENCE_BUCKETS = [("0.8-1.0", 0.8), ("0.6-0.8", 0.6), ("0.4-0.6", 0.4), ("0.0-0.4", 0.0)]


def contains_keyword(text: str, keyword: str) -> bool:
    """按词边界匹配，避免 "r"、"ai" 之类的短词误命中"""
    pattern = r"(?<![a-z0-9])" + re.escape(keyword.lower()) + r"(?![a-z0-9])"
    return re.search(pattern, text) is not None


def recency_weights(count: int) -> List[float]:
    """最近的经历权重1.0，线性递减到最早经历的0.4"""
    if count <= 1:
        return [1.0] * count
    step = (1.0 - OLDEST_EXPERIENCE_WEIGHT) / (count - 1)
    return [round(1.0 - i * step, 4) for i in range(count)]


def match_strength(confidence: float) -> str:
    if confidence >= 0.8:
        return "excellent"
    if confidence >= 0.6:
        return "good"
    if confidence >= 0.4:
        return "moderate"
    return "weak"


class RoleDetectionService:
    """岗位识别"""

    def __init__(
        self,
        profiles: Optional[List[Dict[str, Any]]] = None,
        weights: Optional[Dict[str, float]] = None,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        max_results: int = MAX_RESULTS
    ):
        self.profiles = profiles or ROLE_PROFILES
        self.weights = weights or DEFAULT_WEIGHTS
        self.confidence_threshold = confidence_threshold
        self.max_results = max_results

    def extract_features(self, cv: Dict[str, Any]) -> Dict[str, Any]:
        """提取各维度的文本特征，工作经历带时间权重"""
        experience = cv.get("experience") or []
        weights = recency_weights(len(experience))
        personal = cv.get("personal_info") or {}

        titles: List[Tuple[str, float]] = []
        if personal.get("title"):
            titles.append((personal["title"].lower(), 1.0))
        entries: List[Tuple[str, float]] = []
        for exp, weight in zip(experience, weights):
            if exp.get("position"):
                titles.append((exp["position"].lower(), weight))
            body = " ".join([exp.get("description") or ""] + (exp.get("achievements") or []))
            entries.append((body.lower(), weight))

        industry_text = " ".join(
            [exp.get("company") or "" for exp in experience]
            + [exp.get("description") or "" for exp in experience]
        ).lower()
        education_text = " ".join(
            f"{edu.get('degree', '')} {edu.get('field', '')}" for edu in cv.get("education") or []
        ).lower()

        return {
            "titles": titles,
            "skills": all_skills(cv),
            "skills_text": " | ".join(all_skills(cv)) + " | " + flatten_cv_text(cv).lower(),
            "experience_entries": entries,
            "industry_text": industry_text,
            "education_text": education_text,
        }

    def _score_title(self, features: Dict[str, Any], keywords: List[str]) -> Tuple[float, List[str]]:
        best = 0.0
        matched: List[str] = []
        for title, weight in features["titles"]:
            for keyword in keywords:
                if contains_keyword(title, keyword):
                    matched.append(keyword)
                    best = max(best, weight)
        return best, sorted(set(matched))

    def _score_experience(self, features: Dict[str, Any], keywords: List[str]) -> Tuple[float, List[str]]:
        total = 0.0
        matched = set()
        for text, weight in features["experience_entries"]:
            for keyword in keywords:
                if contains_keyword(text, keyword):
                    total += weight
                    matched.add(keyword)
        return total, sorted(matched)

    @staticmethod
    def _score_text(text: str, keywords: List[str]) -> Tuple[float, List[str]]:
        matched = [k for k in keywords if contains_keyword(text, k)]
        return float(len(matched)), matched

    def calculate_factor_scores(self, features: Dict[str, Any], profile: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        criteria = profile["matching_criteria"]
        raw = {
            "title": self._score_title(features, criteria["title"]),
            "skill": self._score_text(features["skills_text"], criteria["skill"]),
            "experience": self._score_experience(features, criteria["experience"]),
            "industry": self._score_text(features["industry_text"], criteria["industry"]),
            "education": self._score_text(features["education_text"], criteria["education"]),
        }

        factors = {}
        for category, (hits, matched) in raw.items():
            saturation = SATURATION[category] or max(1.0, 0.4 * len(criteria[category]))
            factors[category] = {
                "score": round(min(1.0, hits / saturation), 4),
                "weight": self.weights.get(category, 0.0),
                "matched_keywords": matched,
            }
        return factors

    @staticmethod
    def weighted_confidence(factors: Dict[str, Dict[str, Any]]) -> float:
        total_weight = sum(f["weight"] for f in factors.values())
        if total_weight == 0:
            return 0.0
        return sum(f["score"] * f["weight"] for f in factors.values()) / total_weight

    def _skill_gaps(self, cv_skills: List[str], skills_text: str, required: List[str]) -> Tuple[List[str], List[str]]:
        present, missing = [], []
        for skill in required:
            # "HTML/CSS"、"Agile/Scrum" 任一部分出现即视为具备
            parts = [p.strip().lower() for p in skill.split("/") if p.strip()]
            if any(contains_keyword(skills_text, p) for p in parts):
                present.append(skill)
            else:
                missing.append(skill)
        return present, missing

    def match_profile(self, cv: Dict[str, Any], features: Dict[str, Any], profile: Dict[str, Any]) -> Dict[str, Any]:
        factors = self.calculate_factor_scores(features, profile)
        confidence = round(self.weighted_confidence(factors), 4)
        present, missing = self._skill_gaps(features["skills"], features["skills_text"], profile["required_skills"])
        preferred_present, preferred_missing = self._skill_gaps(
            features["skills"], features["skills_text"], profile["preferred_skills"]
        )

        return {
            "role_id": profile["id"],
            "role_name": profile["name"],
            "category": profile["category"],
            "confidence": confidence,
            "match_strength": match_strength(confidence),
            "summary_template": profile["summary_template"],
            "factors": factors,
            "gap_analysis": {
                "missing_required_skills": missing,
                "missing_preferred_skills": preferred_missing,
                "strength_areas": present + preferred_present,
            },
            "recommendations": self.build_recommendations(cv, profile, factors, missing, preferred_missing),
        }

    def build_recommendations(
        self,
        cv: Dict[str, Any],
        profile: Dict[str, Any],
        factors: Dict[str, Dict[str, Any]],
        missing_required: List[str],
        missing_preferred: List[str]
    ) -> List[Dict[str, Any]]:
        recs: List[Dict[str, Any]] = []
        role = profile["name"]
        if missing_required:
            recs.append({
                "type": "skills",
                "priority": "high",
                "title": f"Add core {role} skills",
                "description": f"Highlight experience with: {', '.join(missing_required[:5])}",
                "keywords": missing_required[:5],
            })
        summary = (cv.get("summary") or "").strip()
        if len(summary.split()) < 20:
            recs.append({
                "type": "summary",
                "priority": "high",
                "title": f"Write a {role} focused summary",
                "description": "Use this structure and fill in your own numbers",
                "template": profile["summary_template"],
            })
        if factors["title"]["score"] < 0.5:
            recs.append({
                "type": "title",
                "priority": "medium",
                "title": "Align your headline with the target role",
                "description": f"Use a headline such as \"{role}\" so recruiters and ATS filters recognise the fit",
            })
        if factors["experience"]["score"] < 0.5:
            recs.append({
                "type": "experience",
                "priority": "medium",
                "title": "Start achievements with role-specific action verbs",
                "description": f"Try verbs like {', '.join(profile['action_verbs'][:5])}",
            })
        if missing_preferred:
            recs.append({
                "type": "skills",
                "priority": "low",
                "title": "Consider adding preferred skills",
                "description": f"Nice to have for {role}: {', '.join(missing_preferred[:5])}",
                "keywords": missing_preferred[:5],
            })
        return recs

    def detect_fallback_role(self, cv: Dict[str, Any]) -> Dict[str, Any]:
        """按通用技能模式兜底识别"""
        text = " | ".join(all_skills(cv)) + " | " + flatten_cv_text(cv).lower()
        best = {"role_id": "general_professional", "role_name": "Professional", "confidence": 0.65, "matched_keywords": []}

        for role_id, pattern in FALLBACK_SKILL_PATTERNS.items():
            matched = [k for k in pattern["keywords"] if contains_keyword(text, k)]
            if not matched:
                continue
            confidence = min(0.8, 0.5 + len(matched) / len(pattern["keywords"]) * 0.3)
            if confidence > best["confidence"]:
                best = {
                    "role_id": role_id,
                    "role_name": pattern["name"],
                    "confidence": round(confidence, 4),
                    "matched_keywords": matched,
                }

        best["category"] = "general"
        best["match_strength"] = match_strength(best["confidence"])
        best["fallback"] = True
        return best

    def detect_roles(self, cv: Dict[str, Any]) -> List[Dict[str, Any]]:
        """返回达到阈值的岗位匹配，按置信度降序"""
        features = self.extract_features(cv)
        matches = [self.match_profile(cv, features, profile) for profile in self.profiles]
        qualified = [m for m in matches if m["confidence"] >= self.confidence_threshold]
        qualified.sort(key=lambda m: m["confidence"], reverse=True)
        return qualified[:self.max_results]

    def analyze(self, cv: Dict[str, Any]) -> Dict[str, Any]:
        """完整的岗位分析结果"""
        matches = self.detect_roles(cv)
        if not matches:
            fallback = self.detect_fallback_role(cv)
            logger.info(f"[岗位识别] 未命中画像，兜底识别为 {fallback['role_name']} ({fallback['confidence']})")
            return {
                "primary_role": fallback,
                "alternative_roles": [],
                "overall_confidence": fallback["confidence"],
                "immediate_recommendations": [],
                "strategic_recommendations": [],
                "confidence_distribution": self.confidence_distribution([fallback]),
                "fallback_used": True,
            }

        primary = matches[0]
        overall = round(sum(m["confidence"] for m in matches) / len(matches), 4)
        recs = primary["recommendations"]
        logger.info(f"[岗位识别] 主岗位: {primary['role_name']} ({primary['confidence']}), 候选 {len(matches)} 个")
        return {
            "primary_role": primary,
            "alternative_roles": matches[1:],
            "overall_confidence": overall,
            "immediate_recommendations": [r for r in recs if r["priority"] == "high"][:5],
            "strategic_recommendations": [r for r in recs if r["priority"] in ("medium", "low")][:5],
            "confidence_distribution": self.confidence_distribution(matches),
            "fallback_used": False,
        }

    @staticmethod
    def confidence_distribution(matches: List[Dict[str, Any]]) -> Dict[str, int]:
        distribution = {label: 0 for label, _ in CONFIDENCE_BUCKETS}
        for match in matches:
            for label, lower in CONFIDENCE_BUCKETS:
                if match["confidence"] >= lower:
                    distribution[label] += 1
                    break
        return distribution


role_detection_service = RoleDetectionService()
