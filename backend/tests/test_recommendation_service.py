"""
改进建议服务测试
"""
import asyncio
import time
import pytest
from unittest.mock import AsyncMock, patch
from cvplus.core.errors import ValidationError
from cvplus.services.recommendation_service import (
    RecommendationService,
    build_request_key,
)
from cvplus.services.role_detection import RoleDetectionService


@pytest.fixture
def ats_result():
    return {
        "score": 80,
        "issues": [
            {"type": "format", "severity": "error", "message": "Invalid email format",
             "section": "personal_info", "fix": "Use a standard email format"},
        ],
        "suggestions": [
            {"section": "skills", "original": "Python, Go", "suggested": "Python, Go, Terraform",
             "reason": "Add missing relevant skills: Terraform", "impact": "high"},
            {"section": "experience", "original": "responsible for API design reviews",
             "suggested": "Achieved responsible for API design reviews",
             "reason": "Start each bullet point with a strong action verb", "impact": "medium"},
            {"section": "experience", "original": "Developed REST APIs and React frontends.",
             "suggested": "Add 2-4 bullet points",
             "reason": "Bullet points are easier for ATS to parse than paragraphs", "impact": "high"},
        ],
        "keywords": {"found": [], "missing": [], "recommended": [], "density": 0.0},
    }


class TestRequestKey:
    """请求去重键测试"""

    def test_keywords_order_and_case_ignored(self):
        a = build_request_key("job1", 1, "Engineer ", ["Go", "python"])
        b = build_request_key("job1", 1, "engineer", ["Python", "go"])
        assert a == b

    def test_force_flag_changes_key(self):
        assert build_request_key("job1", 1) != build_request_key("job1", 1, force_regenerate=True)


class TestGenerateRecommendations:
    """建议生成测试"""

    def test_missing_sections_are_critical(self):
        """测试缺少核心章节时生成最高优先级建议"""
        recs = RecommendationService().generate_recommendations({"personal_info": {}})

        ids = [r["id"] for r in recs]
        assert ids[:3] == ["rec_experience_1", "rec_education_1", "rec_skills_1"]
        assert all(r["priority"] == 1 for r in recs[:3])
        assert any(r["section"] == "summary" and r["type"] == "content" for r in recs)

    def test_sorted_by_priority_then_impact(self, sample_cv, ats_result):
        recs = RecommendationService().generate_recommendations(sample_cv, ats_result)
        keys = [(r["priority"], {"high": 0, "medium": 1, "low": 2}[r["impact"]]) for r in recs]
        assert keys == sorted(keys)

    def test_ats_suggestions_converted(self, sample_cv, ats_result):
        recs = RecommendationService().generate_recommendations(sample_cv, ats_result)
        by_title = {r["title"]: r for r in recs}

        assert by_title["Add missing skills"]["keywords"] == ["Terraform"]
        verb = by_title["Start with a strong action verb"]
        assert verb["current_content"] == "responsible for API design reviews"
        assert verb["experience_index"] == 0
        bullet = by_title["Add achievement bullet points"]
        assert bullet["experience_index"] == 1
        assert bullet["suggested_content"] == "Developed REST APIs and React frontends."
        assert by_title["Invalid email format"]["type"] == "formatting"

    def test_role_and_industry_keywords_merge(self, sample_cv, ats_result):
        """测试岗位技能缺口和行业关键词合并到同一条技能建议"""
        role_analysis = {
            "fallback_used": False,
            "primary_role": {"role_name": "Software Engineer",
                             "gap_analysis": {"missing_required_skills": ["Java"]}},
        }
        recs = RecommendationService().generate_recommendations(
            sample_cv, ats_result, role_analysis, industry_keywords=["fintech", "Python"]
        )

        skills = [r for r in recs if r["section"] == "skills" and r.get("keywords")]
        assert len(skills) == 1
        assert skills[0]["keywords"] == ["Terraform", "Java", "fintech"]

    def test_fallback_recommendations(self, sample_cv):
        sample_cv["summary"] = "Experienced engineer"
        sample_cv["projects"] = []
        recs = RecommendationService().generate_recommendations(sample_cv)

        assert {r["section"] for r in recs} == {"projects", "summary"}


class TestCachedRecommendations:
    """缓存和请求去重测试"""

    @pytest.mark.asyncio
    async def test_cache_hit(self, sample_cv):
        payload = {"recommendations": [], "summary": {"total": 0}, "generated_at": "2024-01-01T00:00:00"}
        service = RecommendationService()

        with patch("cvplus.services.recommendation_service.cache_service") as cache:
            cache.get_recommendations = AsyncMock(return_value={"payload": payload, "cached_at": time.time() - 5})
            cache.set_recommendations = AsyncMock()
            result = await service.get_recommendations("job1", 1, sample_cv)

        assert result["cached"] is True
        assert result["cache_age"] >= 5
        cache.set_recommendations.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_force_regenerate_skips_cache_read(self, sample_cv):
        service = RecommendationService()

        with patch("cvplus.services.recommendation_service.cache_service") as cache:
            cache.get_recommendations = AsyncMock(return_value=None)
            cache.set_recommendations = AsyncMock(return_value=True)
            result = await service.get_recommendations("job1", 1, sample_cv, force_regenerate=True)

        cache.get_recommendations.assert_not_awaited()
        assert result["cached"] is False
        # 强制刷新写回普通请求的缓存键
        assert cache.set_recommendations.await_args.args[0] == build_request_key("job1", 1)

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_generation(self, sample_cv):
        """测试相同请求并发时只生成一次"""
        service = RecommendationService()

        with patch("cvplus.services.recommendation_service.cache_service") as cache, \
                patch.object(service, "generate_recommendations", wraps=service.generate_recommendations) as generate:
            cache.get_recommendations = AsyncMock(return_value=None)
            cache.set_recommendations = AsyncMock(return_value=True)
            first, second = await asyncio.gather(
                service.get_recommendations("job1", 1, sample_cv),
                service.get_recommendations("job1", 1, sample_cv),
            )

        assert generate.call_count == 1
        assert first == second
        assert service._in_flight == {}

    @pytest.mark.asyncio
    async def test_cancelled_waiter_keeps_shared_generation(self, sample_cv):
        """测试等待方被取消时共享的生成任务继续完成"""
        service = RecommendationService()
        release = asyncio.Event()
        payload = {"recommendations": [], "summary": {"total": 0}, "cached": False, "cache_age": 0}

        async def slow_generation(*args):
            await release.wait()
            return payload

        with patch.object(service, "_load_or_generate", slow_generation):
            owner = asyncio.ensure_future(service.get_recommendations("job1", 1, sample_cv))
            await asyncio.sleep(0)
            follower = asyncio.ensure_future(service.get_recommendations("job1", 1, sample_cv))
            await asyncio.sleep(0)
            follower.cancel()
            with pytest.raises(asyncio.CancelledError):
                await follower

            release.set()
            assert await owner == payload

        assert service._in_flight == {}


class TestApplyRecommendations:
    """应用建议测试"""

    def test_apply_selected(self, sample_cv, ats_result):
        service = RecommendationService()
        recs = service.generate_recommendations(sample_cv, ats_result)
        ids = [r["id"] for r in recs if r["title"] in (
            "Add missing skills", "Start with a strong action verb", "Add achievement bullet points"
        )]

        result = service.apply_recommendations(sample_cv, recs, ids)

        improved = result["improved_cv"]
        assert "Terraform" in improved["skills"]["technical"]
        assert improved["experience"][0]["achievements"][1] == "Achieved responsible for API design reviews"
        assert improved["experience"][1]["achievements"] == ["Developed REST APIs and React frontends."]
        # 原始CV不被修改
        assert "Terraform" not in sample_cv["skills"]["technical"]
        assert result["transformation_summary"]["total_changes"] == 3
        assert set(result["comparison_report"]) == {"experience", "skills"}

    def test_section_addition(self):
        service = RecommendationService()
        recs = service.generate_recommendations({"personal_info": {}})

        result = service.apply_recommendations({"personal_info": {}}, recs, ["rec_skills_1"])

        assert result["improved_cv"]["skills"] == {"technical": [], "soft": [], "languages": [], "tools": []}
        assert result["applied"][0]["type"] == "section_addition"

    def test_skips_without_content(self, sample_cv):
        service = RecommendationService()
        recs = [{"id": "rec_summary_1", "type": "content", "section": "summary", "title": "Quantify",
                 "suggested_content": None, "estimated_score_improvement": 2}]

        result = service.apply_recommendations(sample_cv, recs, ["rec_summary_1"])

        assert result["applied"] == []
        assert result["skipped"] == [{"id": "rec_summary_1", "reason": "no_suggested_content"}]

    def test_unknown_ids(self, sample_cv):
        with pytest.raises(ValidationError):
            RecommendationService().apply_recommendations(sample_cv, [], ["rec_missing_1"])

    def test_unknown_ids_recorded_as_skipped(self, sample_cv):
        service = RecommendationService()
        recs = service.generate_recommendations({"personal_info": {}})

        result = service.apply_recommendations(
            {"personal_info": {}}, recs, ["rec_skills_1", "rec_unknown_9", "rec_unknown_9"]
        )

        assert [a["id"] for a in result["applied"]] == ["rec_skills_1"]
        assert result["skipped"] == [{"id": "rec_unknown_9", "reason": "unknown_id"}]
        assert result["transformation_summary"]["skipped"] == 1

    def test_role_summary_template_applied(self, sample_cv):
        """测试缺少摘要时使用岗位摘要模板"""
        role_analysis = RoleDetectionService().analyze(sample_cv)
        template = role_analysis["primary_role"]["summary_template"]
        sample_cv["summary"] = ""
        service = RecommendationService()

        recs = service.generate_recommendations(sample_cv, role_analysis=role_analysis)
        summary = next(r for r in recs if r["title"] == "Add a professional summary")
        assert summary["suggested_content"] == template

        result = service.apply_recommendations(sample_cv, recs, [summary["id"]])

        assert result["improved_cv"]["summary"] == template.strip()
        assert result["skipped"] == []
