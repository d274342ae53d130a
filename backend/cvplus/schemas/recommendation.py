"""
改进建议相关的Schema定义
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class RecommendationRequest(BaseModel):
    target_role: Optional[str] = Field(None, max_length=200, description="目标岗位")
    industry_keywords: List[str] = Field(default_factory=list, description="行业关键词")
    force_regenerate: bool = Field(False, description="忽略缓存重新生成")


class RecommendationsResponse(BaseModel):
    recommendations: List[Dict[str, Any]]
    summary: Dict[str, Any]
    generated_at: str
    cached: bool = False
    cache_age: Optional[float] = None


class ApplyImprovementsRequest(BaseModel):
    selected_recommendation_ids: List[str] = Field(..., min_length=1, description="要应用的建议ID")


class ApplyImprovementsResponse(BaseModel):
    improved_cv: Dict[str, Any]
    applied: List[Dict[str, Any]]
    skipped: List[Dict[str, Any]]
    transformation_summary: Dict[str, Any]
    comparison_report: Dict[str, Any]
