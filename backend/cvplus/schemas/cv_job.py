"""
CV任务相关的Schema定义
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


class CVJobResponse(BaseModel):
    """任务摘要"""
    id: str
    status: str
    progress: int = 0
    priority: Optional[str] = None
    original_file_name: Optional[str] = None
    original_file_size: Optional[int] = None
    input_type: Optional[str] = None
    selected_features: List[str] = []
    credits_charged: int = 0
    error_message: Optional[str] = None
    warnings: List[str] = []
    estimated_completion_at: Optional[datetime] = None
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CVJobDetail(CVJobResponse):
    """任务详情（包含分析结果）"""
    customizations: Optional[Dict[str, Any]] = None
    error_details: Optional[Dict[str, Any]] = None
    completed_steps: List[Dict[str, Any]] = []
    parsed_cv: Optional[Dict[str, Any]] = None
    ats_result: Optional[Dict[str, Any]] = None
    role_analysis: Optional[Dict[str, Any]] = None
    improved_cv: Optional[Dict[str, Any]] = None
    enhanced_features: Optional[Dict[str, Any]] = None
    generated_output: Optional[Dict[str, Any]] = None
    improvements_applied: bool = False
    total_processing_time_ms: Optional[int] = None


class CVJobStatus(BaseModel):
    """任务状态轮询"""
    id: str
    status: str
    status_description: str
    progress: int
    completed_steps: List[Dict[str, Any]] = []
    enhanced_features: Optional[Dict[str, Any]] = None
    error_details: Optional[Dict[str, Any]] = None
    estimated_completion_at: Optional[datetime] = None
    timed_out: bool = False


class CVJobCreated(BaseModel):
    """创建任务响应"""
    job: CVJobResponse
    estimated_processing_time_ms: int
    credits_charged: int
    remaining_credits: int
    policy_warnings: List[Dict[str, Any]] = []


class ATSRequest(BaseModel):
    target_role: Optional[str] = Field(None, max_length=200, description="目标岗位")
    target_keywords: List[str] = Field(default_factory=list, description="目标关键词")


class RoleAnalysisResponse(BaseModel):
    primary_role: Optional[Dict[str, Any]] = None
    alternative_roles: List[Dict[str, Any]] = []
    overall_confidence: float = 0.0
    immediate_recommendations: List[Dict[str, Any]] = []
    strategic_recommendations: List[Dict[str, Any]] = []
    confidence_distribution: Dict[str, int] = {}
    fallback_used: bool = False
