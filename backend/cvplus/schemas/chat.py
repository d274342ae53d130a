"""
RAG问答和视频生成的Schema定义
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class EmbeddingRequest(BaseModel):
    strategy: str = Field("semantic", description="分块策略: semantic, fixed-size, sliding-window")


class ChatMessage(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str


class ChatRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=500)
    history: List[ChatMessage] = Field(default_factory=list)
    top_k: int = Field(3, ge=1, le=10)


class ChatResponse(BaseModel):
    answer: str
    sources: List[Dict[str, Any]]
    confidence: float


class VideoRequest(BaseModel):
    duration: str = Field("medium", description="short, medium, long")
    style: str = Field("professional", description="professional, friendly, creative")
    avatar_id: Optional[str] = None
    voice_id: Optional[str] = None
    avatar_style: Optional[str] = Field(None, description="normal, circle, closeUp")
    background_color: Optional[str] = None
    prompt_image: Optional[str] = Field(None, description="RunwayML 首帧图片URL")
