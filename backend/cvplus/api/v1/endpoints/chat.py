"""
CV向量化和RAG问答API端点
"""
import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from ....core.database import get_db
from ....core.errors import ValidationError
from ....core.permissions import get_current_user
from ....core.rate_limit import limiter, get_rate_limit
from ....models.user import User
from ....schemas.chat import ChatRequest, ChatResponse, EmbeddingRequest
from ....services.embedding_service import CHUNK_STRATEGIES, EmbeddingService
from ....services.job_service import CVJobService
from ....services.rag_chat import RAGChatService
from .analysis import get_parsed_job

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{job_id}/embeddings")
async def create_embeddings(
    job_id: str,
    body: EmbeddingRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """将CV分块向量化，替换该任务已有的向量"""
    if body.strategy not in CHUNK_STRATEGIES:
        raise ValidationError(f"不支持的分块策略: {body.strategy}", details={"allowed": list(CHUNK_STRATEGIES)})
    job = get_parsed_job(job_id, db, current_user)
    try:
        rows = await EmbeddingService(db_session=db).process_cv(job, body.strategy)
    except ValueError as e:
        raise ValidationError(str(e))

    sections = {}
    for row in rows:
        sections[row.section] = sections.get(row.section, 0) + 1
    return {
        "job_id": job.id,
        "chunks": len(rows),
        "sections": sections,
        "total_tokens": sum(row.tokens for row in rows),
        "strategy": body.strategy,
    }


@router.post("/{job_id}/chat", response_model=ChatResponse)
@limiter.limit(get_rate_limit("chat"))
async def chat_with_cv(
    request: Request,
    job_id: str,
    body: ChatRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """基于CV内容回答问题（需先生成向量）"""
    job = CVJobService(db).get_job(job_id, current_user)
    history = [m.model_dump() for m in body.history]
    return await RAGChatService(db_session=db).chat(job, body.question, history, body.top_k)
