"""
基于CV内容的RAG问答
"""
import logging
from typing import Dict, Any, List, Optional
from sqlalchemy.orm import Session
from ..core.errors import ValidationError
from ..models.cv_job import CVJob
from ..models.embedding import CVEmbedding
from .embedding_service import EmbeddingService
from .llm_service import LLMService

logger = logging.getLogger(__name__)

MAX_QUESTION_LENGTH = 500
MAX_HISTORY_MESSAGES = 10
DEFAULT_TOP_K = 5


def build_system_prompt(owner_name: str, context_chunks: List[Dict[str, Any]], custom_prompt: Optional[str] = None) -> str:
    context = "\n\n".join(f"[{c['section']}] {c['content']}" for c in context_chunks)
    prompt = (
        f"You are a helpful assistant answering questions about {owner_name}'s professional background. "
        "Answer using ONLY the CV context below. If the context does not contain the answer, say that "
        "the CV does not mention it. Keep answers concise and factual.\n\n"
        f"CV CONTEXT:\n{context}"
    )
    if custom_prompt:
        prompt += f"\n\nAdditional instructions: {custom_prompt}"
    return prompt


class RAGChatService:
    """CV问答"""

    def __init__(
        self,
        db_session: Session,
        llm_service: Optional[LLMService] = None,
        embedding_service: Optional[EmbeddingService] = None
    ):
        self.db = db_session
        self.llm_service = llm_service or LLMService(db_session=db_session)
        self.embedding_service = embedding_service or EmbeddingService(db_session=db_session)

    async def chat(
        self,
        job: CVJob,
        question: str,
        history: Optional[List[Dict[str, str]]] = None,
        top_k: int = DEFAULT_TOP_K,
        system_prompt: Optional[str] = None
    ) -> Dict[str, Any]:
        """返回 answer、sources 和 confidence（来源相似度均值）"""
        question = (question or "").strip()
        if not question:
            raise ValidationError("问题不能为空")
        if len(question) > MAX_QUESTION_LENGTH:
            raise ValidationError(f"问题长度不能超过{MAX_QUESTION_LENGTH}个字符")

        embeddings = self.db.query(CVEmbedding).filter(CVEmbedding.job_id == job.id).all()
        if not embeddings:
            raise ValidationError("该CV尚未向量化，请先生成向量")

        sources = await self.embedding_service.search_similar(question, embeddings, top_k)
        owner = ((job.parsed_cv or {}).get("personal_info") or {}).get("name") or "the candidate"

        messages = [
            {"role": m["role"], "content": m["content"]}
            for m in (history or [])[-MAX_HISTORY_MESSAGES:]
            if m.get("role") in ("user", "assistant") and m.get("content")
        ]
        messages.append({"role": "user", "content": question})

        answer = await self.llm_service.chat_completion(
            messages,
            temperature=0.3,
            max_tokens=500,
            system=build_system_prompt(owner, sources, system_prompt),
        )

        confidence = round(sum(s["similarity"] for s in sources) / len(sources), 4) if sources else 0.0
        logger.info(f"[RAG问答] 任务 {job.id}: 检索 {len(sources)} 个分块, 置信度 {confidence}")
        return {"answer": answer.strip(), "sources": sources, "confidence": confidence}
