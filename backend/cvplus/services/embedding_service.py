"""
CV向量化服务
分块、调用Embedding API、相似度检索
"""
import asyncio
import logging
import math
import re
from typing import Dict, Any, List, Optional
import numpy as np
from sqlalchemy.orm import Session
from ..models.cv_job import CVJob
from ..models.embedding import CVEmbedding
from .llm_service import LLMService

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "text-embedding-ada-002"
EMBEDDING_BATCH_SIZE = 20
BATCH_DELAY_SECONDS = 0.1

CHUNK_STRATEGIES = ("semantic", "fixed-size", "sliding-window")
DEFAULT_CHUNK_TOKENS = 500
DEFAULT_CHUNK_OVERLAP = 50

SECTION_IMPORTANCE = {
    "experience": 1.2,
    "skills": 1.1,
    "achievements": 1.1,
    "education": 1.0,
}
DEFAULT_SECTION_IMPORTANCE = 0.9


def estimate_tokens(text: str) -> int:
    """粗略估算：4个字符约1个token"""
    return math.ceil(len(text) / 4)


def cosine_similarity(vector1: List[float], vector2: List[float]) -> float:
    """余弦相似度，零向量返回0"""
    if len(vector1) != len(vector2):
        raise ValueError(f"向量维度不一致: {len(vector1)} != {len(vector2)}")
    v1 = np.array(vector1, dtype=np.float32)
    v2 = np.array(vector2, dtype=np.float32)
    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return float(np.dot(v1, v2) / (norm1 * norm2))


def section_importance(section: str) -> float:
    return SECTION_IMPORTANCE.get(section, DEFAULT_SECTION_IMPORTANCE)


def chunk_text(
    text: str,
    strategy: str = "semantic",
    max_tokens: int = DEFAULT_CHUNK_TOKENS,
    overlap: int = DEFAULT_CHUNK_OVERLAP
) -> List[str]:
    """
    按策略切分文本

    - semantic: 以段落/句子为单位装箱，不超过 max_tokens
    - fixed-size: 按字符数定长切分
    - sliding-window: 定长切分并保留 overlap 个token的重叠
    """
    text = text.strip()
    if not text:
        return []
    if strategy not in CHUNK_STRATEGIES:
        raise ValueError(f"未知的分块策略: {strategy}")

    max_chars = max_tokens * 4
    if strategy == "fixed-size":
        return [text[i:i + max_chars] for i in range(0, len(text), max_chars)]

    if strategy == "sliding-window":
        step = max(1, max_chars - overlap * 4)
        chunks = []
        for start in range(0, len(text), step):
            chunks.append(text[start:start + max_chars])
            if start + max_chars >= len(text):
                break
        return chunks

    units: List[str] = []
    for paragraph in re.split(r"\n\s*\n|\n", text):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        if estimate_tokens(paragraph) <= max_tokens:
            units.append(paragraph)
            continue
        # 段落过长时退化为按句子切分，单句仍超长则定长切分
        for sentence in re.split(r"(?<=[.!?。！？])\s*", paragraph):
            sentence = sentence.strip()
            if not sentence:
                continue
            if estimate_tokens(sentence) <= max_tokens:
                units.append(sentence)
            else:
                units.extend(sentence[i:i + max_chars] for i in range(0, len(sentence), max_chars))

    chunks: List[str] = []
    current = ""
    for unit in units:
        candidate = f"{current}\n{unit}" if current else unit
        if estimate_tokens(candidate) <= max_tokens:
            current = candidate
        else:
            chunks.append(current)
            current = unit
    if current:
        chunks.append(current)
    return chunks


def build_section_texts(parsed_cv: Dict[str, Any]) -> Dict[str, List[str]]:
    """按章节整理需要向量化的文本"""
    sections: Dict[str, List[str]] = {"experience": [], "education": [], "skills": [], "achievements": []}

    summary = (parsed_cv.get("summary") or "").strip()
    if summary:
        sections["summary"] = [summary]

    for exp in parsed_cv.get("experience") or []:
        header = f"{exp.get('position', '')} at {exp.get('company', '')}"
        dates = f"{exp.get('start_date', '')} - {exp.get('end_date') or 'Present'}"
        lines = [f"{header} ({dates})", exp.get("description") or ""]
        lines.extend(f"- {a}" for a in exp.get("achievements") or [])
        if exp.get("technologies"):
            lines.append("Technologies: " + ", ".join(exp["technologies"]))
        sections["experience"].append("\n".join(line for line in lines if line))

    for edu in parsed_cv.get("education") or []:
        sections["education"].append(
            f"{edu.get('degree', '')} in {edu.get('field', '')} from {edu.get('institution', '')} "
            f"({edu.get('end_date', '')})".strip()
        )

    skills = parsed_cv.get("skills") or {}
    for category, values in skills.items():
        if values:
            sections["skills"].append(f"{category.title()} skills: {', '.join(values)}")

    sections["achievements"].extend(parsed_cv.get("achievements") or [])
    return {name: texts for name, texts in sections.items() if texts}


class EmbeddingService:
    """CV向量化与检索"""

    def __init__(self, db_session: Optional[Session] = None, llm_service: Optional[LLMService] = None):
        self.db = db_session
        self.llm_service = llm_service or LLMService(db_session=db_session, provider="openai")
        self.model = EMBEDDING_MODEL

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """分批调用Embedding API，每批20条"""
        vectors: List[List[float]] = []
        for start in range(0, len(texts), EMBEDDING_BATCH_SIZE):
            batch = texts[start:start + EMBEDDING_BATCH_SIZE]
            vectors.extend(await self.llm_service.create_embeddings(batch, self.model))
            if start + EMBEDDING_BATCH_SIZE < len(texts):
                await asyncio.sleep(BATCH_DELAY_SECONDS)
        logger.info(f"[向量化] 生成 {len(vectors)} 个向量，共 {math.ceil(len(texts) / EMBEDDING_BATCH_SIZE)} 批")
        return vectors

    async def process_cv(self, job: CVJob, strategy: str = "semantic") -> List[CVEmbedding]:
        """将任务的结构化CV分块向量化并替换已有记录"""
        if not job.parsed_cv:
            raise ValueError("CV尚未解析，无法向量化")

        chunks: List[Dict[str, Any]] = []
        for section, texts in build_section_texts(job.parsed_cv).items():
            index = 0
            for text in texts:
                for chunk in chunk_text(text, strategy):
                    chunks.append({"section": section, "chunk_index": index, "content": chunk})
                    index += 1

        if not chunks:
            raise ValueError("CV中没有可向量化的内容")

        vectors = await self.generate_embeddings([c["content"] for c in chunks])

        if self.db is not None:
            self.db.query(CVEmbedding).filter(CVEmbedding.job_id == job.id).delete()

        rows = []
        for chunk, vector in zip(chunks, vectors):
            row = CVEmbedding(
                job_id=job.id,
                section=chunk["section"],
                chunk_index=chunk["chunk_index"],
                content=chunk["content"],
                vector=vector,
                tokens=estimate_tokens(chunk["content"]),
                importance=section_importance(chunk["section"]),
                model=self.model,
            )
            rows.append(row)

        if self.db is not None:
            self.db.add_all(rows)
            self.db.commit()
        logger.info(f"[向量化] 任务 {job.id}: 保存 {len(rows)} 个分块")
        return rows

    async def search_similar(
        self,
        query: str,
        embeddings: List[CVEmbedding],
        top_k: int = 5
    ) -> List[Dict[str, Any]]:
        """相似度 x 章节权重排序，返回前 top_k 条"""
        if not embeddings:
            return []
        query_vector = (await self.generate_embeddings([query]))[0]

        scored = []
        for embedding in embeddings:
            similarity = cosine_similarity(query_vector, embedding.vector)
            scored.append({
                "section": embedding.section,
                "content": embedding.content,
                "similarity": round(similarity, 4),
                "relevance": round(similarity * section_importance(embedding.section), 4),
            })

        scored.sort(key=lambda item: item["relevance"], reverse=True)
        results = scored[:top_k]
        for rank, item in enumerate(results, start=1):
            item["rank"] = rank
        return results
