import csv
import hashlib
import io
import logging
import re
import time
from typing import Dict, Any, List, Optional
import docx
import pdfplumber
from ..core.constants import MAX_TEXT_LENGTH
from .llm_service import LLMService

logger = logging.getLogger(__name__)

PARSE_SYSTEM_PROMPT = """You are an expert CV parser. Extract the CV into strict JSON with this schema:
{
  "personal_info": {"name": "", "email": "", "phone": "", "location": "", "linkedin": "", "website": "", "github": "", "title": ""},
  "summary": "",
  "experience": [{"company": "", "position": "", "start_date": "YYYY-MM", "end_date": "YYYY-MM or empty if current",
                  "is_current": false, "location": "", "description": "", "achievements": [""], "technologies": [""],
                  "employment_type": "full_time|part_time|contract|freelance|internship|volunteer"}],
  "education": [{"institution": "", "degree": "", "field": "", "start_date": "", "end_date": "", "gpa": "", "achievements": [""]}],
  "skills": {"technical": [""], "soft": [""], "languages": [""], "tools": [""]},
  "certifications": [{"name": "", "issuer": "", "date": ""}],
  "achievements": [""],
  "projects": [{"name": "", "description": "", "technologies": [""], "url": ""}]
}
Rules:
- Output JSON only, no markdown fences or commentary.
- Use only facts present in the text; leave unknown fields empty.
- Keep achievements as separate bullet strings."""

EMPLOYMENT_TYPES = {"full_time", "part_time", "contract", "freelance", "internship", "volunteer"}

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

CURRENT_MARKERS = {"present", "current", "now", "ongoing", "至今"}


def compute_content_hash(text: str) -> str:
    """CV内容哈希：小写并合并空白后取 sha256"""
    normalized = " ".join(text.lower().split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def normalize_date(value: Optional[str]) -> str:
    """
    将常见日期写法转换为 YYYY-MM
    无法识别时原样返回，当前职位标记返回空字符串
    """
    if not value:
        return ""
    text = str(value).strip()
    if text.lower() in CURRENT_MARKERS:
        return ""

    match = re.match(r"^(\d{4})[-/.年](\d{1,2})", text)
    if match:
        return f"{match.group(1)}-{int(match.group(2)):02d}"

    match = re.match(r"^(\d{1,2})[-/.](\d{4})$", text)
    if match:
        return f"{match.group(2)}-{int(match.group(1)):02d}"

    match = re.match(r"^([A-Za-z]{3})[A-Za-z]*\.?\s+(\d{4})$", text)
    if match and match.group(1).lower() in MONTHS:
        return f"{match.group(2)}-{MONTHS[match.group(1).lower()]:02d}"

    match = re.match(r"^(\d{4})$", text)
    if match:
        return f"{match.group(1)}-01"

    return text


class CVParser:
    """CV文件解析：文本提取、预处理和LLM结构化"""

    def __init__(self, llm_service: Optional[LLMService] = None):
        self.llm_service = llm_service or LLMService()

    def extract_text(self, content: bytes, input_type: str) -> str:
        """根据输入类型提取文本"""
        input_type = input_type.lower()
        if input_type == "pdf":
            text = self._extract_from_pdf(content)
        elif input_type == "docx":
            text = self._extract_from_docx(content)
        elif input_type == "csv":
            text = self._extract_from_csv(content)
        elif input_type == "txt":
            text = content.decode("utf-8", errors="ignore")
        else:
            raise ValueError(f"不支持的文件格式: {input_type}")

        if not text or not text.strip():
            raise ValueError("无法从文件中提取有效文本内容，请检查文件格式是否正确")
        return text

    def _extract_from_pdf(self, content: bytes) -> str:
        try:
            with pdfplumber.open(io.BytesIO(content)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as e:
            # pdfplumber/pdfminer 对损坏文件会抛出多种底层异常
            logger.error(f"PDF解析错误: {e}")
            raise ValueError("PDF文件解析失败")
        return "\n".join(pages).strip()

    def _extract_from_docx(self, content: bytes) -> str:
        try:
            document = docx.Document(io.BytesIO(content))
        except Exception as e:
            logger.error(f"Word解析错误: {e}")
            raise ValueError("Word文件解析失败")

        parts = [p.text.strip() for p in document.paragraphs if p.text and p.text.strip()]
        # 很多模板把经历放在表格中
        for table in document.tables:
            for row in table.rows:
                cells = []
                for cell in row.cells:
                    cell_text = cell.text.strip()
                    if cell_text and cell_text not in cells:
                        cells.append(cell_text)
                if cells:
                    parts.append(" | ".join(cells))
        return "\n".join(parts)

    def _extract_from_csv(self, content: bytes) -> str:
        reader = csv.reader(io.StringIO(content.decode("utf-8", errors="ignore")))
        rows = [", ".join(cell.strip() for cell in row if cell.strip()) for row in reader]
        return "\n".join(row for row in rows if row)

    def preprocess_text(self, text: str, max_length: int = MAX_TEXT_LENGTH) -> str:
        """合并空白、去掉空行，超长时在段落边界截断"""
        lines = [" ".join(line.split()) for line in text.split("\n")]
        cleaned = "\n".join(line for line in lines if line)

        if len(cleaned) <= max_length:
            return cleaned

        logger.warning(f"[文本预处理] 文本过长({len(cleaned)}字符)，将截断至{max_length}字符")
        truncated = cleaned[:max_length]
        last_newline = truncated.rfind("\n")
        if last_newline > max_length * 0.8:
            truncated = truncated[:last_newline]
        return truncated

    async def parse_cv_text(self, raw_text: str) -> Dict[str, Any]:
        """使用LLM将CV文本解析为结构化数据"""
        start = time.time()
        text = self.preprocess_text(raw_text)
        logger.info(f"[CV解析] 开始: 文本长度 {len(text)} 字符")

        messages = [{"role": "user", "content": f"Parse this CV:\n---\n{text}\n---\nReturn JSON only."}]
        parsed = await self.llm_service.complete_json(
            messages, temperature=0.1, max_tokens=4000, system=PARSE_SYSTEM_PROMPT
        )
        normalized = self.normalize_parsed_cv(parsed)

        logger.info(
            f"[CV解析] 完成: 耗时{time.time() - start:.2f}秒, "
            f"{len(normalized['experience'])}段工作经历, {len(normalized['education'])}段教育背景"
        )
        return normalized

    def normalize_parsed_cv(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """补齐所有字段并统一格式"""
        personal = data.get("personal_info") or {}
        personal_info = {
            key: str(personal.get(key) or "").strip()
            for key in ("name", "email", "phone", "location", "linkedin", "website", "github", "title")
        }

        experience = [self._normalize_experience(item) for item in data.get("experience") or [] if isinstance(item, dict)]
        education = [self._normalize_education(item) for item in data.get("education") or [] if isinstance(item, dict)]

        return {
            "personal_info": personal_info,
            "summary": (data.get("summary") or "").strip(),
            "experience": self.sort_experience(experience),
            "education": education,
            "skills": self._normalize_skills(data.get("skills")),
            "certifications": [c for c in data.get("certifications") or [] if c],
            "achievements": [a for a in data.get("achievements") or [] if isinstance(a, str) and a.strip()],
            "projects": [p for p in data.get("projects") or [] if isinstance(p, dict)],
        }

    def _normalize_experience(self, item: Dict[str, Any]) -> Dict[str, Any]:
        end_raw = item.get("end_date") or ""
        is_current = bool(item.get("is_current")) or str(end_raw).strip().lower() in CURRENT_MARKERS
        employment_type = (item.get("employment_type") or "").lower()
        return {
            "company": (item.get("company") or "").strip(),
            "position": (item.get("position") or item.get("title") or "").strip(),
            "start_date": normalize_date(item.get("start_date")),
            "end_date": "" if is_current else normalize_date(end_raw),
            "is_current": is_current,
            "location": item.get("location") or "",
            "description": item.get("description") or "",
            "achievements": [a.strip() for a in item.get("achievements") or [] if isinstance(a, str) and a.strip()],
            "technologies": [t for t in item.get("technologies") or [] if t],
            "employment_type": employment_type if employment_type in EMPLOYMENT_TYPES else "",
        }

    def _normalize_education(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "institution": (item.get("institution") or item.get("school") or "").strip(),
            "degree": item.get("degree") or "",
            "field": item.get("field") or item.get("major") or "",
            "start_date": normalize_date(item.get("start_date")),
            "end_date": normalize_date(item.get("end_date") or item.get("graduation_date")),
            "gpa": item.get("gpa") or "",
            "achievements": [a for a in item.get("achievements") or [] if a],
        }

    def _normalize_skills(self, skills: Any) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {"technical": [], "soft": [], "languages": [], "tools": []}
        if isinstance(skills, list):
            # 扁平列表统一视为技术技能
            result["technical"] = [s for s in skills if isinstance(s, str) and s.strip()]
            return result
        if isinstance(skills, dict):
            for key in result:
                values = skills.get(key) or []
                result[key] = [s.strip() for s in values if isinstance(s, str) and s.strip()]
        return result

    @staticmethod
    def sort_experience(experience: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """当前职位在前，其余按开始时间由近及远，无日期的排最后"""
        def sort_key(exp: Dict[str, Any]):
            if exp.get("is_current"):
                return (0, 0)
            match = re.match(r"^(\d{4})-(\d{2})$", exp.get("start_date") or "")
            if match:
                return (1, -(int(match.group(1)) * 100 + int(match.group(2))))
            return (2, 0)

        return sorted(experience, key=sort_key)


def flatten_cv_text(parsed_cv: Dict[str, Any]) -> str:
    """将结构化CV拼接成纯文本，用于关键词统计"""
    parts: List[str] = []
    personal = parsed_cv.get("personal_info") or {}
    parts.extend(str(v) for v in personal.values() if v)
    if parsed_cv.get("summary"):
        parts.append(parsed_cv["summary"])
    for exp in parsed_cv.get("experience") or []:
        parts.extend([exp.get("position", ""), exp.get("company", ""), exp.get("description", "")])
        parts.extend(exp.get("achievements") or [])
        parts.extend(exp.get("technologies") or [])
    for edu in parsed_cv.get("education") or []:
        parts.extend([edu.get("degree", ""), edu.get("field", ""), edu.get("institution", "")])
    skills = parsed_cv.get("skills") or {}
    if isinstance(skills, dict):
        for values in skills.values():
            parts.extend(values or [])
    parts.extend(parsed_cv.get("achievements") or [])
    for project in parsed_cv.get("projects") or []:
        parts.extend([project.get("name", ""), project.get("description", "")])
        parts.extend(project.get("technologies") or [])
    return "\n".join(p for p in parts if isinstance(p, str) and p)


def all_skills(parsed_cv: Dict[str, Any]) -> List[str]:
    """所有技能（小写去重，保持顺序）"""
    skills = parsed_cv.get("skills") or {}
    values: List[str] = []
    if isinstance(skills, dict):
        for key in ("technical", "tools", "soft", "languages"):
            values.extend(skills.get(key) or [])
    seen = set()
    result = []
    for skill in values:
        lowered = skill.lower().strip()
        if lowered and lowered not in seen:
            seen.add(lowered)
            result.append(lowered)
    return result
