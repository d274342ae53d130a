"""
视频介绍生成

脚本由LLM生成，视频由外部provider（HeyGen、RunwayML）渲染；
按健康度和优先级选择provider，失败时依次切换。
"""
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional
import httpx
from sqlalchemy.orm import Session
from ..core.errors import CVPlusError, ServiceUnavailableError, ValidationError, map_external_api_error
from ..core.monitoring import record_video_call
from .config_service import config_service
from .llm_service import LLMService
from .resilience import (
    RESILIENCE_PRESETS,
    CircuitOpenError,
    OperationTimeoutError,
    get_circuit_breaker,
    with_full_resilience,
)

logger = logging.getLogger(__name__)

SCRIPT_DURATIONS = {
    "short": {"seconds": 30, "words": 75},
    "medium": {"seconds": 60, "words": 150},
    "long": {"seconds": 90, "words": 225},
}
SCRIPT_STYLES = {
    "professional": "formal, confident and concise",
    "friendly": "warm, conversational and approachable",
    "creative": "energetic, memorable and story-driven",
}
HEALTH_HISTORY_SIZE = 20


class VideoProviderError(Exception):
    """provider调用失败，status_code 为provider返回的HTTP状态码"""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


@dataclass
class VideoGenerationResult:
    provider: str
    remote_id: str
    status: str
    video_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "remote_id": self.remote_id,
            "status": self.status,
            "video_url": self.video_url,
            "metadata": self.metadata,
        }


class VideoProvider:
    """provider基类"""
    name = ""
    priority = 99
    max_duration = 0
    default_base_url = ""

    def __init__(self, db_session: Optional[Session] = None):
        self.db = db_session
        self.timeout = httpx.Timeout(60.0, connect=10.0)

    def _setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self.db is None:
            return default
        return config_service.get_setting(self.db, f"video.{self.name}.{key}", default)

    @property
    def api_key(self) -> Optional[str]:
        return self._setting("api_key")

    @property
    def base_url(self) -> str:
        return (self._setting("base_url") or self.default_base_url).rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.api_key) and config_service.is_enabled(self.db, f"video.{self.name}")

    def supports_duration(self, seconds: int) -> bool:
        return seconds <= self.max_duration

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
            except httpx.RequestError as e:
                raise VideoProviderError(self.name, f"网络错误: {e}", 503)
        if response.status_code >= 400:
            raise VideoProviderError(self.name, response.text[:200], response.status_code)
        try:
            return response.json()
        except ValueError:
            raise VideoProviderError(self.name, "响应不是有效的JSON", 502)

    async def generate(self, script: str, options: Dict[str, Any]) -> VideoGenerationResult:
        raise NotImplementedError

    async def check_status(self, remote_id: str) -> VideoGenerationResult:
        raise NotImplementedError


class HeyGenProvider(VideoProvider):
    name = "heygen"
    priority = 1
    max_duration = 300
    default_base_url = "https://api.heygen.com"
    avatar_styles = ("normal", "circle", "closeUp")

    def _headers(self) -> Dict[str, str]:
        return {"X-Api-Key": self.api_key or "", "Content-Type": "application/json"}

    async def generate(self, script: str, options: Dict[str, Any]) -> VideoGenerationResult:
        avatar_style = options.get("avatar_style", "normal")
        if avatar_style not in self.avatar_styles:
            avatar_style = "normal"
        body = {
            "video_inputs": [{
                "character": {
                    "type": "avatar",
                    "avatar_id": options.get("avatar_id") or self._setting("avatar_id", "default"),
                    "avatar_style": avatar_style,
                },
                "voice": {
                    "type": "text",
                    "input_text": script,
                    "voice_id": options.get("voice_id") or self._setting("voice_id", "default"),
                },
                "background": {"type": "color", "value": options.get("background_color", "#FFFFFF")},
            }],
            "dimension": {"width": 1280, "height": 720},
        }
        data = await self._request("POST", f"{self.base_url}/v2/video/generate", json=body)
        video_id = (data.get("data") or {}).get("video_id")
        if not video_id:
            raise VideoProviderError(self.name, "响应中缺少 video_id", 502)
        return VideoGenerationResult(self.name, video_id, "processing", metadata={"avatar_style": avatar_style})

    async def check_status(self, remote_id: str) -> VideoGenerationResult:
        data = await self._request("GET", f"{self.base_url}/v1/video_status.get", params={"video_id": remote_id})
        payload = data.get("data") or {}
        status = {"completed": "completed", "failed": "failed"}.get(payload.get("status"), "processing")
        return VideoGenerationResult(
            self.name, remote_id, status, payload.get("video_url"),
            metadata={"duration": payload.get("duration"), "thumbnail_url": payload.get("thumbnail_url")},
        )


class RunwayMLProvider(VideoProvider):
    name = "runwayml"
    priority = 2
    max_duration = 600
    default_base_url = "https://api.dev.runwayml.com"
    api_version = "2024-11-06"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key or ''}",
            "X-Runway-Version": self.api_version,
            "Content-Type": "application/json",
        }

    async def generate(self, script: str, options: Dict[str, Any]) -> VideoGenerationResult:
        body: Dict[str, Any] = {
            "model": self._setting("model_name", "gen3a_turbo"),
            "promptText": script[:1000],
            "duration": 10 if options.get("duration_seconds", 60) > 5 else 5,
            "ratio": "1280:768",
        }
        if options.get("prompt_image"):
            body["promptImage"] = options["prompt_image"]
        data = await self._request("POST", f"{self.base_url}/v1/image_to_video", json=body)
        task_id = data.get("id")
        if not task_id:
            raise VideoProviderError(self.name, "响应中缺少任务ID", 502)
        return VideoGenerationResult(self.name, task_id, "processing")

    async def check_status(self, remote_id: str) -> VideoGenerationResult:
        data = await self._request("GET", f"{self.base_url}/v1/tasks/{remote_id}")
        raw = (data.get("status") or "").upper()
        status = {"SUCCEEDED": "completed", "FAILED": "failed", "CANCELLED": "failed"}.get(raw, "processing")
        output = data.get("output") or []
        return VideoGenerationResult(self.name, remote_id, status, output[0] if output else None)


PROVIDER_CLASSES = [HeyGenProvider, RunwayMLProvider]

# provider最近调用结果（进程内）
_provider_history: Dict[str, Deque[bool]] = {}


def record_provider_result(provider: str, success: bool):
    _provider_history.setdefault(provider, deque(maxlen=HEALTH_HISTORY_SIZE)).append(success)
    record_video_call(provider, success)


def provider_health(provider: str) -> float:
    """最近20次调用的成功率，无记录时为1.0"""
    history = _provider_history.get(provider)
    if not history:
        return 1.0
    return sum(1 for ok in history if ok) / len(history)


def reset_provider_history():
    _provider_history.clear()


class VideoGenerationService:
    """视频介绍生成"""

    def __init__(
        self,
        db_session: Optional[Session] = None,
        llm_service: Optional[LLMService] = None,
        providers: Optional[List[VideoProvider]] = None
    ):
        self.db = db_session
        self.llm_service = llm_service or LLMService(db_session=db_session)
        self.providers = providers if providers is not None else [cls(db_session) for cls in PROVIDER_CLASSES]

    def get_provider(self, name: str) -> VideoProvider:
        for provider in self.providers:
            if provider.name == name:
                return provider
        raise ValidationError(f"未知的视频provider: {name}")

    async def generate_script(self, parsed_cv: Dict[str, Any], duration: str = "medium", style: str = "professional") -> str:
        if duration not in SCRIPT_DURATIONS:
            raise ValidationError(f"不支持的时长: {duration}", details={"allowed": list(SCRIPT_DURATIONS)})
        if style not in SCRIPT_STYLES:
            raise ValidationError(f"不支持的风格: {style}", details={"allowed": list(SCRIPT_STYLES)})

        target = SCRIPT_DURATIONS[duration]
        personal = parsed_cv.get("personal_info") or {}
        experience = parsed_cv.get("experience") or []
        skills = parsed_cv.get("skills") or {}
        background = [
            f"Name: {personal.get('name') or 'the candidate'}",
            f"Title: {personal.get('title') or (experience[0].get('position') if experience else '')}",
            f"Summary: {parsed_cv.get('summary', '')}",
            "Recent roles: " + "; ".join(f"{e.get('position')} at {e.get('company')}" for e in experience[:3]),
            "Key skills: " + ", ".join((skills.get("technical") or [])[:8]),
            "Achievements: " + "; ".join((parsed_cv.get("achievements") or [])[:3]),
        ]
        prompt = (
            f"Write a {target['seconds']}-second first-person video introduction script of about "
            f"{target['words']} words. Tone: {SCRIPT_STYLES[style]}. Use only the facts below, no stage "
            f"directions, no headings.\n\n" + "\n".join(background)
        )
        script = await self.llm_service.chat_completion(
            [{"role": "user", "content": prompt}], temperature=0.7, max_tokens=600
        )
        logger.info(f"[视频] 脚本生成完成: {len(script.split())} 词, 时长 {duration}, 风格 {style}")
        return script.strip()

    def select_providers(self, duration_seconds: int) -> List[VideoProvider]:
        """按 (健康度降序, 优先级升序) 排序的可用provider"""
        candidates = []
        for provider in self.providers:
            if not provider.is_configured():
                continue
            if not provider.supports_duration(duration_seconds):
                continue
            if get_circuit_breaker(RESILIENCE_PRESETS[provider.name]).is_open():
                logger.info(f"[视频] {provider.name} 熔断中，跳过")
                continue
            candidates.append(provider)
        candidates.sort(key=lambda p: (-provider_health(p.name), p.priority))
        return candidates

    async def generate_video(self, script: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """按排序依次尝试provider，返回结果和切换记录"""
        options = dict(options or {})
        duration_seconds = options.setdefault("duration_seconds", SCRIPT_DURATIONS["medium"]["seconds"])
        providers = self.select_providers(duration_seconds)
        if not providers:
            raise ServiceUnavailableError("video_generation", message="没有可用的视频生成服务")

        switches: List[Dict[str, Any]] = []
        last_error: Optional[BaseException] = None
        for provider in providers:
            start = time.time()
            try:
                result = await with_full_resilience(
                    lambda p=provider: p.generate(script, options),
                    RESILIENCE_PRESETS[provider.name],
                )
            except (VideoProviderError, CircuitOpenError, OperationTimeoutError, CVPlusError) as e:
                record_provider_result(provider.name, False)
                logger.warning(f"[视频] {provider.name} 生成失败: {e}，尝试下一个provider")
                switches.append({"from": provider.name, "reason": str(e)})
                last_error = e
                continue

            record_provider_result(provider.name, True)
            logger.info(f"[视频] {provider.name} 已提交: {result.remote_id}, 耗时 {time.time() - start:.2f}秒")
            return {**result.to_dict(), "provider_switches": switches}

        logger.error(f"[视频] 所有provider均失败: {last_error}")
        raise ServiceUnavailableError(
            "video_generation", retry_after=60, message="所有视频生成服务均不可用，请稍后重试"
        )

    async def check_status(self, provider_name: str, remote_id: str) -> Dict[str, Any]:
        provider = self.get_provider(provider_name)
        try:
            result = await provider.check_status(remote_id)
        except VideoProviderError as e:
            raise map_external_api_error(e.status_code, provider_name, str(e))
        return result.to_dict()
