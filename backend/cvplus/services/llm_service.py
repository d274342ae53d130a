import httpx
import json
import logging
import re
import time
from typing import List, Dict, Any, Optional, Tuple
from ..core.monitoring import record_llm_call, record_error

logger = logging.getLogger(__name__)

class LLMError(Exception):
    status_code: int = 500
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code

class LLMAuthError(LLMError):
    status_code = 401

class LLMRateLimitError(LLMError):
    status_code = 429

class LLMBadRequest(LLMError):
    status_code = 400

class LLMServerError(LLMError):
    status_code = 502

class LLMNetworkError(LLMError):
    status_code = 503

class LLMParseError(LLMError):
    status_code = 502

ANTHROPIC_API_VERSION = "2023-06-01"

class LLMService:
    """
    多provider LLM服务（Anthropic Claude、OpenAI）
    配置从系统配置表读取，当前provider不可用时回退到其他已启用且配置了密钥的provider
    """
    def __init__(self, db_session=None, provider: str = "anthropic"):
        self.db_session = db_session
        self.timeout = 120.0

        self._provider_configs = {
            "anthropic": {
                "default_base_url": "https://api.anthropic.com/v1",
                "default_model": "claude-3-5-sonnet-20241022",
                "config_prefix": "llm.anthropic"
            },
            "openai": {
                "default_base_url": "https://api.openai.com/v1",
                "default_model": "gpt-4o-mini",
                "config_prefix": "llm.openai"
            }
        }

        self.provider = provider.lower()
        if self.provider not in self._provider_configs:
            logger.warning(f"未知的provider: {self.provider}，使用anthropic作为默认值")
            self.provider = "anthropic"

        # 显式设置的密钥优先于系统配置（测试和脚本使用）
        self.api_key: Optional[str] = None
        self.base_url = self._provider_configs[self.provider]["default_base_url"]
        self.model_name = self._provider_configs[self.provider]["default_model"]

    def _is_provider_enabled(self, provider_name: str, db_session=None) -> bool:
        """检查provider是否启用，未配置时默认启用"""
        db = db_session or self.db_session
        if not db:
            return True
        from .config_service import config_service
        return config_service.is_enabled(db, self._provider_configs[provider_name]["config_prefix"])

    def _load_provider_config(self, provider_name: str) -> Tuple[Optional[str], str, str]:
        """读取provider的 (api_key, base_url, model_name)"""
        defaults = self._provider_configs[provider_name]
        if not self.db_session:
            return None, defaults["default_base_url"], defaults["default_model"]
        from .config_service import config_service
        prefix = defaults["config_prefix"]
        api_key = config_service.get_setting(self.db_session, f"{prefix}.api_key")
        base_url = config_service.get_setting(self.db_session, f"{prefix}.base_url") or defaults["default_base_url"]
        model_name = config_service.get_setting(self.db_session, f"{prefix}.model_name") or defaults["default_model"]
        return (api_key.strip() if api_key else None), base_url.rstrip("/"), model_name

    def _resolve_provider(self, provider: Optional[str] = None) -> Tuple[str, str, str, str]:
        """
        确定本次调用使用的 (provider, api_key, base_url, model_name)

        优先级：显式设置的api_key > 指定provider的系统配置 > 其他已启用provider
        """
        current = (provider or self.provider).lower()
        if current == self.provider and self.api_key:
            return current, self.api_key, self.base_url.rstrip("/"), self.model_name

        if self._is_provider_enabled(current):
            api_key, base_url, model_name = self._load_provider_config(current)
            if api_key:
                return current, api_key, base_url, model_name
            logger.info(f"[LLM] {current.upper()} 未配置API密钥，尝试查找其他可用的provider...")
        else:
            logger.info(f"[LLM] {current.upper()} 已关闭，尝试查找其他可用的provider...")

        for name in self._provider_configs:
            if name == current or not self._is_provider_enabled(name):
                continue
            api_key, base_url, model_name = self._load_provider_config(name)
            if api_key:
                logger.info(f"[LLM] 找到可用的provider: {name.upper()}，将使用该provider")
                return name, api_key, base_url, model_name

        enabled = [n for n in self._provider_configs if self._is_provider_enabled(n)]
        if not enabled:
            raise LLMError("所有LLM provider都已关闭，请至少启用一个provider", 503)
        raise LLMAuthError(f"{current.upper()} API密钥未配置，请在管理后台配置", 401)

    def _build_request(
        self,
        provider: str,
        api_key: str,
        base_url: str,
        model_name: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        system: Optional[str]
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        """构造各provider的请求 (url, headers, body)"""
        if provider == "anthropic":
            # Claude 的 system 提示单独传递，messages 只允许 user/assistant
            system_parts = [m["content"] for m in messages if m["role"] == "system"]
            if system:
                system_parts.insert(0, system)
            body: Dict[str, Any] = {
                "model": model_name,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [m for m in messages if m["role"] != "system"],
            }
            if system_parts:
                body["system"] = "\n\n".join(system_parts)
            headers = {
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_API_VERSION,
                "Content-Type": "application/json",
            }
            return f"{base_url}/messages", headers, body

        chat_messages = list(messages)
        if system:
            chat_messages.insert(0, {"role": "system", "content": system})
        body = {
            "model": model_name,
            "messages": chat_messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        return f"{base_url}/chat/completions", headers, body

    def _raise_for_status(self, provider: str, response: httpx.Response, elapsed: float):
        """精细化状态码处理"""
        status_code = response.status_code
        if status_code < 400:
            return
        record_llm_call(provider, elapsed, success=False)
        name = provider.upper()
        if status_code == 401:
            record_error("llm_auth_error", f"{name}鉴权失败")
            raise LLMAuthError(f"{name}鉴权失败", 401)
        if status_code == 429:
            record_error("llm_rate_limit", f"{name}限流")
            raise LLMRateLimitError(f"{name}限流，请稍后重试", 429)
        if status_code < 500:
            record_error("llm_bad_request", f"{name}请求错误")
            raise LLMBadRequest(f"{name}请求错误: {response.text}", status_code)
        record_error("llm_server_error", f"{name}服务不可用")
        raise LLMServerError(f"{name}服务不可用", 502)

    @staticmethod
    def _extract_content(provider: str, result: Dict[str, Any]) -> Tuple[str, int]:
        """返回 (文本内容, 总token数)"""
        if provider == "anthropic":
            text = "".join(block.get("text", "") for block in result.get("content", []) if block.get("type") == "text")
            usage = result.get("usage", {})
            return text, usage.get("input_tokens", 0) + usage.get("output_tokens", 0)
        content = result["choices"][0]["message"]["content"]
        return content, result.get("usage", {}).get("total_tokens", 0)

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 4000,
        system: Optional[str] = None,
        provider: Optional[str] = None
    ) -> str:
        """调用LLM聊天补全API（支持多provider）"""
        current_provider, api_key, base_url, model_name = self._resolve_provider(provider)
        url, headers, body = self._build_request(
            current_provider, api_key, base_url, model_name, messages, temperature, max_tokens, system
        )
        tag = f"[LLM {current_provider.upper()}]"

        timeout = httpx.Timeout(self.timeout, connect=10.0)
        async with httpx.AsyncClient(timeout=timeout) as client:
            start = time.time()
            try:
                logger.info(f"{tag} 调用开始: {len(messages)}条消息, 模型: {model_name}")
                response = await client.post(url, headers=headers, json=body)
            except httpx.TimeoutException as e:
                record_llm_call(current_provider, time.time() - start, success=False)
                logger.error(f"{tag} 请求超时: {e}, 超时设置: {self.timeout}秒")
                raise LLMNetworkError(f"请求超时（{self.timeout}秒），请检查网络或稍后重试", 504)
            except httpx.RequestError as e:
                record_llm_call(current_provider, time.time() - start, success=False)
                logger.error(f"{tag} 网络错误: {e}")
                raise LLMNetworkError("网络连接失败", 503)

            elapsed = time.time() - start
            self._raise_for_status(current_provider, response, elapsed)

            try:
                content, total_tokens = self._extract_content(current_provider, response.json())
            except (ValueError, KeyError, IndexError, TypeError) as e:
                record_llm_call(current_provider, elapsed, success=False)
                logger.error(f"{tag} 响应格式异常: {e}")
                raise LLMServerError(f"{current_provider.upper()}响应异常", 502)

            record_llm_call(current_provider, elapsed, success=True)
            logger.info(f"{tag} 调用成功: 耗时{elapsed:.2f}秒, 响应长度: {len(content)}字符, Token使用: {total_tokens}")
            return content

    async def complete_json(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 4000,
        system: Optional[str] = None,
        provider: Optional[str] = None
    ) -> Dict[str, Any]:
        """调用LLM并将响应解析为JSON对象"""
        response = await self.chat_completion(messages, temperature, max_tokens, system, provider)
        return self._parse_json_response(response)

    async def create_embeddings(self, texts: List[str], model: str) -> List[List[float]]:
        """调用 OpenAI embeddings 接口（embedding 只支持 openai）"""
        _, api_key, base_url, _ = self._resolve_provider("openai")
        timeout = httpx.Timeout(self.timeout, connect=10.0)
        async with httpx.AsyncClient(timeout=timeout) as client:
            start = time.time()
            try:
                response = await client.post(
                    f"{base_url}/embeddings",
                    headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                    json={"model": model, "input": texts},
                )
            except httpx.TimeoutException:
                record_llm_call("openai", time.time() - start, success=False)
                raise LLMNetworkError(f"请求超时（{self.timeout}秒），请检查网络或稍后重试", 504)
            except httpx.RequestError as e:
                record_llm_call("openai", time.time() - start, success=False)
                logger.error(f"[LLM OPENAI] embedding 网络错误: {e}")
                raise LLMNetworkError("网络连接失败", 503)

            elapsed = time.time() - start
            self._raise_for_status("openai", response, elapsed)
            record_llm_call("openai", elapsed, success=True)
            data = sorted(response.json().get("data", []), key=lambda item: item.get("index", 0))
            return [item["embedding"] for item in data]

    def _parse_json_response(self, response: str) -> Dict[str, Any]:
        """
        解析LLM返回的JSON
        依次尝试：直接解析、截取最外层对象、移除注释与尾随逗号
        """
        cleaned = response.strip()
        cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned).strip()

        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as json_err:
            logger.warning(f"JSON解析失败，尝试修复: {json_err}")

        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start != -1 and end > start:
            cleaned = cleaned[start:end + 1]

        fixed = self._fix_trailing_commas(self._remove_json_comments(cleaned))
        try:
            parsed = json.loads(fixed)
            logger.info("JSON修复成功（通过截取/注释/逗号修复）")
            return parsed
        except json.JSONDecodeError as e:
            logger.error(f"JSON修复失败: {e}, 响应前200字符: {response[:200]}")
            raise LLMParseError("AI返回的数据格式无法解析", 502)

    @staticmethod
    def _remove_json_comments(text: str) -> str:
        """移除字符串之外的 // 行注释"""
        result = []
        for line in text.split("\n"):
            in_string = False
            escaped = False
            cut = len(line)
            for i, ch in enumerate(line):
                if escaped:
                    escaped = False
                    continue
                if ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = not in_string
                elif ch == "/" and not in_string and line[i + 1:i + 2] == "/":
                    cut = i
                    break
            result.append(line[:cut])
        return "\n".join(result)

    @staticmethod
    def _fix_trailing_commas(text: str) -> str:
        return re.sub(r",\s*([}\]])", r"\1", text)
