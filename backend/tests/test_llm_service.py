"""
LLM 服务测试
"""
import httpx
import pytest
from unittest.mock import Mock, patch, AsyncMock
from cvplus.services.config_service import ConfigService
from cvplus.services.llm_service import (
    LLMService,
    LLMAuthError,
    LLMError,
    LLMNetworkError,
    LLMRateLimitError,
    LLMServerError,
)


def anthropic_response(text, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = {
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }
    return response


class TestLLMService:
    """LLM 服务测试"""

    def test_is_provider_enabled_default(self):
        """测试 provider 启用状态（默认启用）"""
        service = LLMService()
        assert service._is_provider_enabled("anthropic", None) is True

    def test_unknown_provider_falls_back_to_anthropic(self):
        assert LLMService(provider="gemini").provider == "anthropic"

    @pytest.mark.asyncio
    async def test_chat_completion_anthropic(self):
        """测试 Claude 请求格式：system 单独传递"""
        service = LLMService()
        service.api_key = "test_key"

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = anthropic_response("Test response")
            result = await service.chat_completion(
                [{"role": "user", "content": "Hello"}], system="Be brief"
            )

        assert result == "Test response"
        mock_post.assert_called_once()
        kwargs = mock_post.call_args.kwargs
        assert mock_post.call_args.args[0].endswith("/messages")
        assert kwargs["headers"]["x-api-key"] == "test_key"
        assert kwargs["json"]["system"] == "Be brief"
        assert all(m["role"] != "system" for m in kwargs["json"]["messages"])

    @pytest.mark.asyncio
    async def test_chat_completion_openai(self):
        """测试 OpenAI 请求格式"""
        service = LLMService(provider="openai")
        service.api_key = "sk-test"
        response = Mock()
        response.status_code = 200
        response.json.return_value = {
            "choices": [{"message": {"content": "Hi"}}],
            "usage": {"total_tokens": 15},
        }

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = response
            result = await service.chat_completion([{"role": "user", "content": "Hello"}], system="sys")

        assert result == "Hi"
        kwargs = mock_post.call_args.kwargs
        assert mock_post.call_args.args[0].endswith("/chat/completions")
        assert kwargs["json"]["messages"][0] == {"role": "system", "content": "sys"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code,error_class", [
        (401, LLMAuthError),
        (429, LLMRateLimitError),
        (500, LLMServerError),
    ])
    async def test_error_status_mapping(self, status_code, error_class):
        """测试状态码映射为对应异常"""
        service = LLMService()
        service.api_key = "test_key"

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = anthropic_response("error", status_code=status_code)
            with pytest.raises(error_class):
                await service.chat_completion([{"role": "user", "content": "Hello"}])

    @pytest.mark.asyncio
    async def test_timeout_maps_to_network_error(self):
        service = LLMService()
        service.api_key = "test_key"

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ReadTimeout("timed out")
            with pytest.raises(LLMNetworkError) as exc_info:
                await service.chat_completion([{"role": "user", "content": "Hello"}])

        assert exc_info.value.status_code == 504

    def test_provider_fallback_logic(self, db_session):
        """测试 provider fallback：Claude 关闭时使用 OpenAI"""
        ConfigService.set_setting(db_session, "llm.anthropic.enabled", "false", category="llm")
        ConfigService.set_setting(db_session, "llm.openai.enabled", "true", category="llm")
        ConfigService.set_setting(db_session, "llm.openai.api_key", "sk-openai-key", category="llm")

        service = LLMService(db_session=db_session)
        provider, api_key, base_url, model_name = service._resolve_provider()

        assert provider == "openai"
        assert api_key == "sk-openai-key"
        assert base_url == "https://api.openai.com/v1"

    def test_all_providers_disabled(self, db_session):
        """测试所有 provider 都关闭"""
        ConfigService.set_setting(db_session, "llm.anthropic.enabled", "false", category="llm")
        ConfigService.set_setting(db_session, "llm.openai.enabled", "false", category="llm")

        service = LLMService(db_session=db_session)
        with pytest.raises(LLMError) as exc_info:
            service._resolve_provider()
        assert exc_info.value.status_code == 503

    def test_missing_api_key(self, db_session):
        service = LLMService(db_session=db_session)
        with pytest.raises(LLMAuthError):
            service._resolve_provider()


class TestJSONParsing:
    """LLM 响应 JSON 解析测试"""

    def test_parse_code_block(self):
        service = LLMService()
        result = service._parse_json_response('```json\n{"name": "Jane"}\n```')
        assert result == {"name": "Jane"}

    def test_parse_with_comments_and_trailing_commas(self):
        service = LLMService()
        text = '{\n  "skills": ["Python", "Go",], // skills\n  "url": "https://example.com"\n}'
        result = service._parse_json_response(text)
        assert result["skills"] == ["Python", "Go"]
        assert result["url"] == "https://example.com"

    @pytest.mark.asyncio
    async def test_complete_json(self):
        service = LLMService()
        service.api_key = "test_key"

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = anthropic_response('Here you go: {"score": 80}')
            result = await service.complete_json([{"role": "user", "content": "Score it"}])

        assert result == {"score": 80}
