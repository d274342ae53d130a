"""
视频生成provider测试
"""
import time
import pytest
from unittest.mock import AsyncMock, Mock, patch
from cvplus.core.errors import NotFoundError, ServiceUnavailableError, ValidationError
from cvplus.core.monitoring import get_metrics
from cvplus.services.config_service import ConfigService
from cvplus.services.resilience import RESILIENCE_PRESETS, get_circuit_breaker
from cvplus.services.video_providers import (
    HeyGenProvider,
    RunwayMLProvider,
    VideoGenerationService,
    provider_health,
    record_provider_result,
)


def http_response(status_code=200, payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = payload or {}
    return response


@pytest.fixture
def configured(db_session):
    ConfigService.set_setting(db_session, "video.heygen.api_key", "hg-key-123456", category="video")
    ConfigService.set_setting(db_session, "video.runwayml.api_key", "rw-key-123456", category="video")
    return db_session


class TestProviderSelection:
    """provider选择测试"""

    def test_unconfigured_providers_skipped(self, db_session):
        service = VideoGenerationService(db_session=db_session, llm_service=Mock())
        assert service.select_providers(60) == []

    def test_priority_order(self, configured):
        service = VideoGenerationService(db_session=configured, llm_service=Mock())
        assert [p.name for p in service.select_providers(60)] == ["heygen", "runwayml"]

    def test_duration_limit(self, configured):
        service = VideoGenerationService(db_session=configured, llm_service=Mock())
        assert [p.name for p in service.select_providers(400)] == ["runwayml"]

    def test_disabled_provider(self, configured):
        ConfigService.set_setting(configured, "video.heygen.enabled", "false", category="video")
        service = VideoGenerationService(db_session=configured, llm_service=Mock())
        assert [p.name for p in service.select_providers(60)] == ["runwayml"]

    def test_health_reorders(self, configured):
        record_provider_result("heygen", False)
        record_provider_result("heygen", True)
        assert provider_health("heygen") == 0.5
        assert provider_health("runwayml") == 1.0

        service = VideoGenerationService(db_session=configured, llm_service=Mock())
        assert [p.name for p in service.select_providers(60)] == ["runwayml", "heygen"]

    def test_open_circuit_skipped(self, configured):
        get_circuit_breaker(RESILIENCE_PRESETS["heygen"])._open(time.monotonic())
        service = VideoGenerationService(db_session=configured, llm_service=Mock())
        assert [p.name for p in service.select_providers(60)] == ["runwayml"]


class TestScriptGeneration:
    """脚本生成测试"""

    @pytest.mark.asyncio
    async def test_generate_script(self, sample_cv):
        llm = Mock()
        llm.chat_completion = AsyncMock(return_value="  Hi, I'm Jane.  ")
        service = VideoGenerationService(llm_service=llm, providers=[])

        script = await service.generate_script(sample_cv, "short", "friendly")

        assert script == "Hi, I'm Jane."
        prompt = llm.chat_completion.await_args.args[0][0]["content"]
        assert "30-second" in prompt
        assert "Name: Jane Smith" in prompt
        assert "warm, conversational" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration,style", [("epic", "professional"), ("short", "dramatic")])
    async def test_invalid_options(self, sample_cv, duration, style):
        service = VideoGenerationService(llm_service=Mock(), providers=[])
        with pytest.raises(ValidationError):
            await service.generate_script(sample_cv, duration, style)


class TestVideoGeneration:
    """视频提交与切换测试"""

    @pytest.mark.asyncio
    async def test_heygen_request(self, configured):
        service = VideoGenerationService(db_session=configured, llm_service=Mock())

        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = http_response(payload={"data": {"video_id": "vid_1"}})
            result = await service.generate_video("Hello there", {"avatar_style": "circle", "voice_id": "v1"})

        assert result["provider"] == "heygen"
        assert result["remote_id"] == "vid_1"
        assert result["status"] == "processing"
        assert result["provider_switches"] == []
        method, url = mock_request.call_args.args
        assert (method, url) == ("POST", "https://api.heygen.com/v2/video/generate")
        body = mock_request.call_args.kwargs["json"]
        assert body["video_inputs"][0]["character"]["avatar_style"] == "circle"
        assert body["video_inputs"][0]["voice"]["voice_id"] == "v1"
        assert mock_request.call_args.kwargs["headers"]["X-Api-Key"] == "hg-key-123456"

    @pytest.mark.asyncio
    async def test_failover_to_runway(self, configured):
        """测试HeyGen失败后切换到RunwayML"""
        service = VideoGenerationService(db_session=configured, llm_service=Mock())

        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.side_effect = [
                http_response(400, text="invalid avatar"),
                http_response(payload={"id": "task_9"}),
            ]
            result = await service.generate_video("Hello there", {"prompt_image": "https://img.example/p.png"})

        assert result["provider"] == "runwayml"
        assert result["remote_id"] == "task_9"
        assert result["provider_switches"][0]["from"] == "heygen"
        runway_body = mock_request.call_args.kwargs["json"]
        assert runway_body["promptImage"] == "https://img.example/p.png"
        assert provider_health("heygen") == 0.0
        assert get_metrics()["metrics"]["video_calls_by_provider"]["heygen"]["failed"] == 1

    @pytest.mark.asyncio
    async def test_all_providers_fail(self, configured):
        service = VideoGenerationService(db_session=configured, llm_service=Mock())

        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = http_response(400, text="bad request")
            with pytest.raises(ServiceUnavailableError) as exc_info:
                await service.generate_video("Hello there")

        assert exc_info.value.details["retry_after"] == 60

    @pytest.mark.asyncio
    async def test_no_providers(self, db_session):
        service = VideoGenerationService(db_session=db_session, llm_service=Mock())
        with pytest.raises(ServiceUnavailableError):
            await service.generate_video("Hello there")


class TestStatusCheck:
    """状态查询测试"""

    @pytest.mark.asyncio
    async def test_heygen_completed(self, configured):
        provider = HeyGenProvider(configured)

        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = http_response(payload={
                "data": {"status": "completed", "video_url": "https://cdn.example/v.mp4", "duration": 58}
            })
            result = await provider.check_status("vid_1")

        assert result.status == "completed"
        assert result.video_url == "https://cdn.example/v.mp4"
        assert mock_request.call_args.kwargs["params"] == {"video_id": "vid_1"}

    @pytest.mark.asyncio
    async def test_runway_status_mapping(self, configured):
        provider = RunwayMLProvider(configured)

        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = http_response(payload={"status": "RUNNING"})
            assert (await provider.check_status("task_9")).status == "processing"
            mock_request.return_value = http_response(payload={"status": "SUCCEEDED", "output": ["https://cdn/x.mp4"]})
            result = await provider.check_status("task_9")

        assert result.status == "completed"
        assert result.video_url == "https://cdn/x.mp4"

    @pytest.mark.asyncio
    async def test_status_error_mapped(self, configured):
        service = VideoGenerationService(db_session=configured, llm_service=Mock())

        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = http_response(404, text="not found")
            with pytest.raises(NotFoundError):
                await service.check_status("heygen", "missing")

        with pytest.raises(ValidationError):
            await service.check_status("synthesia", "x")
