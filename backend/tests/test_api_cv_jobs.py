"""
CV任务 API 测试
"""
import pytest
from unittest.mock import AsyncMock, patch
from cvplus.models.cv_job import CVJob
from cvplus.models.subscription import Subscription
from cvplus.services.llm_service import LLMService
from cvplus.services.video_providers import VideoGenerationService
from conftest import auth_headers, make_user

CV_TEXT = (
    "Curriculum Vitae\n"
    "Jane Smith\n"
    "jane@example.com\n"
    "Experience: Acme Cloud 2020 - Present. Python, Go, Kubernetes.\n"
)


def upload(client, user, text=CV_TEXT, file_name="cv.txt", content_type="text/plain", **data):
    return client.post(
        "/api/v1/cv-jobs",
        files={"file": (file_name, text.encode("utf-8"), content_type)},
        data=data,
        headers=auth_headers(user),
    )


def keyword_vector(text):
    lowered = text.lower()
    return [1.0 if "kubernetes" in lowered else 0.0, 1.0 if "berlin" in lowered else 0.0, 0.1]


@pytest.fixture
def parsed_job(db_session, user, sample_cv):
    job = CVJob(
        user_id=user.id,
        status="completed",
        progress=100,
        parsed_cv=sample_cv,
        selected_features=[],
        completed_steps=[],
        warnings=[],
    )
    db_session.add(job)
    db_session.commit()
    db_session.refresh(job)
    return job


class TestCreateJob:
    """上传和创建任务测试"""

    def test_upload_creates_job(self, client, db_session, user):
        with patch("cvplus.api.v1.endpoints.cv_jobs.process_job") as process_job:
            response = upload(client, user, features='["ats_optimization"]', target_role="Staff Engineer",
                              industry_keywords="fintech, payments")

        assert response.status_code == 201
        data = response.json()
        assert data["job"]["status"] == "pending"
        assert data["job"]["selected_features"] == ["ats_optimization"]
        assert data["credits_charged"] == 1
        assert data["remaining_credits"] == 2
        assert data["estimated_processing_time_ms"] == 60000
        process_job.assert_called_once_with(data["job"]["id"])

        job = db_session.query(CVJob).filter(CVJob.id == data["job"]["id"]).first()
        assert job.customizations == {"target_role": "Staff Engineer", "industry_keywords": ["fintech", "payments"]}
        assert "Jane Smith" in job.raw_text

    def test_unsupported_file_type(self, client, user):
        response = upload(client, user, file_name="cv.rtf")
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_content_type_must_match_extension(self, client, user):
        response = upload(client, user, file_name="cv.pdf", content_type="image/png")
        assert response.status_code == 400
        assert response.json()["details"]["input_type"] == "pdf"

    def test_generic_content_type_accepted(self, client, user):
        with patch("cvplus.api.v1.endpoints.cv_jobs.process_job"):
            response = upload(client, user, content_type="application/octet-stream")
        assert response.status_code == 201

    def test_empty_file(self, client, user):
        assert upload(client, user, text="").status_code == 400

    def test_unknown_feature(self, client, user):
        assert upload(client, user, features="hologram").status_code == 400

    def test_premium_feature_requires_upgrade(self, client, user):
        with patch("cvplus.api.v1.endpoints.cv_jobs.process_job"):
            response = upload(client, user, features='["video_introduction"]')

        assert response.status_code == 402
        assert response.json()["code"] == "PAYMENT_REQUIRED"

    def test_insufficient_credits(self, client, db_session, user):
        db_session.query(Subscription).filter(Subscription.user_id == user.id).update({"credits": 0})
        db_session.commit()

        with patch("cvplus.api.v1.endpoints.cv_jobs.process_job"):
            response = upload(client, user, features="ats_optimization")

        assert response.status_code == 402
        assert response.json()["details"]["required_credits"] == 1

    def test_premium_user_not_charged(self, client, premium_user):
        text = CV_TEXT.replace("Jane Smith", "Pat Pro")
        with patch("cvplus.api.v1.endpoints.cv_jobs.process_job"):
            response = upload(client, premium_user, text=text, features="ats_optimization,video_introduction")

        assert response.status_code == 201
        assert response.json()["credits_charged"] == 0
        assert response.json()["job"]["priority"] == "high"

    def test_name_mismatch_blocked(self, client, user):
        with patch("cvplus.api.v1.endpoints.cv_jobs.process_job") as process_job:
            response = upload(client, user, text=CV_TEXT.replace("Jane Smith", "John Doe"))

        assert response.status_code == 403
        data = response.json()
        assert data["code"] == "POLICY_VIOLATION"
        assert [v["type"] for v in data["details"]["violations"]] == ["name_mismatch"]
        process_job.assert_not_called()

    def test_cross_account_duplicate_blocked(self, client, db_session, user):
        twin = make_user(db_session, email="jane.twin@example.com")
        with patch("cvplus.api.v1.endpoints.cv_jobs.process_job"):
            assert upload(client, user).status_code == 201
            response = upload(client, twin)

        assert response.status_code == 403
        assert "exact_duplicate" in [v["type"] for v in response.json()["details"]["violations"]]

    def test_requires_auth(self, client):
        response = client.post("/api/v1/cv-jobs", files={"file": ("cv.txt", b"Jane", "text/plain")})
        assert response.status_code == 401


class TestJobQueries:
    """任务查询和取消测试"""

    def test_status_and_detail(self, client, user, parsed_job):
        status = client.get(f"/api/v1/cv-jobs/{parsed_job.id}/status", headers=auth_headers(user))
        detail = client.get(f"/api/v1/cv-jobs/{parsed_job.id}", headers=auth_headers(user))

        assert status.status_code == 200
        assert status.json()["status_description"] == "处理完成"
        assert status.json()["timed_out"] is False
        assert detail.json()["parsed_cv"]["personal_info"]["name"] == "Jane Smith"

    def test_other_users_job_not_found(self, client, db_session, parsed_job):
        other = make_user(db_session, email="other@example.com")
        response = client.get(f"/api/v1/cv-jobs/{parsed_job.id}", headers=auth_headers(other))

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_list_jobs(self, client, user, parsed_job):
        response = client.get("/api/v1/cv-jobs", headers=auth_headers(user))
        assert [j["id"] for j in response.json()] == [parsed_job.id]

        filtered = client.get("/api/v1/cv-jobs?status=pending", headers=auth_headers(user))
        assert filtered.json() == []

    def test_cancel(self, client, db_session, user, parsed_job):
        parsed_job.status = "analyzing"
        db_session.commit()

        response = client.post(f"/api/v1/cv-jobs/{parsed_job.id}/cancel", headers=auth_headers(user))
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        again = client.post(f"/api/v1/cv-jobs/{parsed_job.id}/cancel", headers=auth_headers(user))
        assert again.status_code == 409


class TestAnalysisAPI:
    """ATS、岗位识别和改进建议测试"""

    def test_ats_requires_parsed_cv(self, client, db_session, user):
        job = CVJob(user_id=user.id, status="pending", selected_features=[])
        db_session.add(job)
        db_session.commit()

        response = client.post(f"/api/v1/cv-jobs/{job.id}/ats", json={}, headers=auth_headers(user))
        assert response.status_code == 409

    def test_ats_reanalysis(self, client, db_session, user, parsed_job):
        response = client.post(f"/api/v1/cv-jobs/{parsed_job.id}/ats", json={}, headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json()["score"] == 95
        db_session.refresh(parsed_job)
        assert parsed_job.ats_result["score"] == 95

    def test_roles_computed_on_demand(self, client, user, parsed_job):
        response = client.get(f"/api/v1/cv-jobs/{parsed_job.id}/roles", headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json()["primary_role"]["role_id"] == "software_engineer"

    def test_recommendations_and_apply(self, client, db_session, user, parsed_job):
        response = client.post(
            f"/api/v1/cv-jobs/{parsed_job.id}/recommendations",
            json={"industry_keywords": ["fintech"]},
            headers=auth_headers(user),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["cached"] is False
        assert data["recommendations"]

        first_id = data["recommendations"][0]["id"]
        applied = client.post(
            f"/api/v1/cv-jobs/{parsed_job.id}/apply-improvements",
            json={"selected_recommendation_ids": [first_id, "rec_unknown_9"]},
            headers=auth_headers(user),
        )
        assert applied.status_code == 200
        result = applied.json()
        assert "rec_unknown_9" in [s["id"] for s in result["skipped"]]

        db_session.refresh(parsed_job)
        assert parsed_job.improvements_applied is True
        assert parsed_job.improved_cv is not None

    def test_apply_without_recommendations(self, client, user, parsed_job):
        response = client.post(
            f"/api/v1/cv-jobs/{parsed_job.id}/apply-improvements",
            json={"selected_recommendation_ids": ["rec_summary_1"]},
            headers=auth_headers(user),
        )
        assert response.status_code == 409


class TestChatAPI:
    """向量化和问答测试"""

    def test_embeddings_then_chat(self, client, user, parsed_job):
        create_embeddings = AsyncMock(side_effect=lambda texts, model: [keyword_vector(t) for t in texts])
        chat_completion = AsyncMock(return_value="Jane has run Kubernetes in production since 2020.")

        with patch.object(LLMService, "create_embeddings", create_embeddings), \
                patch.object(LLMService, "chat_completion", chat_completion):
            embedded = client.post(
                f"/api/v1/cv-jobs/{parsed_job.id}/embeddings", json={}, headers=auth_headers(user)
            )
            answer = client.post(
                f"/api/v1/cv-jobs/{parsed_job.id}/chat",
                json={"question": "Does Jane know Kubernetes?", "top_k": 2},
                headers=auth_headers(user),
            )

        assert embedded.status_code == 200
        assert embedded.json()["strategy"] == "semantic"
        assert embedded.json()["sections"]["experience"] >= 1
        assert answer.status_code == 200
        assert answer.json()["answer"].startswith("Jane has run Kubernetes")
        assert len(answer.json()["sources"]) == 2

    def test_invalid_strategy(self, client, user, parsed_job):
        response = client.post(
            f"/api/v1/cv-jobs/{parsed_job.id}/embeddings", json={"strategy": "random"}, headers=auth_headers(user)
        )
        assert response.status_code == 400

    def test_chat_without_embeddings(self, client, user, parsed_job):
        response = client.post(
            f"/api/v1/cv-jobs/{parsed_job.id}/chat", json={"question": "Where?"}, headers=auth_headers(user)
        )
        assert response.status_code == 400


class TestVideoAPI:
    """视频介绍测试"""

    def test_free_user_requires_premium(self, client, user, parsed_job):
        response = client.post(f"/api/v1/cv-jobs/{parsed_job.id}/video", json={}, headers=auth_headers(user))
        assert response.status_code == 402

    def test_generate_and_poll(self, client, db_session, premium_user, sample_cv):
        job = CVJob(user_id=premium_user.id, status="completed", parsed_cv=sample_cv, selected_features=[])
        db_session.add(job)
        db_session.commit()
        submitted = {"provider": "heygen", "remote_id": "vid_1", "status": "processing", "provider_switches": []}
        finished = {"status": "completed", "video_url": "https://cdn.example.com/vid_1.mp4", "progress": 100}

        with patch.object(VideoGenerationService, "generate_script", AsyncMock(return_value="Hi, I'm Jane.")), \
                patch.object(VideoGenerationService, "generate_video", AsyncMock(return_value=submitted)) as gen, \
                patch.object(VideoGenerationService, "check_status", AsyncMock(return_value=finished)):
            response = client.post(
                f"/api/v1/cv-jobs/{job.id}/video", json={"duration": "short"}, headers=auth_headers(premium_user)
            )
            status = client.get(f"/api/v1/cv-jobs/{job.id}/video/status", headers=auth_headers(premium_user))

        assert response.status_code == 200
        assert response.json()["script"] == "Hi, I'm Jane."
        assert gen.await_args.args[1]["duration_seconds"] == 30
        assert status.json()["video_url"].endswith("vid_1.mp4")

        db_session.refresh(job)
        assert job.enhanced_features["video_introduction"]["status"] == "completed"

    def test_status_without_video(self, client, user, parsed_job):
        response = client.get(f"/api/v1/cv-jobs/{parsed_job.id}/video/status", headers=auth_headers(user))
        assert response.status_code == 404
