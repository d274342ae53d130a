"""
Pytest 配置和共享 fixtures
"""
import pytest
import os
import sys

# 在导入应用前设置测试环境（后台任务通过 SessionLocal 访问同一个测试库）
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-cvplus")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")

# 添加项目根目录到路径
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastapi.testclient import TestClient
from cvplus.core.database import Base, SessionLocal, engine, get_db
from cvplus.core.monitoring import reset_metrics
from cvplus.core.security import create_access_token, get_password_hash
from cvplus.main import app
from cvplus.models.user import User
from cvplus.models.subscription import Subscription
from cvplus.services import resilience
from cvplus.services.cache_service import cache_service
from cvplus.services.config_service import ConfigService
from cvplus.services.video_providers import reset_provider_history


@pytest.fixture(scope="function")
def db_session():
    """创建测试数据库会话"""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_state():
    """清理进程内状态：配置缓存、熔断器、指标、视频服务健康度"""
    ConfigService.clear_cache()
    resilience.reset_all()
    reset_metrics()
    reset_provider_history()
    yield
    ConfigService.clear_cache()
    resilience.reset_all()


@pytest.fixture(scope="function")
def client(db_session):
    """创建测试客户端"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        # 测试环境不使用Redis：缓存读取未命中，写入为空操作
        cache_service.redis_client = None
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def test_user_data():
    """测试用户数据"""
    return {
        "email": "test@example.com",
        "password": "Test123456!",
        "full_name": "Jane Smith"
    }


def make_user(db, email="jane@example.com", full_name="Jane Smith", user_type="user",
              status="free", credits=3, lifetime_access=False):
    user = User(
        email=email,
        password_hash=get_password_hash("Test123456!"),
        full_name=full_name,
        user_type=user_type,
        is_active=True,
        is_verified=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    db.add(Subscription(user_id=user.id, status=status, plan=status, credits=credits, lifetime_access=lifetime_access))
    db.commit()
    return user


@pytest.fixture
def user(db_session):
    return make_user(db_session)


@pytest.fixture
def premium_user(db_session):
    return make_user(db_session, email="pro@example.com", full_name="Pat Pro", status="premium", credits=0)


@pytest.fixture
def admin_user(db_session):
    return make_user(db_session, email="admin@example.com", full_name="Ada Admin", user_type="admin")


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


@pytest.fixture
def sample_cv():
    """结构化CV样例"""
    return {
        "personal_info": {
            "name": "Jane Smith",
            "email": "jane@example.com",
            "phone": "+1 555 010 2030",
            "location": "Berlin",
            "title": "Senior Software Engineer",
        },
        "summary": "Software engineer building backend services.",
        "experience": [
            {
                "company": "Acme Cloud",
                "position": "Senior Software Engineer",
                "start_date": "2020-03",
                "end_date": "",
                "is_current": True,
                "description": "Built microservices in Python and Go on Kubernetes.",
                "achievements": [
                    "Led migration of billing platform to Kubernetes",
                    "responsible for API design reviews",
                ],
                "technologies": ["Python", "Go", "Kubernetes"],
            },
            {
                "company": "Startly",
                "position": "Software Developer",
                "start_date": "2017-01",
                "end_date": "2020-02",
                "is_current": False,
                "description": "Developed REST APIs and React frontends.",
                "achievements": [],
                "technologies": ["JavaScript", "React"],
            },
        ],
        "education": [
            {"institution": "TU Berlin", "degree": "BSc", "field": "Computer Science",
             "start_date": "2013-10", "end_date": "2016-09"},
        ],
        "skills": {
            "technical": ["Python", "Go", "Kubernetes", "SQL", "Git"],
            "soft": ["Communication"],
            "tools": ["Docker"],
            "languages": ["English", "German"],
        },
        "certifications": [],
        "projects": [
            {"name": "OpenMetrics", "description": "Metrics exporter", "technologies": ["Go"], "url": ""},
        ],
        "achievements": ["Speaker at PyCon DE"],
    }
