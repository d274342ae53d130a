"""
应用常量配置
"""
# 文件上传限制
MAX_FILE_SIZE_MB = 25
MAX_TEXT_LENGTH = 25000

# 各输入类型的最大文件大小（字节），0 表示不限制
MAX_FILE_SIZES = {
    "pdf": 25 * 1024 * 1024,
    "docx": 25 * 1024 * 1024,
    "txt": 5 * 1024 * 1024,
    "csv": 5 * 1024 * 1024,
    "url": 0,
}
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024

# 允许的文件类型
ALLOWED_MIME_TYPES = {
    "pdf": ["application/pdf"],
    "docx": [
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/msword",
    ],
    "txt": ["text/plain"],
    "csv": ["text/csv", "application/csv", "application/vnd.ms-excel"],
    "url": ["text/uri-list"],
}

# 允许的文件扩展名
ALLOWED_FILE_EXTENSIONS = ['.pdf', '.docx', '.txt', '.csv']

# JWT Token 配置
DEFAULT_TOKEN_EXPIRE_MINUTES = 30

# 分页配置
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# API 响应消息
SUCCESS_MESSAGE = "操作成功"
ERROR_MESSAGE = "操作失败"

# 数据库连接池配置
DB_POOL_SIZE = 10
DB_MAX_OVERFLOW = 20
DB_POOL_RECYCLE = 3600  # 1小时

# Redis 连接池配置
REDIS_MAX_CONNECTIONS = 50

# 推荐结果缓存（秒）
RECOMMENDATION_CACHE_TTL_SECONDS = 300

# 任务处理
BASE_PROCESSING_TIME_MS = 30000
DEFAULT_FEATURE_TIME_MS = 60000
DEFAULT_FEATURE_CREDIT_COST = 1
JOB_TIMEOUT_SECONDS = 300
STUCK_JOB_MINUTES = 15
STUCK_JOB_BATCH_LIMIT = 50

# ATS 评分
ATS_PASS_SCORE = 75
ATS_ERROR_PENALTY = 15
ATS_WARNING_PENALTY = 10
ATS_INFO_PENALTY = 5
OPTIMAL_KEYWORD_DENSITY = 0.03

# 订阅计划限制，-1 表示不限制
PLAN_LIMITS = {
    "free": {"monthly_uploads": 3, "unique_cvs": 1},
    "premium": {"monthly_uploads": -1, "unique_cvs": 3},
}
ACCOUNT_SHARING_USER_THRESHOLD = 3
ACCOUNT_SHARING_WINDOW_HOURS = 24

# 免费用户注册赠送积分
FREE_SIGNUP_CREDITS = 3
