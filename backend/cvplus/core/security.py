from passlib.context import CryptContext
import bcrypt
from jose import JWTError, jwt
from datetime import datetime, timedelta
from typing import Optional
from .config import settings

# 密码加密上下文
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# bcrypt 只处理前72字节
BCRYPT_MAX_BYTES = 72

def _truncate_password(password: str) -> bytes:
    return password.encode('utf-8')[:BCRYPT_MAX_BYTES]

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """验证密码，兼容bcrypt和passlib生成的哈希"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, AttributeError):
        # 新版 bcrypt 与 passlib 不兼容时直接使用 bcrypt
        try:
            return bcrypt.checkpw(_truncate_password(plain_password), hashed_password.encode('utf-8'))
        except ValueError:
            return False

def get_password_hash(password: str) -> str:
    """生成密码哈希，优先使用passlib，失败则使用bcrypt"""
    try:
        return pwd_context.hash(password)
    except (ValueError, AttributeError):
        return bcrypt.hashpw(_truncate_password(password), bcrypt.gensalt()).decode('utf-8')

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

def get_email_from_token(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload.get("sub")
    except JWTError:
        return None
