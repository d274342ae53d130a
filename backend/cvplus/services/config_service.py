"""
系统配置服务
提供外部服务（LLM、视频生成）配置的加密存储、读取和缓存功能
"""
import logging
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session
from cryptography.fernet import Fernet, InvalidToken
import base64
import hashlib
from ..models.system_settings import SystemSetting
from ..core.config import settings

logger = logging.getLogger(__name__)

# 这些后缀的配置项默认加密存储
SENSITIVE_SUFFIXES = (".api_key", ".secret")


def is_sensitive_key(key: str) -> bool:
    return key.endswith(SENSITIVE_SUFFIXES)


def mask_value(value: str) -> str:
    """脱敏：只显示前4位和后4位"""
    if len(value) > 8:
        return value[:4] + "****" + value[-4:]
    return "****"


class ConfigService:
    """系统配置服务"""

    _cache: Dict[str, Any] = {}
    _encryption_key: Optional[bytes] = None

    @classmethod
    def _get_encryption_key(cls) -> bytes:
        """由 SECRET_KEY 派生 Fernet 密钥"""
        if cls._encryption_key is None:
            digest = hashlib.sha256(settings.secret_key.encode('utf-8')).digest()
            cls._encryption_key = base64.urlsafe_b64encode(digest)
        return cls._encryption_key

    @classmethod
    def _encrypt(cls, value: str) -> str:
        if not value:
            return value
        return Fernet(cls._get_encryption_key()).encrypt(value.encode('utf-8')).decode('utf-8')

    @classmethod
    def _decrypt(cls, encrypted_value: str) -> str:
        if not encrypted_value:
            return encrypted_value
        try:
            return Fernet(cls._get_encryption_key()).decrypt(encrypted_value.encode('utf-8')).decode('utf-8')
        except InvalidToken:
            logger.error(f"解密配置值失败，加密值长度: {len(encrypted_value)}（SECRET_KEY 可能已变化）")
            raise ValueError("解密失败: 密钥不匹配或数据已损坏")

    @classmethod
    def get_setting(cls, db: Session, key: str, default: Optional[str] = None) -> Optional[str]:
        """获取配置值（带缓存）"""
        if key in cls._cache:
            return cls._cache[key]

        setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
        if not setting:
            return default

        value = setting.value
        if setting.is_encrypted and value:
            try:
                value = cls._decrypt(value)
            except ValueError as e:
                logger.error(f"解密配置 {key} 失败: {e}")
                return default

        cls._cache[key] = value
        return value

    @classmethod
    def set_setting(
        cls,
        db: Session,
        key: str,
        value: str,
        category: str = "system",
        description: Optional[str] = None,
        is_encrypted: Optional[bool] = None,
        updated_by: Optional[int] = None
    ) -> SystemSetting:
        """设置配置值，is_encrypted 为空时按键名自动判断"""
        if is_encrypted is None:
            is_encrypted = is_sensitive_key(key)
        stored_value = cls._encrypt(value) if is_encrypted and value else value

        setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
        if setting:
            setting.value = stored_value
            setting.category = category
            if description:
                setting.description = description
            setting.is_encrypted = is_encrypted
            if updated_by:
                setting.updated_by = updated_by
        else:
            setting = SystemSetting(
                key=key,
                value=stored_value,
                category=category,
                description=description,
                is_encrypted=is_encrypted,
                updated_by=updated_by
            )
            db.add(setting)

        db.commit()
        db.refresh(setting)

        cls._cache.pop(key, None)
        logger.info(f"配置 {key} 已更新")
        return setting

    @classmethod
    def get_all_settings(cls, db: Session, category: Optional[str] = None) -> Dict[str, Any]:
        """获取所有配置（脱敏显示）"""
        query = db.query(SystemSetting)
        if category:
            query = query.filter(SystemSetting.category == category)

        result = {}
        for setting in query.all():
            value = setting.value
            if setting.is_encrypted and value:
                try:
                    value = mask_value(cls._decrypt(value))
                except ValueError:
                    logger.warning(f"解密配置 {setting.key} 失败，返回脱敏值")
                    value = "****"

            result[setting.key] = {
                "value": value,
                "category": setting.category,
                "description": setting.description,
                "is_encrypted": setting.is_encrypted,
                "updated_by": setting.updated_by,
                "updated_at": setting.updated_at.isoformat() if setting.updated_at else None
            }

        return result

    @classmethod
    def is_enabled(cls, db: Optional[Session], prefix: str) -> bool:
        """检查 `<prefix>.enabled`，未配置时视为启用"""
        if db is None:
            return True
        value = cls.get_setting(db, f"{prefix}.enabled")
        if value is None:
            return True
        return value.strip().lower() == "true"

    @classmethod
    def clear_cache(cls, key: Optional[str] = None):
        """清除缓存"""
        if key:
            cls._cache.pop(key, None)
        else:
            cls._cache.clear()
        logger.info(f"配置缓存已清除: {key or '全部'}")


config_service = ConfigService()
