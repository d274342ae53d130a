"""
密码强度验证模块
"""
import re
from typing import Tuple

MIN_PASSWORD_LENGTH = 8
WEAK_PASSWORDS = {"password1", "12345678a", "qwerty123", "abc12345", "cvplus123"}


def validate_password_strength(password: str) -> Tuple[bool, str]:
    """
    验证密码强度

    Returns:
        (is_valid, error_message): 是否有效和错误信息
    """
    if not password:
        return False, "密码不能为空"

    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"密码长度至少{MIN_PASSWORD_LENGTH}位"

    if len(password.encode("utf-8")) > 72:
        return False, "密码过长，最大72字符（bcrypt限制）"

    if not re.search(r'[A-Za-z]', password):
        return False, "密码必须包含至少一个字母"

    if not re.search(r'[0-9]', password):
        return False, "密码必须包含至少一个数字"

    if password.lower() in WEAK_PASSWORDS:
        return False, "密码过于常见，请更换"

    return True, ""
