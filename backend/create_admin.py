"""创建超级管理员账户（附带终身Premium订阅）"""
import sys
import logging
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from cvplus.core.database import SessionLocal
from cvplus.core.password_validator import validate_password_strength
from cvplus.core.security import get_password_hash
from cvplus.models.user import User
from cvplus.services.subscription_service import update_subscription

logger = logging.getLogger(__name__)


def create_admin(email: str, password: str, full_name: str = "超级管理员", promote_existing: bool = False) -> Optional[User]:
    """
    创建超级管理员；邮箱已存在时仅在 promote_existing 为真时升级该用户

    管理员订阅设为 premium + lifetime_access，上传和功能不受计划限制。
    """
    is_valid, error_message = validate_password_strength(password)
    if not is_valid:
        raise ValueError(error_message)

    db: Session = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
        if user is not None and not promote_existing:
            logger.warning(f"[管理员] 邮箱 {email} 已被注册（用户ID {user.id}，类型 {user.user_type}）")
            return None

        if user is None:
            user = User(email=email, full_name=full_name)
            db.add(user)
        user.password_hash = get_password_hash(password)
        user.user_type = "super_admin"
        user.is_active = True
        user.is_verified = True
        db.commit()
        db.refresh(user)

        update_subscription(db, user, status="premium", plan="admin", lifetime_access=True)
        db.refresh(user)
        logger.info(f"[管理员] 超级管理员就绪: {email} (ID {user.id})")
        return user
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    print("=" * 50)
    print("创建超级管理员账户")
    print("=" * 50)

    # 从命令行参数获取或提示输入
    if len(sys.argv) >= 3:
        email = sys.argv[1]
        password = sys.argv[2]
        full_name = sys.argv[3] if len(sys.argv) >= 4 else "超级管理员"
    else:
        email = input("请输入管理员邮箱: ").strip()
        password = input("请输入管理员密码: ").strip()
        full_name = input("请输入管理员姓名（可选，直接回车使用默认）: ").strip() or "超级管理员"

    if not email or not password:
        print("❌ 邮箱和密码不能为空")
        sys.exit(1)

    try:
        admin = create_admin(email, password, full_name)
        if admin is None:
            response = input("\n是否将现有用户升级为超级管理员？(y/n): ").strip().lower()
            if response != "y":
                print("操作已取消")
                sys.exit(0)
            admin = create_admin(email, password, full_name, promote_existing=True)
    except ValueError as e:
        print(f"❌ {e}")
        sys.exit(1)

    print(f"✅ 超级管理员: {admin.email} (ID {admin.id}, 类型 {admin.user_type})")
