"""
订阅、积分和付款记录
"""
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional
from sqlalchemy.orm import Session
from ..core.constants import FREE_SIGNUP_CREDITS, PLAN_LIMITS
from ..core.errors import PaymentRequiredError, ValidationError
from ..models.cv_job import FeatureType, JobPriority
from ..models.subscription import Subscription, PaymentRecord
from ..models.user import User

logger = logging.getLogger(__name__)

# 免费用户也可以使用的功能
FREE_FEATURES = {FeatureType.ATS_OPTIMIZATION.value, FeatureType.QR_CODE.value}

SUBSCRIPTION_STATUSES = ("free", "premium")


def get_or_create_subscription(db: Session, user: User) -> Subscription:
    subscription = db.query(Subscription).filter(Subscription.user_id == user.id).first()
    if subscription is None:
        subscription = Subscription(user_id=user.id, status="free", plan="free", credits=FREE_SIGNUP_CREDITS)
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
    return subscription


def plan_limits(subscription: Subscription) -> Dict[str, int]:
    return PLAN_LIMITS["premium" if subscription.is_premium else "free"]


def job_priority(subscription: Optional[Subscription]) -> str:
    if subscription is not None and subscription.is_premium:
        return JobPriority.HIGH.value
    return JobPriority.NORMAL.value


def premium_features(features: List[str]) -> List[str]:
    return [f for f in features if f not in FREE_FEATURES]


def check_feature_access(subscription: Subscription, features: List[str]):
    """高级功能需要premium或终身访问"""
    locked = premium_features(features)
    if locked and not subscription.is_premium:
        raise PaymentRequiredError(f"以下功能需要升级到Premium: {', '.join(locked)}")


def check_credits(subscription: Subscription, cost: int):
    """免费用户积分不足时拒绝，premium不限"""
    if subscription.is_premium or cost <= 0:
        return
    if (subscription.credits or 0) < cost:
        raise PaymentRequiredError(
            f"积分不足：需要 {cost}，剩余 {subscription.credits or 0}",
            required_credits=cost,
        )


def deduct_credits(db: Session, subscription: Subscription, cost: int) -> int:
    """扣减积分，返回实际扣减数（premium为0）"""
    if subscription.is_premium or cost <= 0:
        return 0
    check_credits(subscription, cost)
    subscription.credits = (subscription.credits or 0) - cost
    db.commit()
    logger.info(f"[订阅] 用户 {subscription.user_id} 扣减积分 {cost}, 剩余 {subscription.credits}")
    return cost


def update_subscription(
    db: Session,
    user: User,
    status: Optional[str] = None,
    plan: Optional[str] = None,
    lifetime_access: Optional[bool] = None,
    credits: Optional[int] = None,
    current_period_end: Optional[datetime] = None
) -> Subscription:
    """管理员更新订阅"""
    subscription = get_or_create_subscription(db, user)
    if status is not None:
        if status not in SUBSCRIPTION_STATUSES:
            raise ValidationError(f"无效的订阅状态: {status}", details={"allowed": list(SUBSCRIPTION_STATUSES)})
        subscription.status = status
    if plan is not None:
        subscription.plan = plan
    if lifetime_access is not None:
        subscription.lifetime_access = lifetime_access
    if credits is not None:
        if credits < 0:
            raise ValidationError("积分不能为负数")
        subscription.credits = credits
    if current_period_end is not None:
        subscription.current_period_end = current_period_end
    db.commit()
    db.refresh(subscription)
    logger.info(f"[订阅] 用户 {user.id} 订阅更新: status={subscription.status}, lifetime={subscription.lifetime_access}")
    return subscription


def add_payment(
    db: Session,
    user: User,
    amount: float,
    currency: str = "USD",
    status: str = "succeeded",
    description: Optional[str] = None,
    credits_granted: int = 0
) -> PaymentRecord:
    """录入付款，成功的付款发放积分"""
    if amount < 0:
        raise ValidationError("金额不能为负数")
    record = PaymentRecord(
        user_id=user.id,
        amount=amount,
        currency=currency.upper(),
        status=status,
        description=description,
        credits_granted=credits_granted,
    )
    db.add(record)
    if status == "succeeded" and credits_granted > 0:
        subscription = get_or_create_subscription(db, user)
        subscription.credits = (subscription.credits or 0) + credits_granted
    db.commit()
    db.refresh(record)
    return record


def payment_history(db: Session, user_id: int) -> List[PaymentRecord]:
    return (
        db.query(PaymentRecord)
        .filter(PaymentRecord.user_id == user_id)
        .order_by(PaymentRecord.created_at.desc())
        .all()
    )


def subscription_to_dict(subscription: Subscription) -> Dict[str, Any]:
    return {
        "status": subscription.status,
        "plan": subscription.plan,
        "lifetime_access": bool(subscription.lifetime_access),
        "is_premium": subscription.is_premium,
        "credits": subscription.credits or 0,
        "current_period_end": subscription.current_period_end,
        "limits": plan_limits(subscription),
        "updated_at": subscription.updated_at,
    }
