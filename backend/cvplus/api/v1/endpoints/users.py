from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from ....core.database import get_db
from ....core.permissions import get_current_user
from ....models.user import User
from ....schemas.user import UserResponse, SubscriptionResponse
from ....schemas.admin import PaymentResponse
from ....services.subscription_service import get_or_create_subscription, subscription_to_dict, payment_history
from ....services.policy_enforcement import PolicyEnforcementService

router = APIRouter()

@router.get("/me", response_model=UserResponse)
async def get_current_user_endpoint(current_user: User = Depends(get_current_user)):
    return current_user

@router.get("/me/subscription", response_model=SubscriptionResponse)
async def get_my_subscription(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """当前用户的订阅状态、积分和计划限制"""
    return subscription_to_dict(get_or_create_subscription(db, current_user))

@router.get("/me/usage")
async def get_my_usage(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """本月上传次数和唯一CV数量"""
    usage = PolicyEnforcementService(db).usage(current_user)
    usage.pop("unique_hashes", None)
    return usage

@router.get("/me/payments", response_model=List[PaymentResponse])
async def get_my_payments(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return payment_history(db, current_user.id)
