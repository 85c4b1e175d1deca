import datetime as dt
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from models import AccountType, BudgetPeriod, TransactionType
from periods import local_today


# Keys a client may echo back in an update body; never assignable.
IGNORED_PATCH_KEYS = frozenset({"id", "_id", "user", "userId", "user_id"})

# Largest accepted amount; its cents fit a 64-bit INTEGER column.
MAX_AMOUNT = Decimal("999999999999.99")


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class PatchModel(WireModel):
    """Allow-listed patch: unknown keys are rejected, ownership keys dropped."""

    model_config = ConfigDict(
        populate_by_name=True, str_strip_whitespace=True, extra="forbid"
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_ownership_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if k not in IGNORED_PATCH_KEYS}
        return data


class SignupIn(WireModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class LoginIn(WireModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ForgotPasswordIn(WireModel):
    email: str = Field(..., min_length=1)


class ResetPasswordIn(WireModel):
    password: str = Field(..., min_length=6, max_length=128)


class PasswordChangeIn(WireModel):
    current_password: str = Field(..., min_length=1, alias="currentPassword")
    new_password: str = Field(..., min_length=6, max_length=128, alias="newPassword")


class ProfileUpdate(PatchModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=40)
    address: Optional[str] = None
    profile_picture: Optional[str] = Field(
        default=None, max_length=500, alias="profilePicture"
    )


class OAuthIdentity(BaseModel):
    id: str = Field(..., min_length=1)
    email: EmailStr
    name: str = Field(..., min_length=1)
    picture: Optional[str] = None


class AccountIn(WireModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance: Decimal = Field(default=Decimal("0"), ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    color: Optional[str] = Field(default=None, max_length=40)
    is_default: Optional[bool] = Field(default=None, alias="isDefault")


class AccountUpdate(PatchModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    balance: Optional[Decimal] = Field(default=None, ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    color: Optional[str] = Field(default=None, max_length=40)
    is_default: Optional[bool] = Field(default=None, alias="isDefault")


class TransferIn(WireModel):
    from_account_id: int = Field(..., alias="from")
    to_account_id: int = Field(..., alias="to")
    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT)


class TransactionIn(WireModel):
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    payment_mode: str = Field(..., min_length=1, max_length=60, alias="paymentMode")
    payee: str = Field(..., min_length=1, max_length=200)
    account: str = Field(..., min_length=1, max_length=100)
    date: dt.date = Field(default_factory=local_today)
    time: str = Field(default="", max_length=20)
    remarks: str = ""
    attachment: str = Field(default="", max_length=255)


class TransactionUpdate(PatchModel):
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    subcategory: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    payment_mode: Optional[str] = Field(
        default=None, min_length=1, max_length=60, alias="paymentMode"
    )
    payee: Optional[str] = Field(default=None, min_length=1, max_length=200)
    account: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[dt.date] = None
    time: Optional[str] = Field(default=None, max_length=20)
    remarks: Optional[str] = None
    attachment: Optional[str] = Field(default=None, max_length=255)


class AlertsIn(WireModel):
    enabled: bool = True
    threshold: float = Field(default=80, ge=0, le=100)


class AlertsPatch(PatchModel):
    enabled: Optional[bool] = None
    threshold: Optional[float] = Field(default=None, ge=0, le=100)


class BudgetIn(WireModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: dt.date = Field(default_factory=local_today, alias="startDate")
    # Accepted for compatibility; always recomputed from start_date and period.
    end_date: Optional[dt.date] = Field(default=None, alias="endDate")
    alerts: AlertsIn = Field(default_factory=AlertsIn)
    is_active: bool = Field(default=True, alias="isActive")


class BudgetUpdate(PatchModel):
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    period: Optional[BudgetPeriod] = None
    start_date: Optional[dt.date] = Field(default=None, alias="startDate")
    end_date: Optional[dt.date] = Field(default=None, alias="endDate")
    alerts: Optional[AlertsPatch] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
