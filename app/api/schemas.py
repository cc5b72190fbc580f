"""
Pydantic schemas for API request/response contracts.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.services.alert_rules import parse_alert_option, parse_alert_type, parse_alert_value
from app.services.alert_store import slugify


class AlertIn(BaseModel):
    title: str = Field(min_length=5, max_length=200)
    body: str = Field(min_length=1)
    pairAddress: str = Field(min_length=20, max_length=128)
    alertType: str = Field(min_length=3, max_length=50)
    alertValue: str = Field(min_length=1, max_length=100)
    alertOption: str = Field(min_length=1, max_length=20)
    expirationTime: datetime
    alertActions: str = Field(min_length=1)

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        # The title must yield a usable slug.
        if not slugify(value):
            raise ValueError("title must contain at least one letter or digit")
        return value

    @field_validator("alertType")
    @classmethod
    def validate_alert_type(cls, value: str) -> str:
        parse_alert_type(value)
        return value.strip().lower()

    @field_validator("alertOption")
    @classmethod
    def validate_alert_option(cls, value: str) -> str:
        parse_alert_option(value)
        return value.strip().lower()

    @field_validator("alertValue")
    @classmethod
    def validate_alert_value(cls, value: str) -> str:
        parse_alert_value(value)
        return value.strip()


class CreateAlertRequest(BaseModel):
    alert: AlertIn


class AccountOut(BaseModel):
    username: str
    email: str
    bio: Optional[str] = None
    image: Optional[str] = None


class AlertOut(BaseModel):
    slug: str
    title: str
    body: str
    pairAddress: str
    alertType: str
    alertValue: str
    alertOption: str
    expirationTime: datetime
    alertActions: str
    alertStatus: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    account: Optional[AccountOut] = None


class AlertResponse(BaseModel):
    alert: AlertOut


class AlertsResponse(BaseModel):
    alerts: List[AlertOut] = Field(default_factory=list)
    alertsCount: int = 0


def account_to_out(account) -> Optional[AccountOut]:
    if account is None:
        return None
    return AccountOut(
        username=account.username,
        email=account.email,
        bio=account.bio,
        image=account.image,
    )


def alert_to_out(alert, account=None) -> AlertOut:
    """Convert an Alert row; ``account`` overrides the row's loaded account."""
    return AlertOut(
        slug=alert.slug,
        title=alert.title,
        body=alert.body,
        pairAddress=alert.pair_address,
        alertType=alert.alert_type,
        alertValue=alert.alert_value,
        alertOption=alert.alert_option,
        expirationTime=alert.expiration_time,
        alertActions=alert.alert_actions,
        alertStatus=alert.alert_status,
        createdAt=alert.created_at,
        updatedAt=alert.updated_at,
        account=account_to_out(account if account is not None else alert.account),
    )
