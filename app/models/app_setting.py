from sqlalchemy import Column, Integer, String
from app.core.database import Base
from app.models.base import TimestampMixin


SUBSCRIPTION_PRICE_KEY = "subscription_price"


class AppSetting(Base, TimestampMixin):
    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(64), unique=True, nullable=False, index=True)
    value = Column(String(255), nullable=False)
