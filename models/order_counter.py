from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class OrderCounter(Base):
    __tablename__ = "order_counters"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, default=0)
