from datetime import datetime

from sqlmodel import Field, SQLModel


class Restaurant(SQLModel, table=True):
    """Merchant identity; slug is the public ordering page identifier."""

    __tablename__ = "restaurants"
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    restaurant_name: str = ""
    slug: str = Field(unique=True, index=True)
    currency: str = "eur"
    created_at: datetime | None = Field(default_factory=datetime.utcnow)
