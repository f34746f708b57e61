from pydantic import BaseModel, EmailStr, Field, field_validator


class MerchantCreate(BaseModel):
    email: EmailStr
    password: str
    restaurant_name: str = ""
    slug: str = Field(min_length=2, max_length=64, pattern=r"^[a-z0-9][a-z0-9-]*$")
    currency: str = "eur"

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters.")
        return v

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str) -> str:
        return v.strip().lower()


class MerchantLogin(BaseModel):
    email: EmailStr
    password: str


class MerchantResponse(BaseModel):
    id: int
    email: str
    restaurant_name: str
    slug: str
    currency: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
