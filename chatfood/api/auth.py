import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, select

from chatfood.api.deps import get_current_merchant
from chatfood.core.database import get_db
from chatfood.core.rate_limit import get_client_ip, limiter
from chatfood.core.security import create_access_token, hash_password, verify_password
from chatfood.models import MerchantAccount, Restaurant, SecurityLog
from chatfood.schemas import MerchantCreate, MerchantLogin, MerchantResponse, Token

router = APIRouter(prefix="/auth", tags=["auth"])
log = logging.getLogger("chatfood.auth")


def _merchant_response(restaurant: Restaurant) -> MerchantResponse:
    return MerchantResponse(
        id=restaurant.id or 0,
        email=restaurant.email,
        restaurant_name=restaurant.restaurant_name or "",
        slug=restaurant.slug,
        currency=restaurant.currency,
    )


@router.post("/register", response_model=MerchantResponse)
@limiter.limit("10/hour")
def register(request: Request, body: MerchantCreate, db: Session = Depends(get_db)):
    email = body.email.strip().lower()
    if db.exec(select(Restaurant).where(Restaurant.email == email)).first():
        raise HTTPException(status_code=400, detail="This email is already registered.")
    if db.exec(select(Restaurant).where(Restaurant.slug == body.slug)).first():
        raise HTTPException(status_code=400, detail="This slug is already taken.")
    restaurant = Restaurant(
        email=email,
        hashed_password=hash_password(body.password),
        restaurant_name=body.restaurant_name.strip(),
        slug=body.slug,
        currency=body.currency,
    )
    db.add(restaurant)
    db.commit()
    db.refresh(restaurant)
    # Payment state starts inert: no connected account, payments off
    db.add(MerchantAccount(merchant_id=restaurant.id))
    db.commit()
    log.info("Restaurant registered: id=%s slug=%s", restaurant.id, restaurant.slug)
    return _merchant_response(restaurant)


@router.post("/login", response_model=Token)
@limiter.limit("5/minute;20/hour")
def login(request: Request, body: MerchantLogin, db: Session = Depends(get_db)):
    email = body.email.strip().lower()
    restaurant = db.exec(select(Restaurant).where(Restaurant.email == email)).first()
    if not restaurant or not verify_password(body.password, restaurant.hashed_password):
        try:
            db.add(SecurityLog(event="failed_login", ip=get_client_ip(request), endpoint="/auth/login", detail=email))
            db.commit()
        except Exception as e:
            log.warning("SecurityLog failed_login write failed: %s", e)
        raise HTTPException(status_code=401, detail="Wrong email or password.")
    return Token(access_token=create_access_token({"sub": str(restaurant.id)}))


@router.get("/me", response_model=MerchantResponse)
def me(restaurant: Restaurant = Depends(get_current_merchant)):
    return _merchant_response(restaurant)
