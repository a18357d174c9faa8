# sapjuice/main.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .auth import (
    MIN_NAME_LENGTH,
    MIN_PASSWORD_LENGTH,
    hash_password,
    is_admin_email,
    is_valid_phone,
    issue_token,
    read_token,
    verify_password,
)
from .catalog import list_items, load_menu
from .config import Settings, configure_logging
from .config import settings as default_settings
from .db import SessionLocal, init_db
from .errors import OrderNotFoundError, OrderPlacementError, ValidationError
from .feed import ChangeFeed
from .models import Order, Review
from .ordering.lifecycle import OrderStatus, is_terminal
from .ordering.notification import OrderNotifier
from .ordering.placement import OrderPlacement, OrderRequest
from .ordering.reviews import average_rating, can_submit_review, display_name
from .ordering.tracking import OrderTracker, advance_to_preparing, schedule_progression
from .stores import PAGE_SIZE, OrderStore, ProfileStore, ReviewStore

logger = logging.getLogger(__name__)


# -------------------
# Schemas
# -------------------
class SignupIn(BaseModel):
    name: str
    email: EmailStr
    phone: str
    password: str

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = (v or "").strip()
        if len(v) < MIN_NAME_LENGTH:
            raise ValueError(f"Name must be at least {MIN_NAME_LENGTH} characters")
        return v

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        v = (v or "").strip()
        if not is_valid_phone(v):
            raise ValueError("Phone must be 7-15 digits")
        return v

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        if len(v or "") < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class AddressIn(BaseModel):
    address: str


class OrderIn(BaseModel):
    items: List[str]
    address: str
    notes: str = ""
    redeem_points: int = Field(default=0, ge=0)
    save_address: bool = False


class StatusIn(BaseModel):
    status: OrderStatus


class ReviewIn(BaseModel):
    item_id: str
    taste_rating: int = Field(ge=0, le=5)
    quality_rating: int = Field(ge=0, le=5)
    comment: str = Field(default="", max_length=1000)
    anonymous: bool = False


# -------------------
# Helpers
# -------------------
def _iso(dt: Any) -> Optional[str]:
    if dt is None:
        return None
    # SQLite hands back naive values; everything is stored as UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


async def wait_for_disconnect(websocket: WebSocket) -> None:
    """Drain client frames, text or binary, until the socket closes."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


def _serialize_order(o: Order, include_customer: bool = False) -> Dict[str, Any]:
    data = {
        "order_id": o.order_code,
        "items": [{"id": i.item_id, "name": i.item_name, "price": i.price} for i in o.items],
        "total": o.total,
        "address": o.address,
        "notes": o.notes,
        "status": o.status,
        "placed_at": _iso(o.placed_at),
        "updated_at": _iso(o.updated_at),
        "points_earned": o.points_earned,
        "points_used": o.points_used,
    }
    if include_customer and o.user is not None:
        data["customer"] = {"name": o.user.name, "email": o.user.email, "phone": o.user.phone}
    return data


def _serialize_review(r: Review) -> Dict[str, Any]:
    return {
        "id": r.id,
        "item_id": r.item_id,
        "user_name": r.user_name,
        "taste_rating": r.taste_rating,
        "quality_rating": r.quality_rating,
        "comment": r.comment or "",
        "created_at": _iso(r.created_at),
    }


def _status_payload(order_code: str, status: OrderStatus, updated_at: Any = None) -> Dict[str, Any]:
    return {
        "order_id": order_code,
        "status": status.value,
        "label": status.label,
        "description": status.description,
        "updated_at": _iso(updated_at),
    }


def _reviews_payload(reviews: List[Review]) -> Dict[str, Any]:
    return {
        "reviews": [_serialize_review(r) for r in reviews],
        "count": len(reviews),
        "average_rating": average_rating(reviews),
    }


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def require_user_id(request: Request, authorization: str | None = Header(default=None)) -> int:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")

    token = authorization.split(" ", 1)[1].strip()
    uid = read_token(token, request.app.state.settings)
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token")
    return uid


def require_admin(user_id: int = Depends(require_user_id), db: Session = Depends(get_db)) -> int:
    u = ProfileStore(db).get_user(user_id)
    if not u or not u.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id


def _can_view(session_factory: sessionmaker, order_code: str, user_id: int) -> bool:
    db = session_factory()
    try:
        o = OrderStore(db).get_order(order_code)
        if o is None:
            return False
        if o.user_id == user_id:
            return True
        u = ProfileStore(db).get_user(user_id)
        return bool(u and u.is_admin)
    finally:
        db.close()


# -------------------
# App
# -------------------
def create_app(
    session_factory: sessionmaker | None = None,
    feed: ChangeFeed | None = None,
    notifier: OrderNotifier | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    settings = settings or default_settings
    session_factory = session_factory or SessionLocal
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(session_factory.kw["bind"])
        yield
        for timer in app.state.progressions:
            timer.cancel()

    app = FastAPI(title="SapJuice API", lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.feed = feed or ChangeFeed()
    app.state.notifier = notifier or OrderNotifier(
        settings.order_notify_endpoint,
        timeout=settings.notify_timeout,
        currency_symbol=settings.currency_symbol,
    )
    app.state.menu = load_menu(settings.menu_path)
    app.state.progressions = []

    def schedule(order_code: str, placed_at: Optional[datetime] = None):
        def advance(code: str) -> bool:
            return advance_to_preparing(app.state.session_factory, app.state.feed, code)

        timer = schedule_progression(
            order_code, advance, settings.progression_delay_seconds, placed_at=placed_at
        )
        app.state.progressions = [t for t in app.state.progressions if t.is_alive()] + [timer]
        return timer

    # -------------------
    # Error mapping
    # -------------------
    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(OrderNotFoundError)
    async def _not_found(request: Request, exc: OrderNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(OrderPlacementError)
    async def _placement_failed(request: Request, exc: OrderPlacementError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    # -------------------
    # Health / menu
    # -------------------
    @app.get("/")
    def root():
        return {"ok": True, "service": "sapjuice-api"}

    @app.get("/menu")
    def menu():
        return {"items": list_items(app.state.menu), "meta": app.state.menu.get("meta") or {}}

    # -------------------
    # Auth
    # -------------------
    @app.post("/auth/signup", status_code=201)
    def signup(payload: SignupIn, db: Session = Depends(get_db)):
        profiles = ProfileStore(db)
        if profiles.get_user_by_email(payload.email):
            raise HTTPException(status_code=400, detail="This email is already registered")

        u = profiles.create_user(
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
            password_hash=hash_password(payload.password),
            is_admin=is_admin_email(payload.email, settings.admin_emails),
        )
        logger.info("New account %s", u.id)
        return {"ok": True, "token": issue_token(u.id, settings)}

    @app.post("/auth/login")
    def login(payload: LoginIn, db: Session = Depends(get_db)):
        u = ProfileStore(db).get_user_by_email(payload.email)
        if not u or not verify_password(payload.password, u.password_hash):
            raise HTTPException(status_code=401, detail="Invalid email or password")
        return {"token": issue_token(u.id, settings)}

    # -------------------
    # Profile
    # -------------------
    @app.get("/me")
    def me(user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
        profiles = ProfileStore(db)
        u = profiles.get_user(user_id)
        if not u:
            raise HTTPException(status_code=404, detail="User not found")
        try:
            balance = profiles.get_balance(user_id)
        except SQLAlchemyError as e:
            logger.warning("Balance unavailable for user %s: %s", user_id, e)
            balance = 0
        return {
            "name": u.name,
            "email": u.email,
            "phone": u.phone,
            "points_balance": balance,
            "saved_address": u.saved_address,
            "is_admin": bool(u.is_admin),
        }

    @app.put("/me/address")
    def save_address(payload: AddressIn, user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
        address = payload.address.strip()
        if not address:
            raise HTTPException(status_code=400, detail="Please enter a delivery address.")
        ProfileStore(db).set_saved_address(user_id, address)
        return {"ok": True, "saved_address": address}

    @app.delete("/me/address")
    def clear_address(user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
        ProfileStore(db).set_saved_address(user_id, None)
        return {"ok": True, "saved_address": None}

    # -------------------
    # Orders
    # -------------------
    @app.post("/orders", status_code=201)
    def place_order(payload: OrderIn, user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
        placement = OrderPlacement(
            db,
            menu=app.state.menu,
            feed=app.state.feed,
            notifier=app.state.notifier,
            schedule=schedule,
        )
        placed = placement.place(
            OrderRequest(
                user_id=user_id,
                item_ids=payload.items,
                address=payload.address,
                notes=payload.notes,
                redeem_points=payload.redeem_points,
                save_address=payload.save_address,
            )
        )
        return placed.to_dict()

    @app.get("/orders")
    def order_history(
        status: str = "all",
        q: str = "",
        placed_from: Optional[datetime] = None,
        placed_to: Optional[datetime] = None,
        sort: Literal["newest", "oldest"] = "newest",
        page: int = Query(default=0, ge=0),
        user_id: int = Depends(require_user_id),
        db: Session = Depends(get_db),
    ):
        try:
            orders = OrderStore(db).list_orders(
                user_id=user_id,
                status=status,
                search=q,
                placed_from=placed_from,
                placed_to=placed_to,
                sort=sort,
                page=page,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SQLAlchemyError as e:
            logger.warning("Order history unavailable for user %s: %s", user_id, e)
            orders = []
        return {
            "items": [_serialize_order(o) for o in orders],
            "page": page,
            "page_size": PAGE_SIZE,
            "has_more": len(orders) == PAGE_SIZE,
        }

    @app.get("/orders/{order_code}")
    def get_order(order_code: str, user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
        if not _can_view(app.state.session_factory, order_code, user_id):
            raise OrderNotFoundError(order_code)
        o = OrderStore(db).get_order(order_code)
        if o is None:
            raise OrderNotFoundError(order_code)
        return _serialize_order(o)

    @app.get("/orders/{order_code}/status")
    def order_status(order_code: str, user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
        if not _can_view(app.state.session_factory, order_code, user_id):
            raise OrderNotFoundError(order_code)
        try:
            snap = OrderStore(db).get_status(order_code)
        except SQLAlchemyError as e:
            logger.warning("Status unavailable for order %s: %s", order_code, e)
            snap = None
        if snap is None:
            return _status_payload(order_code, OrderStatus.PLACED)
        return _status_payload(order_code, snap.status, snap.updated_at)

    @app.websocket("/orders/{order_code}/track")
    async def track_order(websocket: WebSocket, order_code: str, token: str = ""):
        uid = read_token(token, settings)
        if not uid or not await asyncio.to_thread(
            _can_view, app.state.session_factory, order_code, uid
        ):
            await websocket.close(code=1008)
            return

        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue()

        async def watch_disconnect() -> None:
            await wait_for_disconnect(websocket)
            queue.put_nowait(None)

        tracker = OrderTracker(
            order_code,
            app.state.session_factory,
            app.state.feed,
            on_status=queue.put_nowait,
            advance_delay=settings.progression_delay_seconds,
        )
        watcher = asyncio.create_task(watch_disconnect())
        try:
            await tracker.start()
            while True:
                status = await queue.get()
                if status is None:
                    return
                await websocket.send_json(_status_payload(order_code, status))
                if is_terminal(status):
                    break
            watcher.cancel()
            await websocket.close()
        finally:
            tracker.close()
            watcher.cancel()

    # -------------------
    # Reviews
    # -------------------
    @app.get("/reviews")
    def all_reviews(db: Session = Depends(get_db)):
        try:
            reviews = ReviewStore(db).list_reviews()
        except SQLAlchemyError as e:
            logger.warning("Reviews unavailable: %s", e)
            reviews = []
        return _reviews_payload(reviews)

    @app.get("/reviews/{item_id}")
    def item_reviews(item_id: str, db: Session = Depends(get_db)):
        try:
            reviews = ReviewStore(db).list_reviews_for_item(item_id)
        except SQLAlchemyError as e:
            logger.warning("Reviews unavailable for item %s: %s", item_id, e)
            reviews = []
        return _reviews_payload(reviews)

    @app.post("/reviews", status_code=201)
    def add_review(payload: ReviewIn, user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
        if not can_submit_review(payload.taste_rating, payload.quality_rating):
            raise HTTPException(status_code=400, detail="Please rate taste or quality before submitting.")
        if payload.taste_rating < 1 or payload.quality_rating < 1:
            raise HTTPException(status_code=400, detail="Please rate both taste and quality (1-5).")

        u = ProfileStore(db).get_user(user_id)
        r = ReviewStore(db).create_review(
            item_id=payload.item_id,
            user_name=display_name(u.name if u else None, payload.anonymous),
            taste_rating=payload.taste_rating,
            quality_rating=payload.quality_rating,
            comment=payload.comment.strip(),
            user_id=user_id,
        )
        return _serialize_review(r)

    # -------------------
    # Admin
    # -------------------
    @app.get("/admin/orders")
    def admin_orders(
        status: str = "all",
        q: str = "",
        placed_from: Optional[datetime] = None,
        placed_to: Optional[datetime] = None,
        sort: Literal["newest", "oldest"] = "newest",
        page: int = Query(default=0, ge=0),
        _admin: int = Depends(require_admin),
        db: Session = Depends(get_db),
    ):
        try:
            orders = OrderStore(db).list_orders(
                status=status,
                search=q,
                placed_from=placed_from,
                placed_to=placed_to,
                sort=sort,
                page=page,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {
            "items": [_serialize_order(o, include_customer=True) for o in orders],
            "page": page,
            "page_size": PAGE_SIZE,
            "has_more": len(orders) == PAGE_SIZE,
        }

    @app.patch("/admin/orders/{order_code}")
    def admin_update_status(
        order_code: str,
        payload: StatusIn,
        admin_id: int = Depends(require_admin),
        db: Session = Depends(get_db),
    ):
        orders = OrderStore(db, app.state.feed)
        if orders.get_status(order_code) is None:
            raise OrderNotFoundError(order_code)

        applied = orders.set_status(order_code, payload.status)
        snap = orders.get_status(order_code)
        logger.info(
            "Admin %s set order %s to %s (applied=%s)", admin_id, order_code, payload.status.value, applied
        )
        return _status_payload(order_code, snap.status, snap.updated_at) | {"applied": applied}

    return app


# ASGI entrypoint for uvicorn
app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("sapjuice.main:app", host="127.0.0.1", port=8000)
