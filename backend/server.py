from fastapi import FastAPI, APIRouter, HTTPException, Depends, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from dotenv import load_dotenv
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from decimal import Decimal
from pathlib import Path
from pydantic import BaseModel, Field, PlainSerializer
from typing import Annotated, List, Optional, Dict
from datetime import datetime, timezone, timedelta
import jwt

from breakdown import breakdown_rows, render_breakdown_html
from cost_calculator import CostBreakdown, calculate_cost, breakdown_from_payment
from payout_errors import PayoutError
from payment_service import (
    RequestContext,
    compute_payment_stats,
    distribute_payment,
    get_payment,
    list_payments,
    process_payout,
    update_payment_status,
)
from payment_store import PaymentStore, MongoPaymentStore, InMemoryPaymentStore
from payout_config import Settings
from payout_gateway import PayoutGateway, build_payout_gateway

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

api_router = APIRouter(prefix="/api")
security = HTTPBearer(auto_error=False)

# Money goes out as JSON numbers; Decimal is kept everywhere else
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
FeeRate = Annotated[Decimal, Field(ge=0, lt=1)]


# ============ MODELS ============

class LoginRequest(BaseModel):
    password: str

class LoginResponse(BaseModel):
    token: str
    message: str

class CostPreviewRequest(BaseModel):
    base_price: Decimal = Field(ge=0)
    producer_cost: Decimal = Field(default=Decimal("0"), ge=0)
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    platform_fee_rate: Optional[FeeRate] = None
    payment_gateway_fee_rate: Optional[FeeRate] = None
    currency: Optional[str] = None

class DistributeRequest(BaseModel):
    order_id: str = Field(min_length=1)
    producer_id: str = Field(min_length=1)

class StatusUpdate(BaseModel):
    status: str

class BreakdownRow(BaseModel):
    key: str
    label: str
    value: Money
    display: str
    tone: str  # positive, negative, total-positive, total-negative

class BreakdownResponse(BaseModel):
    base_price: Money
    producer_cost: Money
    shipping_cost: Money
    platform_fee_rate: Money
    payment_gateway_fee_rate: Money
    platform_fee: Money
    payment_gateway_fee: Money
    total_deductions: Money
    net_payout: Money
    negative_payout: bool
    currency: str
    rows: List[BreakdownRow] = []
    html: Optional[str] = None

class PaymentResponse(BaseModel):
    id: str
    order_id: str
    producer_id: str
    user_id: str
    amount: Money
    producer_cost: Money
    shipping_cost: Money = Decimal("0")
    platform_fee_rate: Money = Decimal("0")
    payment_gateway_fee_rate: Money = Decimal("0")
    platform_fee: Money
    payment_gateway_fee: Money
    total_deductions: Money = Decimal("0")
    net_payout: Money
    currency: str = "USD"
    status: str  # pending, processing, completed, failed, refunded
    payout_reference: Optional[str] = None
    error_message: Optional[str] = None
    settlement_date: Optional[str] = None
    created_at: str
    updated_at: str

class DistributeResponse(BaseModel):
    success: bool = True
    payment_id: str
    duplicate: bool = False
    payment: PaymentResponse
    breakdown: BreakdownResponse

class StatsResponse(BaseModel):
    total_revenue: Money
    pending_payouts: Money
    completed_payouts: Money
    average_margin: Money
    pending_count: int
    counts: Dict[str, int]
    total: int


def to_breakdown_response(breakdown: CostBreakdown, currency: str, include_html: bool = False) -> BreakdownResponse:
    return BreakdownResponse(
        **breakdown.as_dict(),
        negative_payout=breakdown.is_negative_payout,
        currency=currency,
        rows=[BreakdownRow(**row) for row in breakdown_rows(breakdown, currency)],
        html=render_breakdown_html(breakdown, currency) if include_html else None,
    )


# ============ AUTH HELPERS ============

def create_jwt_token(data: dict, secret: str, expires_delta: timedelta = timedelta(hours=24)):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret, algorithm="HS256")

def verify_jwt_token(token: str, secret: str):
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload

async def get_current_user(request: Request, credentials: HTTPAuthorizationCredentials = Depends(security)):
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return verify_jwt_token(credentials.credentials, request.app.state.settings.jwt_secret)

async def get_context(request: Request, user = Depends(get_current_user)) -> RequestContext:
    """Per-request context: the authenticated owner plus the app's store and settings"""
    return RequestContext(
        user_id=user["sub"],
        store=request.app.state.store,
        settings=request.app.state.settings,
    )


# ============ AUTH ROUTES ============

@api_router.get("/health")
async def health():
    return {"status": "ok"}

@api_router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, data: LoginRequest):
    settings = request.app.state.settings
    if data.password != settings.admin_password:
        raise HTTPException(status_code=401, detail="Invalid password")

    token = create_jwt_token({"sub": settings.owner_id, "role": "admin"}, settings.jwt_secret)
    return LoginResponse(token=token, message="Login successful")

@api_router.get("/auth/me")
async def get_me(user = Depends(get_current_user)):
    return {"user": user["sub"], "role": user.get("role")}


# ============ PAYMENT ROUTES ============

@api_router.post("/payments/preview", response_model=BreakdownResponse)
async def preview_cost(data: CostPreviewRequest, ctx: RequestContext = Depends(get_context)):
    """Calculate a cost breakdown without storing anything"""
    platform_rate = data.platform_fee_rate if data.platform_fee_rate is not None else ctx.settings.platform_fee_rate
    gateway_rate = (
        data.payment_gateway_fee_rate
        if data.payment_gateway_fee_rate is not None
        else ctx.settings.payment_gateway_fee_rate
    )
    breakdown = calculate_cost(data.base_price, data.producer_cost, data.shipping_cost, platform_rate, gateway_rate)
    return to_breakdown_response(breakdown, (data.currency or ctx.settings.default_currency).upper())

@api_router.post("/payments/distribute", response_model=DistributeResponse)
async def distribute(data: DistributeRequest, response: Response, ctx: RequestContext = Depends(get_context)):
    """Split an order's payment and store it as pending (once per order)"""
    result = await distribute_payment(ctx, data.order_id, data.producer_id)
    response.status_code = 201 if result.created else 200

    payment = result.payment
    return DistributeResponse(
        payment_id=payment["id"],
        duplicate=not result.created,
        payment=PaymentResponse(**payment),
        breakdown=to_breakdown_response(result.breakdown, payment.get("currency", "USD")),
    )

@api_router.get("/payments", response_model=List[PaymentResponse])
async def get_payments(
    status: Optional[str] = None,
    days: Optional[int] = Query(None, ge=1),
    limit: int = Query(50, ge=1, le=500),
    ctx: RequestContext = Depends(get_context)
):
    """List the caller's payments, newest first"""
    payments = await list_payments(ctx, status=status, days=days, limit=limit)
    return [PaymentResponse(**p) for p in payments]

@api_router.get("/payments/stats", response_model=StatsResponse)
async def get_payment_stats(
    days: Optional[int] = Query(None, ge=1),
    ctx: RequestContext = Depends(get_context)
):
    """Revenue and payout totals for the dashboard"""
    payments = await list_payments(ctx, days=days, limit=10000)
    return StatsResponse(**compute_payment_stats(payments))

@api_router.get("/payments/{payment_id}", response_model=PaymentResponse)
async def get_single_payment(payment_id: str, ctx: RequestContext = Depends(get_context)):
    payment = await get_payment(ctx, payment_id)
    return PaymentResponse(**payment)

@api_router.get("/payments/{payment_id}/breakdown", response_model=BreakdownResponse)
async def get_payment_breakdown(payment_id: str, ctx: RequestContext = Depends(get_context)):
    """Display rows and HTML card for a stored payment"""
    payment = await get_payment(ctx, payment_id)
    breakdown = breakdown_from_payment(payment)
    return to_breakdown_response(breakdown, payment.get("currency", "USD"), include_html=True)

@api_router.post("/payments/{payment_id}/process", response_model=PaymentResponse)
async def process_payment(payment_id: str, request: Request, ctx: RequestContext = Depends(get_context)):
    """Pay out a pending payment"""
    payment = await process_payout(ctx, payment_id, request.app.state.payout_gateway)
    return PaymentResponse(**payment)

@api_router.patch("/payments/{payment_id}/status", response_model=PaymentResponse)
async def patch_payment_status(payment_id: str, update: StatusUpdate, ctx: RequestContext = Depends(get_context)):
    payment = await update_payment_status(ctx, payment_id, update.status)
    return PaymentResponse(**payment)


# ============ ERROR HANDLERS ============

async def payout_error_handler(request: Request, exc: PayoutError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None)
    )

async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query"))
        messages.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    return JSONResponse(status_code=400, content={"error": "Invalid request: " + "; ".join(messages)})


# ============ SETUP ============

def build_store(settings: Settings) -> PaymentStore:
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory payment storage; data is lost on restart")
        return InMemoryPaymentStore()
    if not settings.mongo_url:
        raise RuntimeError("MONGO_URL is required when STORAGE_BACKEND=mongo")
    return MongoPaymentStore(settings.mongo_url, settings.db_name)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[PaymentStore] = None,
    payout_gateway: Optional[PayoutGateway] = None
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Shop Payout Service")
    app.state.settings = settings
    app.state.store = store or build_store(settings)
    app.state.payout_gateway = payout_gateway or build_payout_gateway(settings)

    # Include router
    app.include_router(api_router)

    app.add_exception_handler(PayoutError, payout_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def ensure_indexes():
        await app.state.store.ensure_indexes()

    @app.on_event("shutdown")
    async def shutdown_db_client():
        app.state.store.close()

    return app


app = create_app()
