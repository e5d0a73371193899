import os
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

import database
from catalog import CATEGORIES, PRODUCTS, browse, get_product_by_id
from config import Settings, configure_logging, get_settings
from errors import ConfigurationError, PaymentError, SignatureError
from orders import OrderRecorder, OrderRepository
from payments import StripeGateway, configure_stripe
from schemas import CheckoutSessionIn, FilterState, SortKey, ViewMode

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    configure_stripe(get_settings())
    try:
        database.ensure_indexes()
    except PyMongoError as e:
        logger.error("database.index_failed", error=str(e))
    yield


app = FastAPI(title="Kondappali Toys Shop API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


# --- Error mapping ---

@app.exception_handler(ConfigurationError)
def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("configuration_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Server misconfigured", "message": "Service temporarily unavailable"})


@app.exception_handler(PaymentError)
def payment_error_handler(request: Request, exc: PaymentError):
    return JSONResponse(status_code=500, content={"error": "Failed to create checkout session", "message": str(exc)})


@app.exception_handler(SignatureError)
def signature_error_handler(request: Request, exc: SignatureError):
    logger.warning("webhook.signature_rejected", error=str(exc))
    return JSONResponse(status_code=400, content={"error": "Webhook Error", "message": str(exc)})


# --- Dependencies ---

def get_gateway(settings: Settings = Depends(get_settings)) -> StripeGateway:
    return StripeGateway(settings)


def get_order_repository() -> OrderRepository:
    if database.db is None:
        raise ConfigurationError("Database not configured")
    return OrderRepository(database.db["order"])


@app.get("/")
def read_root():
    return {"message": "Kondappali Toys Shop Backend running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
                response["connection_status"] = "Connected"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


# --- Catalog ---

@app.get("/api/categories")
def list_categories():
    return {"categories": [c.model_dump() for c in CATEGORIES]}


@app.get("/api/products")
def list_products(
    category: str = "all",
    price: str = "all",
    sort: SortKey = SortKey.POPULARITY,
    q: str = "",
    view: ViewMode = ViewMode.GRID,
    page: int = Query(1, ge=1),
):
    filters = FilterState(category=category, price_range=price, sort_by=sort, search=q.lower(), view=view, page=page)
    try:
        result = browse(filters, PRODUCTS)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "items": [p.model_dump(mode="json") for p in result.items],
        "page": result.page,
        "page_count": result.page_count,
        "total": result.total,
        "summary": result.summary,
        "view": filters.view.value,
        "pagination": [vars(c) for c in result.controls],
    }


@app.get("/api/products/{product_id}")
def get_product(product_id: int):
    product = get_product_by_id(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product.model_dump(mode="json")


# --- Checkout with Stripe ---

@app.options("/api/create-checkout")
def create_checkout_preflight():
    return Response(status_code=204, headers=CORS_HEADERS)


@app.post("/api/create-checkout")
def create_checkout_session(payload: CheckoutSessionIn, gateway: StripeGateway = Depends(get_gateway)):
    if not payload.items:
        raise HTTPException(status_code=400, detail="Cart is empty")
    session = gateway.create_checkout_session(payload.items, payload.customer_email, payload.order_ref)
    return session.model_dump(by_alias=True)


@app.post("/api/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    gateway: StripeGateway = Depends(get_gateway),
    repository: OrderRepository = Depends(get_order_repository),
):
    payload = await request.body()
    event = gateway.verify_event(payload, stripe_signature)
    await run_in_threadpool(OrderRecorder(repository, gateway).handle, event)
    return {"received": True}


# --- Admin ---

@app.get("/api/orders")
def list_orders(
    key: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    settings: Settings = Depends(get_settings),
    repository: OrderRepository = Depends(get_order_repository),
):
    if not settings.admin_secret_key or key != settings.admin_secret_key:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        orders = repository.list_recent(limit)
    except PyMongoError as e:
        logger.error("orders.fetch_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch orders")
    return {"success": True, "orders": orders, "count": len(orders)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
