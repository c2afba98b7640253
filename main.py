import os
import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError

import auth
import catalog
import geo
import orders
import stats
from database import db, ensure_indexes, get_db, to_str_id, utcnow
from errors import AppError
from events import EventSink, get_event_sink
from schemas import (
    CreateOrderIn,
    LoginIn,
    Product,
    ProductUpdate,
    RegisterIn,
    StatusIn,
    Store,
    StoreUpdate,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("ocha")

app = FastAPI(title="Ocha Café API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

API = "/api/v1"

# -----------------
# Error mapping
# -----------------

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg")}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=422, content={"message": "Invalid data", "errors": errors})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"message": "Data conflict"})


@app.exception_handler(PyMongoError)
async def persistence_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Persistence failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "An unexpected error occurred"})


# ---------
# Root/Health
# ---------

@app.get("/")
def read_root():
    return {"message": "Ocha Café API is running"}


@app.get(f"{API}/health")
def health(database=Depends(get_db)):
    response = {"backend": "running", "database": "unavailable", "collections": []}
    try:
        response["collections"] = database.list_collection_names()[:10]
        response["database"] = "connected"
    except PyMongoError as e:
        response["database"] = f"error: {str(e)[:50]}"
    return response


# ---------------
# Accounts
# ---------------

@app.post(f"{API}/users", status_code=201)
def register(payload: RegisterIn, database=Depends(get_db)):
    user = auth.register_user(database, payload.email, payload.password, payload.display_name, payload.phone)
    session = auth.login(database, payload.email, payload.password)
    return {"message": "User successfully registered", "token": session["token"], "user": user}


@app.post(f"{API}/auth/login")
def login(payload: LoginIn, database=Depends(get_db)):
    session = auth.login(database, payload.email, payload.password)
    return {"message": "Login successful", **session}


@app.post(f"{API}/auth/logout", status_code=204)
def logout(token: Optional[str] = Depends(auth.bearer_token), user: dict = Depends(auth.current_user),
           database=Depends(get_db)):
    auth.logout(database, token)
    return Response(status_code=204)


@app.get(f"{API}/users/me")
def me(user: dict = Depends(auth.current_user)):
    return {"user": to_str_id(user)}


# ---------------
# Orders
# ---------------

@app.post(f"{API}/orders", status_code=201)
def create_order(payload: CreateOrderIn, user: dict = Depends(auth.current_user),
                 database=Depends(get_db), events: EventSink = Depends(get_event_sink)):
    items = None if payload.items is None else [line.model_dump() for line in payload.items]
    order = orders.create_order(database, user["_id"], payload.store_id, payload.pickup, items, events=events)
    return {"message": "Order successfully created", "order": order}


@app.get(f"{API}/orders/me")
@app.get(f"{API}/users/me/orders")
def my_orders(status: Optional[str] = None, store_id: Optional[str] = None,
              page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
              user: dict = Depends(auth.current_user), database=Depends(get_db)):
    result = orders.get_own_orders(database, user["_id"], status=status, store_id=store_id, page=page, limit=limit)
    return {"message": "Your order history", **result}


@app.get(f"{API}/orders/{{order_id}}")
def get_order(order_id: str, user: dict = Depends(auth.current_user), database=Depends(get_db)):
    orders.ensure_can_access(database, order_id, user)
    return {"message": "Order found", "order": orders.get_order(database, order_id)}


@app.patch(f"{API}/orders/{{order_id}}/status")
def update_order_status(order_id: str, payload: StatusIn, admin: dict = Depends(auth.admin_user),
                        database=Depends(get_db), events: EventSink = Depends(get_event_sink)):
    order = orders.set_status(database, order_id, payload.status, events=events)
    return {"message": "Order status updated", "order": order}


@app.delete(f"{API}/orders/{{order_id}}", status_code=204)
def delete_order(order_id: str, user: dict = Depends(auth.current_user), database=Depends(get_db)):
    orders.ensure_can_access(database, order_id, user)
    orders.delete_order(database, order_id)
    return Response(status_code=204)


@app.get(f"{API}/orders/{{order_id}}/items")
def order_items(order_id: str, user: dict = Depends(auth.current_user), database=Depends(get_db)):
    orders.ensure_can_access(database, order_id, user)
    return {"message": "List of items in the order", "items": orders.get_order_items(database, order_id)}


@app.get(f"{API}/order-stats")
def order_stats(admin: dict = Depends(auth.admin_user), database=Depends(get_db)):
    return {"stats": stats.order_stats_by_user(database)}


# ---------------
# Catalog: products
# ---------------

@app.get(f"{API}/products")
def list_products(active: Optional[bool] = None, page: int = Query(1, ge=1),
                  limit: int = Query(10, ge=1, le=100), database=Depends(get_db)):
    return {"message": "List of products", **catalog.list_products(database, active=active, page=page, limit=limit)}


@app.get(f"{API}/products/{{product_id}}")
def get_product(product_id: str, database=Depends(get_db)):
    return {"message": "Product found", "product": to_str_id(catalog.get_product(database, product_id))}


@app.post(f"{API}/products", status_code=201)
def create_product(payload: Product, admin: dict = Depends(auth.admin_user),
                   database=Depends(get_db), events: EventSink = Depends(get_event_sink)):
    return {"message": "Product created", "product": catalog.create_product(database, payload, events=events)}


@app.patch(f"{API}/products/{{product_id}}")
def update_product(product_id: str, payload: ProductUpdate, admin: dict = Depends(auth.admin_user),
                   database=Depends(get_db)):
    product = catalog.update_product(database, product_id, payload.model_dump(exclude_unset=True))
    return {"message": "Product updated", "product": product}


@app.delete(f"{API}/products/{{product_id}}", status_code=204)
def delete_product(product_id: str, admin: dict = Depends(auth.admin_user), database=Depends(get_db)):
    catalog.delete_product(database, product_id)
    return Response(status_code=204)


# ---------------
# Catalog: stores
# ---------------

@app.get(f"{API}/stores")
def list_stores(near: Optional[str] = None, radius: Optional[str] = None, active: Optional[bool] = None,
                page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), database=Depends(get_db)):
    if near is not None:
        longitude, latitude = geo.parse_near(near)
        result = geo.find_nearby(database, longitude, latitude, radius, page=page, limit=limit,
                                 active_only=bool(active))
        return {"message": "Nearby stores", **result}
    return {"message": "List of stores", **geo.list_stores(database, page=page, limit=limit, active=active)}


@app.get(f"{API}/stores/nearby")
def nearby_stores(lng: float, lat: float, radius: Optional[str] = None, page: int = Query(1, ge=1),
                  limit: int = Query(10, ge=1, le=100), database=Depends(get_db)):
    result = geo.find_nearby(database, lng, lat, radius, page=page, limit=limit, active_only=True)
    return {"message": "Nearby stores", **result}


@app.get(f"{API}/stores/{{store_id}}")
def get_store(store_id: str, database=Depends(get_db)):
    return {"message": "Store found", "store": to_str_id(catalog.get_store(database, store_id))}


@app.get(f"{API}/stores/{{store_id}}/hours")
def store_hours(store_id: str, at: Optional[datetime] = None, database=Depends(get_db)):
    store = catalog.get_store(database, store_id)
    when = at or utcnow()
    day = catalog.day_index(when)
    return {"open": catalog.is_open_at(store, when), "day": day, "hours": catalog.schedule_for_day(store, day)}


@app.post(f"{API}/stores", status_code=201)
def create_store(payload: Store, admin: dict = Depends(auth.admin_user), database=Depends(get_db)):
    return {"message": "Store created", "store": catalog.create_store(database, payload)}


@app.patch(f"{API}/stores/{{store_id}}")
def update_store(store_id: str, payload: StoreUpdate, admin: dict = Depends(auth.admin_user),
                 database=Depends(get_db)):
    store = catalog.update_store(database, store_id, payload.model_dump(exclude_unset=True))
    return {"message": "Store updated", "store": store}


@app.delete(f"{API}/stores/{{store_id}}", status_code=204)
def delete_store(store_id: str, admin: dict = Depends(auth.admin_user), database=Depends(get_db)):
    catalog.delete_store(database, store_id)
    return Response(status_code=204)


@app.on_event("startup")
async def startup_event():
    if db is not None:
        ensure_indexes(db)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
