import logging
import os
import re
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

import database
from analytics import compute_analytics
from auth import get_current_user, hash_password, issue_token, require_admin
from database import create_document, ensure_indexes, get_db, get_documents, now_utc, serialize_doc, to_object_id
from errors import register_error_handlers
from orders import list_orders, place_order, update_order_status
from schemas import (
    Address as AddressSchema,
    CartItem,
    Category as CategorySchema,
    OrderCreate,
    Product as ProductSchema,
    User as UserSchema,
    WishlistItem,
    check_image,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateBody(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class AddressBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    street: str
    city: str
    state: str
    postal_code: str = Field(..., alias="postalCode")
    country: str
    is_default: bool = Field(False, alias="isDefault")


class AddressUpdateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = Field(None, alias="postalCode")
    country: Optional[str] = None
    is_default: Optional[bool] = Field(None, alias="isDefault")


class CategoryUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


class ProductBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., ge=0)
    category_id: Optional[str] = Field(None, alias="categoryId")
    image: Optional[str] = None
    stock: int = Field(0, ge=0)

    @field_validator("image")
    @classmethod
    def validate_image(cls, v):
        return check_image(v)


class ProductUpdateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = Field(None, alias="categoryId")
    image: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)

    @field_validator("image")
    @classmethod
    def validate_image(cls, v):
        return check_image(v)


class CartAddBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: int = Field(1, gt=0)


class CartUpdateBody(BaseModel):
    quantity: int = Field(..., gt=0)


class WishlistAddBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")


class StatusBody(BaseModel):
    status: str


# ----------------------- Utils -----------------------
def _auth_response(user: dict) -> dict:
    return {"token": issue_token(user["id"]), "user": user}


def _find_product(db, product_id: str) -> dict:
    doc = db["product"].find_one({"_id": to_object_id(product_id, "Product")})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return doc


def _check_category(db, category_id: Optional[str]):
    if category_id is None:
        return
    try:
        oid = to_object_id(category_id, "Category")
    except HTTPException:
        raise HTTPException(status_code=400, detail="Unknown category")
    if not db["category"].find_one({"_id": oid}):
        raise HTTPException(status_code=400, detail="Unknown category")


def _with_category(db, products: List[dict]) -> List[dict]:
    names = {str(c["_id"]): c["name"] for c in db["category"].find({})}
    out = []
    for p in products:
        p = serialize_doc(p)
        p["category"] = names.get(p.get("category_id"))
        out.append(p)
    return out


def _products_by_id(db, ids: List[str]) -> dict:
    oids = [to_object_id(i, "Product") for i in ids]
    docs = db["product"].find({"_id": {"$in": oids}})
    return {p["id"]: p for p in _with_category(db, list(docs))}


def _clear_other_defaults(db, user_id: str, keep_id: str):
    db["address"].update_many(
        {"user_id": user_id, "_id": {"$ne": to_object_id(keep_id, "Address")}},
        {"$set": {"is_default": False}},
    )


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    ok = database.db is not None
    return {
        "backend": "✅ Running",
        "database": "✅ Connected" if ok else "❌ Not Connected",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": database.DATABASE_NAME,
        "collections": (sorted(database.db.list_collection_names()) if ok else []),
    }


# ----------------------- Auth & Profile -----------------------
@app.post("/signup", status_code=201)
def signup(body: SignupBody, db=Depends(get_db)):
    if db["user"].find_one({"email": body.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = UserSchema(name=body.name, email=body.email, password_hash=hash_password(body.password))
    user_id = create_document(db, "user", user)
    logger.info("New account %s", body.email)
    return _auth_response(serialize_doc(db["user"].find_one({"_id": to_object_id(user_id)})))


@app.post("/login")
def login(body: LoginBody, db=Depends(get_db)):
    user = db["user"].find_one({"email": body.email})
    if not user or user.get("password_hash") != hash_password(body.password):
        logger.info("Failed login for %s", body.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _auth_response(serialize_doc(user))


@app.get("/user")
def get_profile(user=Depends(get_current_user)):
    return {"user": user}


@app.put("/user")
def update_profile(body: ProfileUpdateBody, user=Depends(get_current_user), db=Depends(get_db)):
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = now_utc()
    db["user"].update_one({"_id": to_object_id(user["id"], "User")}, {"$set": update})
    return {"user": serialize_doc(db["user"].find_one({"_id": to_object_id(user["id"], "User")}))}


@app.get("/user/role")
def get_role(user=Depends(get_current_user)):
    return {"role": user.get("role", "user")}


# ----------------------- Addresses -----------------------
@app.get("/addresses")
@app.get("/user/addresses")
def list_addresses(user=Depends(get_current_user), db=Depends(get_db)):
    docs = db["address"].find({"user_id": user["id"]}).sort([("is_default", -1), ("created_at", 1)])
    return {"addresses": [serialize_doc(d) for d in docs]}


@app.post("/addresses", status_code=201)
def create_address(body: AddressBody, user=Depends(get_current_user), db=Depends(get_db)):
    address = AddressSchema(user_id=user["id"], **body.model_dump())
    address_id = create_document(db, "address", address)
    if address.is_default:
        _clear_other_defaults(db, user["id"], address_id)
    return serialize_doc(db["address"].find_one({"_id": to_object_id(address_id)}))


@app.put("/addresses/{address_id}")
def update_address(address_id: str, body: AddressUpdateBody, user=Depends(get_current_user), db=Depends(get_db)):
    oid = to_object_id(address_id, "Address")
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = now_utc()
    res = db["address"].update_one({"_id": oid, "user_id": user["id"]}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Address not found")
    if update.get("is_default"):
        _clear_other_defaults(db, user["id"], address_id)
    return serialize_doc(db["address"].find_one({"_id": oid}))


@app.delete("/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    res = db["address"].delete_one({"_id": to_object_id(address_id, "Address"), "user_id": user["id"]})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Address not found")
    return {"ok": True}


# ----------------------- Categories -----------------------
@app.get("/categories")
def list_categories(db=Depends(get_db)):
    return {"categories": [serialize_doc(c) for c in db["category"].find({}).sort("name", 1)]}


@app.post("/categories", status_code=201)
def create_category(body: CategorySchema, admin=Depends(require_admin), db=Depends(get_db)):
    if db["category"].find_one({"name": body.name}):
        raise HTTPException(status_code=400, detail="Category already exists")
    cid = create_document(db, "category", body)
    return serialize_doc(db["category"].find_one({"_id": to_object_id(cid)}))


@app.put("/categories/{category_id}")
def update_category(category_id: str, body: CategoryUpdateBody, admin=Depends(require_admin), db=Depends(get_db)):
    oid = to_object_id(category_id, "Category")
    update = body.model_dump(exclude_none=True)
    if "name" in update and db["category"].find_one({"name": update["name"], "_id": {"$ne": oid}}):
        raise HTTPException(status_code=400, detail="Category already exists")
    update["updated_at"] = now_utc()
    res = db["category"].update_one({"_id": oid}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Category not found")
    return serialize_doc(db["category"].find_one({"_id": oid}))


@app.delete("/categories/{category_id}")
def delete_category(category_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    res = db["category"].delete_one({"_id": to_object_id(category_id, "Category")})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Category not found")
    db["product"].update_many({"category_id": category_id}, {"$set": {"category_id": None}})
    return {"ok": True}


# ----------------------- Products -----------------------
PRODUCT_SORTS = {
    "name": (lambda p: p["name"].lower(), False),
    "price-low": (lambda p: p["price"], False),
    "price-high": (lambda p: p["price"], True),
}


@app.get("/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    sort: str = Query("name", description="name|price-low|price-high"),
    db=Depends(get_db),
):
    if sort not in PRODUCT_SORTS:
        raise HTTPException(status_code=400, detail=f"Unknown sort: {sort}")
    filt = {}
    if q:
        pattern = re.escape(q)
        filt["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if category and category != "all":
        filt["category_id"] = category
    key, reverse = PRODUCT_SORTS[sort]
    products = _with_category(db, get_documents(db, "product", filt))
    return {"products": sorted(products, key=key, reverse=reverse)}


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return _with_category(db, [_find_product(db, product_id)])[0]


@app.post("/products", status_code=201)
def create_product(body: ProductBody, admin=Depends(require_admin), db=Depends(get_db)):
    _check_category(db, body.category_id)
    product = ProductSchema(created_by=admin["id"], **body.model_dump())
    pid = create_document(db, "product", product)
    logger.info("Product %s created by %s", pid, admin["email"])
    return get_product(pid, db)


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, admin=Depends(require_admin), db=Depends(get_db)):
    oid = to_object_id(product_id, "Product")
    update = body.model_dump(exclude_unset=True)
    if update.get("category_id"):
        _check_category(db, update["category_id"])
    # only category and image may be cleared
    update = {k: v for k, v in update.items() if v is not None or k in ("category_id", "image")}
    update["updated_at"] = now_utc()
    res = db["product"].update_one({"_id": oid}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return get_product(product_id, db)


@app.delete("/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    res = db["product"].delete_one({"_id": to_object_id(product_id, "Product")})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    db["cart_item"].delete_many({"product_id": product_id})
    db["wishlist_item"].delete_many({"product_id": product_id})
    logger.info("Product %s deleted by %s", product_id, admin["email"])
    return {"ok": True}


# ----------------------- Cart -----------------------
@app.get("/cart")
def get_cart(user=Depends(get_current_user), db=Depends(get_db)):
    rows = list(db["cart_item"].find({"user_id": user["id"]}).sort("created_at", 1))
    products = _products_by_id(db, [r["product_id"] for r in rows])
    items = []
    for r in rows:
        product = products.get(r["product_id"])
        if product is None:
            continue
        items.append({"productId": r["product_id"], "quantity": r["quantity"], "product": product})
    total = round(sum(i["product"]["price"] * i["quantity"] for i in items), 2)
    return {"items": items, "total": total}


@app.post("/cart")
def add_to_cart(body: CartAddBody, user=Depends(get_current_user), db=Depends(get_db)):
    _find_product(db, body.product_id)
    line = CartItem(user_id=user["id"], product_id=body.product_id, quantity=body.quantity)
    key = {"user_id": line.user_id, "product_id": line.product_id}
    db["cart_item"].update_one(
        key,
        {"$inc": {"quantity": line.quantity}, "$setOnInsert": {"created_at": now_utc()}},
        upsert=True,
    )
    row = db["cart_item"].find_one(key)
    return {"productId": body.product_id, "quantity": row["quantity"]}


@app.put("/cart/{product_id}")
def update_cart_item(product_id: str, body: CartUpdateBody, user=Depends(get_current_user), db=Depends(get_db)):
    res = db["cart_item"].update_one(
        {"user_id": user["id"], "product_id": product_id},
        {"$set": {"quantity": body.quantity}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Item not in cart")
    return {"productId": product_id, "quantity": body.quantity}


@app.delete("/cart/{product_id}")
def remove_from_cart(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    res = db["cart_item"].delete_one({"user_id": user["id"], "product_id": product_id})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Item not in cart")
    return {"ok": True}


# ----------------------- Wishlist -----------------------
@app.get("/wishlist")
def get_wishlist(user=Depends(get_current_user), db=Depends(get_db)):
    rows = list(db["wishlist_item"].find({"user_id": user["id"]}).sort("created_at", -1))
    products = _products_by_id(db, [r["product_id"] for r in rows])
    return {
        "items": [
            {"productId": r["product_id"], "product": products[r["product_id"]]}
            for r in rows if r["product_id"] in products
        ]
    }


@app.post("/wishlist")
def add_to_wishlist(body: WishlistAddBody, user=Depends(get_current_user), db=Depends(get_db)):
    _find_product(db, body.product_id)
    entry = WishlistItem(user_id=user["id"], product_id=body.product_id)
    db["wishlist_item"].update_one(
        entry.model_dump(),
        {"$setOnInsert": {"created_at": now_utc()}},
        upsert=True,
    )
    return {"ok": True}


@app.delete("/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    res = db["wishlist_item"].delete_one({"user_id": user["id"], "product_id": product_id})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Item not in wishlist")
    return {"ok": True}


# ----------------------- Orders -----------------------
@app.get("/orders")
def my_orders(user=Depends(get_current_user), db=Depends(get_db)):
    return {"orders": list_orders(db, {"user_id": user["id"]})}


@app.post("/orders", status_code=201)
def create_order(body: OrderCreate, user=Depends(get_current_user), db=Depends(get_db)):
    return place_order(db, user, body)


@app.put("/orders/{order_id}/status")
def set_order_status(order_id: str, body: StatusBody, admin=Depends(require_admin), db=Depends(get_db)):
    return update_order_status(db, order_id, body.status, admin)


# ----------------------- Admin -----------------------
@app.get("/admin/orders")
def admin_orders(status: Optional[str] = None, admin=Depends(require_admin), db=Depends(get_db)):
    return {"orders": list_orders(db, {"status": status} if status else None)}


@app.get("/admin/analytics")
def admin_analytics(admin=Depends(require_admin), db=Depends(get_db)):
    return compute_analytics(
        orders=list_orders(db),
        products=_with_category(db, get_documents(db, "product")),
        categories=[serialize_doc(c) for c in get_documents(db, "category")],
        user_count=db["user"].count_documents({}),
    )


@app.get("/admin/logs")
def admin_logs(limit: int = Query(100, ge=1, le=1000), admin=Depends(require_admin), db=Depends(get_db)):
    docs = db["activity_log"].find({}).sort([("created_at", -1), ("_id", -1)]).limit(limit)
    logs = []
    for d in docs:
        d = serialize_doc(d)
        logs.append({
            "id": d["id"],
            "type": d["type"],
            "userId": d.get("user_id"),
            "userEmail": d.get("user_email"),
            "timestamp": d.get("created_at"),
            **(d.get("details") or {}),
        })
    return {"logs": logs}


# ----------------------- Seed Demo Data -----------------------
DEMO_CATALOG = {
    "Home Office": ("Desks, lamps and the small things around them", [
        ("Oak Desk Organizer", "Three-slot tray in oiled oak for pens, cards and a phone.", 34.0, 18),
        ("Clamp Task Lamp", "Adjustable arm, warm LED, clamps to desks up to 5cm thick.", 59.5, 7),
    ]),
    "Kitchen": ("Cookware and pantry storage", [
        ("Cast Iron Skillet 26cm", "Pre-seasoned, oven safe, works on induction.", 42.0, 25),
        ("Glass Storage Jars (set of 4)", "Airtight bamboo lids, 750ml each.", 24.9, 4),
    ]),
    "Outdoor": ("Gear for short trips", [
        ("Insulated Bottle 750ml", "Keeps drinks cold for a day, hot for twelve hours.", 27.0, 40),
    ]),
}


@app.post("/seed")
def seed(admin=Depends(require_admin), db=Depends(get_db)):
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for category_name, (description, items) in DEMO_CATALOG.items():
        existing = db["category"].find_one({"name": category_name})
        if existing:
            category_id = str(existing["_id"])
        else:
            category_id = create_document(db, "category", CategorySchema(name=category_name, description=description))
        for name, blurb, price, stock in items:
            product = ProductSchema(
                name=name, description=blurb, price=price, stock=stock,
                category_id=category_id, created_by=admin["id"],
            )
            create_document(db, "product", product)
    logger.info("Demo catalog seeded by %s", admin["email"])
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
