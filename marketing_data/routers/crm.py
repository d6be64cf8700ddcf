import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketing_data.db import get_db
from marketing_data.models import Client, Product, Sale, Stock

log = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["crm"])

# --------------------------------------------------------------------
# Request schemas
# --------------------------------------------------------------------
SCRIPT_PATTERNS = [
    r"<script[^>]*>.*?</script>",
    r"javascript:",
    r"vbscript:",
    r"on\w+\s*=",
    r"<iframe[^>]*>",
    r"<object[^>]*>",
    r"<embed[^>]*>",
]
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _no_scripts(v):
    """Reject text carrying HTML/JS injection markup."""
    if isinstance(v, str):
        for p in SCRIPT_PATTERNS:
            if re.search(p, v, flags=re.I | re.S):
                raise ValueError("must not contain script markup")
    return v


class ClientIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: str = Field(max_length=320)

    @field_validator("name", "email", mode="before")
    @classmethod
    def _strip(cls, v):
        # before the length checks, so padding cannot satisfy min_length
        return v.strip() if isinstance(v, str) else v

    @field_validator("name", "email")
    @classmethod
    def _safe(cls, v: str) -> str:
        return _no_scripts(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        if not EMAIL_RE.match(v):
            raise ValueError("invalid email address")
        return v.lower()


class ProductIn(BaseModel):
    name: str = Field(min_length=3, max_length=200)
    category: str = Field(min_length=1, max_length=100)
    supplier: Optional[str] = Field(None, max_length=150)
    price: float = Field(gt=0, lt=1_000_000)
    sku: Optional[str] = None

    @field_validator("name", "category", "supplier", "sku", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("name", "category", "supplier", "sku")
    @classmethod
    def _safe(cls, v):
        return _no_scripts(v)


class SaleIn(BaseModel):
    client_id: int
    product_id: int
    quantity: int = Field(ge=1)
    unit_price: Optional[float] = Field(None, ge=0)   # defaults to the product price
    sold_at: Optional[datetime] = None
    branch: Optional[str] = None
    payment_method: Optional[str] = None

    @field_validator("branch", "payment_method")
    @classmethod
    def _safe(cls, v):
        return _no_scripts(v)


class StockIn(BaseModel):
    product_id: int
    quantity: int = Field(ge=0)
    branch: Optional[str] = None
    location: Optional[str] = None

    @field_validator("branch", "location")
    @classmethod
    def _safe(cls, v):
        return _no_scripts(v)


# -------------------------------------------------------------------
# Serializers
# -------------------------------------------------------------------
def _client_to_dict(c: Client) -> Dict[str, Any]:
    return {"id": c.id, "name": c.name, "email": c.email, "created_at": c.created_at}

def _product_to_dict(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id, "sku": p.sku, "name": p.name, "category": p.category,
        "supplier": p.supplier, "price": p.price,
    }

def _sale_to_dict(s: Sale) -> Dict[str, Any]:
    return {
        "id": s.id,
        "client_id": s.client_id,
        "product_id": s.product_id,
        "quantity": s.quantity,
        "unit_price": s.unit_price,
        "total": s.total,
        "sold_at": s.sold_at,
        "branch": s.branch,
        "payment_method": s.payment_method,
    }

def _stock_to_dict(st: Stock) -> Dict[str, Any]:
    return {
        "id": st.id, "product_id": st.product_id, "quantity": st.quantity,
        "branch": st.branch, "location": st.location, "updated_at": st.updated_at,
    }


def _get_or_404(db: Session, model, obj_id: int, label: str):
    obj = db.get(model, obj_id)
    if obj is None:
        raise HTTPException(404, f"{label} not found")
    return obj

def _commit(db: Session, what: str) -> None:
    """Commit, mapping unique-constraint violations to 409."""
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        log.warning("%s conflict: %s", what, e.orig)
        raise HTTPException(409, f"{what} conflicts with an existing record")


# -------------------------------------------------------------------
# Clients
# -------------------------------------------------------------------
@router.get("/clients")
def list_clients(
    q: Optional[str] = Query(None, description="Name or email contains, case-insensitive"),
    limit: int = Query(100, ge=1, le=2000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    qq = db.query(Client)
    if q:
        like = f"%{q.lower()}%"
        qq = qq.filter(Client.name.ilike(like) | Client.email.ilike(like))
    return [_client_to_dict(c) for c in qq.order_by(Client.id).offset(offset).limit(limit).all()]

@router.get("/clients/{client_id}")
def get_client(client_id: int, db: Session = Depends(get_db)):
    return _client_to_dict(_get_or_404(db, Client, client_id, "Client"))

@router.post("/clients", status_code=201)
def create_client(body: ClientIn, db: Session = Depends(get_db)):
    c = Client(name=body.name, email=body.email)
    db.add(c)
    _commit(db, "Client")
    db.refresh(c)
    return _client_to_dict(c)

@router.put("/clients/{client_id}")
def update_client(client_id: int, body: ClientIn, db: Session = Depends(get_db)):
    c = _get_or_404(db, Client, client_id, "Client")
    c.name, c.email = body.name, body.email
    _commit(db, "Client")
    return _client_to_dict(c)

@router.delete("/clients/{client_id}", status_code=204)
def delete_client(client_id: int, db: Session = Depends(get_db)):
    c = _get_or_404(db, Client, client_id, "Client")
    if db.query(Sale).filter(Sale.client_id == client_id).first():
        raise HTTPException(409, "Client has sales and cannot be deleted")
    db.delete(c)
    db.commit()


# -------------------------------------------------------------------
# Products
# -------------------------------------------------------------------
@router.get("/products")
def list_products(
    category: Optional[str] = Query(None, description="Exact category match"),
    limit: int = Query(100, ge=1, le=2000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    qq = db.query(Product)
    if category:
        qq = qq.filter(Product.category == category)
    return [_product_to_dict(p) for p in qq.order_by(Product.id).offset(offset).limit(limit).all()]

@router.get("/products/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return _product_to_dict(_get_or_404(db, Product, product_id, "Product"))

@router.post("/products", status_code=201)
def create_product(body: ProductIn, db: Session = Depends(get_db)):
    p = Product(**body.model_dump())
    db.add(p)
    _commit(db, "Product")
    db.refresh(p)
    return _product_to_dict(p)

@router.put("/products/{product_id}")
def update_product(product_id: int, body: ProductIn, db: Session = Depends(get_db)):
    p = _get_or_404(db, Product, product_id, "Product")
    for k, v in body.model_dump().items():
        setattr(p, k, v)
    _commit(db, "Product")
    return _product_to_dict(p)

@router.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: int, db: Session = Depends(get_db)):
    p = _get_or_404(db, Product, product_id, "Product")
    if db.query(Sale).filter(Sale.product_id == product_id).first():
        raise HTTPException(409, "Product has sales and cannot be deleted")
    db.query(Stock).filter(Stock.product_id == product_id).delete()
    db.delete(p)
    db.commit()


# -------------------------------------------------------------------
# Sales
# -------------------------------------------------------------------
@router.get("/sales")
def list_sales(
    client_id: Optional[int] = Query(None),
    product_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=2000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    qq = db.query(Sale)
    if client_id is not None:
        qq = qq.filter(Sale.client_id == client_id)
    if product_id is not None:
        qq = qq.filter(Sale.product_id == product_id)
    return [_sale_to_dict(s) for s in qq.order_by(Sale.id).offset(offset).limit(limit).all()]

@router.get("/sales/{sale_id}")
def get_sale(sale_id: int, db: Session = Depends(get_db)):
    return _sale_to_dict(_get_or_404(db, Sale, sale_id, "Sale"))

def _apply_sale(s: Sale, body: SaleIn, db: Session) -> None:
    _get_or_404(db, Client, body.client_id, "Client")
    product = _get_or_404(db, Product, body.product_id, "Product")
    unit_price = body.unit_price if body.unit_price is not None else product.price
    s.client_id = body.client_id
    s.product_id = body.product_id
    s.quantity = body.quantity
    s.unit_price = unit_price
    s.total = round(body.quantity * unit_price, 2)
    s.sold_at = body.sold_at or s.sold_at or datetime.now()
    s.branch = body.branch
    s.payment_method = body.payment_method

@router.post("/sales", status_code=201)
def create_sale(body: SaleIn, db: Session = Depends(get_db)):
    s = Sale()
    _apply_sale(s, body, db)
    db.add(s)
    _commit(db, "Sale")
    db.refresh(s)
    return _sale_to_dict(s)

@router.put("/sales/{sale_id}")
def update_sale(sale_id: int, body: SaleIn, db: Session = Depends(get_db)):
    s = _get_or_404(db, Sale, sale_id, "Sale")
    _apply_sale(s, body, db)
    _commit(db, "Sale")
    return _sale_to_dict(s)

@router.delete("/sales/{sale_id}", status_code=204)
def delete_sale(sale_id: int, db: Session = Depends(get_db)):
    db.delete(_get_or_404(db, Sale, sale_id, "Sale"))
    db.commit()


# -------------------------------------------------------------------
# Stock
# -------------------------------------------------------------------
@router.get("/stock")
def list_stock(
    product_id: Optional[int] = Query(None),
    branch: Optional[str] = Query(None, description="Exact branch match"),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    qq = db.query(Stock)
    if product_id is not None:
        qq = qq.filter(Stock.product_id == product_id)
    if branch:
        qq = qq.filter(Stock.branch == branch)
    return [_stock_to_dict(st) for st in qq.order_by(Stock.id).all()]

@router.get("/stock/{stock_id}")
def get_stock(stock_id: int, db: Session = Depends(get_db)):
    return _stock_to_dict(_get_or_404(db, Stock, stock_id, "Stock entry"))

@router.post("/stock", status_code=201)
def create_stock(body: StockIn, db: Session = Depends(get_db)):
    _get_or_404(db, Product, body.product_id, "Product")
    st = Stock(**body.model_dump())
    db.add(st)
    _commit(db, "Stock entry")
    db.refresh(st)
    return _stock_to_dict(st)

@router.put("/stock/{stock_id}")
def update_stock(stock_id: int, body: StockIn, db: Session = Depends(get_db)):
    st = _get_or_404(db, Stock, stock_id, "Stock entry")
    _get_or_404(db, Product, body.product_id, "Product")
    for k, v in body.model_dump().items():
        setattr(st, k, v)
    _commit(db, "Stock entry")
    return _stock_to_dict(st)

@router.delete("/stock/{stock_id}", status_code=204)
def delete_stock(stock_id: int, db: Session = Depends(get_db)):
    db.delete(_get_or_404(db, Stock, stock_id, "Stock entry"))
    db.commit()
