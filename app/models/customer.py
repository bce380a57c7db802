"""
Sales Operations Platform
Customer and product catalogue models.

Models:
    - Customer: B2B account a quotation is addressed to
    - Product:  catalogue item referenced by quotation lines

Both tables are maintained by the CRM / catalogue modules; the quotation and
approval services only read them (customer attributes feed workflow
conditions, product flags gate quotation creation).
"""

from datetime import datetime, timezone

from app.models import db


CUSTOMER_TYPES = {"enterprise", "mid_market", "smb", "government", "distributor"}


class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(200), nullable=False)
    contact_person = db.Column(db.String(150), default="")
    email = db.Column(db.String(200), default="")
    phone = db.Column(db.String(40), default="")
    customer_type = db.Column(
        db.String(30), default="smb",
        comment="enterprise | mid_market | smb | government | distributor",
    )
    industry = db.Column(db.String(100), default="")
    city = db.Column(db.String(100), default="")
    state = db.Column(db.String(100), default="")
    country = db.Column(db.String(100), default="")
    credit_limit = db.Column(db.Numeric(14, 2), default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    quotations = db.relationship("Quotation", back_populates="customer", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "company_name": self.company_name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "customer_type": self.customer_type,
            "industry": self.industry,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "credit_limit": float(self.credit_limit) if self.credit_limit is not None else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Customer {self.id}: {self.company_name}>"


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(60), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(100), default="")
    base_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    min_order_qty = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "base_price": float(self.base_price) if self.base_price is not None else None,
            "min_order_qty": self.min_order_qty,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Product {self.sku}>"
