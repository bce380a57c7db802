#!/usr/bin/env python3
"""
Sales Operations Platform — demo seed.

Creates a small catalogue, three customers, sales users and two approval
workflows (a high-value two-level chain and a catch-all manager sign-off).

Usage:
    python scripts/seed_demo.py              # add to the current DB
    python scripts/seed_demo.py --reset      # drop + recreate tables first
"""

import argparse
import logging
import sys

sys.path.insert(0, ".")

from app import create_app
from app.models import db
from app.models.auth import User
from app.models.customer import Customer, Product
from app.services import quotation_service, workflow_service
from app.services.jwt_service import token_for_user

logger = logging.getLogger("seed_demo")


def seed_users():
    users = [
        User(email="sales.rep@example.com", full_name="Deniz Sales", role="sales_rep"),
        User(email="sales.manager@example.com", full_name="Ada Manager", role="sales_manager"),
        User(email="finance.director@example.com", full_name="Kemal Finance", role="finance"),
        User(email="ceo@example.com", full_name="Selin Chief", role="admin"),
    ]
    db.session.add_all(users)
    db.session.commit()
    return {u.role: u for u in users}


def seed_catalogue():
    customers = [
        Customer(company_name="Atlas Logistics", contact_person="Mert Kaya",
                 email="mert@atlas.example", customer_type="enterprise",
                 industry="Logistics", city="Istanbul", country="TR", credit_limit=500000),
        Customer(company_name="Blue Harbor Foods", contact_person="Eda Demir",
                 email="eda@blueharbor.example", customer_type="smb",
                 industry="Food", city="Izmir", country="TR", credit_limit=50000),
        Customer(company_name="Cedar Retail", contact_person="Can Yilmaz",
                 email="can@cedar.example", customer_type="smb",
                 industry="Retail", city="Ankara", country="TR", credit_limit=80000),
    ]
    products = [
        Product(sku="SRV-RACK-01", name="Rack Server", category="Hardware", base_price=42000),
        Product(sku="LIC-ERP-10", name="ERP License (10 seats)", category="Software", base_price=18000),
        Product(sku="SUP-GOLD", name="Gold Support (1 year)", category="Services", base_price=9500),
    ]
    db.session.add_all(customers + products)
    db.session.commit()
    return customers, products


def seed_workflows(users):
    workflow_service.create_workflow({
        "name": "High value deals",
        "description": "Quotations of 100k and above",
        "conditions": [{"field": "total_amount", "operator": "gte", "value": 100000}],
        "approval_levels": [
            {"level": 1, "name": "Sales Manager",
             "approver_user_ids": [users["sales_manager"].id]},
            {"level": 2, "name": "Finance & Executive",
             "approver_user_ids": [users["finance"].id, users["admin"].id],
             "require_all_approvers": True, "auto_approval_timeout_hours": 48},
        ],
        "priority": 10,
    }, created_by_user_id=users["sales_manager"].id)
    workflow_service.create_workflow({
        "name": "Standard sign-off",
        "conditions": [],
        "approval_levels": [
            {"level": 1, "name": "Sales Manager",
             "approver_user_ids": [users["sales_manager"].id]},
        ],
        "priority": 1,
    }, created_by_user_id=users["sales_manager"].id)


def seed_quotations(users, customers, products):
    rep = users["sales_rep"].id
    quotation_service.create_quotation({
        "customer_id": customers[0].id,
        "items": [
            {"product_id": products[0].id, "quantity": 3},
            {"product_id": products[1].id, "quantity": 2},
        ],
        "notes": "Data centre refresh",
    }, created_by_user_id=rep)
    quotation_service.create_quotation({
        "customer_id": customers[1].id,
        "items": [{"product_id": products[2].id, "quantity": 1}],
    }, created_by_user_id=rep)


def main():
    parser = argparse.ArgumentParser(description="Seed demo data")
    parser.add_argument("--reset", action="store_true", help="drop and recreate all tables")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        if args.reset:
            db.drop_all()
            db.create_all()
        users = seed_users()
        customers, products = seed_catalogue()
        seed_workflows(users)
        seed_quotations(users, customers, products)
        logger.info("Demo data seeded: %d users, %d customers, %d products",
                    len(users), len(customers), len(products))
        for role, user in users.items():
            logger.info("Bearer token for %s (%s): %s", user.email, role, token_for_user(user))


if __name__ == "__main__":
    main()
