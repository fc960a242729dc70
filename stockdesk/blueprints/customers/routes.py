"""
stockdesk/blueprints/customers/routes.py

Customer master data.

Rules:
- name and phone are required; phone is unique, email unique when present.
- customerCode is CUST-0001... unless the caller supplies one.
- Billing/shipping addresses default to the general address on creation.
- Delete is a soft deactivation; lists and search show active customers only.
"""

from __future__ import annotations

from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import or_

from ...audit import log_action, serialize_model
from ...errors import NotFoundError, ValidationError
from ...extensions import db
from ...models import Customer
from ...security import permission_required
from ...sequences import CUSTOMER, next_identifier
from ...utils import clean_str, get_json_body, load_or_404, parse_bool, parse_decimal

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")

ADDRESS_FIELDS = ("street", "city", "state", "pincode", "country")
SEARCH_LIMIT = 10

TEXT_FIELDS = {
    "alternatePhone": "alternate_phone",
    "companyName": "company_name",
    "contactPerson": "contact_person",
    "contactPersonPhone": "contact_person_phone",
    "gstin": "gstin",
    "customerType": "customer_type",
    "paymentTerms": "payment_terms",
    "notes": "notes",
}


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def _parse_address(value, base: dict | None = None) -> dict | None:
    """Normalize an address object; `base` supplies fields missing from `value`."""
    if value is None:
        return dict(base) if base else None
    if not isinstance(value, dict):
        raise ValidationError("Address must be an object")

    address = {field: (base or {}).get(field) for field in ADDRESS_FIELDS}
    for field in ADDRESS_FIELDS:
        if field in value:
            address[field] = clean_str(value.get(field))
    if not address.get("country"):
        address["country"] = current_app.config.get("DEFAULT_COUNTRY", "India")
    return address


def _ensure_unique(email: str | None, phone: str | None, code: str | None, exclude_id: int | None = None) -> None:
    checks = (
        (Customer.email, email, "Customer with this email already exists."),
        (Customer.phone, phone, "Customer with this phone number already exists."),
        (Customer.customer_code, code, "Customer with this code already exists."),
    )
    for column, value, message in checks:
        if not value:
            continue
        q = Customer.query.filter(column == value)
        if exclude_id is not None:
            q = q.filter(Customer.id != exclude_id)
        if q.first() is not None:
            raise ValidationError(message)


def _normalize_email(value) -> str | None:
    email = clean_str(value)
    return email.lower() if email else None


def _generate_code() -> str:
    """Next CUST-#### from the counter, skipping numbers already taken by explicit codes."""
    while True:
        candidate = next_identifier(CUSTOMER)
        if Customer.query.filter_by(customer_code=candidate).first() is None:
            return candidate


# ---------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------
@customers_bp.route("", methods=["POST"])
@login_required
def create_customer():
    data = get_json_body()
    name = clean_str(data.get("name"))
    phone = clean_str(data.get("phone"))
    if not name or not phone:
        raise ValidationError("Customer name and phone are required.")

    email = _normalize_email(data.get("email"))
    code = clean_str(data.get("customerCode"))
    _ensure_unique(email, phone, code)

    address = _parse_address(data.get("address"))
    customer = Customer(
        customer_code=code or _generate_code(),
        name=name,
        email=email,
        phone=phone,
        address=address,
        billing_address=_parse_address(data.get("billingAddress"), base=address),
        shipping_address=_parse_address(data.get("shippingAddress"), base=address),
        credit_limit=parse_decimal(data.get("creditLimit"), "Credit limit", default=Decimal("0.00")),
        is_active=True,
    )
    for key, attr in TEXT_FIELDS.items():
        setattr(customer, attr, clean_str(data.get(key)))

    db.session.add(customer)
    db.session.flush()

    log_action(customer, "CREATE", actor=current_user, after=serialize_model(customer))
    db.session.commit()

    current_app.logger.info("Customer %s created by %s", customer.customer_code, current_user.email)
    return jsonify(customer.to_dict()), 201


@customers_bp.route("", methods=["GET"])
@login_required
def list_customers():
    customers = Customer.query.filter_by(is_active=True).order_by(Customer.name.asc()).all()
    return jsonify([c.to_dict() for c in customers])


@customers_bp.route("/search", methods=["GET"])
@login_required
def search_customers():
    """Active customers matching ?keyword= on name, code, phone or email (max 10)."""
    q = Customer.query.filter(Customer.is_active.is_(True))

    keyword = clean_str(request.args.get("keyword"))
    if keyword:
        like = f"%{keyword}%"
        q = q.filter(
            or_(
                Customer.name.ilike(like),
                Customer.customer_code.ilike(like),
                Customer.phone.ilike(like),
                Customer.email.ilike(like),
            )
        )

    customers = q.order_by(Customer.name.asc()).limit(SEARCH_LIMIT).all()
    return jsonify([c.to_dict() for c in customers])


@customers_bp.route("/<int:customer_id>", methods=["GET"])
@login_required
def get_customer(customer_id: int):
    customer = db.session.get(Customer, customer_id)
    if customer is None or not customer.is_active:
        raise NotFoundError("Customer not found or is inactive.")
    return jsonify(customer.to_dict())


@customers_bp.route("/<int:customer_id>", methods=["PUT"])
@login_required
def update_customer(customer_id: int):
    customer = load_or_404(Customer, customer_id, "Customer")
    data = get_json_body()
    before = serialize_model(customer)

    email = _normalize_email(data.get("email"))
    phone = clean_str(data.get("phone"))
    _ensure_unique(
        email if email != customer.email else None,
        phone if phone != customer.phone else None,
        None,
        exclude_id=customer.id,
    )

    customer.name = clean_str(data.get("name")) or customer.name
    customer.email = email or customer.email
    customer.phone = phone or customer.phone

    for key, attr in TEXT_FIELDS.items():
        value = clean_str(data.get(key))
        if value:
            setattr(customer, attr, value)

    if data.get("address") is not None:
        customer.address = _parse_address(data["address"], base=customer.address)
    if data.get("billingAddress") is not None:
        customer.billing_address = _parse_address(data["billingAddress"], base=customer.billing_address)
    if data.get("shippingAddress") is not None:
        customer.shipping_address = _parse_address(data["shippingAddress"], base=customer.shipping_address)

    if data.get("creditLimit") is not None:
        customer.credit_limit = parse_decimal(data["creditLimit"], "Credit limit")
    if data.get("isActive") is not None:
        customer.is_active = parse_bool(data["isActive"])

    log_action(customer, "UPDATE", actor=current_user, before=before, after=serialize_model(customer))
    db.session.commit()
    return jsonify(customer.to_dict())


@customers_bp.route("/<int:customer_id>", methods=["DELETE"])
@permission_required("customers:delete")
def delete_customer(customer_id: int):
    customer = load_or_404(Customer, customer_id, "Customer")
    before = serialize_model(customer)
    customer.is_active = False

    log_action(customer, "DELETE", actor=current_user, before=before, after=serialize_model(customer))
    db.session.commit()

    current_app.logger.info("Customer %s deactivated by %s", customer.customer_code, current_user.email)
    return jsonify({"message": "Customer marked as inactive."})
