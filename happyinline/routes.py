"""HTTP routes for the HappyInline backend: accounts, shops, staff, services, bookings."""
from __future__ import annotations

import secrets
from datetime import date, time, timedelta
from decimal import Decimal, InvalidOperation
from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy import or_, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from . import billing
from .bookings import (ACTION_ROLES, CUSTOMER_ACTIONS, TRANSITIONS,
                       InvalidTransition, apply_transition, group_by_status,
                       group_customer_bookings)
from .extensions import db
from .models import (AuthAccount, Booking, EmailOTP, Profile, Service, Shop,
                     ShopImage, ShopInvitation, ShopReview, ShopService,
                     ShopStaff, as_utc, utc_now)

bp = Blueprint("api", __name__)

ROLE_DISPLAY_NAMES = {
    "barber": "Staff",
    "manager": "Manager",
    "owner": "Owner",
    "admin": "Admin",
    "super_admin": "Super Admin",
    "customer": "Customer",
}
SHOP_MANAGERS = frozenset({"owner", "admin", "manager"})
SHOP_ADMINS = frozenset({"owner", "admin"})
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
INVITATION_TTL_DAYS = 7


def get_role_display_name(role: str | None) -> str:
    if not role:
        return "Customer"
    return ROLE_DISPLAY_NAMES.get(role, role.replace("_", " ").title())


def _build_token(payload: dict[str, object]) -> str:
    serializer = URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")
    return serializer.dumps(payload)


def get_jwt_identity() -> int | None:
    """Return the profile id carried by the bearer token, or None."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    serializer = URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")
    try:
        payload = serializer.loads(
            auth_header[7:], max_age=current_app.config.get("AUTH_TOKEN_MAX_AGE", 86400)
        )
    except BadSignature:
        return None
    return payload.get("user_id")


def current_profile() -> Profile | None:
    profile_id = get_jwt_identity()
    if profile_id is None:
        return None
    return db.session.get(Profile, profile_id)


def error_response(code: str, message: str, status: int):
    return jsonify({"error": code, "message": message}), status


def unauthorized():
    return error_response("unauthorized", "authentication required", 401)


def _database_error(action: str, exc: SQLAlchemyError):
    db.session.rollback()
    current_app.logger.exception("Failed to %s", action, exc_info=exc)
    return jsonify({"error": "database_error"}), 500


def _shop_role(shop_id: int, profile_id: int) -> str | None:
    member = ShopStaff.query.filter_by(shop_id=shop_id, user_id=profile_id, is_active=True).first()
    return member.role if member else None


def _has_shop_role(profile: Profile, shop_id: int, roles: frozenset[str]) -> bool:
    if profile.role == "super_admin":
        return True
    return _shop_role(shop_id, profile.profile_id) in roles


def _to_cents(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {value}") from exc
    if amount < 0:
        raise ValueError("amount must not be negative")
    return int((amount * 100).to_integral_value())


def _parse_date(value: str | None) -> date:
    if not value:
        raise ValueError("date is required")
    return date.fromisoformat(str(value))


def _parse_time(value: str | None) -> time:
    if not value:
        raise ValueError("time is required")
    return time.fromisoformat(str(value))


def send_otp_email(email: str, code: str) -> None:
    """Deliver a sign-in code. Mail transport is configured per deployment."""
    current_app.logger.info("Sign-in code issued for %s", email)
    current_app.logger.debug("Sign-in code for %s: %s", email, code)


# --- Health ---

@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, object], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


# --- Authentication ---

@bp.post("/auth/register")
def register() -> tuple[dict[str, object], int]:
    """Register a profile with email and password.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
            email:
              type: string
            password:
              type: string
            role:
              type: string
              enum: [customer, owner]
            phone:
              type: string
            shop_id:
              type: integer
              description: Shop from a QR signup link
          required:
            - email
            - password
    responses:
      201:
        description: Profile created, token issued
      400:
        description: Invalid payload
      409:
        description: Email already in use
    """
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip() or None
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    role = (payload.get("role") or "customer").strip().lower()
    phone = (payload.get("phone") or "").strip() or None
    signup_shop_id = payload.get("shop_id")

    if not email or not password:
        return error_response("invalid_payload", "email and password are required", 400)
    if len(password) < 8:
        return error_response("invalid_payload", "password must be at least 8 characters", 400)
    if role not in {"customer", "owner"}:
        return error_response("invalid_role", "role must be 'customer' or 'owner'", 400)
    if Profile.query.filter_by(email=email).first():
        return error_response("conflict", "email address is already in use", 409)
    if signup_shop_id is not None and db.session.get(Shop, signup_shop_id) is None:
        return error_response("not_found", "shop not found", 404)

    try:
        profile = Profile(name=name, email=email, role=role, phone=phone, exclusive_shop_id=signup_shop_id)
        db.session.add(profile)
        db.session.flush()
        db.session.add(AuthAccount(profile_id=profile.profile_id, password_hash=generate_password_hash(password)))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response("conflict", "email address is already in use", 409)
    except SQLAlchemyError as exc:
        return _database_error("register profile", exc)

    token = _build_token({"user_id": profile.profile_id, "role": profile.role})
    return jsonify({"token": token, "user": profile.to_dict_basic()}), 201


@bp.post("/auth/login")
def login() -> tuple[dict[str, object], int]:
    """Authenticate by email/password and return an access token.
    ---
    tags:
      - Authentication
    responses:
      200:
        description: Login successful
      400:
        description: Missing email or password
      401:
        description: Invalid credentials
    """
    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return error_response("invalid_payload", "email and password are required", 400)

    record = (
        db.session.query(Profile, AuthAccount)
        .join(AuthAccount, AuthAccount.profile_id == Profile.profile_id)
        .filter(Profile.email == email)
        .first()
    )
    if not record:
        return error_response("unauthorized", "invalid email or password", 401)

    profile, account = record
    if not account.password_hash or not check_password_hash(account.password_hash, password):
        return error_response("unauthorized", "invalid email or password", 401)

    account.last_login_at = utc_now()
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("update last login timestamp", exc)

    token = _build_token({"user_id": profile.profile_id, "role": profile.role})
    return jsonify({"token": token, "user": profile.to_dict_basic()}), 200


@bp.post("/auth/otp")
def request_otp() -> tuple[dict[str, object], int]:
    """Email a six-digit sign-in code.
    ---
    tags:
      - Authentication
    responses:
      200:
        description: Code sent
      400:
        description: Missing email
    """
    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    if not email or "@" not in email:
        return error_response("invalid_payload", "a valid email is required", 400)

    code = f"{secrets.randbelow(10 ** 6):06d}"
    ttl = current_app.config.get("OTP_TTL_MINUTES", 10)
    otp = EmailOTP(
        email=email,
        code_hash=generate_password_hash(code),
        expires_at=utc_now() + timedelta(minutes=ttl),
    )
    try:
        db.session.add(otp)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("store sign-in code", exc)

    send_otp_email(email, code)
    return jsonify({"sent": True, "expires_in_minutes": ttl}), 200


@bp.post("/auth/otp/verify")
def verify_otp() -> tuple[dict[str, object], int]:
    """Exchange a sign-in code for a token, creating the profile on first use.
    ---
    tags:
      - Authentication
    responses:
      200:
        description: Code accepted
      401:
        description: Code invalid or expired
    """
    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    code = (payload.get("code") or "").strip()
    if not email or not code:
        return error_response("invalid_payload", "email and code are required", 400)

    now = utc_now()
    candidates = (
        EmailOTP.query.filter(EmailOTP.email == email, EmailOTP.consumed_at.is_(None))
        .order_by(EmailOTP.created_at.desc())
        .all()
    )
    otp = next(
        (
            c for c in candidates
            if as_utc(c.expires_at) > now and check_password_hash(c.code_hash, code)
        ),
        None,
    )
    if otp is None:
        return error_response("unauthorized", "invalid or expired code", 401)

    created = False
    try:
        otp.consumed_at = now
        profile = Profile.query.filter_by(email=email).first()
        if profile is None:
            profile = Profile(email=email, role="customer")
            db.session.add(profile)
            db.session.flush()
            db.session.add(AuthAccount(profile_id=profile.profile_id))
            created = True
        if profile.auth_account is not None:
            profile.auth_account.last_login_at = now
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("verify sign-in code", exc)

    token = _build_token({"user_id": profile.profile_id, "role": profile.role})
    return jsonify({"token": token, "user": profile.to_dict_basic(), "is_new_user": created}), 200


@bp.get("/profile/me")
def get_my_profile() -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    data = profile.to_dict()
    data["role_display"] = get_role_display_name(profile.role)
    return jsonify({"profile": data}), 200


@bp.put("/profile/me")
def update_my_profile() -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()

    payload = request.get_json(silent=True) or {}
    if "name" in payload:
        profile.name = (payload.get("name") or "").strip() or None
    if "phone" in payload:
        profile.phone = (payload.get("phone") or "").strip() or None

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("update profile", exc)
    return jsonify({"profile": profile.to_dict()}), 200


# --- Shops ---

@bp.get("/shops")
def list_shops() -> tuple[dict[str, object], int]:
    """List active shops, best rated first.
    ---
    tags:
      - Shops
    parameters:
      - name: city
        in: query
        type: string
      - name: search
        in: query
        type: string
        description: Case-insensitive match on name or description
      - name: min_rating
        in: query
        type: number
    responses:
      200:
        description: Shops matching the filters
      400:
        description: Invalid parameters
    """
    try:
        city = (request.args.get("city") or "").strip()
        search = (request.args.get("search") or "").strip()
        min_rating = request.args.get("min_rating")
        min_rating = float(min_rating) if min_rating not in (None, "") else None
    except ValueError:
        return error_response("invalid_parameters", "min_rating must be a number", 400)

    try:
        query = Shop.query.filter(Shop.is_active.is_(True))
        if city:
            query = query.filter(Shop.city.ilike(f"%{city}%"))
        if search:
            query = query.filter(
                or_(Shop.name.ilike(f"%{search}%"), Shop.description.ilike(f"%{search}%"))
            )
        if min_rating is not None:
            query = query.filter(Shop.rating >= min_rating)
        shops = query.order_by(Shop.rating.desc(), Shop.name.asc()).all()
    except SQLAlchemyError as exc:
        return _database_error("fetch shops", exc)

    return jsonify({"shops": [shop.to_dict() for shop in shops]}), 200


@bp.get("/shops/mine")
def list_my_shops() -> tuple[dict[str, object], int]:
    """Shops where the caller is active staff, with the caller's role in each."""
    profile = current_profile()
    if profile is None:
        return unauthorized()

    memberships = (
        ShopStaff.query.filter_by(user_id=profile.profile_id, is_active=True)
        .order_by(ShopStaff.created_at.asc())
        .all()
    )
    shops = []
    for member in memberships:
        data = member.shop.to_dict()
        data["my_role"] = member.role
        shops.append(data)
    return jsonify({"shops": shops}), 200


@bp.get("/shops/<int:shop_id>")
def get_shop_details(shop_id: int) -> tuple[dict[str, object], int]:
    """Shop details with active staff and services.
    ---
    tags:
      - Shops
    responses:
      200:
        description: Shop found
      404:
        description: Shop not found
    """
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)

    staff = ShopStaff.query.filter_by(shop_id=shop_id, is_active=True).all()
    services = ShopService.query.filter_by(shop_id=shop_id, is_active=True).all()
    data = shop.to_dict()
    data["staff"] = [member.to_dict() for member in staff]
    data["services"] = [service.to_dict() for service in services]

    profile = current_profile()
    if profile is not None:
        data["my_role"] = _shop_role(shop_id, profile.profile_id)
    return jsonify({"shop": data}), 200


@bp.post("/shops")
def create_shop() -> tuple[dict[str, object], int]:
    """Create a shop; the creator joins its staff as admin.
    ---
    tags:
      - Shops
    responses:
      201:
        description: Shop created in draft status
      400:
        description: Invalid payload
      401:
        description: Authentication required
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()

    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    if not name:
        return error_response("invalid_payload", "name is required", 400)

    shop = Shop(
        name=name,
        description=payload.get("description"),
        address=payload.get("address"),
        city=payload.get("city"),
        state=payload.get("state"),
        zip_code=payload.get("zip_code"),
        phone=payload.get("phone"),
        email=payload.get("email") or profile.email,
        website=payload.get("website"),
        operating_hours=payload.get("operating_hours") or {},
        created_by=profile.profile_id,
    )
    try:
        db.session.add(shop)
        db.session.flush()
        db.session.add(ShopStaff(shop_id=shop.shop_id, user_id=profile.profile_id, role="admin"))
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("create shop", exc)

    current_app.logger.info("Shop %s created by profile %s", shop.shop_id, profile.profile_id)
    return jsonify({"shop": shop.to_dict()}), 201


SHOP_EDITABLE_FIELDS = (
    "name", "description", "address", "city", "state", "zip_code",
    "phone", "email", "website", "operating_hours",
)


@bp.put("/shops/<int:shop_id>")
def update_shop(shop_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can edit the shop", 403)

    payload = request.get_json(silent=True) or {}
    if "name" in payload and not (payload.get("name") or "").strip():
        return error_response("invalid_payload", "name cannot be empty", 400)
    for field in SHOP_EDITABLE_FIELDS:
        if field in payload:
            setattr(shop, field, payload[field])

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("update shop", exc)
    return jsonify({"shop": shop.to_dict()}), 200


@bp.delete("/shops/<int:shop_id>")
def delete_shop(shop_id: int) -> tuple[dict[str, object], int]:
    """Delete a shop and everything hanging off it.
    ---
    tags:
      - Shops
    responses:
      200:
        description: Shop deleted
      403:
        description: Caller is not a shop admin
      404:
        description: Shop not found
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)
    if not _has_shop_role(profile, shop_id, SHOP_ADMINS):
        return error_response("forbidden", "only shop admins can delete the shop", 403)

    owner_id = shop.created_by
    try:
        ShopReview.query.filter_by(shop_id=shop_id).delete()
        Booking.query.filter_by(shop_id=shop_id).delete()
        ShopService.query.filter_by(shop_id=shop_id).delete()
        ShopImage.query.filter_by(shop_id=shop_id).delete()
        ShopInvitation.query.filter_by(shop_id=shop_id).delete()
        ShopStaff.query.filter_by(shop_id=shop_id).delete()
        Profile.query.filter_by(exclusive_shop_id=shop_id).update({"exclusive_shop_id": None})
        db.session.delete(shop)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("delete shop", exc)

    if owner_id is not None:
        billing.check_license_availability(owner_id)

    current_app.logger.info("Shop %s deleted by profile %s", shop_id, profile.profile_id)
    return jsonify({"deleted": True}), 200


@bp.post("/shops/<int:shop_id>/toggle-status")
def toggle_shop_status(shop_id: int) -> tuple[dict[str, object], int]:
    """Open or close the shop manually."""
    profile = current_profile()
    if profile is None:
        return unauthorized()
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can open or close the shop", 403)

    shop.is_manually_closed = not shop.is_manually_closed
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("toggle shop status", exc)
    return jsonify({"shop_id": shop_id, "is_manually_closed": shop.is_manually_closed, "is_open": shop.is_open}), 200


@bp.get("/shops/<int:shop_id>/open")
def is_shop_open(shop_id: int) -> tuple[dict[str, object], int]:
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)
    return jsonify({"shop_id": shop_id, "is_open": shop.is_open}), 200


@bp.post("/shops/<int:shop_id>/submit-review")
def submit_shop_for_review(shop_id: int) -> tuple[dict[str, object], int]:
    """Send a draft or rejected shop to the platform admins for approval."""
    profile = current_profile()
    if profile is None:
        return unauthorized()
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)
    if not _has_shop_role(profile, shop_id, SHOP_ADMINS):
        return error_response("forbidden", "only shop admins can submit the shop", 403)
    if shop.status not in {"draft", "rejected"}:
        return error_response("invalid_transition", f"shop is already {shop.status}", 409)

    shop.status = "pending_review"
    shop.submitted_for_review_at = utc_now()
    shop.rejection_reason = None
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("submit shop for review", exc)
    return jsonify({"shop": shop.to_dict()}), 200


@bp.get("/admin/shops")
def admin_list_shops() -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if profile.role != "super_admin":
        return error_response("forbidden", "super admin access required", 403)

    query = Shop.query
    status = request.args.get("status")
    if status:
        query = query.filter(Shop.status == status)
    shops = query.order_by(Shop.submitted_for_review_at.desc(), Shop.created_at.desc()).all()
    return jsonify({"shops": [shop.to_dict() for shop in shops]}), 200


@bp.put("/admin/shops/<int:shop_id>/review")
def review_shop(shop_id: int) -> tuple[dict[str, object], int]:
    """Approve or reject a shop waiting for review.
    ---
    tags:
      - Admin
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            action:
              type: string
              enum: [approve, reject]
            reason:
              type: string
    responses:
      200:
        description: Review recorded
      400:
        description: Invalid action or missing rejection reason
      403:
        description: Super admin access required
      409:
        description: Shop is not pending review
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if profile.role != "super_admin":
        return error_response("forbidden", "super admin access required", 403)

    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)

    payload = request.get_json(silent=True) or {}
    action = (payload.get("action") or "").strip().lower()
    reason = (payload.get("reason") or "").strip()
    if action not in {"approve", "reject"}:
        return error_response("invalid_payload", "action must be 'approve' or 'reject'", 400)
    if action == "reject" and not reason:
        return error_response("invalid_payload", "a reason is required to reject a shop", 400)
    if shop.status != "pending_review":
        return error_response("invalid_transition", f"shop is {shop.status}, not pending review", 409)

    shop.status = "approved" if action == "approve" else "rejected"
    shop.rejection_reason = reason if action == "reject" else None
    shop.reviewed_at = utc_now()
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("record shop review", exc)

    current_app.logger.info("Shop %s %s by profile %s", shop_id, shop.status, profile.profile_id)
    return jsonify({"shop": shop.to_dict()}), 200


@bp.get("/shops/<int:shop_id>/signup-link")
def shop_signup_link(shop_id: int) -> tuple[dict[str, object], int]:
    """Deep link encoded into the shop's signup QR code."""
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)
    scheme = current_app.config.get("DEEP_LINK_SCHEME", "happyinline")
    return jsonify({"shop_id": shop_id, "deep_link": f"{scheme}://signup/shop/{shop_id}"}), 200


@bp.post("/shops/<int:shop_id>/images")
def upload_shop_image(shop_id: int) -> tuple[dict[str, object], int]:
    """Store a logo, cover or gallery image for the shop.
    ---
    tags:
      - Shops
    consumes:
      - multipart/form-data
    parameters:
      - name: image
        in: formData
        type: file
        required: true
      - name: image_type
        in: formData
        type: string
        enum: [logo, cover, gallery]
    responses:
      201:
        description: Image stored
      400:
        description: Missing or unsupported file
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if db.session.get(Shop, shop_id) is None:
        return error_response("not_found", "shop not found", 404)
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can upload images", 403)

    upload = request.files.get("image")
    if upload is None or not upload.filename:
        return error_response("invalid_payload", "an image file is required", 400)
    if upload.mimetype not in ALLOWED_IMAGE_TYPES:
        return error_response("invalid_payload", f"unsupported image type: {upload.mimetype}", 400)
    image_type = request.form.get("image_type", "gallery")
    if image_type not in {"logo", "cover", "gallery"}:
        return error_response("invalid_payload", "image_type must be logo, cover or gallery", 400)

    data = upload.read()
    if not data:
        return error_response("invalid_payload", "image file is empty", 400)

    try:
        if image_type != "gallery":
            # A shop has a single logo and a single cover.
            ShopImage.query.filter_by(shop_id=shop_id, image_type=image_type).delete()
        image = ShopImage(
            shop_id=shop_id,
            image_type=image_type,
            filename=upload.filename,
            content_type=upload.mimetype,
            data=data,
        )
        db.session.add(image)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("store shop image", exc)

    return jsonify({"image": image.to_dict()}), 201


@bp.get("/shops/<int:shop_id>/images")
def list_shop_images(shop_id: int) -> tuple[dict[str, object], int]:
    images = ShopImage.query.filter_by(shop_id=shop_id).order_by(ShopImage.created_at.asc()).all()
    return jsonify({"images": [image.to_dict() for image in images]}), 200


@bp.get("/shops/<int:shop_id>/images/<int:image_id>")
def get_shop_image(shop_id: int, image_id: int):
    image = ShopImage.query.filter_by(shop_id=shop_id, image_id=image_id).first()
    if image is None:
        return error_response("not_found", "image not found", 404)
    return send_file(
        BytesIO(image.data),
        mimetype=image.content_type,
        download_name=image.filename or f"shop-{shop_id}-{image_id}",
    )


@bp.delete("/shops/<int:shop_id>/images/<int:image_id>")
def delete_shop_image(shop_id: int, image_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can delete images", 403)
    image = ShopImage.query.filter_by(shop_id=shop_id, image_id=image_id).first()
    if image is None:
        return error_response("not_found", "image not found", 404)

    try:
        db.session.delete(image)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("delete shop image", exc)
    return jsonify({"deleted": True}), 200


# --- Staff and licenses ---

def _add_staff_member(shop: Shop, user: Profile, role: str) -> tuple[ShopStaff | None, tuple | None]:
    """Stage ``user`` as staff of ``shop``; returns (member, error_response)."""
    if role == "barber":
        licenses = billing.check_license_availability(shop.created_by)
        if not licenses.get("success"):
            return None, error_response("not_found", licenses.get("error", "shop owner not found"), 404)
        if not licenses["can_add"]:
            return None, error_response(
                "license_limit_reached",
                f"all {licenses['max_licenses']} provider licenses are in use; upgrade the plan to add more",
                403,
            )

    member = ShopStaff.query.filter_by(shop_id=shop.shop_id, user_id=user.profile_id).first()
    if member is not None and member.is_active:
        return None, error_response("conflict", "user is already on this shop's staff", 409)
    if member is None:
        member = ShopStaff(shop_id=shop.shop_id, user_id=user.profile_id, role=role)
        db.session.add(member)
    else:
        member.role = role
        member.is_active = True
    return member, None


@bp.get("/shops/<int:shop_id>/staff")
def list_shop_staff(shop_id: int) -> tuple[dict[str, object], int]:
    if db.session.get(Shop, shop_id) is None:
        return error_response("not_found", "shop not found", 404)
    staff = (
        ShopStaff.query.filter_by(shop_id=shop_id, is_active=True)
        .order_by(ShopStaff.created_at.asc())
        .all()
    )
    return jsonify({"staff": [member.to_dict() for member in staff]}), 200


@bp.get("/shops/<int:shop_id>/role")
def get_my_role_in_shop(shop_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    role = _shop_role(shop_id, profile.profile_id)
    return jsonify({"shop_id": shop_id, "role": role, "role_display": get_role_display_name(role) if role else None}), 200


@bp.post("/shops/<int:shop_id>/staff")
def add_shop_staff(shop_id: int) -> tuple[dict[str, object], int]:
    """Add an existing profile to the shop's staff.
    ---
    tags:
      - Staff
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            user_id:
              type: integer
            email:
              type: string
            role:
              type: string
              enum: [admin, manager, barber]
    responses:
      201:
        description: Staff member added
      403:
        description: Not a shop manager, or no provider licenses left
      404:
        description: Shop or user not found
      409:
        description: User already on staff
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can add staff", 403)

    payload = request.get_json(silent=True) or {}
    role = (payload.get("role") or "barber").strip().lower()
    if role not in {"admin", "manager", "barber"}:
        return error_response("invalid_role", "role must be admin, manager or barber", 400)
    if role == "admin" and not _has_shop_role(profile, shop_id, SHOP_ADMINS):
        return error_response("forbidden", "only shop admins can add admins", 403)

    user = None
    if payload.get("user_id"):
        user = db.session.get(Profile, payload["user_id"])
    elif payload.get("email"):
        user = Profile.query.filter_by(email=payload["email"].strip().lower()).first()
    if user is None:
        return error_response("not_found", "user not found", 404)

    try:
        member, error = _add_staff_member(shop, user, role)
        if error:
            return error
        if payload.get("bio") is not None:
            member.bio = payload["bio"]
        if payload.get("specialties") is not None:
            member.specialties = payload["specialties"]
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("add shop staff", exc)

    if role == "barber":
        billing.check_license_availability(shop.created_by)
    return jsonify({"staff": member.to_dict()}), 201


@bp.put("/shops/<int:shop_id>/staff/<int:staff_id>")
def update_shop_staff(shop_id: int, staff_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can edit staff", 403)
    member = ShopStaff.query.filter_by(shop_id=shop_id, staff_id=staff_id).first()
    if member is None:
        return error_response("not_found", "staff member not found", 404)

    barber_changed = False
    payload = request.get_json(silent=True) or {}
    role = payload.get("role")
    if role is not None:
        if role not in {"owner", "admin", "manager", "barber"}:
            return error_response("invalid_role", "role must be owner, admin, manager or barber", 400)
        if role in SHOP_ADMINS and not _has_shop_role(profile, shop_id, SHOP_ADMINS):
            return error_response("forbidden", "only shop admins can grant admin roles", 403)
        if role == "barber" and member.role != "barber":
            shop = db.session.get(Shop, shop_id)
            licenses = billing.check_license_availability(shop.created_by)
            if not licenses.get("success") or not licenses["can_add"]:
                return error_response("license_limit_reached", "no provider licenses left", 403)
        barber_changed = "barber" in (role, member.role)
        member.role = role
    if "bio" in payload:
        member.bio = payload["bio"]
    if "specialties" in payload:
        member.specialties = payload["specialties"] or []

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("update shop staff", exc)

    if barber_changed:
        billing.check_license_availability(member.shop.created_by)
    return jsonify({"staff": member.to_dict()}), 200


@bp.delete("/shops/<int:shop_id>/staff/<int:staff_id>")
def remove_shop_staff(shop_id: int, staff_id: int) -> tuple[dict[str, object], int]:
    """Deactivate a staff member; their bookings are kept."""
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can remove staff", 403)
    member = ShopStaff.query.filter_by(shop_id=shop_id, staff_id=staff_id, is_active=True).first()
    if member is None:
        return error_response("not_found", "staff member not found", 404)
    if member.user_id == profile.profile_id:
        return error_response("invalid_payload", "you cannot remove yourself", 400)

    was_barber = member.role == "barber"
    member.is_active = False
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("remove shop staff", exc)

    if was_barber:
        billing.check_license_availability(member.shop.created_by)
    return jsonify({"removed": True}), 200


@bp.get("/licenses")
def get_license_availability() -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    result = billing.check_license_availability(profile.profile_id)
    if not result.get("success"):
        return error_response("database_error", result.get("error", "license check failed"), 500)
    return jsonify(result), 200


# --- Services ---

@bp.get("/services")
def list_service_catalog() -> tuple[dict[str, object], int]:
    services = Service.query.order_by(Service.category.asc(), Service.name.asc()).all()
    return jsonify({"services": [service.to_dict() for service in services]}), 200


@bp.get("/shops/<int:shop_id>/services")
def list_shop_services(shop_id: int) -> tuple[dict[str, object], int]:
    if db.session.get(Shop, shop_id) is None:
        return error_response("not_found", "shop not found", 404)
    services = ShopService.query.filter_by(shop_id=shop_id, is_active=True).all()
    data = sorted((service.to_dict() for service in services), key=lambda s: (s["name"] or "").lower())
    return jsonify({"services": data}), 200


@bp.post("/shops/<int:shop_id>/services")
def add_service_to_shop(shop_id: int) -> tuple[dict[str, object], int]:
    """Offer a catalog service at the shop, optionally overriding price and duration."""
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if db.session.get(Shop, shop_id) is None:
        return error_response("not_found", "shop not found", 404)
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can edit services", 403)

    payload = request.get_json(silent=True) or {}
    service = db.session.get(Service, payload.get("service_id") or 0)
    if service is None:
        return error_response("not_found", "catalog service not found", 404)
    try:
        price_cents = _to_cents(payload.get("price"))
        duration = int(payload["duration"]) if payload.get("duration") else None
    except (ValueError, TypeError) as exc:
        return error_response("invalid_payload", str(exc), 400)

    existing = ShopService.query.filter_by(shop_id=shop_id, service_id=service.service_id).first()
    try:
        if existing is not None:
            if existing.is_active:
                return error_response("conflict", "service is already offered", 409)
            existing.is_active = True
            existing.price_cents = price_cents
            existing.duration_minutes = duration
            shop_service = existing
        else:
            shop_service = ShopService(
                shop_id=shop_id,
                service_id=service.service_id,
                price_cents=price_cents,
                duration_minutes=duration,
            )
            db.session.add(shop_service)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("add service to shop", exc)
    return jsonify({"service": shop_service.to_dict()}), 201


@bp.post("/shops/<int:shop_id>/services/custom")
def create_custom_service(shop_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if db.session.get(Shop, shop_id) is None:
        return error_response("not_found", "shop not found", 404)
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can edit services", 403)

    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    if not name:
        return error_response("invalid_payload", "name is required", 400)
    try:
        price_cents = _to_cents(payload.get("price"))
        duration = int(payload["duration"]) if payload.get("duration") else None
    except (ValueError, TypeError) as exc:
        return error_response("invalid_payload", str(exc), 400)
    if price_cents is None:
        return error_response("invalid_payload", "price is required", 400)

    shop_service = ShopService(
        shop_id=shop_id,
        custom_name=name,
        description=payload.get("description"),
        custom_price_cents=price_cents,
        duration_minutes=duration,
    )
    try:
        db.session.add(shop_service)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("create custom service", exc)
    return jsonify({"service": shop_service.to_dict()}), 201


@bp.put("/shops/<int:shop_id>/services/<int:shop_service_id>")
def update_shop_service(shop_id: int, shop_service_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can edit services", 403)
    shop_service = ShopService.query.filter_by(shop_id=shop_id, shop_service_id=shop_service_id).first()
    if shop_service is None:
        return error_response("not_found", "service not found", 404)

    payload = request.get_json(silent=True) or {}
    try:
        if "price" in payload:
            cents = _to_cents(payload["price"])
            if shop_service.service_id is None:
                shop_service.custom_price_cents = cents
            else:
                shop_service.price_cents = cents
        if "duration" in payload:
            shop_service.duration_minutes = int(payload["duration"]) if payload["duration"] else None
    except (ValueError, TypeError) as exc:
        return error_response("invalid_payload", str(exc), 400)
    if "description" in payload:
        shop_service.description = payload["description"]
    if "name" in payload and shop_service.service_id is None:
        shop_service.custom_name = (payload["name"] or "").strip() or shop_service.custom_name
    if "is_active" in payload:
        shop_service.is_active = bool(payload["is_active"])

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("update shop service", exc)
    return jsonify({"service": shop_service.to_dict()}), 200


@bp.delete("/shops/<int:shop_id>/services/<int:shop_service_id>")
def remove_service_from_shop(shop_id: int, shop_service_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can edit services", 403)
    shop_service = ShopService.query.filter_by(shop_id=shop_id, shop_service_id=shop_service_id).first()
    if shop_service is None:
        return error_response("not_found", "service not found", 404)

    shop_service.is_active = False
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("remove shop service", exc)
    return jsonify({"removed": True}), 200


# --- Bookings ---

@bp.post("/bookings")
def create_booking() -> tuple[dict[str, object], int]:
    """Book an appointment; new bookings wait for the shop to confirm.
    ---
    tags:
      - Bookings
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            shop_id:
              type: integer
            barber_id:
              type: integer
            services:
              type: array
              items:
                type: object
            appointment_date:
              type: string
              example: "2026-03-14"
            appointment_time:
              type: string
              example: "14:30"
            total_amount:
              type: number
            customer_notes:
              type: string
          required:
            - shop_id
            - services
            - appointment_date
            - appointment_time
    responses:
      201:
        description: Booking created with status pending
      400:
        description: Invalid payload
      404:
        description: Shop or barber not found
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()

    payload = request.get_json(silent=True) or {}
    services = payload.get("services")
    if not isinstance(services, list) or not services:
        return error_response("invalid_payload", "at least one service is required", 400)
    try:
        appointment_date = _parse_date(payload.get("appointment_date"))
        appointment_time = _parse_time(payload.get("appointment_time"))
        total_cents = _to_cents(payload.get("total_amount")) or 0
    except ValueError as exc:
        return error_response("invalid_payload", str(exc), 400)

    shop = db.session.get(Shop, payload.get("shop_id") or 0)
    if shop is None or not shop.is_active:
        return error_response("not_found", "shop not found", 404)

    barber_id = payload.get("barber_id")
    if barber_id is not None and _shop_role(shop.shop_id, barber_id) is None:
        return error_response("not_found", "barber does not work at this shop", 404)

    booking = Booking(
        shop_id=shop.shop_id,
        customer_id=profile.profile_id,
        barber_id=barber_id,
        services=services,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        total_amount_cents=total_cents,
        customer_notes=payload.get("customer_notes") or None,
        status="pending",
    )
    try:
        db.session.add(booking)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("create booking", exc)

    current_app.logger.info("Booking %s created for shop %s", booking.booking_id, shop.shop_id)
    return jsonify({"booking": booking.to_dict()}), 201


@bp.get("/bookings/mine")
def list_my_bookings() -> tuple[dict[str, object], int]:
    """The caller's bookings split into upcoming, past and cancelled."""
    profile = current_profile()
    if profile is None:
        return unauthorized()

    bookings = (
        Booking.query.filter_by(customer_id=profile.profile_id)
        .order_by(Booking.appointment_date.asc(), Booking.appointment_time.asc())
        .all()
    )
    return jsonify(group_customer_bookings(bookings, date.today())), 200


@bp.get("/bookings/<int:booking_id>")
def get_booking(booking_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        return error_response("not_found", "booking not found", 404)
    if booking.customer_id != profile.profile_id and not _has_shop_role(
        profile, booking.shop_id, ACTION_ROLES["confirm"]
    ):
        return error_response("forbidden", "you cannot view this booking", 403)
    return jsonify({"booking": booking.to_dict()}), 200


@bp.get("/shops/<int:shop_id>/bookings")
def list_shop_bookings(shop_id: int) -> tuple[dict[str, object], int]:
    """Bookings for a shop, filtered by status, barber or date.
    ---
    tags:
      - Bookings
    parameters:
      - name: status
        in: query
        type: string
      - name: barber_id
        in: query
        type: integer
      - name: date
        in: query
        type: string
    responses:
      200:
        description: Matching bookings
      403:
        description: Caller is not shop staff
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if not _has_shop_role(profile, shop_id, ACTION_ROLES["confirm"]):
        return error_response("forbidden", "only shop staff can view shop bookings", 403)

    query = Booking.query.filter_by(shop_id=shop_id)
    status = request.args.get("status")
    if status:
        query = query.filter(Booking.status == status)
    try:
        barber_id = request.args.get("barber_id", type=int)
        if barber_id:
            query = query.filter(Booking.barber_id == barber_id)
        if request.args.get("date"):
            query = query.filter(Booking.appointment_date == _parse_date(request.args["date"]))
    except ValueError as exc:
        return error_response("invalid_parameters", str(exc), 400)

    bookings = query.order_by(Booking.appointment_date.asc(), Booking.appointment_time.asc()).all()
    return jsonify({"bookings": [booking.to_dict() for booking in bookings]}), 200


@bp.get("/shops/<int:shop_id>/bookings/grouped")
def list_shop_bookings_grouped(shop_id: int) -> tuple[dict[str, object], int]:
    """Manager view of the last 90 days of bookings grouped by status."""
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can view this", 403)

    since = date.today() - timedelta(days=90)
    bookings = (
        Booking.query.filter(Booking.shop_id == shop_id, Booking.appointment_date >= since)
        .order_by(Booking.appointment_date.desc(), Booking.appointment_time.desc())
        .limit(200)
        .all()
    )
    return jsonify(group_by_status(bookings)), 200


@bp.post("/bookings/<int:booking_id>/<action>")
def change_booking_status(booking_id: int, action: str) -> tuple[dict[str, object], int]:
    """Move a booking through its lifecycle.
    ---
    tags:
      - Bookings
    parameters:
      - name: action
        in: path
        type: string
        enum: [confirm, reject, cancel, complete, no_show, reschedule]
      - name: body
        in: body
        schema:
          type: object
          properties:
            reason:
              type: string
            appointment_date:
              type: string
            appointment_time:
              type: string
    responses:
      200:
        description: Booking updated
      403:
        description: Caller may not take this action
      404:
        description: Booking not found
      409:
        description: Booking status does not allow this action
    """
    if action not in TRANSITIONS:
        return error_response("not_found", f"unknown booking action: {action}", 404)
    profile = current_profile()
    if profile is None:
        return unauthorized()
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        return error_response("not_found", "booking not found", 404)

    is_customer = booking.customer_id == profile.profile_id and action in CUSTOMER_ACTIONS
    if not is_customer and not _has_shop_role(profile, booking.shop_id, ACTION_ROLES[action]):
        return error_response("forbidden", f"you cannot {action.replace('_', ' ')} this booking", 403)

    payload = request.get_json(silent=True) or {}
    try:
        new_date = new_time = None
        if action == "reschedule":
            new_date = _parse_date(payload.get("appointment_date"))
            new_time = _parse_time(payload.get("appointment_time"))
        apply_transition(
            booking,
            action,
            reason=(payload.get("reason") or "").strip() or None,
            new_date=new_date,
            new_time=new_time,
        )
    except InvalidTransition as exc:
        return error_response("invalid_transition", str(exc), 409)
    except ValueError as exc:
        return error_response("invalid_payload", str(exc), 400)

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(f"{action} booking", exc)

    current_app.logger.info("Booking %s -> %s by profile %s", booking_id, booking.status, profile.profile_id)
    return jsonify({"booking": booking.to_dict()}), 200


# --- Reviews ---

@bp.get("/shops/<int:shop_id>/reviews")
def list_shop_reviews(shop_id: int) -> tuple[dict[str, object], int]:
    if db.session.get(Shop, shop_id) is None:
        return error_response("not_found", "shop not found", 404)
    reviews = ShopReview.query.filter_by(shop_id=shop_id).order_by(ShopReview.created_at.desc()).all()
    return jsonify({"reviews": [review.to_dict() for review in reviews]}), 200


@bp.post("/shops/<int:shop_id>/reviews")
def create_shop_review(shop_id: int) -> tuple[dict[str, object], int]:
    """Rate a shop from 1 to 5; the shop's average is recalculated.
    ---
    tags:
      - Reviews
    responses:
      201:
        description: Review created
      400:
        description: Rating missing or out of range
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        return error_response("not_found", "shop not found", 404)

    payload = request.get_json(silent=True) or {}
    try:
        rating = int(payload.get("rating"))
    except (TypeError, ValueError):
        return error_response("invalid_payload", "rating must be an integer", 400)
    if not 1 <= rating <= 5:
        return error_response("invalid_payload", "rating must be between 1 and 5", 400)

    booking_id = payload.get("booking_id")
    if booking_id is not None:
        booking = db.session.get(Booking, booking_id)
        if booking is None or booking.customer_id != profile.profile_id or booking.shop_id != shop_id:
            return error_response("invalid_payload", "booking does not belong to you at this shop", 400)

    review = ShopReview(
        shop_id=shop_id,
        customer_id=profile.profile_id,
        booking_id=booking_id,
        rating=rating,
        comment=(payload.get("comment") or "").strip() or None,
    )
    try:
        db.session.add(review)
        db.session.flush()
        ratings = [r.rating for r in ShopReview.query.filter_by(shop_id=shop_id).all()]
        shop.total_reviews = len(ratings)
        shop.rating = round(sum(ratings) / len(ratings), 2)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("create review", exc)

    return jsonify({"review": review.to_dict(), "shop_rating": shop.rating, "total_reviews": shop.total_reviews}), 201


# --- Invitations ---

@bp.post("/shops/<int:shop_id>/invitations")
def invite_to_shop(shop_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if db.session.get(Shop, shop_id) is None:
        return error_response("not_found", "shop not found", 404)
    if not _has_shop_role(profile, shop_id, SHOP_MANAGERS):
        return error_response("forbidden", "only shop managers can send invitations", 403)

    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    role = (payload.get("role") or "barber").strip().lower()
    if not email or "@" not in email:
        return error_response("invalid_payload", "a valid email is required", 400)
    if role not in {"manager", "barber"}:
        return error_response("invalid_role", "role must be manager or barber", 400)

    invitation = ShopInvitation(
        shop_id=shop_id,
        inviter_id=profile.profile_id,
        invitee_email=email,
        role=role,
        message=payload.get("message"),
        expires_at=utc_now() + timedelta(days=INVITATION_TTL_DAYS),
    )
    try:
        db.session.add(invitation)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("create invitation", exc)
    return jsonify({"invitation": invitation.to_dict()}), 201


@bp.get("/invitations/pending")
def list_pending_invitations() -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    invitations = (
        ShopInvitation.query.filter(
            ShopInvitation.invitee_email == profile.email.lower(),
            ShopInvitation.status == "pending",
            ShopInvitation.expires_at > utc_now(),
        )
        .order_by(ShopInvitation.created_at.desc())
        .all()
    )
    return jsonify({"invitations": [invitation.to_dict() for invitation in invitations]}), 200


def _load_invitation_for(profile: Profile, invitation_id: int):
    invitation = db.session.get(ShopInvitation, invitation_id)
    if invitation is None or invitation.invitee_email != profile.email.lower():
        return None, error_response("not_found", "invitation not found", 404)
    if invitation.status != "pending":
        return None, error_response("invalid_transition", f"invitation is already {invitation.status}", 409)
    if as_utc(invitation.expires_at) <= utc_now():
        return None, error_response("invalid_transition", "invitation has expired", 409)
    return invitation, None


@bp.post("/invitations/<int:invitation_id>/accept")
def accept_invitation(invitation_id: int) -> tuple[dict[str, object], int]:
    """Join the inviting shop's staff.

    The invitation and the staff row are written in one transaction, so a
    failure leaves the invitation pending.
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()
    invitation, error = _load_invitation_for(profile, invitation_id)
    if error:
        return error

    try:
        member, error = _add_staff_member(invitation.shop, profile, invitation.role)
        if error:
            db.session.rollback()
            return error
        invitation.status = "accepted"
        invitation.responded_at = utc_now()
        invitation.invitee_user_id = profile.profile_id
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("accept invitation", exc)

    if invitation.role == "barber":
        billing.check_license_availability(invitation.shop.created_by)
    return jsonify({"invitation": invitation.to_dict(), "staff": member.to_dict()}), 200


@bp.post("/invitations/<int:invitation_id>/decline")
def decline_invitation(invitation_id: int) -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    invitation, error = _load_invitation_for(profile, invitation_id)
    if error:
        return error

    invitation.status = "declined"
    invitation.responded_at = utc_now()
    invitation.invitee_user_id = profile.profile_id
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error("decline invitation", exc)
    return jsonify({"invitation": invitation.to_dict()}), 200
