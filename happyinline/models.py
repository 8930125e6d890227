"""Database models for the HappyInline backend."""
from __future__ import annotations

from datetime import datetime, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _dollars(cents: int | None) -> float | None:
    return cents / 100.0 if cents is not None else None


class Profile(db.Model):
    __tablename__ = "profiles"

    profile_id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(120))
    phone = db.Column(db.String(30))
    role = db.Column(
        db.Enum(
            "customer",
            "owner",
            "admin",
            "super_admin",
            name="profile_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="customer",
    )
    # Set when the customer signed up through a shop's QR deep link.
    exclusive_shop_id = db.Column(db.Integer, nullable=True, index=True)

    # Subscription bookkeeping, written by the billing service and webhook.
    subscription_plan = db.Column(db.String(30))
    subscription_status = db.Column(db.String(30))
    subscription_start_date = db.Column(db.DateTime)
    subscription_end_date = db.Column(db.DateTime)
    next_billing_date = db.Column(db.DateTime)
    refund_eligible_until = db.Column(db.DateTime)
    monthly_amount_cents = db.Column(db.Integer)
    max_licenses = db.Column(db.Integer, nullable=False, default=0)
    license_count = db.Column(db.Integer, nullable=False, default=0)
    stripe_customer_id = db.Column(db.String(255))
    stripe_subscription_id = db.Column(db.String(255))
    payment_method_last4 = db.Column(db.String(4))
    payment_method_brand = db.Column(db.String(30))

    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    auth_account = db.relationship("AuthAccount", back_populates="profile", uselist=False)

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.profile_id,
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "role": self.role,
            "exclusive_shop_id": self.exclusive_shop_id,
        }

    def to_dict(self) -> dict[str, object]:
        data = self.to_dict_basic()
        data.update(
            {
                "subscription_plan": self.subscription_plan,
                "subscription_status": self.subscription_status,
                "subscription_start_date": _iso(self.subscription_start_date),
                "subscription_end_date": _iso(self.subscription_end_date),
                "next_billing_date": _iso(self.next_billing_date),
                "refund_eligible_until": _iso(self.refund_eligible_until),
                "monthly_amount": _dollars(self.monthly_amount_cents),
                "max_licenses": self.max_licenses,
                "license_count": self.license_count,
                "payment_method_last4": self.payment_method_last4,
                "payment_method_brand": self.payment_method_brand,
                "created_at": _iso(self.created_at),
            }
        )
        return data


class AuthAccount(db.Model):
    __tablename__ = "auth_accounts"

    account_id = db.Column(db.Integer, primary_key=True)
    profile_id = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    profile = db.relationship("Profile", back_populates="auth_account")


class EmailOTP(db.Model):
    """One-time sign-in code sent by email."""

    __tablename__ = "email_otps"

    otp_id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    code_hash = db.Column(db.String(255), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    consumed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)


class Shop(db.Model):
    __tablename__ = "shops"

    shop_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    address = db.Column(db.String(255))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    zip_code = db.Column(db.String(20))
    phone = db.Column(db.String(30))
    email = db.Column(db.String(255))
    website = db.Column(db.String(255))
    operating_hours = db.Column(db.JSON, nullable=True, default=dict)
    rating = db.Column(db.Float, nullable=False, default=0.0)
    total_reviews = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_manually_closed = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(
        db.Enum(
            "draft",
            "pending_review",
            "approved",
            "rejected",
            name="shop_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="draft",
        default="draft",
    )
    rejection_reason = db.Column(db.Text)
    submitted_for_review_at = db.Column(db.DateTime)
    reviewed_at = db.Column(db.DateTime)
    created_by = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    staff = db.relationship("ShopStaff", back_populates="shop", lazy="dynamic")

    @property
    def is_open(self) -> bool:
        return not self.is_manually_closed

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.shop_id,
            "name": self.name,
            "description": self.description,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "phone": self.phone,
            "email": self.email,
            "website": self.website,
            "operating_hours": self.operating_hours or {},
            "rating": self.rating,
            "total_reviews": self.total_reviews,
            "is_active": self.is_active,
            "is_manually_closed": self.is_manually_closed,
            "is_open": self.is_open,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "submitted_for_review_at": _iso(self.submitted_for_review_at),
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }


class ShopStaff(db.Model):
    __tablename__ = "shop_staff"
    __table_args__ = (db.UniqueConstraint("shop_id", "user_id", name="uq_shop_staff_member"),)

    staff_id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.shop_id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), nullable=False)
    role = db.Column(
        db.Enum(
            "owner",
            "admin",
            "manager",
            "barber",
            name="shop_staff_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    bio = db.Column(db.Text)
    specialties = db.Column(db.JSON, nullable=True, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    shop = db.relationship("Shop", back_populates="staff")
    user = db.relationship("Profile")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.staff_id,
            "shop_id": self.shop_id,
            "user_id": self.user_id,
            "role": self.role,
            "bio": self.bio,
            "specialties": self.specialties or [],
            "is_active": self.is_active,
            "user": self.user.to_dict_basic() if self.user else None,
        }


class Service(db.Model):
    """Global service catalog entry."""

    __tablename__ = "services"

    service_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(80))
    default_price_cents = db.Column(db.Integer)
    default_duration_minutes = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "default_price": _dollars(self.default_price_cents),
            "default_duration": self.default_duration_minutes,
        }


class ShopService(db.Model):
    __tablename__ = "shop_services"

    shop_service_id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.shop_id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=True)
    # Custom services carry their own name instead of a catalog reference.
    custom_name = db.Column(db.String(120))
    description = db.Column(db.Text)
    price_cents = db.Column(db.Integer)
    custom_price_cents = db.Column(db.Integer)
    duration_minutes = db.Column(db.Integer)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    service = db.relationship("Service")

    def to_dict(self) -> dict[str, object]:
        """Flatten the shop service together with its catalog entry."""
        catalog = self.service
        price_cents = self.price_cents if self.price_cents is not None else self.custom_price_cents
        if price_cents is None and catalog is not None:
            price_cents = catalog.default_price_cents
        duration = self.duration_minutes
        if duration is None and catalog is not None:
            duration = catalog.default_duration_minutes
        return {
            "id": self.shop_service_id,
            "shop_id": self.shop_id,
            "service_id": self.service_id,
            "name": self.custom_name or (catalog.name if catalog else None),
            "description": self.description or (catalog.description if catalog else None),
            "category": catalog.category if catalog else "Custom",
            "price": _dollars(price_cents) if price_cents is not None else 0.0,
            "duration": duration or 30,
            "is_active": self.is_active,
            "is_custom": self.service_id is None,
        }


class Booking(db.Model):
    __tablename__ = "bookings"

    booking_id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.shop_id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), nullable=False)
    barber_id = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), nullable=True)
    services = db.Column(db.JSON, nullable=False, default=list)
    appointment_date = db.Column(db.Date, nullable=False)
    appointment_time = db.Column(db.Time, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    customer_notes = db.Column(db.Text)
    status = db.Column(
        db.Enum(
            "pending",
            "confirmed",
            "rejected",
            "completed",
            "cancelled",
            "no_show",
            name="booking_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    shop = db.relationship("Shop")
    customer = db.relationship("Profile", foreign_keys=[customer_id])
    barber = db.relationship("Profile", foreign_keys=[barber_id])

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.booking_id,
            "shop_id": self.shop_id,
            "shop_name": self.shop.name if self.shop else None,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict_basic() if self.customer else None,
            "barber_id": self.barber_id,
            "barber": self.barber.to_dict_basic() if self.barber else None,
            "services": self.services or [],
            "appointment_date": _iso(self.appointment_date),
            "appointment_time": self.appointment_time.strftime("%H:%M") if self.appointment_time else None,
            "total_amount": _dollars(self.total_amount_cents),
            "customer_notes": self.customer_notes,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class ShopReview(db.Model):
    __tablename__ = "shop_reviews"

    review_id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.shop_id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.booking_id"), nullable=True)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    customer = db.relationship("Profile")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.review_id,
            "shop_id": self.shop_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "booking_id": self.booking_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": _iso(self.created_at),
        }


class ShopInvitation(db.Model):
    __tablename__ = "shop_invitations"

    invitation_id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.shop_id"), nullable=False)
    inviter_id = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), nullable=False)
    invitee_email = db.Column(db.String(255), nullable=False, index=True)
    invitee_user_id = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="barber")
    status = db.Column(
        db.Enum(
            "pending",
            "accepted",
            "declined",
            name="invitation_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    message = db.Column(db.Text)
    expires_at = db.Column(db.DateTime, nullable=False)
    responded_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    shop = db.relationship("Shop")
    inviter = db.relationship("Profile", foreign_keys=[inviter_id])

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.invitation_id,
            "shop_id": self.shop_id,
            "shop": {"id": self.shop.shop_id, "name": self.shop.name} if self.shop else None,
            "inviter": self.inviter.to_dict_basic() if self.inviter else None,
            "invitee_email": self.invitee_email,
            "invitee_user_id": self.invitee_user_id,
            "role": self.role,
            "status": self.status,
            "message": self.message,
            "expires_at": _iso(self.expires_at),
            "responded_at": _iso(self.responded_at),
            "created_at": _iso(self.created_at),
        }


class ShopImage(db.Model):
    __tablename__ = "shop_images"

    image_id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.shop_id"), nullable=False)
    image_type = db.Column(db.String(20), nullable=False, default="gallery")  # logo, cover, gallery
    filename = db.Column(db.String(255))
    content_type = db.Column(db.String(100), nullable=False)
    data = db.Column(db.LargeBinary, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.image_id,
            "shop_id": self.shop_id,
            "image_type": self.image_type,
            "filename": self.filename,
            "content_type": self.content_type,
            "url": f"/shops/{self.shop_id}/images/{self.image_id}",
            "created_at": _iso(self.created_at),
        }


class PaymentHistory(db.Model):
    __tablename__ = "payment_history"

    payment_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    status = db.Column(db.String(20), nullable=False)  # succeeded, refunded, failed, pending
    payment_type = db.Column(db.String(40), nullable=False)
    plan_name = db.Column(db.String(30))
    description = db.Column(db.Text)
    stripe_payment_intent_id = db.Column(db.String(255))
    # Unique so replayed webhook deliveries cannot double-record an invoice.
    stripe_invoice_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_refund_id = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    user = db.relationship("Profile")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.payment_id,
            "user_id": self.user_id,
            "amount": _dollars(self.amount_cents),
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "payment_type": self.payment_type,
            "plan_name": self.plan_name,
            "description": self.description,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "stripe_invoice_id": self.stripe_invoice_id,
            "stripe_refund_id": self.stripe_refund_id,
            "created_at": _iso(self.created_at),
        }


class SubscriptionEvent(db.Model):
    __tablename__ = "subscription_events"

    event_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.profile_id"), nullable=False)
    event_type = db.Column(db.String(30), nullable=False)  # created, upgraded, cancelled, refunded
    from_plan = db.Column(db.String(30))
    to_plan = db.Column(db.String(30))
    amount_cents = db.Column(db.Integer)
    details = db.Column(db.JSON, nullable=True, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.event_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "from_plan": self.from_plan,
            "to_plan": self.to_plan,
            "amount": _dollars(self.amount_cents),
            "details": self.details or {},
            "created_at": _iso(self.created_at),
        }
