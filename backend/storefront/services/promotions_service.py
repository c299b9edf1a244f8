from __future__ import annotations

from ..extensions import db
from ..models import Coupon, PromotionCampaign
from ..models.promotions import DISCOUNT_TYPES, APPLICABILITY_TYPES
from ..errors import InvalidRequest
from storefront.time_utils import parse_iso_datetime
from .promotion_engine import normalize_coupon_code


def _validate_rule_fields(data: dict) -> None:
    if data.get('discount_type') not in DISCOUNT_TYPES:
        raise InvalidRequest(f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}")
    applicability = data.get('applicability', 'CART')
    if applicability not in APPLICABILITY_TYPES:
        raise InvalidRequest(f"applicability must be one of {', '.join(APPLICABILITY_TYPES)}")
    if applicability == 'PRODUCT' and not data.get('target_product_id'):
        raise InvalidRequest("target_product_id is required for PRODUCT rules")
    if applicability == 'CATEGORY' and not data.get('target_category_id'):
        raise InvalidRequest("target_category_id is required for CATEGORY rules")
    value = data.get('value')
    if not isinstance(value, int) or value <= 0:
        raise InvalidRequest("value must be a positive integer (cents or basis points)")


def _window(data: dict) -> tuple:
    starts_at = data.get('starts_at')
    ends_at = data.get('ends_at')
    try:
        if isinstance(starts_at, str):
            starts_at = parse_iso_datetime(starts_at)
        if isinstance(ends_at, str):
            ends_at = parse_iso_datetime(ends_at)
    except ValueError:
        raise InvalidRequest("starts_at/ends_at must be ISO-8601 datetimes")
    if starts_at and ends_at and ends_at < starts_at:
        raise InvalidRequest("ends_at must be after starts_at")
    return starts_at, ends_at


def list_coupons(tenant_id: int, active_only: bool = False) -> list[dict]:
    q = db.session.query(Coupon).filter_by(tenant_id=tenant_id)
    if active_only:
        q = q.filter_by(is_active=True)
    return [c.to_dict() for c in q.order_by(Coupon.id.desc()).all()]


def create_coupon(tenant_id: int, data: dict) -> Coupon:
    code = normalize_coupon_code(data.get('code'))
    if not code:
        raise InvalidRequest("code is required")
    _validate_rule_fields(data)
    starts_at, ends_at = _window(data)

    existing = db.session.query(Coupon).filter_by(tenant_id=tenant_id, code=code).first()
    if existing is not None:
        raise InvalidRequest(f"Coupon {code} already exists")

    coupon = Coupon(
        tenant_id=tenant_id,
        code=code,
        description=data.get('description'),
        discount_type=data['discount_type'],
        applicability=data.get('applicability', 'CART'),
        value=data['value'],
        target_product_id=data.get('target_product_id'),
        target_category_id=data.get('target_category_id'),
        minimum_order_cents=data.get('minimum_order_cents'),
        starts_at=starts_at,
        ends_at=ends_at,
        usage_limit=data.get('usage_limit'),
        is_active=data.get('is_active', True),
    )
    db.session.add(coupon)
    db.session.commit()
    return coupon


def list_campaigns(tenant_id: int, active_only: bool = False) -> list[dict]:
    q = db.session.query(PromotionCampaign).filter_by(tenant_id=tenant_id)
    if active_only:
        q = q.filter_by(is_active=True)
    q = q.order_by(PromotionCampaign.priority.desc(), PromotionCampaign.id.asc())
    return [c.to_dict() for c in q.all()]


def create_campaign(tenant_id: int, data: dict) -> PromotionCampaign:
    if not (data.get('name') or '').strip():
        raise InvalidRequest("name is required")
    _validate_rule_fields(data)
    starts_at, ends_at = _window(data)

    campaign = PromotionCampaign(
        tenant_id=tenant_id,
        name=data['name'].strip(),
        priority=int(data.get('priority', 0)),
        discount_type=data['discount_type'],
        applicability=data.get('applicability', 'CART'),
        value=data['value'],
        target_product_id=data.get('target_product_id'),
        target_category_id=data.get('target_category_id'),
        minimum_order_cents=data.get('minimum_order_cents'),
        starts_at=starts_at,
        ends_at=ends_at,
        is_active=data.get('is_active', True),
    )
    db.session.add(campaign)
    db.session.commit()
    return campaign
