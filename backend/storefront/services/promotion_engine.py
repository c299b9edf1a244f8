# Overview: Pricing rule engine; picks the single best discount for a cart.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..extensions import db
from ..models import Coupon, PromotionCampaign
from ..money import percent_of
from storefront.time_utils import utcnow, within_window


"""
Pricing rules (authoritative)

- At most one discount applies per order: the coupon (if eligible) or one campaign.
- The coupon is evaluated first; campaigns follow by descending priority, then id.
  A later candidate replaces the current best only when its discount is strictly
  greater, so a campaign that merely ties the coupon never wins.
- Applicable amount: CART = subtotal; PRODUCT = sum of lines for the target
  product; CATEGORY = sum of lines whose product is in the target category.
- PERCENTAGE: value in basis points of the applicable amount, half-up to the cent.
  FIXED_AMOUNT: value in cents, capped at the applicable amount.
- A coupon below its minimum order, outside its window, inactive or used up is
  ignored silently; it never fails checkout.
"""


@dataclass(frozen=True)
class PricingLine:
    product_id: int
    product_variant_id: int | None
    quantity: int
    unit_price_cents: int
    category_ids: frozenset = frozenset()

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class PricingContext:
    tenant_id: int
    lines: list
    subtotal_cents: int
    currency: str
    coupon_code: str | None = None


@dataclass(frozen=True)
class DiscountRule:
    """A coupon or a campaign, reduced to what evaluation needs."""
    source: str  # "coupon" or "campaign"
    rule_id: int
    reference: str
    discount_type: str
    applicability: str
    value: int
    minimum_order_cents: int | None = None
    target_product_id: int | None = None
    target_category_id: int | None = None

    @classmethod
    def from_coupon(cls, coupon: Coupon) -> "DiscountRule":
        return cls(
            source="coupon",
            rule_id=coupon.id,
            reference=coupon.code,
            discount_type=coupon.discount_type,
            applicability=coupon.applicability,
            value=coupon.value,
            minimum_order_cents=coupon.minimum_order_cents,
            target_product_id=coupon.target_product_id,
            target_category_id=coupon.target_category_id,
        )

    @classmethod
    def from_campaign(cls, campaign: PromotionCampaign) -> "DiscountRule":
        return cls(
            source="campaign",
            rule_id=campaign.id,
            reference=campaign.name,
            discount_type=campaign.discount_type,
            applicability=campaign.applicability,
            value=campaign.value,
            minimum_order_cents=campaign.minimum_order_cents,
            target_product_id=campaign.target_product_id,
            target_category_id=campaign.target_category_id,
        )


@dataclass(frozen=True)
class DiscountBreakdown:
    source: str
    reference: str | None
    amount_cents: int

    def to_dict(self) -> dict:
        return {"source": self.source, "reference": self.reference, "amount_cents": self.amount_cents}


@dataclass
class PromotionResult:
    discount_cents: int = 0
    breakdown: list = field(default_factory=list)
    coupon_id: int | None = None
    coupon_code: str | None = None
    campaign_id: int | None = None
    campaign_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "discount_cents": self.discount_cents,
            "breakdown": [b.to_dict() for b in self.breakdown],
            "coupon_id": self.coupon_id,
            "coupon_code": self.coupon_code,
            "campaign_id": self.campaign_id,
            "campaign_name": self.campaign_name,
        }


def normalize_coupon_code(code: str | None) -> str | None:
    code = (code or "").strip()
    return code.upper() or None


def is_coupon_eligible(coupon: Coupon, subtotal_cents: int, now: datetime) -> bool:
    if not coupon.is_active:
        return False
    if not within_window(now, coupon.starts_at, coupon.ends_at):
        return False
    if coupon.minimum_order_cents is not None and subtotal_cents < coupon.minimum_order_cents:
        return False
    if coupon.usage_limit is not None and (coupon.times_redeemed or 0) >= coupon.usage_limit:
        return False
    return True


def applicable_amount(rule: DiscountRule, context: PricingContext) -> int:
    if rule.applicability == "CART":
        return context.subtotal_cents
    if rule.applicability == "PRODUCT" and rule.target_product_id is not None:
        return sum(
            line.line_total_cents for line in context.lines
            if line.product_id == rule.target_product_id
        )
    if rule.applicability == "CATEGORY" and rule.target_category_id is not None:
        return sum(
            line.line_total_cents for line in context.lines
            if rule.target_category_id in line.category_ids
        )
    return 0


def evaluate_rule(rule: DiscountRule, context: PricingContext) -> int:
    """Discount in cents for one rule, 0 when it does not apply."""
    if rule.minimum_order_cents is not None and context.subtotal_cents < rule.minimum_order_cents:
        return 0

    base = applicable_amount(rule, context)
    if base <= 0:
        return 0

    if rule.discount_type == "PERCENTAGE":
        discount = percent_of(base, rule.value)
    elif rule.discount_type == "FIXED_AMOUNT":
        discount = min(rule.value, base)
    else:
        discount = 0
    return max(discount, 0)


def _load_coupon(tenant_id: int, code: str | None, subtotal_cents: int, now: datetime) -> Coupon | None:
    code = normalize_coupon_code(code)
    if not code:
        return None
    coupon = db.session.query(Coupon).filter_by(tenant_id=tenant_id, code=code).first()
    if coupon is None or not is_coupon_eligible(coupon, subtotal_cents, now):
        return None
    return coupon


def _load_campaigns(tenant_id: int, now: datetime) -> list[PromotionCampaign]:
    campaigns = (
        db.session.query(PromotionCampaign)
        .filter(PromotionCampaign.tenant_id == tenant_id, PromotionCampaign.is_active.is_(True))
        .order_by(PromotionCampaign.priority.desc(), PromotionCampaign.id.asc())
        .all()
    )
    return [c for c in campaigns if within_window(now, c.starts_at, c.ends_at)]


def evaluate(context: PricingContext, *, now: datetime | None = None) -> PromotionResult:
    """
    Evaluate the coupon and all live campaigns and return the single best discount.

    Ties keep the earlier candidate, so the coupon wins a tie with any campaign.
    """
    now = now or utcnow()

    candidates: list[DiscountRule] = []
    coupon = _load_coupon(context.tenant_id, context.coupon_code, context.subtotal_cents, now)
    if coupon is not None:
        candidates.append(DiscountRule.from_coupon(coupon))
    for campaign in _load_campaigns(context.tenant_id, now):
        candidates.append(DiscountRule.from_campaign(campaign))

    best_rule = None
    best_amount = 0
    for rule in candidates:
        amount = evaluate_rule(rule, context)
        if amount <= 0:
            continue
        if best_rule is None or amount > best_amount:
            best_rule, best_amount = rule, amount

    if best_rule is None:
        return PromotionResult()

    result = PromotionResult(
        discount_cents=best_amount,
        breakdown=[DiscountBreakdown(best_rule.source, best_rule.reference, best_amount)],
    )
    if best_rule.source == "coupon":
        result.coupon_id = best_rule.rule_id
        result.coupon_code = best_rule.reference
    else:
        result.campaign_id = best_rule.rule_id
        result.campaign_name = best_rule.reference
    return result
