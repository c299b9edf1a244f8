from .tenancy import Tenant, DocumentSequence
from .catalog import Product, ProductVariant, Category, product_categories
from .inventory import Inventory
from .carts import Cart, CartItem
from .orders import Order, OrderItem, PaymentTransaction
from .promotions import Coupon, PromotionCampaign
from .tax import TaxRule
from .shipping import ShippingZone, ShippingZoneRegion, ShippingMethod, ShippingRateTableEntry
from .refunds import RefundRequest, RefundRequestItem

__all__ = [
    'Tenant', 'DocumentSequence',
    'Product', 'ProductVariant', 'Category', 'product_categories',
    'Inventory',
    'Cart', 'CartItem',
    'Order', 'OrderItem', 'PaymentTransaction',
    'Coupon', 'PromotionCampaign',
    'TaxRule',
    'ShippingZone', 'ShippingZoneRegion', 'ShippingMethod', 'ShippingRateTableEntry',
    'RefundRequest', 'RefundRequestItem',
]
