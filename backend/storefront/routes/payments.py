# Overview: Flask API routes for payment provider webhooks; verifies and reconciles deliveries.

# backend/storefront/routes/payments.py
"""
Payment Webhook Routes

DESIGN:
- POST /api/payments/<provider>/webhook receives provider events
- The raw body and X-Signature header are verified by the provider's gateway
- Verified events are reconciled against the PaymentTransaction with the
  same (provider, provider_reference)

Deliveries are at-least-once: unknown references and duplicates answer 200 so
the provider stops retrying. Internal failures are logged and also answer
200. X-Tenant-ID is optional here; when present the lookup is restricted to
that tenant.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import GatewayAuthError, StorefrontError
from ..services import tenant_service, webhook_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# WEBHOOKS
# =============================================================================

@payments_bp.post("/<provider>/webhook")
def receive_webhook_route(provider: str):
    """
    Returns:
        200: {"status": "processed", "order": ...} or {"status": "ignored"}
        200: {"status": "error_logged"} on unexpected internal failures
        400: Empty or malformed payload, unknown provider
        401: Missing or invalid signature
    """
    provider = provider.lower()
    payload = request.get_data(as_text=True)
    if not payload or not payload.strip():
        return jsonify({"error": "Webhook payload cannot be empty", "code": "INVALID_REQUEST"}), 400

    try:
        tenant_id = None
        raw_tenant = request.headers.get("X-Tenant-ID")
        if raw_tenant:
            tenant_id = tenant_service.resolve_tenant(raw_tenant).id

        order = webhook_service.verify_and_handle(
            tenant_id,
            provider,
            payload,
            request.headers.get("X-Signature"),
            event_type=request.headers.get("X-Event-Type"),
            headers={k: v for k, v in request.headers.items()},
        )
        if order is None:
            return jsonify({"status": "ignored"}), 200
        return jsonify({"status": "processed", "order": order.to_dict(include_items=False)}), 200

    except GatewayAuthError as e:
        current_app.logger.warning("Unauthorized webhook for provider %s: %s", provider, e.message)
        return jsonify(e.to_dict()), e.status_code
    except StorefrontError as e:
        current_app.logger.warning("Rejected webhook for provider %s: %s", provider, e.message)
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        # Providers retry anything but 2xx; the failure is only logged.
        current_app.logger.exception("Failed to process webhook for provider %s", provider)
        return jsonify({"status": "error_logged"}), 200
