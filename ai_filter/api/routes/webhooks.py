"""Catalog change webhooks.

Product create/update/delete events mark the shop's taxonomy stale so the
next storefront query refreshes it in the background. HMAC verification
of the webhook payload is handled by the platform integration in front of
this service.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request, Response

from ai_filter.services.orchestrator import QueryOrchestrator

logger = structlog.get_logger()

router = APIRouter(tags=["webhooks"])

CATALOG_TOPICS = frozenset({"products/create", "products/update", "products/delete"})


@router.post("/products")
async def product_changed(request: Request) -> Response:
    topic = request.headers.get("X-Shopify-Topic", "").lower()
    shop = request.headers.get("X-Shopify-Shop-Domain", "").strip()

    if topic not in CATALOG_TOPICS:
        logger.warning("webhook_unhandled_topic", topic=topic, shop=shop)
        return Response(status_code=404)
    if not shop:
        logger.warning("webhook_missing_shop", topic=topic)
        return Response(status_code=400)

    orchestrator: QueryOrchestrator = request.app.state.orchestrator
    try:
        known = await orchestrator.mark_catalog_changed(shop)
    except Exception:
        # Acknowledge anyway; the 6h staleness window still refreshes the taxonomy
        logger.exception("webhook_invalidate_failed", topic=topic, shop=shop)
        return Response(status_code=200)

    logger.info("webhook_catalog_changed", topic=topic, shop=shop, known_shop=known)
    return Response(status_code=200)
