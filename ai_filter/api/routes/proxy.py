"""Storefront app-proxy endpoints consumed by the AI filter widget.

Shopify forwards widget calls with the shop's domain in the ``shop``
query parameter. Proxy signature verification happens upstream of this
router; a request that reaches it without a shop is answered as
unauthorized.

Every query response is HTTP 200 with ``{filters, explanation,
searchQuery, error, ...}``; failures are reported through ``error``.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ai_filter.services.orchestrator import QueryOrchestrator

router = APIRouter(tags=["proxy"])

_NO_STORE = {"Cache-Control": "no-store"}


def _orchestrator(request: Request) -> QueryOrchestrator:
    orchestrator: QueryOrchestrator = request.app.state.orchestrator
    return orchestrator


def _shop(request: Request) -> str | None:
    shop = request.query_params.get("shop", "").strip()
    return shop or None


async def _read_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


@router.post("/query")
async def query_filters(request: Request) -> JSONResponse:
    """Resolve a free-text shopping query into storefront filters."""
    body = await _read_body(request)
    response = await _orchestrator(request).handle_query(_shop(request), body)
    return JSONResponse(content=response.to_wire(), headers=_NO_STORE)


@router.get("/settings")
async def widget_settings(request: Request) -> JSONResponse:
    """Tell the widget whether the AI filter is enabled for this shop."""
    shop = _shop(request)
    if shop is None:
        return JSONResponse(content={"error": "Unauthorized", "filters": None}, headers=_NO_STORE)
    settings = await _orchestrator(request).shop_settings(shop)
    return JSONResponse(content=settings, headers=_NO_STORE)
