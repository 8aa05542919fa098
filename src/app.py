"""Storefront FastAPI application.

Serves the cart, checkout and order lifecycle over HTTP. Every request runs
inside the storefront domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from storefront.api.errors import register_storefront_exception_handlers

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# PROTEAN_ENV controls which config overlay is applied (see domain.toml).
from storefront.domain import storefront
from storefront.engine import Storefront, build_storefront
from storefront.utils.logging import configure_logging

storefront.init()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
def create_app(engine: Storefront | None = None) -> FastAPI:
    app = FastAPI(
        title="Storefront API",
        description="Cart pricing, checkout with stock reservation, and the order lifecycle",
    )
    app.state.storefront = engine if engine is not None else build_storefront()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def domain_context_middleware(request: Request, call_next):
        """Push the storefront domain context, bound to this app's engine, for each request."""
        with storefront.domain_context(engine=app.state.storefront):
            response = await call_next(request)
        return response

    register_exception_handlers(app)
    register_storefront_exception_handlers(app)

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------
    from storefront.api import cart_router, checkout_router, maintenance_router, order_router

    app.include_router(cart_router)
    app.include_router(checkout_router)
    app.include_router(order_router)
    app.include_router(maintenance_router)

    # -----------------------------------------------------------------------
    # Health / root
    # -----------------------------------------------------------------------
    @app.get("/health")
    async def health():
        return JSONResponse(content={"status": "ok", "domain": {"name": storefront.name}})

    return app


configure_logging(
    level=os.environ.get("STOREFRONT_LOG_LEVEL", "INFO"),
    json_output=os.environ.get("STOREFRONT_LOG_JSON", "").lower() in ("1", "true", "yes"),
)
app = create_app()
