"""HTTP mapping for the engine's own errors.

Protean's handlers already turn ``ValidationError`` into 400 and
``ObjectNotFoundError`` into 404. Stock shortages and refused status changes
are conflicts with the current state, so they answer 409 and carry the detail
a client needs to react.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.exceptions import CurrencyMismatch, InvalidTransition, OutOfStock


async def out_of_stock_handler(request: Request, exc: OutOfStock):
    return JSONResponse(
        status_code=409,
        content={
            "error": exc.messages,
            "product_ref": exc.product_ref,
            "requested": exc.requested,
            "available": exc.available,
        },
    )


async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse(
        status_code=409,
        content={"error": exc.messages, "from_status": exc.from_status, "to_status": exc.to_status},
    )


async def currency_mismatch_handler(request: Request, exc: CurrencyMismatch):
    return JSONResponse(status_code=500, content={"error": str(exc)})


def register_storefront_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OutOfStock, out_of_stock_handler)
    app.add_exception_handler(InvalidTransition, invalid_transition_handler)
    app.add_exception_handler(CurrencyMismatch, currency_mismatch_handler)
