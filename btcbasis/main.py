#!/usr/bin/env python
"""
btcbasis/main.py

Sets up the FastAPI application for btcbasis, a Bitcoin cost-basis and
tax-lot engine.

Key Roles:
 - Loads environment variables and adds CORS middleware for frontend use
 - Includes the 'transaction', 'calculation' and 'bitcoin' routers
 - Maps engine errors to HTTP: NoPriceAvailable -> 502, MissingUserError -> 400
"""

import os
import logging
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from btcbasis.database import create_tables
from btcbasis.exceptions import MissingUserError, NoPriceAvailable
from btcbasis.routers import bitcoin, calculation, transaction

# Load environment variables from a .env file at the project root
load_dotenv()

logger = logging.getLogger(__name__)

# Default CORS origins if none specified (dev environment)
default_origins = (
    "http://127.0.0.1:3000,"
    "http://localhost:3000,"
    "http://127.0.0.1:5173,"
    "http://localhost:5173"
)
raw_origins = os.getenv("CORS_ALLOW_ORIGINS", default_origins)
ALLOWED_ORIGINS = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

# ---------------------------------------------------------
# Database: Create Tables at Startup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Ensures tables exist when FastAPI starts. Idempotent.
    """
    create_tables()
    yield

# ---------------------------------------------------------
# Initialize the FastAPI application
# ---------------------------------------------------------
app = FastAPI(
    lifespan=lifespan,
    title="btcbasis API",
    description=(
        "Bitcoin cost basis (FIFO, LIFO, HIFO, Average Cost), realized and "
        "unrealized gains, holding periods and portfolio performance."
    ),
    version="1.0",
    redirect_slashes=True
)

# ---------------------------------------------------------
# CORS Middleware
# ---------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------
# Error mapping
# ---------------------------------------------------------
@app.exception_handler(NoPriceAvailable)
async def no_price_handler(request: Request, exc: NoPriceAvailable):
    logger.error(f"{request.url.path}: {exc.detail}")
    return JSONResponse(status_code=502, content={"detail": exc.detail})


@app.exception_handler(MissingUserError)
async def missing_user_handler(request: Request, exc: MissingUserError):
    return JSONResponse(status_code=400, content={"detail": exc.detail})

# ---------------------------------------------------------
# Routers (Transaction, Calculation, Bitcoin)
# ---------------------------------------------------------
app.include_router(transaction.router, prefix="/api/transactions", tags=["transactions"])
app.include_router(calculation.router, prefix="/api/calculations", tags=["calculations"])
app.include_router(bitcoin.router, prefix="/api/bitcoin", tags=["Bitcoin"])

# ---------------------------------------------------------
# Root Route
# ---------------------------------------------------------
@app.get("/")
def read_root():
    """
    Basic root path to confirm the API is running.
    """
    return {"message": "Welcome to btcbasis - cost basis engine ready!"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("btcbasis.main:app", host="127.0.0.1", port=int(os.getenv("PORT", "8000")))
