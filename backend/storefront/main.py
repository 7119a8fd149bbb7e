"""
# `storefront/main.py` - Application entry point

## Overview
Creates the FastAPI app, configures logging and CORS, mounts the routers and
runs the background scheduler.

---

## Routers
**Public:**
- `/auth`
- `/orders` (checkout, order tracking)
- `/paypal` (checkout create/capture, webhook)
- `/notifications`, `/ws/notifications`

**Admin (prefix `/admin`, staff or admin role):**
- `/orders`
- `/customers`
- `/emails`
- `/staff`
- `/dashboard`

---

## Application state
- `app.state.connections`: the process-local WebSocket registry used by the
  notification fan-out. Empty after a restart; clients re-authenticate.

## Background scheduler
- **Library:** APScheduler (`AsyncIOScheduler`)
- **Job:** `prune_webhook_events`, daily (webhook ledger retention)
- `startup` starts the scheduler, `shutdown` stops it.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront.config import settings
from storefront.routers import admin_dashboard, auth, customers, emails, notifications, orders, paypal, users
from storefront.services.maintenance import prune_webhook_events
from storefront.services.notifications import ConnectionRegistry

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# One scheduler instance per process
scheduler = AsyncIOScheduler()

# Initialize FastAPI app
app = FastAPI(
    title="Geelong Garage Doors API",
    description="Storefront checkout, PayPal payments and admin back-office API.",
    version="1.0.0",
    redirect_slashes=False,
)
app.state.connections = ConnectionRegistry()

# Configure CORS (allow front-end domain or all origins as specified)
allow_origins = [origin.strip() for origin in settings.allowed_origins.split(',')] if settings.allowed_origins else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include public routers
app.include_router(auth.router)
app.include_router(orders.router)
app.include_router(paypal.router)
app.include_router(notifications.router)
app.include_router(notifications.ws_router)

# Include admin routers (with prefix /admin)
app.include_router(orders.admin_router, prefix="/admin")
app.include_router(customers.router, prefix="/admin")
app.include_router(emails.router, prefix="/admin")
app.include_router(users.router, prefix="/admin")
app.include_router(admin_dashboard.router, prefix="/admin")


@app.get("/health", tags=["Health"])
def health():
    return {"status": "ok", "connections": len(app.state.connections)}


@app.on_event("startup")
async def _startup_scheduler():
    if not scheduler.running:
        scheduler.start()
    scheduler.add_job(
        prune_webhook_events,
        "interval",
        days=1,
        id="webhook-ledger-prune",
        replace_existing=True,
    )


@app.on_event("shutdown")
async def _shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)


# Run the app directly with uvicorn (for development)
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000, reload=True)
