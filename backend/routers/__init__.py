from routers.auth import router as auth_router
from routers.stocks import router as stocks_router
from routers.orders import router as orders_router
from routers.wallet import router as wallet_router
from routers.portfolio import router as portfolio_router
from routers.market import router as market_router
from routers.admin import router as admin_router

__all__ = [
    "auth_router",
    "stocks_router",
    "orders_router",
    "wallet_router",
    "portfolio_router",
    "market_router",
    "admin_router"
]
