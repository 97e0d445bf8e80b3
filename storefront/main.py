# storefront/main.py
import sys
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from storefront.database import create_tables
from storefront.presentation.api import router as payment_router
from storefront.presentation.cart_api import router as cart_router

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    try:
        await create_tables()
        logger.info("Таблицы созданы")
    except Exception as e:
        logger.error(f"Не удалось создать таблицы: {e}")

    yield

    logger.info("Приложение останавливается...")


app = FastAPI(
    title="Storefront Payments",
    description="Оформление заказов и сверка оплат VNPay / MoMo",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(payment_router, prefix="/api")
app.include_router(cart_router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Storefront Payments работает"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000)
