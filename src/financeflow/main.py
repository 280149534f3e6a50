import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from financeflow.config import settings
from financeflow.routes import router
from financeflow.services.container import build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    services = build_services(settings)
    app.state.services = services
    try:
        yield
    finally:
        await services.aclose()
        logger.info("Services closed")


app = FastAPI(title="FinanceFlow", version="0.1.0", lifespan=lifespan)
app.include_router(router)


def run() -> None:
    import uvicorn

    uvicorn.run(
        "financeflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.financeflow_env == "development",
    )


if __name__ == "__main__":
    run()
