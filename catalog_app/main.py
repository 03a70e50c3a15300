from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session

from catalog_app import services
from catalog_app.config import Settings
from catalog_app.database import create_db_engine, get_session, init_db
from catalog_app.models import ProductStatus
from catalog_app.schemas import (
    CategoryRead,
    Envelope,
    ErrorDetail,
    MaterialRead,
    ProductCreate,
    ProductCreated,
    ProductFilters,
    ProductPage,
    ProductRead,
    ProductUpdate,
    Statistics,
)
from catalog_app.seed import seed_sample_data
from sku_vault import ConfigurationError, DecryptionError, KeysetRegistry, SKUCodec

logger = logging.getLogger(__name__)


def get_codec(request: Request) -> SKUCodec:
    return request.app.state.codec


router = APIRouter(prefix="/api")


@router.get("/categories", response_model=Envelope[list[CategoryRead]])
def get_categories(session: Session = Depends(get_session)):
    return Envelope(data=[CategoryRead.model_validate(c) for c in services.list_categories(session)])


@router.get("/materials", response_model=Envelope[list[MaterialRead]])
def get_materials(session: Session = Depends(get_session)):
    return Envelope(data=[MaterialRead.model_validate(m) for m in services.list_materials(session)])


@router.get("/products/stats/all", response_model=Envelope[Statistics])
def get_statistics(session: Session = Depends(get_session), codec: SKUCodec = Depends(get_codec)):
    return Envelope(data=services.statistics(session, codec))


@router.get("/products", response_model=Envelope[ProductPage])
def get_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sku: Optional[str] = None,
    product_name: Optional[str] = None,
    category_id: Optional[int] = None,
    material_id: Optional[int] = None,
    status: Optional[ProductStatus] = None,
    session: Session = Depends(get_session),
    codec: SKUCodec = Depends(get_codec),
):
    filters = ProductFilters(
        sku=sku,
        product_name=product_name,
        category_id=category_id,
        material_id=material_id,
        status=status,
    )
    return Envelope(data=services.list_products(session, codec, filters, page=page, limit=limit))


@router.get("/products/{product_id}", response_model=Envelope[ProductRead])
def get_product(product_id: int, session: Session = Depends(get_session), codec: SKUCodec = Depends(get_codec)):
    return Envelope(data=services.get_product(session, codec, product_id))


@router.post("/products", status_code=201, response_model=Envelope[ProductCreated])
def create_product(
    payload: ProductCreate, session: Session = Depends(get_session), codec: SKUCodec = Depends(get_codec)
):
    product = services.create_product(session, codec, payload)
    return Envelope(message="Product created successfully", data=ProductCreated(product_id=product.product_id))


@router.put("/products/{product_id}", response_model=Envelope[ProductRead])
def update_product(
    product_id: int,
    payload: ProductUpdate,
    session: Session = Depends(get_session),
    codec: SKUCodec = Depends(get_codec),
):
    services.update_product(session, codec, product_id, payload)
    return Envelope(message="Product updated successfully", data=services.get_product(session, codec, product_id))


@router.delete("/products/{product_id}", response_model=Envelope)
def delete_product(product_id: int, session: Session = Depends(get_session)):
    services.delete_product(session, product_id)
    return Envelope(message="Product deleted successfully")


def _error(status_code: int, code: str, message: str, errors: Optional[list[ErrorDetail]] = None) -> JSONResponse:
    content = {"success": False, "message": message, "error": code}
    if errors is not None:
        content["errors"] = [error.model_dump() for error in errors]
    return JSONResponse(status_code=status_code, content=content)


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def _validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            ErrorDetail(field=".".join(str(part) for part in error["loc"][1:]), message=error["msg"])
            for error in exc.errors()
        ]
        return _error(400, "validation_error", "Validation failed", errors=errors)

    @app.exception_handler(services.ProductNotFoundError)
    async def _not_found(_: Request, exc: services.ProductNotFoundError) -> JSONResponse:
        return _error(404, "not_found", str(exc))

    @app.exception_handler(services.DuplicateSKUError)
    async def _duplicate(_: Request, exc: services.DuplicateSKUError) -> JSONResponse:
        return _error(400, "duplicate_sku", str(exc))

    @app.exception_handler(services.ReferenceNotFoundError)
    async def _reference(_: Request, exc: services.ReferenceNotFoundError) -> JSONResponse:
        return _error(400, "invalid_reference", str(exc), errors=[ErrorDetail(field=exc.field, message=str(exc))])

    @app.exception_handler(ConfigurationError)
    async def _configuration(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("SKU codec is not configured (%s %s): %s", request.method, request.url.path, exc)
        return _error(500, "configuration_error", "SKU encryption is not configured")

    @app.exception_handler(DecryptionError)
    async def _decryption(request: Request, _: DecryptionError) -> JSONResponse:
        logger.error("Stored SKU could not be decrypted (%s %s)", request.method, request.url.path)
        return _error(500, "sku_decryption_failed", "Stored product data could not be decrypted")

    @app.exception_handler(Exception)
    async def _unexpected(_: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error: %s", type(exc).__name__, exc_info=exc)
        return _error(500, "internal_error", "An unexpected error occurred")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level)

    engine = create_db_engine(settings.database_url)
    codec = SKUCodec(KeysetRegistry(settings.keyset_config()))

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if settings.require_key_at_startup:
            codec.check()
        init_db(engine)
        if settings.seed_sample_data:
            with Session(engine) as session:
                seed_sample_data(session, codec)
        yield
        engine.dispose()

    app = FastAPI(title="Catalog Admin API", lifespan=lifespan)
    app.state.engine = engine
    app.state.codec = codec

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_exception_handlers(app)
    app.include_router(router)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("catalog_app.main:create_app", factory=True, host="0.0.0.0", port=5000)
