import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from src.seatledger import models
from src.seatledger.api.api import api_router
from src.seatledger.core.database import engine
from src.seatledger.core.errors import BillingError
from src.seatledger.services.stripe_processor import STRIPE_SECRET_KEY, StripeProcessor

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize database tables
logger.info("Initializing database tables...")
try:
    existing_tables = inspect(engine).get_table_names()

    models.Base.metadata.create_all(bind=engine)

    final_tables = inspect(engine).get_table_names()
    for table in models.Base.metadata.tables:
        if table in final_tables:
            if table not in existing_tables:
                logger.info(f"✓ Table created: {table}")
            else:
                logger.info(f"✓ Table exists: {table}")
        else:
            logger.warning(f"✗ Table missing: {table}")

    logger.info("Database initialization completed successfully")
except Exception as e:
    logger.error(f"Error initializing database: {str(e)}")
    raise

app = FastAPI(title="SeatLedger API")

# Built once and shared by every request through `get_processor`
if STRIPE_SECRET_KEY:
    app.state.processor = StripeProcessor()
else:
    logger.warning("STRIPE_SECRET_KEY is not set; billing endpoints will return 503")
    app.state.processor = None

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingError)
async def billing_exception_handler(request: Request, exc: BillingError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}",
    )
    content = {"error": exc.__class__.__name__, "message": exc.message}
    if exc.context:
        content["details"] = exc.context
    return JSONResponse(status_code=exc.status_code, content=content)


# Custom validation error handler to log detailed errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error on {request.method} {request.url.path}")

    error_messages = []
    for error in exc.errors():
        logger.error(
            f"Field: {error.get('loc')}, Error: {error.get('msg')}, Type: {error.get('type')}"
        )
        field = " -> ".join(str(loc) for loc in error.get("loc", []))
        msg = error.get("msg", "Validation error")
        error_messages.append(f"{field}: {msg}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "; ".join(error_messages),
            "details": error_messages,
        },
    )


app.include_router(api_router)
