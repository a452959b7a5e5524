import logging
import math
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import export_transactions
from database import SessionLocal, init_db, session_scope
from errors import AppError, AuthError, ValidationError
from models import TransactionType
from periods import Period, parse_bound, resolve_period
from schemas import (
    AuthOut,
    CategoryIn,
    CategoryOut,
    CategorySlice,
    DashboardStatsOut,
    LoginIn,
    MessageOut,
    RefreshIn,
    RegisterIn,
    SummaryStatsOut,
    TokenPairOut,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionUpdate,
    TrendPoint,
    UserOut,
)
from security import authenticate
from services import (
    AuthService,
    CategoryService,
    MetricsService,
    TransactionFilters,
    TransactionService,
    seed_default_categories,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Tracker API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


bearer_scheme = HTTPBearer(auto_error=False)


def current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> int:
    if credentials is None:
        raise AuthError("No token, authorization denied")
    return authenticate(credentials.credentials)


@app.on_event("startup")
def startup_event():
    init_db()
    with session_scope() as session:
        seed_default_categories(session)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    body: dict[str, object] = {"message": exc.message}
    if isinstance(exc, ValidationError) and exc.errors:
        body["errors"] = exc.errors
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = []
    for err in exc.errors():
        field = ".".join(
            str(part) for part in err["loc"] if part not in ("body", "query", "path")
        )
        errors.append(
            {"field": field, "message": err["msg"].removeprefix("Value error, ")}
        )
    return JSONResponse(
        status_code=400, content={"message": "Validation failed", "errors": errors}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(
        status_code=500, content={"message": "Server error", "error": str(exc)}
    )


def period_from_query(
    period: str = "month",
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
) -> Period:
    return resolve_period(period, start_date, end_date)


def filters_from_query(
    type: Optional[str] = None,
    category: Optional[int] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    search: Optional[str] = None,
) -> TransactionFilters:
    # unrecognised type values are ignored, not rejected
    known_types = {t.value for t in TransactionType}
    return TransactionFilters(
        type=TransactionType(type) if type in known_types else None,
        category_id=category,
        query=search or None,
        start=parse_bound(start_date) if start_date else None,
        end=parse_bound(end_date, end=True) if end_date else None,
    )


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


# --- auth ---


@app.post("/auth/register", response_model=AuthOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    user, tokens = AuthService(db).register(payload)
    return AuthOut(
        message="User registered successfully",
        user=UserOut.model_validate(user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@app.post("/auth/login", response_model=AuthOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user, tokens = AuthService(db).login(payload)
    return AuthOut(
        message="Login successful",
        user=UserOut.model_validate(user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@app.post("/auth/refresh", response_model=TokenPairOut)
def refresh(payload: Optional[RefreshIn] = None, db: Session = Depends(get_db)):
    tokens = AuthService(db).refresh(payload.refresh_token if payload else None)
    return TokenPairOut(
        access_token=tokens.access_token, refresh_token=tokens.refresh_token
    )


@app.post("/auth/logout", response_model=MessageOut)
def logout(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    AuthService(db).logout(user_id)
    return MessageOut(message="Logout successful")


@app.get("/auth/me", response_model=UserOut)
def me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return AuthService(db).get_user(user_id)


# --- categories ---


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return CategoryService(db, user_id).list_all()


@app.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).create(payload)


@app.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).update(category_id, payload)


@app.delete("/categories/{category_id}", response_model=MessageOut)
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    CategoryService(db, user_id).delete(category_id)
    return MessageOut(message="Category deleted successfully")


# --- transactions ---


@app.get("/transactions", response_model=TransactionPage)
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    filters: TransactionFilters = Depends(filters_from_query),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    items, total = TransactionService(db, user_id).list(filters, page=page, limit=limit)
    return TransactionPage(
        transactions=[TransactionOut.model_validate(txn) for txn in items],
        total_pages=math.ceil(total / limit),
        current_page=page,
        total=total,
    )


@app.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).create(payload)


@app.get("/transactions/summary/stats", response_model=SummaryStatsOut)
def transaction_summary(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    start = end = None
    if start_date and end_date:
        start = parse_bound(start_date)
        end = parse_bound(end_date, end=True)
    return MetricsService(db, user_id).totals(start, end)


@app.get("/transactions/export.csv")
def export_transactions_endpoint(
    filters: TransactionFilters = Depends(filters_from_query),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    transactions = TransactionService(db, user_id).all_matching(filters)
    csv_text = export_transactions(transactions)
    filename = f"transactions-{date.today().isoformat()}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).get(transaction_id)


@app.put("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).update(transaction_id, payload)


@app.delete("/transactions/{transaction_id}", response_model=MessageOut)
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    TransactionService(db, user_id).delete(transaction_id)
    return MessageOut(message="Transaction deleted successfully")


# --- dashboard ---


@app.get("/dashboard/stats", response_model=DashboardStatsOut)
def dashboard_stats(
    period: Period = Depends(period_from_query),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return MetricsService(db, user_id).summary(period)


@app.get("/dashboard/charts/categories", response_model=list[CategorySlice])
def dashboard_category_chart(
    type: TransactionType = TransactionType.expense,
    period: Period = Depends(period_from_query),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return MetricsService(db, user_id).category_breakdown(period, type)


@app.get("/dashboard/charts/trend", response_model=list[TrendPoint])
def dashboard_trend_chart(
    period: Period = Depends(period_from_query),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return MetricsService(db, user_id).trend(period)


@app.get("/dashboard/recent", response_model=list[TransactionOut])
def dashboard_recent(
    limit: int = Query(5, ge=1, le=50),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).recent(limit)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
