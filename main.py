import logging
import tomllib
from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import bearer_token, create_session_token, read_session_token
from budget_progress import BudgetProgress
from database import SessionLocal
from models import Account, Budget, Transaction, TransactionType, TransferEntry, User
from periods import local_today, resolve_range
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    BudgetUpdate,
    ForgotPasswordIn,
    LoginIn,
    PasswordChangeIn,
    ProfileUpdate,
    ResetPasswordIn,
    SignupIn,
    TransactionIn,
    TransactionUpdate,
    TransferIn,
)
from services import (
    AccountService,
    AuthError,
    BudgetService,
    Conflict,
    DashboardService,
    NotFound,
    TransactionFilters,
    TransactionService,
    UserService,
    cents_to_amount,
)

app = FastAPI(title="Finance Tracker API")

RESET_REQUESTED_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent."
)


def _load_app_version() -> str:
    try:
        with open(Path(__file__).with_name("pyproject.toml"), "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"message": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        loc = [str(part) for part in first.get("loc", ()) if part != "body"]
        message = f"{loc[-1]}: {first['msg']}" if loc else str(first["msg"])
    return JSONResponse({"message": message}, status_code=400)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logging.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse({"message": "Server error"}, status_code=500)


def current_user_id(request: Request, db: Session = Depends(get_db)) -> int:
    token = bearer_token(request.headers.get("Authorization"))
    if not token:
        raise HTTPException(
            status_code=401,
            detail="Not authorized, no token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = read_session_token(token)
    if user_id is None or db.get(User, user_id) is None:
        raise HTTPException(
            status_code=401,
            detail="Not authorized, token failed",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def parse_date_param(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def filters_from_request(request: Request) -> TransactionFilters:
    type_param = request.query_params.get("type")
    txn_type = None
    if type_param:
        try:
            txn_type = TransactionType(type_param)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail="Type must be income or expense"
            ) from exc
    return TransactionFilters(
        type=txn_type,
        category=request.query_params.get("category") or None,
        start=parse_date_param(request.query_params.get("startDate"), "startDate"),
        end=parse_date_param(request.query_params.get("endDate"), "endDate"),
    )


def user_json(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "address": user.address,
        "profilePicture": user.profile_picture,
        "createdAt": user.created_at.isoformat(),
    }


def auth_json(user: User) -> dict[str, object]:
    return {
        "token": create_session_token(user.id),
        "user": {"id": user.id, "name": user.name, "email": user.email},
    }


def account_json(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "balance": cents_to_amount(account.balance_cents),
        "color": account.color,
        "isDefault": account.is_default,
        "createdAt": account.created_at.isoformat(),
    }


def transfer_json(entry: TransferEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "from": entry.from_account_id,
        "to": entry.to_account_id,
        "fromName": entry.from_account_name,
        "toName": entry.to_account_name,
        "amount": cents_to_amount(entry.amount_cents),
        "createdAt": entry.created_at.isoformat(),
    }


def transaction_json(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "category": txn.category,
        "subcategory": txn.subcategory,
        "amount": cents_to_amount(txn.amount_cents),
        "paymentMode": txn.payment_mode,
        "payee": txn.payee,
        "account": txn.account,
        "date": txn.date.isoformat(),
        "time": txn.time,
        "remarks": txn.remarks,
        "attachment": txn.attachment,
        "createdAt": txn.created_at.isoformat(),
    }


def budget_json(
    budget: Budget, progress: Optional[BudgetProgress] = None
) -> dict[str, object]:
    data: dict[str, object] = {
        "id": budget.id,
        "category": budget.category,
        "amount": cents_to_amount(budget.amount_cents),
        "period": budget.period.value,
        "startDate": budget.start_date.isoformat(),
        "endDate": budget.end_date.isoformat() if budget.end_date else None,
        "alerts": {
            "enabled": budget.alerts_enabled,
            "threshold": budget.alert_threshold,
        },
        "isActive": budget.is_active,
        "createdAt": budget.created_at.isoformat(),
        "updatedAt": budget.updated_at.isoformat(),
    }
    if progress is not None:
        data.update(
            {
                "spent": cents_to_amount(progress.spent_cents),
                "remaining": cents_to_amount(progress.remaining_cents),
                "percentage": progress.percentage,
                "displayPercentage": progress.display_percentage,
                "shouldAlert": progress.should_alert,
            }
        )
    return data


@app.get("/api/health")
def health():
    return {"status": "OK", "version": APP_VERSION}


@app.post("/api/auth/signup", status_code=201)
def signup(data: SignupIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).signup(data)
    except Conflict as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return auth_json(user)


@app.post("/api/auth/login")
def login(data: LoginIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(data)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return auth_json(user)


@app.post("/api/auth/forgot-password")
def forgot_password(data: ForgotPasswordIn, db: Session = Depends(get_db)):
    UserService(db).request_password_reset(data.email)
    return {"message": RESET_REQUESTED_MESSAGE}


@app.post("/api/auth/reset-password/{token}")
def reset_password(token: str, data: ResetPasswordIn, db: Session = Depends(get_db)):
    try:
        UserService(db).reset_password(token, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"message": "Password reset successful"}


@app.get("/api/user/profile")
def get_profile(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return user_json(UserService(db).get(user_id))


@app.put("/api/user/profile")
def update_profile(
    data: ProfileUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        user = UserService(db).update_profile(user_id, data)
    except Conflict as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return user_json(user)


@app.put("/api/user/password")
def change_password(
    data: PasswordChangeIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        UserService(db).change_password(user_id, data)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return {"message": "Password updated successfully"}


@app.get("/api/accounts")
def list_accounts(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return [account_json(acc) for acc in AccountService(db, user_id).list_all()]


@app.post("/api/accounts", status_code=201)
def create_account(
    data: AccountIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return account_json(AccountService(db, user_id).create(data))


@app.post("/api/accounts/transfer")
def transfer_funds(
    data: TransferIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        source, target = AccountService(db, user_id).transfer(data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "message": "Transfer successful",
        "fromAccount": account_json(source),
        "toAccount": account_json(target),
    }


@app.get("/api/accounts/transfers")
def list_transfers(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    entries = AccountService(db, user_id).list_transfers()
    return [transfer_json(entry) for entry in entries]


@app.get("/api/accounts/{account_id}")
def get_account(
    account_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user_id).get(account_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return account_json(account)


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    data: AccountUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user_id).update(account_id, data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return account_json(account)


@app.delete("/api/accounts/{account_id}")
def delete_account(
    account_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        AccountService(db, user_id).delete(account_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Account deleted successfully"}


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    try:
        limit = int(request.query_params.get("limit", "50"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid limit") from exc
    limit = min(max(limit, 1), 500)
    items = TransactionService(db, user_id).list(filters, limit=limit)
    return [transaction_json(txn) for txn in items]


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return transaction_json(TransactionService(db, user_id).create(data))


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return transaction_json(txn)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return transaction_json(txn)


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Transaction deleted successfully"}


@app.get("/api/budgets")
def list_budgets(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    raw = request.query_params.get("isActive")
    is_active = None if raw is None else raw == "true"
    rows = BudgetService(db, user_id).list_with_progress(is_active=is_active)
    return [budget_json(budget, progress) for budget, progress in rows]


@app.post("/api/budgets", status_code=201)
def create_budget(
    data: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return budget_json(BudgetService(db, user_id).create(data))


@app.get("/api/budgets/alerts/check")
def check_budget_alerts(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    alerts = BudgetService(db, user_id).check_alerts()
    return {
        "alerts": [
            {
                "budgetId": alert.budget.id,
                "category": alert.budget.category,
                "budgetAmount": cents_to_amount(alert.budget.amount_cents),
                "spent": cents_to_amount(alert.progress.spent_cents),
                "remaining": cents_to_amount(alert.progress.remaining_cents),
                "percentage": alert.progress.percentage,
                "message": alert.message,
            }
            for alert in alerts
        ]
    }


@app.get("/api/budgets/{budget_id}")
def get_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        budget, progress = BudgetService(db, user_id).get_with_progress(budget_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return budget_json(budget, progress)


@app.put("/api/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        budget = BudgetService(db, user_id).update(budget_id, data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return budget_json(budget)


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Budget deleted successfully"}


@app.get("/api/dashboard/stats")
def dashboard_stats(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        period = resolve_range(
            request.query_params.get("startDate"),
            request.query_params.get("endDate"),
            today=local_today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DashboardService(db, user_id).stats(period)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
