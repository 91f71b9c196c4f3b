import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from aggregation import BudgetEvaluation, PeriodSummary
from database import SessionLocal, init_db
from errors import NotFoundError
from models import (
    Account,
    Budget,
    Category,
    Profile,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from periods import custom_period
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountRenameIn,
    BudgetIn,
    CategoryIn,
    CategoryUpdateIn,
    ProfileUpdateIn,
    RecurringTransactionIn,
    SignInIn,
    SignUpIn,
    TransactionIn,
)
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    IdentityService,
    ProfileService,
    RecurringTransactionService,
    ReportService,
    TransactionFilters,
    TransactionService,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Personal Budget")
bearer = HTTPBearer(auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[str]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials


def current_owner(
    token: Optional[str] = Depends(bearer_token), db: Session = Depends(get_db)
) -> int:
    user_id = IdentityService(db).current_user_id(token)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def parse_date_param(raw: Optional[str], name: str) -> Optional[date]:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name} date") from exc


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    txn_type = None
    if params.get("type"):
        try:
            txn_type = TransactionType(params["type"])
        except ValueError:
            txn_type = None
    account_id = None
    category_id = None
    try:
        if params.get("account"):
            account_id = int(params["account"])
        if params.get("category"):
            category_id = int(params["category"])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid id filter") from exc

    period = None
    start = parse_date_param(params.get("start"), "start")
    end = parse_date_param(params.get("end"), "end")
    if start or end:
        try:
            period = custom_period(start, end)
        except ValueError as exc:
            raise http_error(exc) from exc
    return TransactionFilters(
        type=txn_type,
        query=params.get("q") or None,
        account_id=account_id,
        category_id=category_id,
        period=period,
    )


def account_out(account: Account) -> dict:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "balance_cents": account.balance_cents,
        "currency_code": account.currency_code,
        "is_active": account.is_active,
    }


def category_out(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "icon": category.icon,
        "color": category.color,
        "is_system": category.is_system,
    }


def transaction_out(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "category_id": txn.category_id,
        "category": txn.category.name if txn.category else None,
        "amount_cents": txn.amount_cents,
        "type": txn.type.value,
        "description": txn.description,
        "date": txn.date.isoformat(),
        "notes": txn.notes,
        "recurring_transaction_id": txn.recurring_transaction_id,
    }


def profile_out(profile: Profile) -> dict:
    return {
        "full_name": profile.full_name,
        "currency_code": profile.currency_code,
    }


def budget_out(budget: Budget, evaluation: Optional[BudgetEvaluation] = None) -> dict:
    data = {
        "id": budget.id,
        "category_id": budget.category_id,
        "category": budget.category.name if budget.category else None,
        "amount_cents": budget.amount_cents,
        "period": budget.period.value,
        "start_date": budget.start_date.isoformat(),
        "end_date": budget.end_date.isoformat() if budget.end_date else None,
    }
    if evaluation is not None:
        data.update(
            {
                "spent_cents": evaluation.spent_cents,
                "remaining_cents": evaluation.remaining_cents,
                "percentage": evaluation.percentage,
                "status": evaluation.status.value,
            }
        )
    return data


def recurring_out(rule: RecurringTransaction) -> dict:
    return {
        "id": rule.id,
        "account_id": rule.account_id,
        "category_id": rule.category_id,
        "amount_cents": rule.amount_cents,
        "type": rule.type.value,
        "description": rule.description,
        "frequency": rule.frequency.value,
        "start_date": rule.start_date.isoformat(),
        "end_date": rule.end_date.isoformat() if rule.end_date else None,
        "next_occurrence": rule.next_occurrence.isoformat(),
        "is_active": rule.is_active,
    }


def summary_out(summary: PeriodSummary) -> dict:
    data = {
        "period": summary.period.slug,
        "start": summary.period.start.isoformat(),
        "end": summary.period.end.isoformat(),
        "total_income_cents": summary.total_income_cents,
        "total_expense_cents": summary.total_expense_cents,
        "net_cents": summary.net_cents,
        "savings_rate": summary.savings_rate,
        "categories": [
            {
                "name": item.name,
                "color": item.color,
                "amount_cents": item.amount_cents,
                "percentage": item.percentage,
            }
            for item in summary.categories
        ],
    }
    if summary.monthly is not None:
        data["monthly"] = [
            {
                "month": bucket.label,
                "income_cents": bucket.income_cents,
                "expense_cents": bucket.expense_cents,
            }
            for bucket in summary.monthly
        ]
    return data


@app.post("/auth/sign-up", status_code=201)
def sign_up(data: SignUpIn, db: Session = Depends(get_db)):
    identity = IdentityService(db)
    try:
        user = identity.sign_up(data)
        token = identity.sign_in(SignInIn(email=data.email, password=data.password))
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"user_id": user.id, "token": token}


@app.post("/auth/sign-in")
def sign_in(data: SignInIn, db: Session = Depends(get_db)):
    try:
        token = IdentityService(db).sign_in(data)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return {"token": token}


@app.post("/auth/sign-out", status_code=204)
def sign_out(
    token: Optional[str] = Depends(bearer_token), db: Session = Depends(get_db)
):
    if token:
        IdentityService(db).sign_out(token)
    return Response(status_code=204)


@app.get("/profile")
def get_profile(owner: int = Depends(current_owner), db: Session = Depends(get_db)):
    try:
        return profile_out(ProfileService(db, owner).get())
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/profile")
def update_profile(
    data: ProfileUpdateIn,
    owner: int = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        return profile_out(ProfileService(db, owner).update(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/accounts")
def list_accounts(
    request: Request, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    include_inactive = request.query_params.get("all") in {"1", "true"}
    service = AccountService(db, owner)
    return {
        "items": [account_out(a) for a in service.list_all(include_inactive)],
        "total_balance_cents": service.total_balance(),
    }


@app.post("/accounts", status_code=201)
def create_account(
    data: AccountIn, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    return account_out(AccountService(db, owner).create(data))


@app.patch("/accounts/{account_id}")
def rename_account(
    account_id: int,
    data: AccountRenameIn,
    owner: int = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        return account_out(AccountService(db, owner).rename(account_id, data.name))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/accounts/{account_id}/deactivate")
def deactivate_account(
    account_id: int, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        return account_out(AccountService(db, owner).deactivate(account_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/accounts/{account_id}/reactivate")
def reactivate_account(
    account_id: int, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        return account_out(AccountService(db, owner).reactivate(account_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/accounts/{account_id}/reconcile")
def reconcile_account(
    account_id: int, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        balance = AccountService(db, owner).reconcile(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"id": account_id, "balance_cents": balance}


@app.delete("/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        AccountService(db, owner).delete(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/categories")
def list_categories(
    request: Request, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    txn_type = None
    if request.query_params.get("type"):
        try:
            txn_type = TransactionType(request.query_params["type"])
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid type") from exc
    return [category_out(c) for c in CategoryService(db, owner).list_all(txn_type)]


@app.post("/categories", status_code=201)
def create_category(
    data: CategoryIn, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        return category_out(CategoryService(db, owner).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryUpdateIn,
    owner: int = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        return category_out(CategoryService(db, owner).update(category_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        CategoryService(db, owner).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/transactions")
def list_transactions(
    request: Request, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    filters = filters_from_request(request)
    try:
        page = max(int(request.query_params.get("page", "1")), 1)
        limit = min(max(int(request.query_params.get("limit", "50")), 1), 100)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid paging") from exc
    offset = (page - 1) * limit
    items = TransactionService(db, owner).list(filters, limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [transaction_out(t) for t in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    owner: int = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, owner).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.put("/transactions/{transaction_id}")
def replace_transaction(
    transaction_id: int,
    data: TransactionIn,
    owner: int = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, owner).replace(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    owner: int = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, owner).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/budgets")
def list_budgets(owner: int = Depends(current_owner), db: Session = Depends(get_db)):
    evaluated = BudgetService(db, owner).evaluate_all()
    return [budget_out(budget, evaluation) for budget, evaluation in evaluated]


@app.post("/budgets", status_code=201)
def create_budget(
    data: BudgetIn, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        budget = BudgetService(db, owner).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_out(budget)


@app.delete("/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        BudgetService(db, owner).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/reports/{selector}")
def report(
    selector: str, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        summary = ReportService(db, owner).summary(selector)
    except ValueError as exc:
        raise http_error(exc) from exc
    return summary_out(summary)


@app.get("/dashboard")
def dashboard(owner: int = Depends(current_owner), db: Session = Depends(get_db)):
    data = ReportService(db, owner).dashboard()
    return {
        "total_balance_cents": data.total_balance_cents,
        "month_income_cents": data.month_income_cents,
        "month_expense_cents": data.month_expense_cents,
        "recent": [transaction_out(t) for t in data.recent],
    }


@app.get("/recurring")
def list_recurring(owner: int = Depends(current_owner), db: Session = Depends(get_db)):
    return [recurring_out(r) for r in RecurringTransactionService(db, owner).list()]


@app.post("/recurring", status_code=201)
def create_recurring(
    data: RecurringTransactionIn,
    owner: int = Depends(current_owner),
    db: Session = Depends(get_db),
):
    service = RecurringTransactionService(db, owner)
    try:
        rule = service.create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    posted = service.catch_up_all()
    logger.info(f"recurring_created: rule={rule.id} occurrences_posted={posted}")
    db.refresh(rule)
    return recurring_out(rule)


@app.post("/recurring/{rule_id}/deactivate")
def deactivate_recurring(
    rule_id: int, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    service = RecurringTransactionService(db, owner)
    try:
        service.deactivate(rule_id)
        return recurring_out(service.get(rule_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/recurring/{rule_id}", status_code=204)
def delete_recurring(
    rule_id: int, owner: int = Depends(current_owner), db: Session = Depends(get_db)
):
    try:
        RecurringTransactionService(db, owner).delete(rule_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
