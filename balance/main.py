import logging
from contextlib import asynccontextmanager
from datetime import date, datetime

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from balance.config import Settings
from balance.logging_config import configure_logging
from balance.recurring_schedule import (
    SUPPORTED_FREQUENCIES,
    SUPPORTED_KINDS,
    RecurringRule,
    next_occurrence,
    normalize_frequency,
    occurrences_between,
)
from balance.rule_store import RecurringRuleService, RuleChange
from balance.storage import GeneratedTransaction, RecurringRuleRepository, build_engine
from balance.upcoming_payments import (
    monthly_cash_flow,
    monthly_total,
    relative_day_label,
    summarize,
    upcoming_payments,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class RecurringRulePayload(BaseModel):
    name: str
    amount: int
    frequency: str = "monthly"
    start_date: date
    category: str | None = None
    kind: str = "expense"
    end_date: date | None = None
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "RecurringRulePayload") -> "RecurringRulePayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Recurring rule name required.")
        if payload.amount < 0:
            raise ValueError("Recurring rule amount must not be negative.")
        normalized = normalize_frequency(payload.frequency or "monthly")
        if normalized not in SUPPORTED_FREQUENCIES:
            raise ValueError("Only weekly, biweekly, monthly, or yearly rules are supported.")
        payload.frequency = normalized
        kind = (payload.kind or "expense").strip().lower()
        if kind not in SUPPORTED_KINDS:
            raise ValueError("Invalid recurring rule kind.")
        payload.kind = kind
        if payload.end_date is not None and payload.end_date < payload.start_date:
            raise ValueError("End date must be on or after start date.")
        payload.category = payload.category.strip() if payload.category else None
        payload.notes = payload.notes.strip() if payload.notes else None
        return payload


class RecurringRuleResponse(BaseModel):
    id: int
    name: str
    amount: int
    frequency: str
    start_date: date
    category: str | None = None
    kind: str
    is_active: bool
    end_date: date | None = None
    last_generated: date | None = None
    notes: str | None = None


class ActivePayload(BaseModel):
    is_active: bool


class NextOccurrenceResponse(BaseModel):
    rule_id: int
    next_date: date | None = None


class UpcomingPaymentEntry(BaseModel):
    rule_id: int
    name: str
    amount: int
    category: str | None = None
    frequency: str
    date: date
    label: str


class UpcomingSummaryResponse(BaseModel):
    count: int
    total_amount: int
    earliest_date: date | None = None


class UpcomingPaymentsResponse(BaseModel):
    as_of: date
    horizon_days: int
    payments: list[UpcomingPaymentEntry]
    summary: UpcomingSummaryResponse


class RecurringSummaryResponse(BaseModel):
    as_of: date
    active_count: int
    monthly_total: int
    monthly_income: int
    monthly_expense: int
    upcoming: UpcomingSummaryResponse


class RecurringProjectionEntry(BaseModel):
    date: date
    amount: int
    kind: str
    rule_id: int
    name: str


class TransactionResponse(BaseModel):
    id: int
    rule_id: int | None = None
    amount: int
    kind: str
    category: str | None = None
    date: date
    notes: str | None = None
    created_at: datetime | None = None


class GenerateResponse(BaseModel):
    as_of: date
    generated_count: int
    transactions: list[TransactionResponse]


def get_service(request: Request) -> RecurringRuleService:
    return request.app.state.rule_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_owner_id(x_user_id: str | None = Header(None, alias="x-user-id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity.")
    return x_user_id.strip()


def rule_response(rule: RecurringRule) -> RecurringRuleResponse:
    return RecurringRuleResponse(
        id=rule.id,
        name=rule.name,
        amount=rule.amount,
        frequency=rule.frequency,
        start_date=rule.start_date,
        category=rule.category,
        kind=rule.kind,
        is_active=rule.is_active,
        end_date=rule.end_date,
        last_generated=rule.last_generated,
        notes=rule.notes,
    )


def transaction_response(txn: GeneratedTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=txn.id,
        rule_id=txn.rule_id,
        amount=txn.amount,
        kind=txn.kind,
        category=txn.category,
        date=txn.date,
        notes=txn.notes,
        created_at=txn.created_at,
    )


def validated_values(payload: RecurringRulePayload) -> dict:
    try:
        payload = RecurringRulePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return payload.model_dump()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/recurring-rules", response_model=list[RecurringRuleResponse])
def list_recurring_rules(
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> list[RecurringRuleResponse]:
    return [rule_response(rule) for rule in service.list_rules(owner_id)]


@router.post("/recurring-rules", response_model=RecurringRuleResponse)
def create_recurring_rule(
    payload: RecurringRulePayload,
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> RecurringRuleResponse:
    values = validated_values(payload)
    return rule_response(service.create_rule(owner_id, values))


@router.get("/recurring-rules/{rule_id}", response_model=RecurringRuleResponse)
def get_recurring_rule(
    rule_id: int,
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> RecurringRuleResponse:
    rule = service.get_rule(owner_id, rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Recurring rule not found.")
    return rule_response(rule)


@router.put("/recurring-rules/{rule_id}", response_model=RecurringRuleResponse)
def update_recurring_rule(
    rule_id: int,
    payload: RecurringRulePayload,
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> RecurringRuleResponse:
    values = validated_values(payload)
    rule = service.update_rule(owner_id, rule_id, values)
    if rule is None:
        raise HTTPException(status_code=404, detail="Recurring rule not found.")
    return rule_response(rule)


@router.patch("/recurring-rules/{rule_id}/active", response_model=RecurringRuleResponse)
def set_recurring_rule_active(
    rule_id: int,
    payload: ActivePayload,
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> RecurringRuleResponse:
    rule = service.set_active(owner_id, rule_id, payload.is_active)
    if rule is None:
        raise HTTPException(status_code=404, detail="Recurring rule not found.")
    return rule_response(rule)


@router.delete("/recurring-rules/{rule_id}")
def delete_recurring_rule(
    rule_id: int,
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> dict:
    if not service.delete_rule(owner_id, rule_id):
        raise HTTPException(status_code=404, detail="Recurring rule not found.")
    return {"status": "deleted"}


@router.get("/recurring-rules/{rule_id}/next-occurrence", response_model=NextOccurrenceResponse)
def recurring_rule_next_occurrence(
    rule_id: int,
    as_of: date | None = Query(None),
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> NextOccurrenceResponse:
    rule = service.get_rule(owner_id, rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Recurring rule not found.")
    return NextOccurrenceResponse(
        rule_id=rule.id,
        next_date=next_occurrence(rule, as_of or date.today()),
    )


@router.get("/recurring/upcoming", response_model=UpcomingPaymentsResponse)
def recurring_upcoming(
    as_of: date | None = Query(None),
    horizon_days: int | None = Query(None, ge=0),
    limit: int | None = Query(None, ge=0),
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
    settings: Settings = Depends(get_settings),
) -> UpcomingPaymentsResponse:
    as_of = as_of or date.today()
    horizon = settings.upcoming_horizon_days if horizon_days is None else horizon_days
    cap = settings.upcoming_limit if limit is None else limit

    payments = upcoming_payments(service.list_rules(owner_id), as_of, horizon, cap)
    summary = summarize(payments)
    return UpcomingPaymentsResponse(
        as_of=as_of,
        horizon_days=horizon,
        payments=[
            UpcomingPaymentEntry(
                rule_id=payment.rule.id,
                name=payment.rule.name,
                amount=payment.rule.amount,
                category=payment.rule.category,
                frequency=payment.rule.frequency,
                date=payment.date,
                label=relative_day_label(payment.date, as_of, horizon),
            )
            for payment in payments
        ],
        summary=UpcomingSummaryResponse(
            count=summary.count,
            total_amount=summary.total_amount,
            earliest_date=summary.earliest_date,
        ),
    )


@router.get("/recurring/summary", response_model=RecurringSummaryResponse)
def recurring_summary(
    as_of: date | None = Query(None),
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
    settings: Settings = Depends(get_settings),
) -> RecurringSummaryResponse:
    as_of = as_of or date.today()
    rules = service.list_rules(owner_id)
    cash_flow = monthly_cash_flow(rules)
    summary = summarize(
        upcoming_payments(
            rules, as_of, settings.upcoming_horizon_days, settings.upcoming_limit
        )
    )
    return RecurringSummaryResponse(
        as_of=as_of,
        active_count=sum(1 for rule in rules if rule.is_active),
        monthly_total=monthly_total(rules),
        monthly_income=cash_flow.income,
        monthly_expense=cash_flow.expense,
        upcoming=UpcomingSummaryResponse(
            count=summary.count,
            total_amount=summary.total_amount,
            earliest_date=summary.earliest_date,
        ),
    )


@router.get("/recurring/projections", response_model=list[RecurringProjectionEntry])
def recurring_projections(
    start_date: date = Query(...),
    end_date: date = Query(...),
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> list[RecurringProjectionEntry]:
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="Start date must be on or before end date.")

    projections: list[RecurringProjectionEntry] = []
    for rule in service.list_rules(owner_id):
        if not rule.is_active:
            continue
        projections.extend(
            RecurringProjectionEntry(
                date=occurrence,
                amount=rule.amount,
                kind=rule.kind,
                rule_id=rule.id,
                name=rule.name,
            )
            for occurrence in occurrences_between(rule, start_date, end_date)
        )

    projections.sort(key=lambda entry: (entry.date, entry.rule_id))
    return projections


@router.post("/recurring/generate", response_model=GenerateResponse)
def generate_recurring_transactions(
    as_of: date | None = Query(None),
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> GenerateResponse:
    as_of = as_of or date.today()
    try:
        generated = service.generate_due_transactions(owner_id, as_of)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409, detail="Recurring transactions are already being generated."
        ) from exc
    return GenerateResponse(
        as_of=as_of,
        generated_count=len(generated),
        transactions=[transaction_response(txn) for txn in generated],
    )


@router.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    owner_id: str = Depends(get_owner_id),
    service: RecurringRuleService = Depends(get_service),
) -> list[TransactionResponse]:
    return [transaction_response(txn) for txn in service.list_transactions(owner_id)]


def log_rule_change(change: RuleChange) -> None:
    logger.debug(
        "Recurring rule %s %s (owner %s)", change.rule.id, change.action, change.owner_id
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = build_engine(settings.database_url)
    repository = RecurringRuleRepository(engine)
    service = RecurringRuleService(repository)
    service.subscribe(log_rule_change)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        repository.create_schema()
        logger.info("Balance backend ready (database %s)", engine.url.render_as_string())
        yield
        engine.dispose()

    app = FastAPI(title="Balance", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.rule_service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
