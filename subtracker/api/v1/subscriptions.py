"""
Subscription API endpoints
"""
from datetime import date, time
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, field_validator

from subtracker.api.deps import get_store
from subtracker.application.subscriptions import (
    UPCOMING_WINDOW_DAYS,
    CategoryTotals,
    SubscriptionStore,
)
from subtracker.domain.subscription import (
    BILLING_CYCLE_MONTHLY,
    CATEGORY_OTHER,
    DEFAULT_COLOR,
    DEFAULT_REMINDER_TIME,
    REPETITION_MONTHLY,
    Subscription,
    SubscriptionValidationError,
)
from subtracker.utils.money import quantize_money
from subtracker.utils.validation import validate_and_normalize_price


router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


# === Request/Response models ===

class SubscriptionRequest(BaseModel):
    name: str
    price: str = "0"  # "15,99" и "15.99" принимаются
    billing_cycle: str = BILLING_CYCLE_MONTHLY
    category: str = CATEGORY_OTHER
    next_billing_date: date | None = None
    is_active: bool = True
    notes: str = ""
    color: str = DEFAULT_COLOR
    repetition_type: str = REPETITION_MONTHLY
    is_paid_for_current_month: bool = False
    reminder_time: time = DEFAULT_REMINDER_TIME

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: str) -> str:
        """Валидация и нормализация цены (точка/запятая, макс 2 знака)"""
        return validate_and_normalize_price(v, max_decimal_places=2)

    def to_domain(self, sub_id: UUID | None = None, today: date | None = None) -> Subscription:
        fields = dict(
            name=self.name,
            price=Decimal(self.price),
            billing_cycle=self.billing_cycle,
            category=self.category,
            next_billing_date=self.next_billing_date or today,
            is_active=self.is_active,
            notes=self.notes,
            color=self.color,
            repetition_type=self.repetition_type,
            is_paid_for_current_month=self.is_paid_for_current_month,
            reminder_time=self.reminder_time,
        )
        if sub_id is not None:
            fields["id"] = sub_id
        return Subscription(**fields)


class SubscriptionResponse(BaseModel):
    id: UUID
    name: str
    price: str  # Decimal as string
    billing_cycle: str
    category: str
    next_billing_date: date
    is_active: bool
    notes: str
    color: str
    repetition_type: str
    is_paid_for_current_month: bool
    reminder_time: time
    monthly_price: str
    current_month_price: str
    days_until_next_billing: int
    days_until_renewal: int
    is_overdue: bool


class CategoryTotalsResponse(BaseModel):
    category: str
    count: int
    monthly: str
    current_month: str
    unpaid_monthly: str
    unpaid_current_month: str


class SummaryResponse(BaseModel):
    active_count: int
    total_monthly: str
    total_yearly: str
    total_current_month: str
    total_current_month_unpaid: str
    total_unpaid_monthly: str
    categories: list[CategoryTotalsResponse]


class SweepResponse(BaseModel):
    renewed: list[UUID]
    reset: list[UUID]


# === Helpers ===

def _money(value: Decimal) -> str:
    return str(quantize_money(value))


def _to_response(sub: Subscription, store: SubscriptionStore) -> SubscriptionResponse:
    cal = store.calendar
    return SubscriptionResponse(
        id=sub.id,
        name=sub.name,
        price=str(sub.price),
        billing_cycle=sub.billing_cycle,
        category=sub.category,
        next_billing_date=sub.next_billing_date,
        is_active=sub.is_active,
        notes=sub.notes,
        color=sub.color,
        repetition_type=sub.repetition_type,
        is_paid_for_current_month=sub.is_paid_for_current_month,
        reminder_time=sub.reminder_time,
        monthly_price=_money(sub.monthly_price),
        current_month_price=_money(sub.current_month_price(cal)),
        days_until_next_billing=sub.days_until_next_billing(cal),
        days_until_renewal=sub.days_until_renewal(cal),
        is_overdue=sub.is_overdue(cal),
    )


def _totals_response(t: CategoryTotals) -> CategoryTotalsResponse:
    return CategoryTotalsResponse(
        category=t.category,
        count=t.count,
        monthly=_money(t.monthly),
        current_month=_money(t.current_month),
        unpaid_monthly=_money(t.unpaid_monthly),
        unpaid_current_month=_money(t.unpaid_current_month),
    )


def _found(sub: Subscription | None, store: SubscriptionStore) -> SubscriptionResponse:
    if sub is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return _to_response(sub, store)


# === Queries ===

@router.get("/", response_model=list[SubscriptionResponse])
def list_subscriptions(
    active_only: bool = False,
    category: str | None = None,
    store: SubscriptionStore = Depends(get_store),
):
    """Список подписок в порядке добавления"""
    if category is not None:
        subs = store.by_category(category)
    elif active_only:
        subs = store.active()
    else:
        subs = store.all()
    return [_to_response(s, store) for s in subs]


@router.get("/upcoming", response_model=list[SubscriptionResponse])
def list_upcoming(
    days: int = UPCOMING_WINDOW_DAYS,
    store: SubscriptionStore = Depends(get_store),
):
    """Неоплаченные подписки с ближайшим списанием"""
    return [_to_response(s, store) for s in store.upcoming(days)]


@router.get("/overdue", response_model=list[SubscriptionResponse])
def list_overdue(store: SubscriptionStore = Depends(get_store)):
    return [_to_response(s, store) for s in store.overdue()]


@router.get("/summary", response_model=SummaryResponse)
def get_summary(store: SubscriptionStore = Depends(get_store)):
    """Итоги расходов по активным подпискам"""
    s = store.summary()
    return SummaryResponse(
        active_count=s.active_count,
        total_monthly=_money(s.total_monthly),
        total_yearly=_money(s.total_yearly),
        total_current_month=_money(s.total_current_month),
        total_current_month_unpaid=_money(s.total_current_month_unpaid),
        total_unpaid_monthly=_money(s.total_unpaid_monthly),
        categories=[_totals_response(t) for t in s.categories],
    )


@router.get("/{sub_id}", response_model=SubscriptionResponse)
def get_subscription(sub_id: UUID, store: SubscriptionStore = Depends(get_store)):
    return _found(store.get(sub_id), store)


# === Commands ===

@router.post("/", response_model=SubscriptionResponse, status_code=201)
def create_subscription(req: SubscriptionRequest, store: SubscriptionStore = Depends(get_store)):
    """Добавить подписку"""
    try:
        sub = store.add(req.to_domain(today=store.calendar.today()))
    except SubscriptionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _to_response(sub, store)


@router.put("/{sub_id}", response_model=SubscriptionResponse)
def update_subscription(
    sub_id: UUID,
    req: SubscriptionRequest,
    store: SubscriptionStore = Depends(get_store),
):
    """Полностью заменить поля подписки (id не меняется)"""
    try:
        sub = store.update(req.to_domain(sub_id=sub_id, today=store.calendar.today()))
    except SubscriptionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _found(sub, store)


@router.delete("/{sub_id}", status_code=204)
def delete_subscription(sub_id: UUID, store: SubscriptionStore = Depends(get_store)):
    if not store.delete(sub_id):
        raise HTTPException(status_code=404, detail="Subscription not found")
    return Response(status_code=204)


@router.delete("/", status_code=204)
def clear_subscriptions(store: SubscriptionStore = Depends(get_store)):
    """Удалить все подписки"""
    store.clear_all()
    return Response(status_code=204)


@router.post("/{sub_id}/toggle-active", response_model=SubscriptionResponse)
def toggle_active(sub_id: UUID, store: SubscriptionStore = Depends(get_store)):
    return _found(store.toggle_active(sub_id), store)


@router.post("/{sub_id}/mark-paid", response_model=SubscriptionResponse)
def mark_paid(sub_id: UUID, store: SubscriptionStore = Depends(get_store)):
    """Отметить оплату (автопродление сдвигает дату на один период)"""
    return _found(store.mark_paid(sub_id), store)


@router.post("/{sub_id}/toggle-payment", response_model=SubscriptionResponse)
def toggle_payment(sub_id: UUID, store: SubscriptionStore = Depends(get_store)):
    return _found(store.toggle_payment(sub_id), store)


@router.post("/refresh", response_model=SweepResponse)
def refresh(store: SubscriptionStore = Depends(get_store)):
    """Запустить автопродление и сброс оплат вручную"""
    result = store.refresh()
    return SweepResponse(renewed=result.renewed, reset=result.reset)
