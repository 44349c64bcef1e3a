"""Order endpoints: checkout with M-Pesa STK push, payment verification, status management."""

import logging
import math
from datetime import datetime, timezone
from decimal import ROUND_CEILING, Decimal

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import get_current_user, require_admin
from app.core.exceptions import NotFound, PaymentGatewayError, ValidationError
from app.db.base import get_db
from app.models.order import CANCELLABLE_STATUSES, Order, OrderItem, OrderStatus
from app.schemas.auth import CurrentUser
from app.schemas.order import (
    CancelRequest,
    LineItem,
    OrderDetailResponse,
    OrderItemIn,
    OrderListResponse,
    OrderResponse,
    OrderSummary,
    PaymentConfirmationItem,
    PaymentConfirmationListResponse,
    PlaceOrderRequest,
    PlaceOrderResponse,
    StatusStats,
    StatusUpdateRequest,
    VerifyRequest,
    VerifyResponse,
)
from app.services.mpesa import (
    RESULT_CANCELLED_BY_USER,
    MpesaClient,
    MpesaError,
    MpesaPending,
    MpesaRejected,
    StkResult,
    get_mpesa_client,
    normalize_phone,
    parse_callback,
)
from app.services.users import get_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/order", tags=["order"])

CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}
CALLBACK_REJECTED = {"ResultCode": 1, "ResultDesc": "Rejected: malformed payload"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _escape_like(s: str) -> str:
    """Escape SQL LIKE wildcards in user input."""
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_line_items(items: list[OrderItemIn], delivery_fee: Decimal) -> list[LineItem]:
    """Provider line items: one per cart line, plus the delivery fee as its own line."""
    lines = [LineItem(name=i.name, unit_price=i.price, quantity=i.quantity) for i in items]
    if delivery_fee > 0:
        lines.append(LineItem(name="Delivery fee", unit_price=delivery_fee, quantity=1))
    return lines


def payable_amount(total: Decimal) -> int:
    """M-Pesa only takes whole shillings; never undercharge."""
    return int(total.to_integral_value(rounding=ROUND_CEILING))


def apply_payment_result(order: Order, result: StkResult, now: datetime) -> None:
    """Record a provider outcome on the order.

    Success only flips ``payment``; it never moves the order backwards.
    Failure keeps the order for audit and marks it Cancelled (payer dismissed
    the prompt) or Payment Failed. A paid order ignores late failures.
    """
    if result.success:
        if order.payment:
            return
        order.payment = True
        order.payment_confirmation = {
            "merchantRequestID": result.merchant_request_id,
            "checkoutRequestID": result.checkout_request_id,
            "resultCode": result.result_code,
            "resultDesc": result.result_desc,
            "mpesaReceiptNumber": result.receipt_number,
            "transactionDate": result.transaction_date.isoformat() if result.transaction_date else None,
            "phoneNumber": result.phone_number,
            "amount": str(result.amount) if result.amount is not None else None,
            "confirmedAt": now.isoformat(),
        }
        if order.status in (OrderStatus.PAYMENT_PENDING, OrderStatus.PAYMENT_FAILED):
            order.status = OrderStatus.FOOD_PROCESSING
        elif order.is_terminal:
            logger.warning("Payment confirmed for %s order %s", order.status.value, order.id)
        logger.info("Order %s paid, receipt=%s", order.id, result.receipt_number)
        return

    if order.payment:
        logger.warning("Ignoring failure result for paid order %s", order.id)
        return
    order.payment_failure = {
        "merchantRequestID": result.merchant_request_id,
        "checkoutRequestID": result.checkout_request_id,
        "resultCode": result.result_code,
        "resultDesc": result.result_desc,
        "failedAt": now.isoformat(),
    }
    if not order.is_terminal:
        order.status = OrderStatus.CANCELLED if result.cancelled else OrderStatus.PAYMENT_FAILED
    logger.info("Order %s payment failed: %s (%s)", order.id, result.result_desc, result.result_code)


async def _find_by_correlation(db: AsyncSession, checkout_request_id: str) -> Order | None:
    result = await db.execute(
        select(Order).where(Order.checkout_request_id == checkout_request_id).with_for_update()
    )
    return result.scalar_one_or_none()


@router.post("/place", response_model=PlaceOrderResponse)
async def place_order(
    body: PlaceOrderRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    mpesa: MpesaClient = Depends(get_mpesa_client),
):
    """Snapshot the cart into an order, clear the cart and send the STK push."""
    try:
        phone = normalize_phone(body.mobile_number)
    except ValueError:
        raise ValidationError("Invalid phone number format")

    user = await get_user(db, current_user.id, for_update=True)
    if not user:
        raise NotFound("User not found")

    now = _now()
    delivery_fee = Decimal(settings.DELIVERY_FEE) if body.include_delivery else Decimal("0")
    order = Order(
        user_id=user.id,
        items=[
            OrderItem(food_id=i.product_id, name=i.name, price=i.price, quantity=i.quantity)
            for i in body.items
        ],
        amount=body.amount,
        delivery_fee=delivery_fee,
        address=body.address.model_dump(mode="json", by_alias=True),
        status=OrderStatus.FOOD_PROCESSING,
        date=now,
        payment=False,
        mobile_number=phone,
    )
    db.add(order)
    user.cart_data = {}
    await db.flush()  # get order.id

    total = order.total
    summary = OrderSummary(
        total_amount=total,
        delivery_fee=delivery_fee,
        line_items=build_line_items(body.items, delivery_fee),
        items=body.items,
    )

    try:
        stk = await mpesa.stk_push(
            phone=phone,
            amount=payable_amount(total),
            reference=f"ORD{order.id.hex[:9].upper()}",
            description="Order Payment",
        )
    except MpesaError as exc:
        order.status = OrderStatus.PAYMENT_FAILED
        order.payment_failure = {"resultDesc": str(exc), "failedAt": now.isoformat()}
        await db.commit()
        logger.error("STK push failed for order %s: %s", order.id, exc)
        if isinstance(exc, MpesaRejected):
            raise ValidationError("STK Push failed. Try again.")
        raise PaymentGatewayError("Error processing payment request")

    order.checkout_request_id = stk.get("CheckoutRequestID")
    order.stk_push_details = {
        "MerchantRequestID": stk.get("MerchantRequestID"),
        "CheckoutRequestID": stk.get("CheckoutRequestID"),
        "ResponseCode": stk.get("ResponseCode"),
        "ResponseDescription": stk.get("ResponseDescription"),
        "CustomerMessage": stk.get("CustomerMessage"),
        "sentAt": now.isoformat(),
    }
    await db.commit()

    logger.info("Order %s placed by %s, total=%s", order.id, user.id, total)
    return PlaceOrderResponse(
        message="STK Push sent. Complete payment on your phone.",
        merchant_request_id=stk.get("MerchantRequestID"),
        checkout_request_id=stk.get("CheckoutRequestID"),
        order_id=order.id,
        order_details=summary,
    )


@router.post("/verify", response_model=VerifyResponse)
async def verify_order(
    body: VerifyRequest,
    db: AsyncSession = Depends(get_db),
    mpesa: MpesaClient = Depends(get_mpesa_client),
):
    """Resolve a payment by correlation id.

    ``outcome="cancelled"`` records the customer abandoning payment. Otherwise
    the provider is asked; the client's word alone never marks an order paid.
    """
    order = await _find_by_correlation(db, body.correlation_id)
    if not order:
        raise NotFound("Order not found")

    now = _now()
    if not order.payment:
        if body.outcome == "cancelled":
            result = StkResult(
                checkout_request_id=body.correlation_id,
                result_code=RESULT_CANCELLED_BY_USER,
                result_desc="Cancelled by customer",
            )
        else:
            try:
                result = await mpesa.stk_query(body.correlation_id)
            except MpesaPending:
                return VerifyResponse(
                    success=False,
                    message="Payment is still being processed",
                    redirect_to="/checkout",
                    order=OrderResponse.model_validate(order),
                )
            except MpesaError as exc:
                logger.error("STK query failed for %s: %s", body.correlation_id, exc)
                raise PaymentGatewayError("Verification error")
        apply_payment_result(order, result, now)
        await db.commit()

    if order.payment:
        return VerifyResponse(
            success=True,
            message="Payment successful. Redirecting to orders page...",
            redirect_to="/orders",
            order=OrderResponse.model_validate(order),
        )
    return VerifyResponse(
        success=False,
        message="Payment failed. Please try again.",
        redirect_to="/checkout",
        order=OrderResponse.model_validate(order),
    )


@router.post("/mpesa-callback")
async def mpesa_callback(request: Request, db: AsyncSession = Depends(get_db)):
    """Daraja STK callback. Every reply has the Daraja ``{ResultCode, ResultDesc}`` shape."""
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("M-Pesa callback: body is not JSON")
        return CALLBACK_REJECTED

    try:
        result = parse_callback(payload)
    except ValueError as exc:
        logger.warning("M-Pesa callback: malformed payload: %s", exc)
        return CALLBACK_REJECTED

    order = await _find_by_correlation(db, result.checkout_request_id)
    if order is None:
        logger.warning("M-Pesa callback: no order for CheckoutRequestID=%s", result.checkout_request_id)
        return CALLBACK_ACK

    apply_payment_result(order, result, _now())
    await db.commit()
    return CALLBACK_ACK


@router.get("/user", response_model=OrderListResponse)
async def user_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: OrderStatus | None = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Orders of the caller only, newest first."""
    query = select(Order).where(Order.user_id == current_user.id)
    if status:
        query = query.where(Order.status == status)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(query.order_by(Order.date.desc()).offset((page - 1) * limit).limit(limit))
    orders = result.scalars().all()

    return OrderListResponse(
        count=len(orders),
        total=total,
        page=page,
        total_pages=math.ceil(total / limit),
        orders=[OrderResponse.model_validate(o) for o in orders],
    )


@router.post("/cancel", response_model=OrderDetailResponse)
async def cancel_order(
    body: CancelRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Customer cancellation, allowed until the order leaves the kitchen."""
    result = await db.execute(
        select(Order)
        .where(Order.id == body.order_id, Order.user_id == current_user.id)
        .with_for_update()
    )
    order = result.scalar_one_or_none()
    if not order:
        raise NotFound("Order not found")

    if order.status not in CANCELLABLE_STATUSES:
        raise ValidationError("Order cannot be cancelled at this stage")

    order.status = OrderStatus.CANCELLED
    await db.commit()

    logger.info("Order %s cancelled by customer %s", order.id, current_user.id)
    return OrderDetailResponse(message="Order cancelled successfully", order=OrderResponse.model_validate(order))


@router.get("/list", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    status: str | None = None,
    search: str | None = None,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """All orders with filters and per-status statistics (admin)."""
    query = select(Order)

    if status and status != "all":
        try:
            query = query.where(Order.status == OrderStatus(status))
        except ValueError:
            raise ValidationError(
                "Invalid status. Valid values: " + ", ".join(s.value for s in OrderStatus)
            )
    if search:
        like = f"%{_escape_like(search)}%"
        query = query.where(
            or_(
                Order.address["contactName"].astext.ilike(like),
                Order.address["email"].astext.ilike(like),
                Order.items.any(OrderItem.name.ilike(like)),
            )
        )

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(query.order_by(Order.date.desc()).offset((page - 1) * limit).limit(limit))
    orders = result.scalars().all()

    stats_result = await db.execute(
        select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.amount), 0))
        .group_by(Order.status)
    )
    statistics = {
        OrderStatus(row_status).value: StatusStats(count=count, total_amount=amount)
        for row_status, count, amount in stats_result.all()
    }

    return OrderListResponse(
        count=len(orders),
        total=total,
        page=page,
        total_pages=math.ceil(total / limit),
        orders=[OrderResponse.model_validate(o) for o in orders],
        statistics=statistics,
    )


@router.post("/status", response_model=OrderDetailResponse)
async def update_status(
    body: StatusUpdateRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin status change. Delivered and Cancelled orders are final."""
    order = await db.get(Order, body.order_id, with_for_update=True)
    if not order:
        raise NotFound("Order not found")

    if order.is_terminal and order.status != body.status:
        raise ValidationError(f"Cannot change status of a {order.status.value} order")

    order.status = body.status
    if body.status == OrderStatus.DELIVERED and order.delivered_at is None:
        order.delivered_at = _now()
    await db.commit()

    logger.info("Order %s status -> %s by %s", order.id, body.status.value, current_user.id)
    return OrderDetailResponse(
        message=f"Order status updated to {body.status.value}",
        order=OrderResponse.model_validate(order),
    )


@router.get("/payments", response_model=PaymentConfirmationListResponse)
async def payment_confirmations(
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Paid orders with their M-Pesa receipts (admin)."""
    result = await db.execute(
        select(Order).where(Order.payment == True).order_by(Order.date.desc()).limit(limit)  # noqa: E712
    )
    orders = result.scalars().all()
    return PaymentConfirmationListResponse(
        count=len(orders),
        payments=[
            PaymentConfirmationItem(
                order_id=o.id,
                user_id=o.user_id,
                amount=o.amount,
                total=o.total,
                mobile_number=o.mobile_number,
                payment_confirmation=o.payment_confirmation,
                date=o.date,
            )
            for o in orders
        ],
    )
