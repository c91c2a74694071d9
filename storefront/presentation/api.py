import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.database import get_session_factory
from storefront.presentation.schemas import (
    AbandonedCartSweepResponse, CouponValidationResponse, ErrorResponse, InventoryReportResponse,
    LowStockSweepResponse, OrderResponse, UpdateOrderRequest, ValidateCouponRequest, WebhookAck,
)
from storefront.application.abandoned_carts import SweepAbandonedCartsUseCase
from storefront.application.coupons import ValidateCouponUseCase
from storefront.application.create_order import CreateOrderFromPaymentUseCase
from storefront.application.get_order import GetOrderUseCase
from storefront.application.interfaces import NotificationsService
from storefront.application.inventory import InventoryReportUseCase, SweepLowStockUseCase
from storefront.application.process_webhook import ProcessPaymentWebhookUseCase
from storefront.application.update_order_status import UpdateOrderDTO, UpdateOrderStatusUseCase
from storefront.domain.exceptions import (
    DomainException, InvalidSignatureError, RateLimitedError, ValidationError,
)
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.infrastructure.http_clients import build_notifications_client
from storefront.infrastructure.rate_limiter import RATE_LIMITS, client_identity, rate_limiter
from storefront.infrastructure.security import bearer_token, decode_admin_token, verify_cron_secret
from storefront.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

_notifications = build_notifications_client(settings.NOTIFICATIONS_BASE_URL, settings.NOTIFICATIONS_API_TOKEN)


def to_http_exception(error: DomainException) -> HTTPException:
    detail = {"error": error.message}
    headers = None
    if isinstance(error, ValidationError) and error.field:
        detail["field"] = error.field
    if isinstance(error, RateLimitedError):
        detail["retryAfter"] = error.retry_after
        headers = {"Retry-After": str(error.retry_after)}
    return HTTPException(status_code=error.status_code, detail=detail, headers=headers)


# Общие зависимости

def get_notifications() -> NotificationsService:
    return _notifications


def get_rate_limiter():
    return rate_limiter


def get_unit_of_work(session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)):
    return UnitOfWork(session_factory)


def rate_limit(bucket: str):
    config = RATE_LIMITS[bucket]

    def dependency(request: Request, response: Response, limiter=Depends(get_rate_limiter)):
        peer = request.client.host if request.client else None
        identity = client_identity(request.headers, peer)
        result = limiter.check(identity, config, bucket)
        response.headers["X-RateLimit-Limit"] = str(config.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        if not result.allowed:
            retry_after = result.retry_after(limiter.now())
            logger.warning(f"Превышен лимит {bucket} для {identity}")
            error = to_http_exception(RateLimitedError(retry_after))
            error.headers.update({
                "X-RateLimit-Limit": str(config.max_requests),
                "X-RateLimit-Remaining": "0",
            })
            raise error

    return dependency


def require_admin(request: Request, authorization: Optional[str] = Header(default=None)) -> dict:
    token = request.cookies.get("admin_token") or bearer_token(authorization)
    try:
        return decode_admin_token(token)
    except DomainException as e:
        raise to_http_exception(e)


def require_cron(authorization: Optional[str] = Header(default=None)) -> None:
    try:
        verify_cron_secret(authorization, settings.CRON_SECRET)
    except DomainException as e:
        raise to_http_exception(e)


# Фабрики для создания use cases

def get_create_order_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    notifications: NotificationsService = Depends(get_notifications),
):
    return CreateOrderFromPaymentUseCase(uow, notifications, settings.NOTIFICATION_TIMEOUT_SECONDS)


def get_process_webhook_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    create_order: CreateOrderFromPaymentUseCase = Depends(get_create_order_use_case),
):
    return ProcessPaymentWebhookUseCase(
        uow, create_order, settings.STRIPE_WEBHOOK_SECRET, settings.WEBHOOK_TOLERANCE_SECONDS
    )


def get_validate_coupon_use_case(uow: UnitOfWork = Depends(get_unit_of_work)):
    return ValidateCouponUseCase(uow)


def get_get_order_use_case(uow: UnitOfWork = Depends(get_unit_of_work)):
    return GetOrderUseCase(uow)


def get_update_order_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    notifications: NotificationsService = Depends(get_notifications),
):
    return UpdateOrderStatusUseCase(uow, notifications, settings.NOTIFICATION_TIMEOUT_SECONDS)


def get_inventory_report_use_case(uow: UnitOfWork = Depends(get_unit_of_work)):
    return InventoryReportUseCase(uow, settings.LOW_STOCK_THRESHOLD)


def get_low_stock_sweep_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    notifications: NotificationsService = Depends(get_notifications),
):
    return SweepLowStockUseCase(
        uow,
        notifications,
        settings.OPERATOR_EMAILS,
        threshold=settings.LOW_STOCK_THRESHOLD,
        cooldown_minutes=settings.LOW_STOCK_ALERT_COOLDOWN_MINUTES,
        notification_timeout=settings.NOTIFICATION_TIMEOUT_SECONDS
    )


def get_abandoned_cart_sweep_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    notifications: NotificationsService = Depends(get_notifications),
):
    return SweepAbandonedCartsUseCase(
        uow,
        notifications,
        settings.STORE_URL,
        discount_code=settings.RECOVERY_DISCOUNT_CODE,
        discount_percent=settings.RECOVERY_DISCOUNT_PERCENT,
        notification_timeout=settings.NOTIFICATION_TIMEOUT_SECONDS
    )


# Платежи

@router.post(
    "/webhooks/payments",
    response_model=WebhookAck,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    use_case: ProcessPaymentWebhookUseCase = Depends(get_process_webhook_use_case)
):
    """Вебхук платежного провайдера"""
    payload = await request.body()
    try:
        return await use_case(payload, stripe_signature)
    except InvalidSignatureError as e:
        logger.warning(f"Вебхук отклонен: {e.message}")
        raise to_http_exception(e)
    except ValidationError as e:
        logger.warning(f"Вебхук с некорректными данными: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Ошибка обработки вебхука: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail={"error": "Webhook processing failed"})


# Купоны

@router.post(
    "/coupons/validate",
    response_model=CouponValidationResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(rate_limit("coupon"))]
)
async def validate_coupon(
    request: ValidateCouponRequest,
    use_case: ValidateCouponUseCase = Depends(get_validate_coupon_use_case)
):
    """Проверить купон для суммы заказа"""
    try:
        result = await use_case(request.code, request.order_total)
        return CouponValidationResponse.from_result(result)
    except DomainException as e:
        raise to_http_exception(e)


# Админка

@router.get(
    "/admin/orders/{order_id}",
    response_model=OrderResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    dependencies=[Depends(require_admin), Depends(rate_limit("admin"))]
)
async def get_order(
    order_id: str,
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    """Получить заказ по ID"""
    try:
        order = await use_case(order_id)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_exception(e)


@router.put(
    "/admin/orders/{order_id}",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse}, 401: {"model": ErrorResponse},
        404: {"model": ErrorResponse}, 409: {"model": ErrorResponse},
    },
    dependencies=[Depends(require_admin), Depends(rate_limit("admin"))]
)
async def update_order(
    order_id: str,
    request: UpdateOrderRequest,
    use_case: UpdateOrderStatusUseCase = Depends(get_update_order_use_case)
):
    """Изменить статус и поля заказа"""
    try:
        dto = UpdateOrderDTO(**request.model_dump(exclude_unset=True))
        order = await use_case(order_id, dto)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_exception(e)


@router.get(
    "/admin/inventory/report",
    response_model=InventoryReportResponse,
    dependencies=[Depends(require_admin), Depends(rate_limit("admin"))]
)
async def inventory_report(
    use_case: InventoryReportUseCase = Depends(get_inventory_report_use_case)
):
    """Сводка по складу"""
    report = await use_case()
    return InventoryReportResponse(**report.model_dump())


# Планировщик

@router.api_route(
    "/cron/abandoned-carts",
    methods=["GET", "POST"],
    response_model=AbandonedCartSweepResponse,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    dependencies=[Depends(require_cron)]
)
async def abandoned_carts_sweep(
    use_case: SweepAbandonedCartsUseCase = Depends(get_abandoned_cart_sweep_use_case)
):
    """Рассылка писем по брошенным корзинам"""
    try:
        result = await use_case()
    except Exception as e:
        logger.error(f"Ошибка обхода брошенных корзин: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail={"success": False, "error": "Abandoned cart recovery failed"})

    return AbandonedCartSweepResponse(
        success=True,
        emails_sent=result.emails_sent,
        reminders_sent=result.reminders_sent,
        followups_sent=result.followups_sent,
        failures=result.failures,
        timestamp=datetime.now(timezone.utc)
    )


@router.api_route(
    "/cron/low-stock",
    methods=["GET", "POST"],
    response_model=LowStockSweepResponse,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    dependencies=[Depends(require_cron)]
)
async def low_stock_sweep(
    use_case: SweepLowStockUseCase = Depends(get_low_stock_sweep_use_case)
):
    """Оповещение о низких остатках"""
    try:
        result = await use_case()
    except Exception as e:
        logger.error(f"Ошибка проверки остатков: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail={"success": False, "error": "Inventory monitoring failed"})

    return LowStockSweepResponse(
        success=True,
        low_stock_products=result.low_stock + result.out_of_stock,
        out_of_stock=result.out_of_stock,
        alerts_sent=result.alerts_sent,
        timestamp=datetime.now(timezone.utc)
    )
