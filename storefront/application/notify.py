import asyncio
import logging
from typing import Optional

from storefront.application.interfaces import NotificationsService
from storefront.domain.models import NotificationKind

logger = logging.getLogger(__name__)


async def deliver(
    notifications: NotificationsService,
    recipient: str,
    template: NotificationKind,
    payload: dict,
    idempotency_key: Optional[str] = None,
    timeout: float = 5.0,
) -> bool:
    """Отправка с ограничением по времени. Ошибки только логируются, наружу не выходят."""
    try:
        sent = await asyncio.wait_for(
            notifications.send(recipient, template, payload, idempotency_key),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.error(f"Таймаут отправки уведомления {template.value} для {recipient} ({timeout}s)")
        return False
    except Exception as e:
        logger.error(f"Ошибка отправки уведомления {template.value} для {recipient}: {e}")
        return False

    if sent:
        logger.info(f"Отправлено уведомление {template.value} для {recipient}")
    else:
        logger.warning(f"Не отправлено уведомление {template.value} для {recipient}")
    return sent
