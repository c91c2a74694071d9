import httpx
import logging
from typing import Optional
import asyncio

from storefront.application.interfaces import NotificationsService
from storefront.domain.models import NotificationKind

logger = logging.getLogger(__name__)


class HTTPNotificationsClient(NotificationsService):
    def __init__(self, base_url: str, api_token: str, max_retries: int = 3, retry_delay: float = 1.0):
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    async def send(
        self,
        recipient: str,
        template: NotificationKind,
        payload: dict,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """Отправка уведомления с повторными попытками"""
        for attempt in range(self._max_retries):
            try:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        f"{self._base_url}/api/notifications",
                        json={
                            "recipient": recipient,
                            "template": template.value,
                            "payload": payload,
                            "idempotency_key": idempotency_key
                        },
                        headers={"X-API-Key": self._api_token},
                        timeout=10.0
                    )

                    if response.is_success:
                        logger.info(f"Уведомление {template.value} для {recipient} отправлено (попытка {attempt + 1})")
                        return True
                    else:
                        logger.warning(f"Уведомление вернуло статус {response.status_code}")

            except httpx.RequestError as e:
                logger.warning(f"Ошибка отправки уведомления (попытка {attempt + 1}/{self._max_retries}): {e}")

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_delay)

        logger.error(f"Не удалось отправить уведомление {template.value} для {recipient} после {self._max_retries} попыток")
        return False


class UnconfiguredNotificationsClient(NotificationsService):
    """Провайдер не задан: письмо не уходит, отправка считается неудачной"""

    async def send(
        self,
        recipient: str,
        template: NotificationKind,
        payload: dict,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        logger.error(f"Уведомление {template.value} для {recipient} не отправлено: NOTIFICATIONS_BASE_URL не задан")
        return False


def build_notifications_client(base_url: str, api_token: str) -> NotificationsService:
    if base_url:
        return HTTPNotificationsClient(base_url, api_token)
    logger.warning("NOTIFICATIONS_BASE_URL не задан, уведомления отправляться не будут")
    return UnconfiguredNotificationsClient()
