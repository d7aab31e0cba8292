"""
Cliente para notificar resultados de sync a Slack (incoming webhook).
"""
from typing import Optional

import httpx
from loguru import logger

from fieldsync.core.config import settings
from fieldsync.shared.exceptions.sync import NotifierError


class SlackNotifier:
    """
    Notificador best-effort: timeout acotado, los errores se loguean y se
    descartan, nunca se propagan al sync.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        *,
        default_channel: Optional[str] = None,
        timeout_s: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = settings.SLACK_WEBHOOK_URL if webhook_url is None else webhook_url
        self.default_channel = default_channel or settings.SLACK_CHANNEL
        self.timeout_s = timeout_s or settings.NOTIFIER_TIMEOUT_S
        self._client = client

    async def send(self, text: str, channel: Optional[str] = None) -> bool:
        """
        Envía un mensaje {channel, text} al webhook.

        Args:
            text: Contenido del mensaje.
            channel: Canal de destino (default SLACK_CHANNEL).

        Returns:
            bool: True si Slack aceptó el mensaje.
        """
        if not self.webhook_url:
            logger.warning("SLACK_WEBHOOK_URL no configurado. Saltando notificación.")
            return False

        payload = {"channel": channel or self.default_channel, "text": text}

        try:
            if self._client is not None:
                response = await self._client.post(self.webhook_url, json=payload, timeout=self.timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await client.post(self.webhook_url, json=payload)
            response.raise_for_status()
            return True
        except Exception as e:
            error = NotifierError(f"Error al enviar notificación a Slack: {e}", operation="notify")
            logger.bind(operation=error.operation, error_kind=error.kind.value).error(error.message)
            return False
