"""Chat delivery through the Telegram Bot HTTPS API."""

from typing import Any, Dict, Optional

import requests

from courier.logging import get_logger
from courier.queue.models import Attachment, ChatPayload, MessageKind

from .base import DeliveryAdapter
from .exceptions import ChatDeliveryError, DeliveryError, DeliveryTimeoutError

logger = get_logger(__name__, component="delivery")

DEFAULT_API_BASE_URL = "https://api.telegram.org"
MAX_ERROR_BODY = 500


class ChatAdapter(DeliveryAdapter):
    """Delivers chat payloads with sendMessage, sendPhoto or sendDocument.

    A payload with a photo is sent as a photo, else one with a document as a
    document, else as plain text. Text accompanying a photo or document goes
    in the caption. Only HTTP 200 counts as delivered.

    Attributes:
        api_base_url: Bot API root, without trailing slash
        timeout: HTTP request timeout in seconds
        user_agent: User-Agent header for requests
    """

    kind = MessageKind.CHAT

    def __init__(
        self,
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        user_agent: str = "Courier/1.0",
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize chat adapter.

        Args:
            api_base_url: Bot API root URL
            timeout: HTTP request timeout in seconds
            user_agent: User-Agent header
            session: Preconfigured requests session (for testing)
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if not user_agent or not user_agent.strip():
            raise ValueError("user_agent cannot be empty")

        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent.strip()

        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": self.user_agent})

    def deliver(self, payload: ChatPayload) -> None:
        """Send one chat message.

        Raises:
            ChatDeliveryError: If the API answers with a status other than 200
            DeliveryTimeoutError: If the request times out
            DeliveryError: On any other transport failure
        """
        if not isinstance(payload, ChatPayload):
            raise DeliveryError(f"ChatAdapter cannot deliver {type(payload).__name__}")

        if payload.photo is not None:
            method = "sendPhoto"
            kwargs = self._multipart(payload, "photo", payload.photo)
        elif payload.document is not None:
            method = "sendDocument"
            kwargs = self._multipart(payload, "document", payload.document)
        else:
            method = "sendMessage"
            kwargs = {"json": {"chat_id": payload.chat_id, "text": payload.text}}

        self._post(payload.bot_token, method, **kwargs)

        logger.info(
            f"Chat message delivered via {method}",
            extra={"event": "delivery.chat.sent", "method": method, "chat_id": payload.chat_id},
        )

    def close(self) -> None:
        self._session.close()

    @staticmethod
    def _multipart(payload: ChatPayload, field: str, attachment: Attachment) -> Dict[str, Any]:
        data = {"chat_id": payload.chat_id}
        if payload.text:
            data["caption"] = payload.text
        files = {
            field: (attachment.filename, attachment.content, attachment.resolved_media_type())
        }
        return {"data": data, "files": files}

    def _post(self, bot_token: str, method: str, **kwargs) -> requests.Response:
        # The URL embeds the bot token; it must stay out of logs and errors
        url = f"{self.api_base_url}/bot{bot_token}/{method}"

        logger.debug(
            f"HTTP POST {method}",
            extra={"event": "delivery.chat.request", "method": method, "timeout": self.timeout},
        )

        try:
            response = self._session.post(url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise DeliveryTimeoutError(
                f"Chat API {method} timed out after {self.timeout}s"
            ) from e
        except requests.exceptions.RequestException as e:
            raise DeliveryError(
                f"Chat API {method} request failed: {type(e).__name__}"
            ) from e

        if response.status_code != 200:
            body = response.text[:MAX_ERROR_BODY]
            logger.warning(
                f"Chat API {method} returned HTTP {response.status_code}",
                extra={
                    "event": "delivery.chat.rejected",
                    "method": method,
                    "status_code": response.status_code,
                },
            )
            raise ChatDeliveryError(
                f"Chat API {method} returned HTTP {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )

        return response
