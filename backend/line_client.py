import base64
import hashlib
import hmac
import json
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

LINE_API_BASE = "https://api.line.me/v2/bot"
# The Messaging API accepts at most five messages per reply or push
MAX_MESSAGES = 5


class LineApiError(Exception):
    """The Messaging API answered with a non-success status."""


def compute_signature(body: bytes, channel_secret: str) -> str:
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def validate_signature(body: bytes, channel_secret: str, signature: Optional[str]) -> bool:
    """Check the X-Line-Signature header against the raw request body."""
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(body, channel_secret), signature)


class LineMessagingClient:
    """Minimal async client for the LINE Messaging API reply and push endpoints."""

    def __init__(self, channel_access_token: str, base_url: str = LINE_API_BASE, timeout: float = 30.0):
        self.channel_access_token = channel_access_token
        self.base_url = base_url
        self.timeout = timeout

    async def _post(self, path: str, payload: dict):
        headers = {
            "Authorization": f"Bearer {self.channel_access_token}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}{path}",
                headers=headers,
                content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            )
        if response.status_code >= 400:
            raise LineApiError(f"LINE API {path} failed: {response.status_code} {response.text}")

    async def reply(self, reply_token: str, messages: list[dict]):
        await self._post("/message/reply", {
            "replyToken": reply_token,
            "messages": messages[:MAX_MESSAGES],
        })

    async def push(self, to: str, messages: list[dict]):
        await self._post("/message/push", {
            "to": to,
            "messages": messages[:MAX_MESSAGES],
        })


class AdminNotifier:
    """
    Fire-and-forget alerts to the operator's LINE account.
    Nothing here may fail the request that triggered it.
    """

    ADMIN_PATHS = ("/dev", "/admin")

    def __init__(self, messenger, admin_id: Optional[str]):
        self.messenger = messenger
        self.admin_id = admin_id

    async def _send(self, text: str) -> bool:
        if not self.admin_id:
            return False
        try:
            await self.messenger.push(self.admin_id, [{"type": "text", "text": text}])
        except (LineApiError, httpx.HTTPError) as e:
            logger.error("Admin notification failed: %s", e)
            return False
        return True

    async def notify_error(self, context: str, error) -> bool:
        detail = error if isinstance(error, str) else json.dumps(error, ensure_ascii=False, default=str)
        return await self._send(f"🚨システムエラー発生\nContext: {context}\nError: {detail}")

    async def notify_access(self, user_id: Optional[str], path: str) -> bool:
        """Alert the admin when someone else opens an administrative page."""
        if not any(marker in path for marker in self.ADMIN_PATHS):
            return False
        if user_id and user_id == self.admin_id:
            return False
        return await self._send(
            f"⚠️管理者画面へのアクセスを検知しました\nUser: {user_id or 'Unknown'}\nPath: {path}"
        )
