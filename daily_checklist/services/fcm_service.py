# file: services/fcm_service.py

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

import httpx
from firebase_admin import credentials

from daily_checklist.config import FCM_PROJECT_ID, FCM_CREDENTIALS_PATH, FCM_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"


class FCMService:
    """
    Push gateway for Firebase Cloud Messaging (HTTP v1 API).

    The OAuth2 access token is derived from the service account once and
    reused for the lifetime of the instance.
    """

    def __init__(self, project_id: str = FCM_PROJECT_ID, credentials_path: str = FCM_CREDENTIALS_PATH,
                 timeout: float = FCM_TIMEOUT_SECONDS):
        self.project_id = project_id
        self.credentials_path = credentials_path
        self.timeout = timeout
        self._access_token: Optional[str] = None

    @property
    def endpoint(self) -> str:
        return f"https://fcm.googleapis.com/v1/projects/{self.project_id}/messages:send"

    def _fetch_access_token(self) -> str:
        cred = credentials.Certificate(self.credentials_path)
        return cred.get_access_token().access_token

    async def get_access_token(self) -> Optional[str]:
        if self._access_token:
            return self._access_token
        if not Path(self.credentials_path).exists():
            logger.error("FCM service account file not found at: %s", self.credentials_path)
            return None
        try:
            # The OAuth2 exchange is a blocking HTTP call.
            self._access_token = await asyncio.to_thread(self._fetch_access_token)
        except Exception as e:
            logger.error("Error getting FCM access token: %s", e)
            return None
        return self._access_token

    @staticmethod
    def build_message(token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> dict:
        return {
            "message": {
                "token": token,
                "notification": {
                    "title": title,
                    "body": body,
                },
                # FCM rejects non-string data values.
                "data": {key: str(value) for key, value in (data or {}).items()},
                "android": {
                    "notification": {
                        "sound": "default",
                        "click_action": "FLUTTER_NOTIFICATION_CLICK",
                    },
                },
                "apns": {
                    "payload": {
                        "aps": {
                            "sound": "default",
                            "badge": 1,
                            "content-available": 1,
                        },
                    },
                },
            }
        }

    async def send_to_device(self, client: httpx.AsyncClient, token: str, title: str, body: str,
                             data: Optional[Dict[str, str]] = None) -> bool:
        access_token = await self.get_access_token()
        if not token or not access_token:
            return False

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        try:
            response = await client.post(self.endpoint, json=self.build_message(token, title, body, data),
                                         headers=headers)
        except httpx.HTTPError as e:
            logger.error("Exception when sending FCM notification: %s", e)
            return False

        if response.is_success:
            logger.info("FCM notification sent successfully: %s", response.text)
            return True
        logger.error("FCM notification failed with status %s: %s", response.status_code, response.text)
        return False

    async def send_each(self, tokens: List[str], title: str, body: str,
                        data: Optional[Dict[str, str]] = None) -> Dict[str, bool]:
        """Attempts every token independently and reports the outcome per token."""
        if not tokens:
            return {}
        if not await self.get_access_token():
            return {token: False for token in tokens}

        results = {}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for token in tokens:
                results[token] = await self.send_to_device(client, token, title, body, data)
        return results

    async def send(self, tokens: List[str], title: str, body: str, data: Optional[Dict[str, str]] = None) -> bool:
        results = await self.send_each(tokens, title, body, data)
        return any(results.values())


_gateway: Optional[FCMService] = None


def get_push_gateway() -> FCMService:
    """FastAPI dependency returning the process-wide gateway."""
    global _gateway
    if _gateway is None:
        _gateway = FCMService()
    return _gateway
