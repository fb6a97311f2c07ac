"""Message-send collaborator."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import requests

from dripline.http import get_sync_client

logger = logging.getLogger(__name__)


class MessageSender(ABC):
    """Sends a templated message to a contact."""

    @abstractmethod
    def send(
        self, template_id: str, contact_id: str, subject_override: str | None = None
    ) -> bool:
        """Send one message. Returns True on success."""


class HttpMessageSender(MessageSender):
    """Posts send requests to a message provider over HTTP.

    Args:
        url: Provider endpoint
        api_key: Sent as a bearer token when set
        timeout: Request timeout in seconds
        session: HTTP session; defaults to the shared pooled client
    """

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = get_sync_client()
        return self._session

    def send(
        self, template_id: str, contact_id: str, subject_override: str | None = None
    ) -> bool:
        payload = {"template_id": template_id, "contact_id": contact_id}
        if subject_override:
            payload["subject_override"] = subject_override
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self.session.post(
                self.url, json=payload, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Message send to contact {contact_id} failed: {e}")
            return False

        if not response.ok:
            logger.warning(
                f"Message provider rejected template {template_id} for contact {contact_id}: "
                f"HTTP {response.status_code}"
            )
            return False
        return True
