"""Clients for the Telegram Bot API and the ads-platform similar-channel endpoint."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .errors import TransportError
from .models import ChatInfo, RawCandidate

logger = logging.getLogger(__name__)

BOT_API_URL = "https://api.telegram.org"
PROMOTE_API_URL = "https://promote.telegram.org/api"

# Bot API ids for broadcast channels carry this prefix in front of the channel id.
CHANNEL_ID_PREFIX = "-100"

URL_PREFIX_RE = re.compile(r"^(?:https?://)?(?:www\.)?t(?:elegram)?\.me/", re.IGNORECASE)


def normalize_username(value: Optional[str]) -> str:
    """Reduce ``@name``, ``t.me/name`` or ``https://t.me/name/`` to ``name``."""

    if value is None:
        return ""
    cleaned = str(value).strip()
    cleaned = URL_PREFIX_RE.sub("", cleaned)
    cleaned = cleaned.replace("@", "").replace("/", "")
    return cleaned.strip()


def normalize_usernames(values: Iterable[Optional[str]]) -> List[str]:
    seen = set()
    result: List[str] = []
    for value in values:
        username = normalize_username(value)
        if username and username not in seen:
            seen.add(username)
            result.append(username)
    return result


def parse_channel_id(value: Any) -> int:
    """Return the bare channel id, dropping the broadcast prefix. 0 if unparseable."""

    if value is None or isinstance(value, bool):
        return 0
    raw = str(value).strip()
    if raw.startswith(CHANNEL_ID_PREFIX):
        raw = raw[len(CHANNEL_ID_PREFIX):]
    try:
        parsed = int(raw)
    except ValueError:
        return 0
    return abs(parsed)


def _clean_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


class TelegramClient:
    def __init__(
        self,
        *,
        bot_token: str = "",
        ads_hash: str = "",
        stel_ssid: str = "",
        stel_token: str = "",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.bot_token = bot_token
        self.ads_hash = ads_hash
        self.stel_ssid = stel_ssid
        self.stel_token = stel_token
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TelegramClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request_json(self, service: str, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(service, f"request failed: {exc}") from exc
        if response.status_code >= 400:
            raise TransportError(
                service, f"unexpected status {response.status_code}: {response.text[:200]}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(service, f"invalid JSON response: {exc}") from exc
        if not isinstance(payload, dict):
            raise TransportError(service, "unexpected response payload")
        if not payload.get("ok"):
            description = payload.get("description") or payload.get("error") or "ok=false"
            raise TransportError(service, str(description))
        return payload

    async def get_chat(self, username: str) -> ChatInfo:
        """Look up a public channel by username. Raises ``TransportError``."""

        username = normalize_username(username)
        if not self.bot_token:
            raise TransportError("getChat", "bot token is not configured")
        url = f"{BOT_API_URL}/bot{self.bot_token}/getChat"
        logger.debug("Fetching chat info for '%s'", username)
        payload = await self._request_json(
            "getChat", "GET", url, params={"chat_id": f"@{username}"}
        )
        result = payload.get("result")
        if not isinstance(result, dict):
            raise TransportError("getChat", f"no result for '{username}'")
        channel_id = parse_channel_id(result.get("id"))
        if not channel_id:
            raise TransportError("getChat", f"missing channel id for '{username}'")
        return ChatInfo(
            id=channel_id,
            username=normalize_username(result.get("username")) or username,
            title=_clean_text(result.get("title")),
            description=_clean_text(result.get("description")),
        )

    async def get_similar(self, channel_ids: Iterable[int]) -> List[RawCandidate]:
        """Fetch similar-channel candidates for the given channel ids."""

        ids = [str(channel_id) for channel_id in channel_ids if channel_id]
        if not ids:
            return []
        if not self.ads_hash:
            raise TransportError("getSimilarChannels", "ads hash is not configured")
        cookies = []
        if self.stel_ssid:
            cookies.append(f"stel_ssid={self.stel_ssid}")
        if self.stel_token:
            cookies.append(f"stel_token={self.stel_token}")
        headers = {"Cookie": "; ".join(cookies)} if cookies else None
        payload = await self._request_json(
            "getSimilarChannels",
            "POST",
            PROMOTE_API_URL,
            params={"hash": self.ads_hash},
            data={"method": "getSimilarChannels", "channels": ",".join(ids)},
            headers=headers,
        )
        entries = payload.get("channels")
        if not isinstance(entries, list):
            raise TransportError("getSimilarChannels", "missing channels in response")
        candidates = [self._candidate_from_entry(entry) for entry in entries if isinstance(entry, dict)]
        logger.info("Similar-channel lookup for %d ids returned %d candidates", len(ids), len(candidates))
        return candidates

    @staticmethod
    def _candidate_from_entry(entry: Dict[str, Any]) -> RawCandidate:
        return RawCandidate(
            id=parse_channel_id(entry.get("id")),
            username=normalize_username(entry.get("username")) or None,
            title=_clean_text(entry.get("title")),
            photo=entry.get("photo") if isinstance(entry.get("photo"), str) else None,
            html=entry.get("html") if isinstance(entry.get("html"), str) else None,
        )
