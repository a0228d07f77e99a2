"""Social posting to X (Twitter).

One post per cycle, about the most recently ended event, linking to the
cycle page.  Authentication uses the OAuth 2.0 refresh-token flow; X may
rotate the refresh token on every exchange, so the latest one is kept.
"""

from __future__ import annotations

import base64
import logging
import random
from typing import Any, Optional

import httpx

from overflow_watch.domain.errors import PublishError
from overflow_watch.domain.event import DischargeEvent
from overflow_watch.foundation.durations import format_duration
from overflow_watch.publish.base import CyclePublisher, PublishBatch
from overflow_watch.publish.site import cycle_url

logger = logging.getLogger(__name__)

X_API = "https://api.x.com/2"
MAX_POST_LENGTH = 280

HASHTAGS = (
    "#SewageScandal",
    "#EndSewagePollution",
    "#WaterPollution",
    "#StopSewageDumping",
    "#CleanWaterNow",
)


def short_company(event: DischargeEvent) -> str:
    name = event.source_name or event.source_id.replace("_", " ").title()
    return name.replace(" Water", "").replace(" Utilities", "")


def compose_post(
    event: DischargeEvent,
    url: Optional[str] = None,
    others: int = 0,
    rng: random.Random | None = None,
) -> str:
    """Build the post text, at most MAX_POST_LENGTH characters."""
    rng = rng or random.Random()
    where = event.watercourse or event.site_name or "a local watercourse"
    lines = [
        f"🚨 {short_company(event)} discharged sewage for "
        f"{format_duration(event.duration_minutes)} into {where}"
    ]
    litres = event.estimated_volume_litres()
    if litres is not None:
        lines[0] += f" (est. {litres:,} litres)"
    if others:
        lines.append(f"…plus {others} more long discharge(s) this cycle.")
    if url:
        lines.append(f"📊 Full details: {url}")
    lines.append(" ".join(rng.sample(HASHTAGS, rng.randint(2, 3))))
    text = "\n\n".join(lines)
    if len(text) > MAX_POST_LENGTH:
        text = text[: MAX_POST_LENGTH - 3] + "..."
    return text


class XClient:
    """Minimal X API v2 client: token refresh and post creation."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 20.0,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    @property
    def refresh_token(self) -> str:
        return self._refresh_token

    async def access_token(self) -> str:
        basic = base64.b64encode(
            f"{self._client_id}:{self._client_secret}".encode("utf-8")
        ).decode("ascii")
        try:
            response = await self._http.post(
                f"{X_API}/oauth2/token",
                headers={"Authorization": f"Basic {basic}"},
                data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
            )
        except httpx.HTTPError as exc:
            raise PublishError(f"X token refresh failed: {exc}") from exc
        if response.status_code >= 400:
            raise PublishError(f"X token refresh failed {response.status_code}: {response.text[:200]}")

        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise PublishError("X token refresh returned no access_token")
        rotated = payload.get("refresh_token")
        if rotated and rotated != self._refresh_token:
            logger.warning("X refresh token rotated; update OVERFLOW_X_REFRESH_TOKEN")
            self._refresh_token = rotated
        return token

    async def post(self, text: str) -> dict[str, Any]:
        """Create a post.  A duplicate-content rejection counts as success."""
        token = await self.access_token()
        try:
            response = await self._http.post(
                f"{X_API}/tweets",
                json={"text": text},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise PublishError(f"X post failed: {exc}") from exc

        if response.status_code == 403 and "duplicate" in response.text.lower():
            logger.info("X rejected the post as a duplicate; treating as already posted")
            return {"duplicate": True}
        if response.status_code >= 400:
            raise PublishError(f"X post failed {response.status_code}: {response.text[:200]}")
        return response.json()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


class SocialPublisher(CyclePublisher):
    """Posts one summary per cycle to X."""

    def __init__(self, client: XClient, site_base_url: str = "", rng: random.Random | None = None) -> None:
        self._client = client
        self._site_base_url = site_base_url
        self._rng = rng or random.Random()

    @property
    def name(self) -> str:
        return "x"

    async def publish(self, batch: PublishBatch) -> None:
        lead = batch.events[0]
        text = compose_post(
            lead,
            cycle_url(self._site_base_url, batch.cycle_id),
            others=len(batch.events) - 1,
            rng=self._rng,
        )
        result = await self._client.post(text)
        post_id = (result.get("data") or {}).get("id")
        logger.info("Posted cycle %s to X (post id %s)", batch.cycle_id, post_id or "n/a")
