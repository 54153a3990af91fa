import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    ok: bool
    summary: dict[str, Any] = field(default_factory=dict)
    payload: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, summary: Optional[dict[str, Any]] = None, payload: Any = None) -> "ProcessResult":
        return cls(ok=True, summary=summary or {}, payload=payload)

    @classmethod
    def failure(cls, error: str) -> "ProcessResult":
        return cls(ok=False, error=error)


# Does the actual work for one item. Raising or returning ok=False is a
# processing failure; the coordinator only cares about the outcome.
ItemProcessor = Callable[[str], Awaitable[ProcessResult]]

# Receives (item_id, payload) once an item succeeds. Persisting results is the
# Result Store's job, not the coordinator's.
PayloadSink = Callable[[str, Any], Awaitable[None]]


class HttpFetchProcessor:
    """
    Fetches one page per item, e.g. url_template="https://zapier.com/apps/{item_id}/integrations".
    A 2xx response is a success; the body is handed to the optional sink.
    """

    def __init__(
        self,
        url_template: str,
        sink: Optional[PayloadSink] = None,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        if "{item_id}" not in url_template:
            raise ValueError("url_template must contain '{item_id}'")
        self.url_template = url_template
        self.sink = sink
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def __call__(self, item_id: str) -> ProcessResult:
        url = self.url_template.format(item_id=item_id)
        try:
            resp = await self.client.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            return ProcessResult.failure(f"{url} returned {e.response.status_code}")
        except httpx.HTTPError as e:
            return ProcessResult.failure(f"{type(e).__name__}: {e}")

        if self.sink is not None:
            await self.sink(item_id, resp.text)

        return ProcessResult.success(
            summary={"url": str(resp.url), "status_code": resp.status_code, "bytes": len(resp.content)},
            payload=resp.text,
        )

    async def close(self):
        await self.client.aclose()
