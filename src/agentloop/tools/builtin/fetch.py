"""``fetch`` tool: retrieve a URL and hand its text to the model."""

from __future__ import annotations

import html
import logging
import re
import time
from typing import Any, Mapping
from urllib.parse import urlparse

import httpx

from ...cache import TTLCache
from ...types import ToolResult
from ..approval import category_needs_approval
from ..schema import ParameterSchema, ToolSchema
from ..types import ApprovalCategory, ApprovalContext, Tool, ToolApproval

__all__ = ["MAX_CONTENT_LENGTH", "create_fetch_tool", "html_to_text"]

LOGGER = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 15000
TRUNCATION_MARKER = "...[content truncated]"
_USER_AGENT = "agentloop-fetch/1.0"

_SCRIPT = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_STYLE = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")

_DESCRIPTION = """
Fetches content from a URL and returns it together with the prompt.
- Takes a URL and a prompt describing what to extract
- HTML is converted to plain text; long pages are truncated
- Results are cached for a while, so repeated requests for the same URL are cheap
- The URL must be a fully-formed http(s) URL
"""


def html_to_text(markup: str) -> str:
    """Strip scripts, styles and tags and collapse whitespace."""
    text = _SCRIPT.sub("", markup)
    text = _STYLE.sub("", text)
    text = _TAG.sub(" ", text)
    return _WHITESPACE.sub(" ", html.unescape(text)).strip()


def _valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _truncate(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + TRUNCATION_MARKER


def create_fetch_tool(
    cache: TTLCache[dict[str, Any]] | None = None,
    client: httpx.AsyncClient | None = None,
    *,
    max_content_length: int = MAX_CONTENT_LENGTH,
    timeout: float = 30.0,
) -> Tool:
    """Build the fetch tool.

    ``client`` may be shared with the host; when omitted a short-lived client is
    opened per request. ``cache`` memoises successful results keyed by URL and
    prompt.
    """

    async def _get(url: str) -> httpx.Response:
        if client is not None:
            return await client.get(url, follow_redirects=True)
        async with httpx.AsyncClient(timeout=timeout, headers={"User-Agent": _USER_AGENT}) as session:
            return await session.get(url, follow_redirects=True)

    async def execute(params: Mapping[str, Any]) -> ToolResult:
        url = params["url"]
        prompt = params["prompt"]
        if not _valid_url(url):
            return ToolResult.error("Invalid URL")

        key = f"{url}-{prompt}"
        if cache is not None:
            cached = cache.get(key)
            if cached is not None:
                LOGGER.debug("fetch cache hit for %s", url)
                return ToolResult(llm_content=cached["result"], return_display={**cached, "cached": True})

        started = time.perf_counter()
        try:
            response = await _get(url)
        except httpx.HTTPError as exc:
            LOGGER.warning("fetch of %s failed: %s", url, exc)
            return ToolResult.error(f"Failed to fetch {url}: {exc}")
        if not response.is_success:
            return ToolResult.error(f"Failed to fetch {url}: {response.status_code} {response.reason_phrase}")

        content_type = response.headers.get("content-type", "")
        body = response.text
        content = html_to_text(body) if "text/html" in content_type else body
        result = f"Content from {url}:\n\n{_truncate(content, max_content_length)}\n\nPrompt: {prompt}"
        data = {
            "result": result,
            "code": response.status_code,
            "code_text": response.reason_phrase,
            "url": url,
            "bytes": len(response.content),
            "content_type": content_type,
            "duration_ms": int((time.perf_counter() - started) * 1000),
        }
        if cache is not None:
            cache.set(key, data)
        return ToolResult(llm_content=result, return_display=data)

    def needs_approval(ctx: ApprovalContext) -> bool:
        return category_needs_approval(ApprovalCategory.NETWORK, ctx.approval_mode)

    return Tool(
        name="fetch",
        description=_DESCRIPTION.strip(),
        handler=execute,
        schema=ToolSchema(
            (
                ParameterSchema("url", "string", "The URL to fetch content from", required=True),
                ParameterSchema("prompt", "string", "The prompt to run on the fetched content", required=True),
            )
        ),
        approval=ToolApproval(category=ApprovalCategory.NETWORK, needs_approval=needs_approval),
        describe=lambda params: str(params.get("url") or "No URL provided"),
    )
