"""
LLM Analyzer

Streams a verdict from an OpenAI-compatible chat completions endpoint.
Each analyze() call runs its own short-lived event loop on the calling
consumer thread, so the scan pipeline stays purely thread based while the
HTTP side uses aiohttp.
"""

import asyncio
import json
import threading
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import structlog

from ..core.cancellation import CancelToken
from ..core.config import AnalyzerConfig
from ..scanner.filter_engine import build_prompt_hint
from ..scanner.traffic import TrafficItem
from .base import (
    Analyzer,
    AnalysisCancelled,
    AnalyzerError,
    AnalyzerTimeoutError,
    ChunkCallback,
)

logger = structlog.get_logger()

CANCEL_POLL_SECONDS = 0.2

EMPTY_CONTENT_VERDICT = "No issues found: the request content was empty."
EMPTY_RESPONSE_VERDICT = "No issues found: the analyzer returned no output."

SYSTEM_PROMPT = """# Role
You are a passive web security scanner. You triage HTTP request/response
pairs captured by an intercepting proxy and report security risks
(OWASP Top 10).

# Method
1. Identify the target: host, port, scheme and endpoint.
2. Study the request: parameter types, authentication and data format.
3. Infer the plausible vulnerability classes from those features.
4. Only report medium severity and above.

# Focus areas
- SQL injection: concatenated parameters, numeric ids, search features.
- Cross-site scripting: reflected input, HTML parameters, rich text.
- Command injection: file operations, system calls, ping style features.
- Path traversal: downloads, image loaders, include parameters.
- SSRF: parameters carrying URLs (url, src, redirect, callback, webhook).
- XXE: XML uploads, SOAP endpoints, SVG processing.
- Broken authentication: login endpoints, JWT, sessions.
- Broken access control: object ids, user identifiers, IDOR.

# Output
- Markdown, no tables.
- Start with exactly one of these lines:
  Severity: critical
  Severity: high
  Severity: medium
- For each finding give the issue, where it is, and how to verify it.
- When nothing of medium severity or above is present, answer only
  "No issues found".
"""


def format_traffic(item: TrafficItem, max_chars: int) -> str:
    """Request and response text, truncated to fit the model's input limit"""
    content = item.combined_content
    if len(content) <= max_chars:
        return content
    return (
        content[:max_chars]
        + f"\n\n[content truncated, original length: {len(content)} chars, "
        + f"truncated to {max_chars} chars]"
    )


def build_user_prompt(content: str, hints: Sequence = ()) -> str:
    prompt = (
        "Analyze the following HTTP traffic for security risks:\n\n"
        "```http\n"
        f"{content}\n"
        "```"
    )
    return prompt + build_prompt_hint(list(hints))


def is_stream_end(line: str) -> bool:
    return line.strip() == "data: [DONE]"


def parse_sse_line(line: str) -> Optional[str]:
    """
    Extract the text delta from one server-sent event line

    Args:
        line: Raw line, e.g. 'data: {"choices": [{"delta": {"content": "x"}}]}'

    Returns:
        The content delta, or None for comments, keep-alives and control lines
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None

    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None

    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Unparseable stream event", data=data[:120])
        return None

    choices = event.get("choices") or []
    if not choices:
        return None

    choice = choices[0]
    delta = choice.get("delta") or choice.get("message") or {}
    return delta.get("content") or None


class LLMAnalyzer(Analyzer):
    """Chat completions backed analyzer"""

    def __init__(self, config: AnalyzerConfig):
        self.config = config
        self.logger = logger.bind(component="llm_analyzer", model=config.model)
        self._stats_lock = threading.Lock()
        self.stats = {
            "analyses": 0,
            "failures": 0,
            "timeouts": 0,
            "cancelled": 0,
            "truncated": 0,
        }

    def build_payload(self, user_prompt: str) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "stream": True,
            "temperature": self.config.temperature,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
        }

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def analyze(
        self,
        item: TrafficItem,
        cancel_token: CancelToken,
        on_chunk: Optional[ChunkCallback] = None,
        hints: Sequence = ()
    ) -> str:
        if cancel_token.is_cancelled:
            raise AnalysisCancelled()

        content = format_traffic(item, self.config.max_content_chars)
        if not content.strip():
            self.logger.info("Empty traffic content, analysis skipped", url=item.url)
            return EMPTY_CONTENT_VERDICT

        if len(item.combined_content) > self.config.max_content_chars:
            self._count("truncated")
            self.logger.info(
                "Traffic content truncated",
                url=item.url,
                original=len(item.combined_content),
                limit=self.config.max_content_chars
            )

        payload = self.build_payload(build_user_prompt(content, hints))
        self._count("analyses")

        try:
            text = asyncio.run(self._analyze(payload, cancel_token, on_chunk))
        except AnalysisCancelled:
            self._count("cancelled")
            raise
        except asyncio.TimeoutError:
            self._count("timeouts")
            raise AnalyzerTimeoutError(self.config.timeout_seconds)
        except aiohttp.ClientError as e:
            self._count("failures")
            raise AnalyzerError(f"analyzer request failed: {e}") from e
        except AnalyzerError:
            self._count("failures")
            raise

        if not text.strip():
            return EMPTY_RESPONSE_VERDICT
        return text

    async def _analyze(
        self,
        payload: Dict[str, Any],
        cancel_token: CancelToken,
        on_chunk: Optional[ChunkCallback]
    ) -> str:
        """Race the streamed response against the cancel token"""
        reader = asyncio.create_task(self._stream(payload, on_chunk))
        watcher = asyncio.create_task(self._watch_cancel(cancel_token))

        done, _ = await asyncio.wait({reader, watcher}, return_when=asyncio.FIRST_COMPLETED)

        if reader in done:
            watcher.cancel()
            return reader.result()

        reader.cancel()
        try:
            await reader
        except (asyncio.CancelledError, aiohttp.ClientError):
            pass
        raise AnalysisCancelled()

    @staticmethod
    async def _watch_cancel(cancel_token: CancelToken):
        while not cancel_token.is_cancelled:
            await asyncio.sleep(CANCEL_POLL_SECONDS)

    async def _stream(self, payload: Dict[str, Any], on_chunk: Optional[ChunkCallback]) -> str:
        timeout = aiohttp.ClientTimeout(
            total=self.config.timeout_seconds,
            connect=self.config.connect_timeout_seconds
        )
        parts: List[str] = []

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                self.config.api_url,
                json=payload,
                headers=self._headers()
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise AnalyzerError(
                        f"analyzer returned HTTP {response.status}: {body[:200]}"
                    )

                async for raw_line in response.content:
                    line = raw_line.decode("utf-8", errors="replace")
                    if is_stream_end(line):
                        break

                    text = parse_sse_line(line)
                    if not text:
                        continue

                    parts.append(text)
                    if on_chunk:
                        on_chunk(text)

        return "".join(parts)

    def _count(self, key: str):
        # analyze() runs on every consumer thread at once
        with self._stats_lock:
            self.stats[key] += 1

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return dict(self.stats)
