"""Provider adapter contract and shared streaming machinery.

Every vendor adapter turns a canonical ``ChatRequest`` into one vendor HTTP
call and the vendor's stream into the unified event sequence. ``BaseAdapter``
owns the parts that are identical for all vendors: the HTTP client, retrying
the connection, mapping failures to ``error`` events and guaranteeing that a
stream starts with ``message:start`` and ends with exactly one terminal event.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Protocol

import httpx
import structlog
import tenacity

from copilot_runtime.core.events import (
    DoneEvent,
    ErrorEvent,
    MessageDelta,
    MessageEnd,
    MessageStart,
    StreamEvent,
    ThinkingDelta,
    ToolCallsEvent,
)
from copilot_runtime.core.exceptions import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderUnavailableError,
)
from copilot_runtime.core.messages import Message, TokenUsage, ToolCall, generate_message_id
from copilot_runtime.core.tools import ToolDefinition
from copilot_runtime.platform.constants import USER_AGENT
from copilot_runtime.platform.observability.logging import correlation_id_ctx

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0

# Raised by vendor parsers when a frame is valid JSON of the wrong shape
_SHAPE_ERRORS = (KeyError, TypeError, AttributeError, IndexError, ValueError)


@dataclass(frozen=True)
class ModelOptions:
    """Per-request model options.

    Attributes:
        model: Vendor model id
        temperature: Sampling temperature
        max_tokens: Maximum output tokens
        thinking: Enable reasoning output; an int is used as the token budget
        extra: Vendor-specific body fields merged into the request as-is
    """

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    thinking: bool | int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def merged(self, overrides: Mapping[str, Any] | None) -> "ModelOptions":
        """Return a copy with request-level overrides applied (camelCase accepted)."""
        if not overrides:
            return self
        known = {
            "model": overrides.get("model"),
            "temperature": overrides.get("temperature"),
            "max_tokens": overrides.get("max_tokens", overrides.get("maxTokens")),
            "thinking": overrides.get("thinking"),
        }
        updates: dict[str, Any] = {key: value for key, value in known.items() if value is not None}
        extra = overrides.get("extra")
        if isinstance(extra, Mapping):
            updates["extra"] = {**self.extra, **extra}
        return replace(self, **updates)


@dataclass(frozen=True)
class ChatRequest:
    """Canonical request consumed by every adapter.

    Attributes:
        messages: Conversation history
        system_prompt: System instructions, sent the way the vendor expects
        tools: Tool declarations; only their schemas are serialized
        options: Model options
    """

    messages: Sequence[Message]
    system_prompt: str | None = None
    tools: Sequence[ToolDefinition] = ()
    options: ModelOptions = field(default_factory=ModelOptions)


@dataclass(frozen=True)
class CompletionResult:
    """Result of a non-streaming model call."""

    content: str = ""
    thinking: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    usage: TokenUsage | None = None
    finish_reason: str | None = None
    raw: dict[str, Any] | None = field(default=None, repr=False, compare=False)


class ProviderAdapter(Protocol):
    """Protocol satisfied by every vendor adapter."""

    provider: str

    def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Stream unified events for one model invocation.

        The sequence starts with ``message:start`` and ends with exactly one
        ``done`` or ``error`` event. Vendor failures never raise.
        """
        ...

    async def complete(self, request: ChatRequest) -> CompletionResult:
        """Run one non-streaming model invocation."""
        ...

    async def aclose(self) -> None: ...


@dataclass
class _PendingCall:
    id: str | None = None
    name: str | None = None
    fragments: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Collects tool-call argument fragments until each call completes.

    Fragments are keyed by whatever identifies a call within the vendor's
    stream (an index or a call id). A call is JSON-parsed only when completed.
    """

    def __init__(self, provider: str):
        self._provider = provider
        self._pending: dict[Any, _PendingCall] = {}

    def __bool__(self) -> bool:
        return bool(self._pending)

    def append(
        self,
        key: Any,
        fragment: str | None = None,
        call_id: str | None = None,
        name: str | None = None,
    ) -> None:
        pending = self._pending.setdefault(key, _PendingCall())
        if call_id:
            pending.id = call_id
        if name:
            pending.name = name
        if fragment:
            pending.fragments.append(fragment)

    def complete(self, key: Any) -> ToolCall | None:
        """Finish one call and parse its arguments.

        Raises:
            ProviderResponseError: If the accumulated arguments are not a JSON object
        """
        pending = self._pending.pop(key, None)
        if pending is None:
            return None
        raw = "".join(pending.fragments).strip()
        try:
            args = json.loads(raw) if raw else {}
        except json.JSONDecodeError as e:
            raise ProviderResponseError(
                f"Invalid JSON arguments for tool call '{pending.name}': {raw[:200]!r}",
                provider=self._provider,
            ) from e
        if not isinstance(args, dict):
            raise ProviderResponseError(
                f"Tool call '{pending.name}' arguments are not an object", provider=self._provider
            )
        if not pending.name:
            raise ProviderResponseError("Tool call without a name", provider=self._provider)
        return ToolCall(id=pending.id or f"call_{key}", name=pending.name, args=args)

    def complete_all(self) -> list[ToolCall]:
        calls = [self.complete(key) for key in list(self._pending)]
        return [call for call in calls if call is not None]


@dataclass
class TurnState:
    """Mutable bookkeeping for one streamed model turn."""

    provider: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage | None = None
    finish_reason: str | None = None
    accumulator: ToolCallAccumulator = field(init=False)

    def __post_init__(self):
        self.accumulator = ToolCallAccumulator(self.provider)

    def complete_call(self, key: Any) -> None:
        call = self.accumulator.complete(key)
        if call is not None:
            self.tool_calls.append(call)

    def finish(self) -> None:
        self.tool_calls.extend(self.accumulator.complete_all())


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


async def _inject_request_id(request: httpx.Request) -> None:
    """Propagate the current correlation id to the vendor call."""
    correlation_id = correlation_id_ctx.get()
    if correlation_id:
        request.headers["X-Request-ID"] = correlation_id


class BaseAdapter(ABC):
    """Shared implementation of the adapter contract over httpx."""

    provider: ClassVar[str] = "base"
    default_base_url: ClassVar[str] = ""
    supports_non_streaming: ClassVar[bool] = False

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        headers: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """Initialize the adapter.

        Args:
            api_key: Vendor API key
            base_url: Override of the vendor base URL
            headers: Extra headers sent with every request
            http_client: Pre-configured client; created lazily when omitted
            timeout: Read timeout in seconds for a lazily created client
        """
        self._api_key = api_key
        self._base_url = (base_url or self.default_base_url).rstrip("/")
        self._extra_headers = dict(headers or {})
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._timeout = timeout

    def __repr__(self) -> str:
        key_repr = "<obfuscated>" if self._api_key else "None"
        return f"{type(self).__name__}(base_url={self._base_url!r}, api_key={key_repr})"

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                headers={"user-agent": USER_AGENT},
                event_hooks={"request": [_inject_request_id]},
            )
            self._owns_http_client = True
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    # Vendor hooks

    @abstractmethod
    def _endpoint(self, request: ChatRequest, stream: bool) -> str:
        """Full URL of the vendor call."""

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        """Authentication and vendor headers."""

    @abstractmethod
    def _build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        """Serialize the canonical request into the vendor body."""

    @abstractmethod
    def _read_stream(self, response: httpx.Response, turn: TurnState) -> AsyncIterator[StreamEvent]:
        """Yield content events from a streaming response.

        Implementations record tool calls and usage on ``turn`` instead of
        yielding them; the base class emits them once the stream is over.
        """

    def _parse_completion(self, payload: dict[str, Any]) -> CompletionResult:
        raise NotImplementedError

    # Public API

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        yield MessageStart(id=generate_message_id())

        turn = TurnState(provider=self.provider)
        try:
            async with self._open(request, stream=True) as response:
                async for event in self._read_events(response, turn):
                    yield event
            turn.finish()
        except ProviderError as e:
            logger.warning("provider_stream_failed", provider=self.provider, error=str(e))
            yield ErrorEvent(message=str(e), code=e.code)
            return
        except httpx.HTTPError as e:
            logger.warning("provider_transport_failed", provider=self.provider, error=repr(e))
            yield ErrorEvent(
                message=f"{self.provider} request failed: {e or type(e).__name__}",
                code=f"{self.provider.upper()}_ERROR",
            )
            return

        if turn.tool_calls:
            yield ToolCallsEvent(tool_calls=tuple(turn.tool_calls))
        yield MessageEnd()
        yield DoneEvent(requires_action=bool(turn.tool_calls), usage=turn.usage)

    async def complete(self, request: ChatRequest) -> CompletionResult:
        """Run a non-streaming call.

        Vendors without a separate non-streaming API are served by collecting
        the stream.

        Raises:
            ProviderError: If the vendor call fails
        """
        if not self.supports_non_streaming:
            return await self._collect_stream(request)
        try:
            async with self._open(request, stream=False) as response:
                payload = json.loads(await response.aread())
        except json.JSONDecodeError as e:
            raise ProviderResponseError("Response body is not JSON", provider=self.provider) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(str(e) or type(e).__name__, provider=self.provider) from e
        try:
            return self._parse_completion(payload)
        except _SHAPE_ERRORS as e:
            raise self._shape_error(e) from e

    async def _read_events(
        self, response: httpx.Response, turn: TurnState
    ) -> AsyncIterator[StreamEvent]:
        """``_read_stream`` with wrong-shaped frames reported as ProviderResponseError."""
        async with aclosing(self._read_stream(response, turn)) as events:
            while True:
                try:
                    event = await anext(events)
                except StopAsyncIteration:
                    return
                except _SHAPE_ERRORS as e:
                    raise self._shape_error(e) from e
                yield event

    def _shape_error(self, error: Exception) -> ProviderResponseError:
        return ProviderResponseError(
            f"Unexpected response shape ({type(error).__name__}: {error})", provider=self.provider
        )

    async def _collect_stream(self, request: ChatRequest) -> CompletionResult:
        content: list[str] = []
        thinking: list[str] = []
        tool_calls: tuple[ToolCall, ...] = ()
        usage: TokenUsage | None = None
        async for event in self.stream(request):
            match event:
                case MessageDelta(content=text):
                    content.append(text)
                case ThinkingDelta(content=text):
                    thinking.append(text)
                case ToolCallsEvent(tool_calls=calls):
                    tool_calls = calls
                case DoneEvent(usage=done_usage):
                    usage = done_usage
                case ErrorEvent(message=message, code=code):
                    raise ProviderError(message, provider=self.provider, code=code)
        return CompletionResult(
            content="".join(content),
            thinking="".join(thinking),
            tool_calls=tool_calls,
            usage=usage,
            finish_reason="tool_calls" if tool_calls else "stop",
        )

    # HTTP plumbing

    @asynccontextmanager
    async def _open(self, request: ChatRequest, stream: bool) -> AsyncIterator[httpx.Response]:
        http_request = self.http_client.build_request(
            "POST",
            self._endpoint(request, stream),
            headers={"content-type": "application/json", **self._headers(), **self._extra_headers},
            json=self._build_body(request, stream),
        )
        response = await self._send(http_request)
        try:
            yield response
        finally:
            await response.aclose()

    @tenacity.retry(
        wait=tenacity.wait_exponential(multiplier=0.5, max=4),
        stop=tenacity.stop_after_attempt(3),
        retry=tenacity.retry_if_exception(_is_retryable),
        reraise=True,
    )
    async def _send(self, http_request: httpx.Request) -> httpx.Response:
        """Open the vendor response, retrying connection failures, 429 and 5xx.

        Retries happen before any byte of the body is consumed.
        """
        try:
            response = await self.http_client.send(http_request, stream=True)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise ProviderUnavailableError(
                str(e) or type(e).__name__, provider=self.provider
            ) from e
        if response.is_success:
            return response
        body = await response.aread()
        await response.aclose()
        raise self._error_for_status(response.status_code, body)

    def _error_for_status(self, status_code: int, body: bytes) -> ProviderError:
        message = extract_error_message(body) or f"HTTP {status_code}"
        if status_code in (401, 403):
            error_cls: type[ProviderError] = ProviderAuthenticationError
        elif status_code == 429:
            error_cls = ProviderRateLimitError
        elif status_code >= 500:
            error_cls = ProviderUnavailableError
        else:
            error_cls = ProviderError
        return error_cls(message, provider=self.provider, status_code=status_code)


def extract_error_message(body: bytes) -> str | None:
    """Pull a human-readable message out of a vendor error body."""
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return text[:500]
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if isinstance(payload, dict):
        error = payload.get("error", payload)
        if isinstance(error, dict):
            return str(error.get("message") or error.get("type") or error)
        if isinstance(error, str):
            return error
        if "message" in payload:
            return str(payload["message"])
    return text[:500]
