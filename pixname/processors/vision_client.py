"""Client for an OpenAI-compatible vision endpoint (LM Studio and friends)."""

import base64
import time
from collections.abc import Callable

import httpx
import openai
from langchain.chat_models import init_chat_model
from langchain.chat_models.base import BaseChatModel
from langchain.messages import HumanMessage
from rich.console import Console
from rich.markup import escape
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from pixname.config import ProcessingOptions, VisionServiceConfig
from pixname.exceptions import ErrorKind, RetriesExhaustedError, VisionServiceError
from pixname.models.vision import VisionAnalysis
from pixname.processors.response_parser import parse_analysis_response
from pixname.prompts import build_analysis_prompt
from pixname.tokens import TokenUsage, usage_from_metadata


# Console for rich output
console = Console()

# Wait before the next attempt: (attempt_number, base_delay, rate_limit_multiplier) -> seconds
RetryWait = Callable[[int, float, float], float]


def exponential_backoff(attempt: int, base_delay: float, multiplier: float) -> float:
    return base_delay * 2 ** (attempt - 1)


def rate_limited_backoff(attempt: int, base_delay: float, multiplier: float) -> float:
    return base_delay * multiplier * 2 ** (attempt - 1)


# Error kinds missing from this table are terminal and never retried.
RETRY_POLICY: dict[ErrorKind, RetryWait] = {
    ErrorKind.SERVER: exponential_backoff,
    ErrorKind.TRANSPORT: exponential_backoff,
    ErrorKind.TIMEOUT: exponential_backoff,
    ErrorKind.RATE_LIMITED: rate_limited_backoff,
}


def _status_code_of(exc: BaseException) -> int | None:
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    return status_code if isinstance(status_code, int) else None


def classify_exception(exc: BaseException) -> tuple[ErrorKind, int | None]:
    """Map an exception raised while calling the endpoint to an `ErrorKind`.

    Returns:
        The error kind and the HTTP status code, when one is known.
    """
    status_code = _status_code_of(exc)
    if status_code is not None:
        if status_code == 429:
            return ErrorKind.RATE_LIMITED, status_code
        if status_code >= 500:
            return ErrorKind.SERVER, status_code
        if status_code >= 400:
            return ErrorKind.CLIENT, status_code
        return ErrorKind.UNEXPECTED, status_code

    # Timeouts first: both SDKs model them as a subclass of their connection error
    if isinstance(exc, (openai.APITimeoutError, httpx.TimeoutException, TimeoutError)):
        return ErrorKind.TIMEOUT, None
    if isinstance(exc, (openai.APIConnectionError, httpx.TransportError, ConnectionError)):
        return ErrorKind.TRANSPORT, None
    return ErrorKind.UNEXPECTED, None


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, VisionServiceError) and exc.kind in RETRY_POLICY


def _response_text(response) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return "" if content is None else str(content)


def default_llm(config: VisionServiceConfig) -> BaseChatModel:
    """Chat model pointed at the configured OpenAI-compatible server.

    SDK-level retries are disabled; retrying is driven by `RETRY_POLICY`.
    """
    return init_chat_model(
        model=config.model,
        model_provider="openai",
        base_url=config.base_url,
        api_key=config.api_key,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout=config.timeout_seconds,
        max_retries=0,
    )


class VisionClient:
    """Sends images to the vision model and returns validated analyses."""

    def __init__(
        self,
        config: VisionServiceConfig,
        options: ProcessingOptions | None = None,
        llm: BaseChatModel | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            config: Endpoint, model and retry settings.
            options: Processing options (filename style, tag limit).
            llm: LangChain chat model. Built from `config` when omitted.
            http_client: HTTP client for the model listing and liveness checks.
            sleep: Sleep function used between retries.
        """
        self.config = config
        self.options = options or ProcessingOptions()
        self.llm = llm if llm is not None else default_llm(config)
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.Client(
            timeout=config.timeout_seconds,
            headers={"Authorization": f"Bearer {config.api_key}"},
        )
        self._sleep = sleep
        self.usage = TokenUsage()

    def __enter__(self) -> "VisionClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http_client:
            self.http_client.close()

    def is_available(self) -> bool:
        """Liveness check: whether the server answers at all."""
        try:
            response = self.http_client.get(self.config.models_endpoint)
        except httpx.HTTPError as e:
            console.print(f"  [dim]Vision service not reachable at {self.config.base_url}: {escape(str(e))}[/dim]")
            return False
        return response.is_success

    def list_models(self) -> list[str]:
        """Identifiers of the models the server currently exposes."""
        try:
            response = self.http_client.get(self.config.models_endpoint)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            console.print(f"  [dim]Could not list models: {escape(str(e))}[/dim]")
            return []

        entries = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            return []
        return [str(entry["id"]) for entry in entries if isinstance(entry, dict) and entry.get("id")]

    def is_ready(self) -> bool:
        """Whether the server is reachable and has at least one model loaded."""
        return self.is_available() and bool(self.list_models())

    def build_messages(self, image_bytes: bytes, mime_type: str, prompt: str) -> list[HumanMessage]:
        """Build the chat payload: the prompt plus the image as a base64 data URL."""
        data_url = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"
        return [
            HumanMessage(
                content=[
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ]
            )
        ]

    def analyze(self, image_bytes: bytes, mime_type: str, filename_hint: str = "") -> VisionAnalysis:
        """Analyze one image, retrying transient failures.

        Args:
            image_bytes: Encoded image, already preprocessed.
            mime_type: MIME type of `image_bytes`.
            filename_hint: Original filename, offered to the model as context.

        Returns:
            The validated analysis with a sanitized filename.

        Raises:
            VisionServiceError: For terminal failures (client errors, unparseable replies).
            RetriesExhaustedError: When every attempt failed with a retryable error.
        """
        prompt = build_analysis_prompt(filename_hint, max_tags=self.options.max_tags)
        messages = self.build_messages(image_bytes, mime_type, prompt)

        retrying = Retrying(
            retry=retry_if_exception(is_retryable),
            stop=stop_after_attempt(self.config.max_retries),
            wait=self._wait_for_error_kind,
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        start_time = time.time()
        try:
            analysis = retrying(self._analyze_once, messages, prompt)
        except VisionServiceError as e:
            if is_retryable(e):
                raise RetriesExhaustedError(e, attempts=self.config.max_retries) from e
            raise

        elapsed = time.time() - start_time
        console.print(f"  [green]Analyzed {filename_hint or 'image'} in {elapsed:.1f}s[/green]")
        return analysis

    def _analyze_once(self, messages: list[HumanMessage], prompt: str) -> VisionAnalysis:
        try:
            response = self.llm.invoke(messages)
        except Exception as e:
            kind, status_code = classify_exception(e)
            label = f"HTTP {status_code}" if status_code is not None else kind.value
            raise VisionServiceError(f"Vision service error ({label}): {e}", kind, status_code) from e

        text = _response_text(response)
        input_tokens, output_tokens = usage_from_metadata(getattr(response, "usage_metadata", None), prompt, text)
        self.usage.add_call(input_tokens=input_tokens, output_tokens=output_tokens)

        return parse_analysis_response(
            text,
            filename_style=self.options.filename_style,
            max_tags=self.options.max_tags,
        )

    def _wait_for_error_kind(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = RETRY_POLICY.get(exc.kind) if isinstance(exc, VisionServiceError) else None
        if wait is None:
            return 0.0
        return wait(
            retry_state.attempt_number,
            self.config.retry_base_delay,
            self.config.rate_limit_backoff_multiplier,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        """Log retry attempt information."""
        wait_time = getattr(retry_state.next_action, "sleep", 0) if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        console.print(
            f"  [yellow]{escape(str(exc))}. Retrying in {wait_time:.1f}s "
            f"(attempt {retry_state.attempt_number}/{self.config.max_retries})...[/yellow]"
        )
