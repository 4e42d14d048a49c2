from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, Literal, Protocol, TypeVar

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ValidationError

from .errors import CapabilityError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
StructuredOutputMethod = Literal["function_calling", "json_mode", "json_schema"]

_DEFAULT_TIMEOUT: float = 120.0
_DEFAULT_MAX_RETRIES: int = 2


class SupportsAInvoke(Protocol):
    """Protocol for any LangChain-compatible runnable that supports async invoke."""

    async def ainvoke(self, input: Any) -> Any:  # noqa: ANN401 - external runnable protocol.
        ...


@dataclass(slots=True)
class StructuredOutputAdapter(Generic[ModelT]):
    """Wraps a structured-output runnable so callers only ever see ``schema`` instances.

    Providers never parse free text: the runnable is bound to the schema with
    ``with_structured_output`` and whatever comes back is validated here.
    """

    capability: str
    schema: type[ModelT]
    runnable: SupportsAInvoke
    system_prompt: str = ""

    async def ainvoke(self, prompt: str) -> ModelT:
        """Send ``prompt`` and return a validated instance of the schema.

        Raises:
            CapabilityError: If the model returns output that does not validate.
        """
        messages: list[tuple[str, str]] = []
        if self.system_prompt:
            messages.append(("system", self.system_prompt))
        messages.append(("user", prompt))
        raw_output = await self.runnable.ainvoke(messages)
        return normalize_structured_output(raw_output=raw_output, schema=self.schema, capability=self.capability)


def ensure_openai_api_key(repo_root: Path | None = None) -> str:
    """Load OPENAI_API_KEY from environment or .env and return it.

    Raises:
        RuntimeError: If OPENAI_API_KEY is unavailable after all sources are checked.
    """
    repo = repo_root if repo_root is not None else Path.cwd()
    env_path = repo / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    key = os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        raise RuntimeError("OPENAI_API_KEY is required for LLM-backed capability providers")
    return key


def get_chat_model(
    *,
    model_name: str,
    temperature: float = 0.0,
    timeout: float = _DEFAULT_TIMEOUT,
    max_retries: int = _DEFAULT_MAX_RETRIES,
    repo_root: Path | None = None,
) -> ChatOpenAI:
    """Construct a ChatOpenAI instance with validated API key and production defaults.

    Raises:
        ValueError: If ``model_name`` is blank.
        RuntimeError: If OPENAI_API_KEY is not available.
    """
    if not model_name or not model_name.strip():
        raise ValueError("model_name must be a non-empty string")
    ensure_openai_api_key(repo_root=repo_root)
    return ChatOpenAI(
        model=model_name.strip(),
        temperature=temperature,
        timeout=timeout,
        max_retries=max_retries,
    )


def normalize_structured_output(*, raw_output: Any, schema: type[ModelT], capability: str = "llm") -> ModelT:
    """Normalize raw structured output into a validated pydantic instance.

    Accepts the ``include_raw=True`` envelope, a pydantic model (of the schema or
    another shape) or a plain dict. Anything else is a capability failure.

    Raises:
        CapabilityError: If the output cannot be parsed or validated against the schema.
    """
    payload = raw_output
    if isinstance(payload, dict) and "parsed" in payload and "parsing_error" in payload:
        parsing_error = payload.get("parsing_error")
        if parsing_error is not None:
            raise CapabilityError(capability, f"structured output parsing failed for {schema.__name__}: {parsing_error!r}")
        payload = payload.get("parsed")
        if payload is None:
            raise CapabilityError(capability, f"structured output returned no parsed payload for {schema.__name__}")

    if isinstance(payload, schema):
        return payload

    if isinstance(payload, BaseModel):
        candidate = payload.model_dump(mode="json")
    elif isinstance(payload, dict):
        candidate = payload
    else:
        raise CapabilityError(
            capability,
            f"structured output for {schema.__name__} returned unsupported payload type {type(payload).__name__}",
        )

    try:
        return schema.model_validate(candidate)
    except ValidationError as exc:
        raise CapabilityError(capability, f"structured output validation failed for {schema.__name__}: {exc}") from exc


def get_structured_chat_model(
    *,
    capability: str,
    model_name: str,
    schema: type[ModelT],
    system_prompt: str = "",
    temperature: float = 0.0,
    timeout: float = _DEFAULT_TIMEOUT,
    max_retries: int = _DEFAULT_MAX_RETRIES,
    method: StructuredOutputMethod = "function_calling",
    strict: bool = False,
    repo_root: Path | None = None,
) -> StructuredOutputAdapter[ModelT]:
    """Build an adapter whose responses are constrained to ``schema``.

    Raises:
        ValueError: If strict=True with method='json_mode'.
        RuntimeError: If OPENAI_API_KEY is not available.
    """
    if method == "json_mode" and strict:
        raise ValueError("strict=True is not valid for method='json_mode'")

    model = get_chat_model(
        model_name=model_name,
        temperature=temperature,
        timeout=timeout,
        max_retries=max_retries,
        repo_root=repo_root,
    )
    runnable = model.with_structured_output(
        schema,
        method=method,
        include_raw=False,
        strict=strict if method != "json_mode" else None,
    )
    logger.debug("Bound %s to %s for capability %s", schema.__name__, model_name, capability)
    return StructuredOutputAdapter(
        capability=capability,
        schema=schema,
        runnable=runnable,
        system_prompt=system_prompt,
    )
