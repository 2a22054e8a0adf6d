"""
Vision LLM Caller (Ollama, structured output, primary → fallback)
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from langchain_core.runnables import RunnableLambda
from langchain_ollama import ChatOllama

from docstruct.config.system_loader import get_model_config
from docstruct.errors import OperationAbortedError, VisionCallError
from docstruct.models import TokenUsage
from docstruct.utils.logging_utils import get_component_logger


# =====================================================
# LOGGER SETUP
# =====================================================

logger = get_component_logger("VisionLLMCaller", component="pages")


# =====================================================
# Lazy per-model LLM cache
# =====================================================

_llm_instances: Dict[str, ChatOllama] = {}
_llm_lock = threading.Lock()


def get_llm(model_name: str, base_url: Optional[str] = None, temperature: float = 0):
    with _llm_lock:
        if model_name not in _llm_instances:
            try:
                logger.info(f"Loading Ollama vision model {model_name} (lazy)...")
                _llm_instances[model_name] = ChatOllama(
                    model=model_name,
                    base_url=base_url,
                    temperature=temperature
                )
                logger.info("LLM loaded successfully.")
            except Exception:
                logger.exception(f"Failed to load Ollama model {model_name}")
                raise
    return _llm_instances[model_name]


@dataclass
class VisionCallResult:
    output: Any
    usage: TokenUsage
    used_fallback: bool


def _require_parsed(response: Dict[str, Any]) -> Dict[str, Any]:
    if response.get("parsed") is None:
        raise ValueError(
            f"Structured output could not be parsed: {response.get('parsing_error')}"
        )
    return response


def _check_abort(abort_event: Optional[threading.Event]):
    if abort_event is not None and abort_event.is_set():
        raise OperationAbortedError("Vision LLM call aborted")


class VisionLLMCaller:

    def __init__(
        self,
        llm_factory: Optional[Callable[[str], Any]] = None,
        base_url: Optional[str] = None,
        temperature: float = 0,
        retry_jitter: bool = True
    ):
        self.llm_factory = llm_factory or (
            lambda name: get_llm(name, base_url=base_url, temperature=temperature)
        )
        self.retry_jitter = retry_jitter

    @classmethod
    def from_config(cls) -> "VisionLLMCaller":
        vision = get_model_config().get("vision", {})
        return cls(
            base_url=vision.get("base_url"),
            temperature=vision.get("temperature", 0)
        )

    # -------------------------------------------------
    def call_vision(
        self,
        schema,
        messages,
        primary_model: str,
        fallback_model: Optional[str] = None,
        max_retries: int = 3,
        abort_event: Optional[threading.Event] = None,
        component: str = "",
        phase: str = ""
    ) -> VisionCallResult:

        try:
            output, usage = self._invoke(
                schema, messages, primary_model, "primary",
                max_retries, abort_event, component, phase
            )
            return VisionCallResult(output=output, usage=usage, used_fallback=False)

        except OperationAbortedError:
            raise
        except Exception:
            if not fallback_model:
                raise
            logger.warning(
                f"[{component}] Primary model {primary_model} failed → "
                f"switching to fallback {fallback_model}"
            )

        output, usage = self._invoke(
            schema, messages, fallback_model, "fallback",
            max_retries, abort_event, component, phase
        )
        return VisionCallResult(output=output, usage=usage, used_fallback=True)

    # -------------------------------------------------
    def _invoke(
        self,
        schema,
        messages,
        model_name: str,
        model_role: str,
        max_retries: int,
        abort_event: Optional[threading.Event],
        component: str,
        phase: str
    ):
        _check_abort(abort_event)

        llm = self.llm_factory(model_name)
        structured = llm.with_structured_output(schema, include_raw=True)

        def attempt(msgs):
            _check_abort(abort_event)
            try:
                return _require_parsed(structured.invoke(msgs))
            except Exception as e:
                # a failure caused by cancellation is not retried
                _check_abort(abort_event)
                raise VisionCallError(f"{model_name}: {type(e).__name__}: {e}") from e

        chain = RunnableLambda(attempt).with_retry(
            retry_if_exception_type=(VisionCallError,),
            stop_after_attempt=max_retries + 1,
            wait_exponential_jitter=self.retry_jitter
        )

        response = chain.invoke(messages)

        _check_abort(abort_event)

        metadata = getattr(response.get("raw"), "usage_metadata", None) or {}
        usage = TokenUsage(
            component=component,
            phase=phase,
            model=model_role,
            model_name=model_name,
            input_tokens=metadata.get("input_tokens", 0),
            output_tokens=metadata.get("output_tokens", 0),
            total_tokens=metadata.get("total_tokens", 0),
        )

        logger.info(
            f"[{component}/{phase}] {model_name} | "
            f"tokens in={usage.input_tokens} out={usage.output_tokens}"
        )

        return response["parsed"], usage
