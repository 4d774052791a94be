import json
import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .interfaces import ProviderTimeout

logger = logging.getLogger(__name__)

# Provider calls are I/O bound; a small shared pool is enough to bound them
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="kyc-provider")

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".heic": "image/heic",
}


@dataclass(frozen=True)
class Outcome:
    """Result of a best-effort side effect."""
    ok: bool
    value: Any = None
    error: Optional[str] = None


def attempt(action: str, fn: Callable[..., Any], *args,
            errors: Optional[List[str]] = None,
            error_message: Optional[str] = None, **kwargs) -> Outcome:
    """
    Run ``fn`` and capture its result instead of raising.

    On failure the exception is logged under ``action``; if ``errors`` is
    given, ``error_message`` (or the exception text) is appended to it.
    """
    try:
        return Outcome(ok=True, value=fn(*args, **kwargs))
    except Exception as e:
        logger.warning("%s failed: %s", action, e, exc_info=True)
        if errors is not None:
            errors.append(error_message or str(e))
        return Outcome(ok=False, error=str(e))


def submit(fn: Callable[..., Any], *args, **kwargs):
    """Schedule a provider call on the shared pool and return its future."""
    return _executor.submit(fn, *args, **kwargs)


def wait_for(future, timeout: Optional[float], action: str) -> Any:
    """Wait for a provider future, turning an elapsed bound into ``ProviderTimeout``."""
    try:
        return future.result(timeout=timeout or None)
    except FutureTimeoutError:
        future.cancel()
        raise ProviderTimeout(f"{action} timed out after {timeout}s")


def call_with_timeout(fn: Callable[..., Any], timeout: Optional[float], *args,
                      action: str = "provider call", **kwargs) -> Any:
    """Run a provider call with an upper time bound."""
    if not timeout:
        return fn(*args, **kwargs)
    return wait_for(submit(fn, *args, **kwargs), timeout, action)


def get_file_extension(filename: str) -> str:
    """Get file extension from filename"""
    return os.path.splitext(filename)[1].lower()


def guess_content_type(filename: str) -> str:
    return CONTENT_TYPES.get(get_file_extension(filename), "application/octet-stream")


def safe_json_parse(text: str) -> Dict[str, Any]:
    """Safely parse the JSON object embedded in an LLM response"""
    match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if not match:
        raise ValueError("No JSON found in model output")
    try:
        parsed = json.loads(match.group())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in model output: {e}")
    if not isinstance(parsed, dict):
        raise ValueError("Model output is not a JSON object")
    return parsed
