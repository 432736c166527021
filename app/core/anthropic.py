from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from typing import Callable
import httpx
from app.core.config import settings
from app.core.errors import LLMError
from app.pipeline.router import StageModelConfig

log = logging.getLogger(__name__)

OVERLOAD_STATUSES = {429, 529}


@dataclass
class AnthropicClient:
    """Stage call collaborator backed by the Anthropic Messages API."""
    api_key: str
    api_base: str = settings.anthropic_api_base
    version: str = settings.anthropic_version
    timeout: float = settings.llm_request_timeout
    max_retries: int = settings.llm_max_retries
    base_delay: float = settings.llm_retry_base_delay
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_settings(cls) -> "AnthropicClient":
        if not settings.anthropic_api_key:
            raise LLMError("ANTHROPIC_API_KEY is not set")
        return cls(api_key=settings.anthropic_api_key)

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.version,
            "content-type": "application/json",
        }

    def call(self, system_prompt: str, user_prompt: str, stage_name: str, config: StageModelConfig) -> str:
        body = {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        url = f"{self.api_base}/v1/messages"

        with httpx.Client(timeout=self.timeout) as client:
            for attempt in range(1, self.max_retries + 1):
                delay = self.base_delay * (2 ** (attempt - 1))
                try:
                    started = time.monotonic()
                    r = client.post(url, headers=self._headers(), json=body)
                except httpx.TransportError as e:
                    if attempt == self.max_retries:
                        raise LLMError(f"{stage_name}: network error after {attempt} attempts: {e}") from e
                    log.warning("%s: network error (%s), retrying in %.1fs", stage_name, e, delay,
                                extra={"job_id": "-", "stage": stage_name})
                    self.sleep(delay)
                    continue

                if r.status_code in OVERLOAD_STATUSES or r.status_code >= 500:
                    if attempt == self.max_retries:
                        raise LLMError(
                            f"{stage_name}: model API unavailable ({r.status_code}) after {attempt} attempts"
                        )
                    if attempt == self.max_retries - 1 and config.fallback_model:
                        log.warning("%s: API %s, switching to fallback model %s", stage_name,
                                    r.status_code, config.fallback_model,
                                    extra={"job_id": "-", "stage": stage_name})
                        body["model"] = config.fallback_model
                    else:
                        log.warning("%s: API %s, retrying in %.1fs", stage_name, r.status_code, delay,
                                    extra={"job_id": "-", "stage": stage_name})
                    self.sleep(delay)
                    continue

                if r.status_code >= 400:
                    raise LLMError(f"{stage_name}: model API error {r.status_code}: {r.text[:500]}")

                data = r.json()
                text = "".join(
                    block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
                )
                usage = data.get("usage", {})
                log.info("%s: %s answered in %.1fs (%s in / %s out tokens)", stage_name, body["model"],
                         time.monotonic() - started, usage.get("input_tokens", 0), usage.get("output_tokens", 0),
                         extra={"job_id": "-", "stage": stage_name})
                return text

        raise LLMError(f"{stage_name}: no response after {self.max_retries} attempts")
