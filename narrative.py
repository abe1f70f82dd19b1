"""Narrative summaries of the selected regions via the OpenAI chat API."""

from __future__ import annotations

import json
import logging
import math
import os
from typing import Any, Dict, List, Optional

import pandas as pd
from openai import AzureOpenAI, OpenAI

from fields import NAME

logger = logging.getLogger(__name__)

SUMMARY_FIELDS = [
    NAME,
    "HispanicPop",
    "Pop18To64",
    "Hispanic18To64",
    "Spanish18To64",
    "HispanicShareOf18To64",
    "Spanish18To64Pct",
]

PROMPT_TEMPLATE = """Using the US Census demographic data below, which includes the national summary and the top states accounting for ~80% of the total Hispanic population, give a high-level assessment of the Hispanic retail opportunity over the next 3-5 years for a company like Amazon.

Focus on implications for Spanish-language marketing, digital shopping behavior, and long-term brand strategy. Your answer should be strategic, forward-looking, and written for senior retail and marketing leaders.

{data}"""

DISABLED_TEXT = "Narrative generation is disabled."


class NarrativeError(RuntimeError):
    """The text-generation service failed or returned nothing usable."""


def _plain(value: Any) -> Any:
    if isinstance(value, float) and math.isnan(value):
        return None
    if hasattr(value, "item"):
        return _plain(value.item())
    return value


def build_summary(dataset: pd.DataFrame) -> List[Dict[str, Any]]:
    cols = [c for c in SUMMARY_FIELDS if c in dataset.columns]
    return [{k: _plain(v) for k, v in row.items()} for row in dataset[cols].to_dict(orient="records")]


def build_prompt(summary: List[Dict[str, Any]]) -> str:
    return PROMPT_TEMPLATE.format(data=json.dumps(summary, indent=2))


def client_tuning_kwargs() -> Dict[str, float | int]:
    try:
        timeout_seconds = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60"))
    except ValueError:
        timeout_seconds = 60.0
    try:
        max_retries = max(0, int(os.getenv("OPENAI_MAX_RETRIES", "1")))
    except ValueError:
        max_retries = 1
    return {"timeout": timeout_seconds, "max_retries": max_retries}


def init_openai_client() -> OpenAI:
    """Azure OpenAI when AZURE_OPENAI_ENDPOINT is set, the public API otherwise."""
    endpoint = os.getenv("AZURE_OPENAI_ENDPOINT", "").strip()
    if endpoint:
        api_key = os.getenv("AZURE_OPENAI_API_KEY", "").strip()
        if not api_key:
            raise ValueError("AZURE_OPENAI_ENDPOINT requires AZURE_OPENAI_API_KEY")
        return AzureOpenAI(
            azure_endpoint=endpoint,
            api_key=api_key,
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-06-01").strip() or "2024-06-01",
            **client_tuning_kwargs(),
        )
    return OpenAI(**client_tuning_kwargs())


class NarrativeGenerator:
    def __init__(self, model: str = "gpt-4o-mini", client: Optional[OpenAI] = None, max_tokens: int = 1500):
        self.model = model
        self.max_tokens = max_tokens
        self._client = client

    @property
    def client(self) -> OpenAI:
        # Built lazily so a missing key only fails the narrative, not the pipeline.
        if self._client is None:
            self._client = init_openai_client()
        return self._client

    def generate(self, summary: List[Dict[str, Any]]) -> str:
        try:
            client = self.client
            response = client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": build_prompt(summary)}],
            )
        except Exception as exc:
            raise NarrativeError(str(exc)) from exc

        text = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not text:
            raise NarrativeError("empty completion")
        logger.info("Narrative generated (%d chars, model=%s)", len(text), self.model)
        return text


class NullNarrator:
    def generate(self, summary: List[Dict[str, Any]]) -> str:
        return DISABLED_TEXT
