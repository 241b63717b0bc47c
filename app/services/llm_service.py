"""
LLM Service for AI-generated conversation reports

Sends normalized threads to Claude and returns the JSON report it writes.
The analytics engine never interprets the report beyond validating its
shape; deterministic figures (thread counts, revenue) always come from the
engine and override whatever the model returns.
"""
import json
from typing import Any, Dict, List, Optional

from anthropic import Anthropic

from app.config import get_settings
from app.utils.logger import log

settings = get_settings()

SYSTEM_PROMPT = (
    "You output only valid JSON according to the requested schema. "
    "Respond ONLY with the JSON object; no code fences or prose."
)


class LLMService:
    """
    Thin client around the Anthropic API for report generation
    """

    def __init__(self):
        self.enabled = bool(settings.enable_llm_insights and settings.anthropic_api_key)
        self.client = None

        if self.enabled:
            try:
                self.client = Anthropic(api_key=settings.anthropic_api_key)
                log.info("LLM Service initialized with Claude")
            except Exception as e:
                log.error(f"Failed to initialize Anthropic client: {str(e)}")
                self.enabled = False
        else:
            log.info("LLM reports disabled (no API key or feature disabled)")

    def generate_json_report(
        self,
        instructions: str,
        threads: List[Dict[str, Any]],
        window_days: int,
    ) -> Optional[Dict[str, Any]]:
        """
        Ask the model for a JSON report over `threads`.

        Returns None when the service is disabled, the call fails, or the
        reply is not a JSON object.
        """
        if not self.enabled:
            return None

        prompt = (
            f"{instructions}\n\n### Threads (last {window_days} days)\n"
            f"{json.dumps(threads, indent=2, default=str)}"
        )

        try:
            response = self.client.messages.create(
                model=settings.llm_model,
                max_tokens=settings.llm_max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}]
            )
            raw = response.content[0].text.strip() if response.content else ""
        except Exception as e:
            log.error(f"Error generating LLM report: {str(e)}")
            return None

        if not raw:
            log.warning("LLM returned an empty report")
            return None

        try:
            report = json.loads(raw)
        except ValueError:
            log.warning(f"LLM report is not valid JSON ({len(raw)} chars)")
            return None

        if not isinstance(report, dict):
            log.warning("LLM report is not a JSON object")
            return None

        log.info(f"Generated LLM report over {len(threads)} threads")
        return report
