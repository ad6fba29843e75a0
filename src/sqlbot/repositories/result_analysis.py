"""
Result analysis: a short insight and a chart suggestion for a result set.

Only a bounded sample of rows is sent to the LLM. An empty result is
answered locally without a model call.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from sqlbot.config import ChatConfig
from sqlbot.domain.base_enums import ChartType
from sqlbot.domain.responses import AnalysisResult
from sqlbot.infrastructure.llm_client import LanguageModelClient
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.prompt_loader import get_prompt
from sqlbot.utils.reply_parser import load_json_object
from sqlbot.utils.serialization import sanitize_for_json
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()

EMPTY_RESULT_INSIGHT = "The query returned no rows, nothing to analyze."

_CHART_TYPES = {chart.value for chart in ChartType}


def normalize_chart_type(value: Any) -> str:
    """Lowercased chart type; anything unknown falls back to 'table'."""
    if isinstance(value, str) and value.strip().lower() in _CHART_TYPES:
        return value.strip().lower()
    return ChartType.TABLE.value


def _axis(data: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip() and value.strip().lower() != "null":
            return value.strip()
    return None


class ResultAnalyzer:
    """
    LLM-backed insight and chart suggestion.

    Raises LLMError when the model call fails; callers treat the analysis
    as optional.
    """

    def __init__(self, llm_client: LanguageModelClient, config: ChatConfig):
        self.llm_client = llm_client
        self.config = config

    async def analyze(self, question: str, sql: str, rows: Sequence[Dict[str, Any]]) -> AnalysisResult:
        if not rows:
            return AnalysisResult(insight=EMPTY_RESULT_INSIGHT, chart_type=ChartType.TABLE.value)

        sample: List[Dict[str, Any]] = list(rows[: self.config.analysis_sample_rows])
        data_json = json.dumps(sanitize_for_json(sample), ensure_ascii=False)

        system_prompt, user_prompt = get_prompt("data_analysis").render(
            question=question,
            sql=sql,
            sample_size=self.config.analysis_sample_rows,
            data=data_json,
        )

        reply = await self.llm_client.complete(
            user_prompt,
            system_prompt=system_prompt,
            temperature=self.config.analysis_temperature,
        )
        return self.parse_reply(reply)

    def parse_reply(self, reply: str) -> AnalysisResult:
        """
        Read {insight, chartType, xAxis, yAxis}; an unparseable reply
        becomes the insight text with a table chart.
        """
        data = load_json_object(reply)
        insight = data.get("insight") if data else None

        if not data or not isinstance(insight, str) or not insight.strip():
            logger.warning(
                "Could not parse analysis reply, using raw text",
                reply_preview=reply[:200],
                trace_id=current_trace_id(),
            )
            return AnalysisResult(insight=reply.strip(), chart_type=ChartType.TABLE.value)

        return AnalysisResult(
            insight=insight.strip(),
            chart_type=normalize_chart_type(data.get("chartType", data.get("chart_type"))),
            x_axis=_axis(data, "xAxis", "x_axis"),
            y_axis=_axis(data, "yAxis", "y_axis"),
        )
