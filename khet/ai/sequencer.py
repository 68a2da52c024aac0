"""Drive the reasoning phases for one query and report them as steps."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from khet.ai.analyzer import Complexity, QueryAnalysis
from khet.ai.providers.base import ChatBackendError
from khet.ai.steps import SUCCESS_ICON, Step, StepId, StepStatus
from khet.ai.tools import ToolCall, ToolError, ToolRegistry, ToolResult, ToolSkipped, UncertaintyPolicy, price_source_policy

logger = logging.getLogger(__name__)

# Bounded waits that pace each phase for the UI, in milliseconds.
PHASE_DELAYS_MS: dict[str, int] = {
  StepId.UNDERSTAND: 800,
  StepId.TOOLS: 1200,
  StepId.UNCERTAINTY: 600,
  StepId.ANALYSIS: 1000,
  StepId.SYNTHESIS: 800,
  StepId.RESPONSE: 600,
}

ANALYSIS_DESCRIPTIONS: dict[str, str] = {
  "MARKET_PRICES": "Evaluating market trends and pricing patterns for optimal selling decisions",
  "CROP_DISEASE": "Assessing plant health conditions and determining treatment requirements",
  "SOIL_MANAGEMENT": "Analyzing soil conditions and nutrient requirements",
  "IRRIGATION": "Calculating optimal watering schedule based on weather and crop needs",
  "GOVERNMENT_SCHEMES": "Matching your profile with available government benefits and subsidies",
}

RESPONSE_DESCRIPTIONS: dict[Complexity, str] = {
  Complexity.SIMPLE: "Preparing clear, actionable advice",
  Complexity.MODERATE: "Crafting detailed recommendations with multiple options",
  Complexity.COMPLEX: "Structuring comprehensive analysis with step-by-step guidance",
}

UNCERTAINTY_TEXTS: dict[str, tuple[str, str]] = {
  "price_conflict": ("Resolving price discrepancies", "Found different rates from multiple sources - verifying with additional markets"),
  "weather_conflict": ("Checking weather data reliability", "Multiple forecasts show variation - cross-referencing meteorological sources"),
  "data_incomplete": ("Gathering additional information", "Some data sources unavailable - finding alternative reliable sources"),
}


@dataclass(frozen=True)
class ToolContext:
  title: str
  description: str
  icon: str


def tool_context(tool: str, analysis: QueryAnalysis) -> ToolContext:
  """Return display texts for a tool step, tailored to the query context."""
  location = analysis.contextual_elements.location or "your region"
  crops = analysis.contextual_elements.crops
  primary_crop = crops[0] if crops else "crops"

  contexts = {
    "get_current_weather": ToolContext(f"Checking weather for {location}", "Fetching current conditions and 7-day forecast for farming decisions", "partly-sunny"),
    "get_weather_irrigation_advice": ToolContext("Getting irrigation guidance", f"Calculating water needs based on weather and {primary_crop} requirements", "water"),
    "get_market_prices": ToolContext(f"Checking market rates for {primary_crop}", "Fetching latest prices from local mandis and wholesale markets", "cash"),
    "get_agmarknet_prices": ToolContext("Verifying prices on Agmarknet", "Cross-checking rates from government price portal", "stats-chart"),
    "identify_plant_disease": ToolContext(f"Analyzing {primary_crop} health", "Checking for common diseases and pest issues", "leaf"),
    "get_government_schemes": ToolContext("Finding relevant schemes", "Searching for applicable subsidies and government programs", "business"),
  }
  return contexts.get(tool) or ToolContext(f"Using {tool.replace('_', ' ')}", "Gathering relevant data for your query", "settings")


@dataclass
class SequenceResult:
  """Outcome of one sequencer run."""

  tool_results: list[ToolResult] = field(default_factory=list)
  skipped_tools: list[str] = field(default_factory=list)
  uncertainty: str | None = None
  cancelled: bool = False
  error: str | None = None
  failed_phase: str | None = None
  answer: str | None = None

  @property
  def ok(self) -> bool:
    return self.error is None and not self.cancelled


Emit = Callable[[Mapping[str, Any]], Step]
Sleep = Callable[[float], Awaitable[Any]]
# Produces the answer from the gathered tool results; raises ChatBackendError on failure.
Responder = Callable[[Sequence[ToolResult]], Awaitable[str]]


class ReasoningSequencer:
  """Run understand, tools, uncertainty, analysis, synthesis and response phases in order.

  Each phase reports an active (or processing/uncertain) step, does its work or
  a bounded wait standing in for it, then reports the matching completed step.
  Cancellation is checked before every phase and between tools; a phase that
  has started is never interrupted.
  """

  def __init__(
    self,
    tools: ToolRegistry | None = None,
    *,
    uncertainty_policy: UncertaintyPolicy = price_source_policy,
    delay_scale: float = 1.0,
    sleep: Sleep = asyncio.sleep,
  ) -> None:
    self._tools = tools or ToolRegistry()
    self._uncertainty_policy = uncertainty_policy
    self._delay_scale = delay_scale
    self._sleep = sleep

  async def _pause(self, phase: str) -> None:
    seconds = PHASE_DELAYS_MS.get(phase, 0) * self._delay_scale / 1000
    if seconds > 0:
      await self._sleep(seconds)

  async def run(
    self,
    analysis: QueryAnalysis,
    emit: Emit,
    *,
    query: str = "",
    cancel_event: asyncio.Event | None = None,
    responder: Responder | None = None,
  ) -> SequenceResult:
    """Run every phase; `responder`, when given, does the work of the response phase.

    The response only completes once the responder has returned. A responder
    failure ends the run with a single error step instead.
    """
    result = SequenceResult()

    def cancelled() -> bool:
      if cancel_event is not None and cancel_event.is_set():
        result.cancelled = True
        return True
      return False

    if cancelled():
      return result
    await self._understand(analysis, emit)

    if cancelled():
      return result
    if analysis.required_tools:
      await self._gather_tools(analysis, emit, query, result, cancelled)
      if result.error is not None or result.cancelled:
        return result
    else:
      emit(
        {
          "id": StepId.KNOWLEDGE,
          "title": "Using agricultural knowledge base",
          "description": "No real-time data needed - applying farming expertise",
          "status": StepStatus.COMPLETED,
        }
      )

    conflict = self._uncertainty_policy(result.tool_results)
    if conflict is not None:
      if cancelled():
        return result
      result.uncertainty = conflict
      await self._uncertainty(conflict, emit)

    if cancelled():
      return result
    await self._analysis(analysis, emit)

    if analysis.complexity is not Complexity.SIMPLE:
      if cancelled():
        return result
      await self._synthesis(analysis, emit, result)

    if cancelled():
      return result
    await self._response(analysis, emit, result, responder)
    return result

  async def _understand(self, analysis: QueryAnalysis, emit: Emit) -> None:
    labels = " and ".join(analysis.pattern_labels())
    elements = analysis.contextual_elements
    crops = f" for {' and '.join(elements.crops[:2])}" if elements.crops else ""
    where = f" in {elements.location}" if elements.location else ""
    emit(
      {
        "id": StepId.UNDERSTAND,
        "title": f"Analyzing {labels or 'farming'} query",
        "description": f"Breaking down question about {labels or 'farming'}{crops}{where}",
        "status": StepStatus.ACTIVE,
        "metadata": {"complexity": analysis.complexity.value, "patterns": [match.type for match in analysis.detected_patterns]},
      }
    )
    await self._pause(StepId.UNDERSTAND)
    emit(
      {
        "id": StepId.UNDERSTAND,
        "title": "Query analysis complete",
        "description": f"Identified {len(analysis.detected_patterns)} key areas requiring {analysis.complexity.value} processing",
        "status": StepStatus.COMPLETED,
        "icon": SUCCESS_ICON,
      }
    )

  async def _gather_tools(self, analysis: QueryAnalysis, emit: Emit, query: str, result: SequenceResult, cancelled: Callable[[], bool]) -> None:
    tools = analysis.required_tools
    emit({"id": StepId.TOOLS, "title": "Gathering real-time data", "description": f"Consulting {len(tools)} data sources", "status": StepStatus.ACTIVE})

    elements = analysis.contextual_elements
    invoked = False
    for index, tool in enumerate(tools):
      if cancelled():
        return
      step_id = f"tool_{index}"
      context = tool_context(tool, analysis)
      metadata = {"tool": tool, "tool_index": index, "total_tools": len(tools)}

      if not self._tools.has(tool):
        emit({"id": step_id, "title": context.title, "description": "Data source not available right now", "status": StepStatus.SKIPPED, "icon": context.icon, "metadata": metadata})
        result.skipped_tools.append(tool)
        continue

      emit({"id": step_id, "title": context.title, "description": context.description, "status": StepStatus.PROCESSING, "icon": context.icon, "metadata": metadata})
      invoked = True
      try:
        tool_result = await self._tools.invoke(ToolCall(name=tool, query=query, location=elements.location, crops=elements.crops))
      except ToolSkipped as exc:
        emit({"id": step_id, "title": context.title, "description": exc.reason, "status": StepStatus.SKIPPED, "icon": context.icon, "metadata": metadata})
        result.skipped_tools.append(tool)
        continue
      except ToolError as exc:
        result.error = exc.message
        result.failed_phase = StepId.TOOLS
        emit(
          {
            "id": StepId.ERROR,
            "title": f"{context.title} failed",
            "description": f"Could not retrieve {tool.replace('_', ' ')} data: {exc.message}",
            "status": StepStatus.ERROR,
            "metadata": metadata,
          }
        )
        return

      result.tool_results.append(tool_result)
      emit(
        {
          "id": step_id,
          "title": f"{context.title} - Complete",
          "description": f"Successfully retrieved {tool.replace('_', ' ')} data",
          "status": StepStatus.COMPLETED,
          "icon": SUCCESS_ICON,
          "duration": tool_result.duration_ms,
          "metadata": metadata,
        }
      )

    if not invoked:
      await self._pause(StepId.TOOLS)
    emit(
      {
        "id": StepId.TOOLS,
        "title": "Data gathering complete",
        "description": f"Retrieved {len(result.tool_results)} of {len(tools)} data sources",
        "status": StepStatus.COMPLETED,
        "icon": SUCCESS_ICON,
      }
    )

  async def _uncertainty(self, conflict: str, emit: Emit) -> None:
    title, description = UNCERTAINTY_TEXTS.get(conflict, ("Resolving data uncertainty", "Cross-checking information from multiple sources"))
    emit({"id": StepId.UNCERTAINTY, "title": title, "description": description, "status": StepStatus.UNCERTAIN, "metadata": {"uncertainty_type": conflict}})
    await self._pause(StepId.UNCERTAINTY)
    emit(
      {
        "id": StepId.UNCERTAINTY,
        "title": "Data conflicts resolved",
        "description": "Cross-referenced multiple sources for accurate information",
        "status": StepStatus.COMPLETED,
        "icon": SUCCESS_ICON,
      }
    )

  async def _analysis(self, analysis: QueryAnalysis, emit: Emit) -> None:
    primary = analysis.primary_pattern
    if primary is None:
      title = "Processing agricultural data"
      description = "Analyzing information and applying farming best practices"
    else:
      title = f"Analyzing {primary.label} data"
      if primary.type == "WEATHER":
        elements = analysis.contextual_elements
        description = f"Analyzing weather impact on {' and '.join(elements.crops) or 'crops'} in {elements.location or 'your area'}"
      else:
        description = ANALYSIS_DESCRIPTIONS.get(primary.type, "Processing gathered information for actionable insights")
    emit({"id": StepId.ANALYSIS, "title": title, "description": description, "status": StepStatus.ACTIVE})
    await self._pause(StepId.ANALYSIS)
    emit({"id": StepId.ANALYSIS, "title": "Analysis complete", "description": "All data processed and insights generated", "status": StepStatus.COMPLETED, "icon": SUCCESS_ICON})

  async def _synthesis(self, analysis: QueryAnalysis, emit: Emit, result: SequenceResult) -> None:
    labels = ", ".join(analysis.pattern_labels()) or "farming"
    emit(
      {
        "id": StepId.SYNTHESIS,
        "title": "Combining insights from multiple sources",
        "description": f"Synthesizing data from {len(result.tool_results)} sources to create comprehensive {labels} recommendations",
        "status": StepStatus.ACTIVE,
      }
    )
    await self._pause(StepId.SYNTHESIS)
    emit(
      {
        "id": StepId.SYNTHESIS,
        "title": "Insights synthesized",
        "description": "Combined multiple data sources into cohesive recommendations",
        "status": StepStatus.COMPLETED,
        "icon": SUCCESS_ICON,
      }
    )

  async def _response(self, analysis: QueryAnalysis, emit: Emit, result: SequenceResult, responder: Responder | None) -> None:
    emit(
      {
        "id": StepId.RESPONSE,
        "title": "Preparing farmer-friendly recommendations",
        "description": RESPONSE_DESCRIPTIONS[analysis.complexity],
        "status": StepStatus.ACTIVE,
        "metadata": {"complexity": analysis.complexity.value, "estimated_steps": analysis.estimated_steps},
      }
    )
    if responder is None:
      await self._pause(StepId.RESPONSE)
    else:
      try:
        result.answer = await responder(result.tool_results)
      except ChatBackendError as exc:
        logger.warning("Responder failed: %s", exc)
        result.error = str(exc)
        result.failed_phase = StepId.RESPONSE
        emit({"id": StepId.ERROR, "title": "Advisor unavailable", "description": "Could not prepare recommendations right now", "status": StepStatus.ERROR})
        return
    emit({"id": StepId.RESPONSE, "title": "Recommendations ready", "description": "Actionable farming advice prepared for you", "status": StepStatus.COMPLETED, "icon": SUCCESS_ICON})
