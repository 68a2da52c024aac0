"""Prompt helpers for the farming advisor chat."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from khet.ai.analyzer import QueryAnalysis
from khet.ai.providers.base import ChatMessage
from khet.ai.tools import ToolResult

FARMING_SYSTEM_PROMPT = (
  "You are a trusted farming advisor for small and medium farmers in India. Your advice should be practical, regionally relevant, "
  "and based on local conditions whenever possible. Use simple, clear language and avoid jargon and technical terms. If you don't know "
  "something, say so honestly and suggest how the farmer can find out locally (e.g., from a neighbor, local agri office, or market). "
  "Incorporate traditional wisdom and local practices when relevant. Never assume the farmer has advanced technology or internet access. "
  "IMPORTANT: Keep responses natural and focused. Use plain text only - no markdown formatting, headers, bold text, bullet points, or "
  "special formatting. Give helpful details but stay concise."
)

TOOL_DATA_NOTE = "I've got access to real-time data to give you the most current info. I'll share the exact numbers but won't bore you with technical details unless you ask."

RESPONSE_RULES = """RESPONSE RULES:
- Be friendly and helpful to farmers
- Give complete but focused answers - include key details without rambling
- Use specific numbers and data when available
- Explain briefly what the information means for their farming
- Aim for 3-5 sentences for most topics
- End with one clear recommendation or next step"""

# Phrases the model sometimes leaks about itself or its tooling.
_FORBIDDEN_PATTERNS = (
  re.compile(r"as an ai (language )?model[^.]*\.?", re.IGNORECASE),
  re.compile(r"model name:?\s*\w[^\n]*", re.IGNORECASE),
  re.compile(r"provider:?\s*groq[^\n]*", re.IGNORECASE),
  re.compile(r"this (response|answer) (was )?generated using[^.]*\.?", re.IGNORECASE),
  re.compile(r"i used (the )?(following )?tools[^.]*\.?", re.IGNORECASE),
  re.compile(r"internal tool context[^.]*\.?", re.IGNORECASE),
)


def _stringify(data: Any) -> str:
  if isinstance(data, str):
    return data
  try:
    return json.dumps(data, ensure_ascii=False, sort_keys=True, default=str)
  except (TypeError, ValueError):
    return str(data)


def build_system_prompt(context: Mapping[str, Any], tool_results: Sequence[ToolResult]) -> str:
  crops = context.get("crops") or []
  crop_text = ", ".join(crops) if isinstance(crops, list | tuple) and crops else "Mixed farming"
  user_line = f"User Context: {context.get('location') or 'India'}, Crops: {crop_text}, Farm: {context.get('farm_size') or 'Unknown size'}"
  parts = [FARMING_SYSTEM_PROMPT, user_line]
  if tool_results:
    parts.append(TOOL_DATA_NOTE)
  parts.append(RESPONSE_RULES)
  return "\n\n".join(parts)


def build_messages(query: str, analysis: QueryAnalysis, context: Mapping[str, Any], tool_results: Sequence[ToolResult]) -> list[ChatMessage]:
  """Assemble the chat request, attaching gathered tool data to the question."""
  user_content = query
  if tool_results:
    data_lines = "\n".join(f"[{result.tool}] {_stringify(result.data)}" for result in tool_results)
    user_content = f"{query}\n\nReal-time data:\n{data_lines}"
  elements = analysis.contextual_elements
  if elements.seasonality:
    user_content += f"\n\nSeason: {elements.seasonality}"
  if elements.urgency:
    user_content += "\n\nThe farmer needs this urgently."
  return [{"role": "system", "content": build_system_prompt(context, tool_results)}, {"role": "user", "content": user_content}]


def sanitize_response(text: str) -> str:
  cleaned = text or ""
  for pattern in _FORBIDDEN_PATTERNS:
    cleaned = pattern.sub("", cleaned).strip()
  return re.sub(r"\n{3,}", "\n\n", cleaned)
