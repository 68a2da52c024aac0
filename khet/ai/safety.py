"""Lightweight content safety checks applied to answers before display."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

RULE_VERSION = 1

WITHHELD_MESSAGE = "Content withheld due to safety concerns. Please rephrase your request for safe agricultural guidance."

CHEMICAL_PATTERNS = (
  re.compile(r"(cyanide|strychnine|mercury|lead\s+acetate)", re.IGNORECASE),
  re.compile(r"(extremely\s+toxic|lethal\s+poison)", re.IGNORECASE),
)
# Only very large amounts (1000+ units) are treated as an overdose signal.
OVERDOSE_PATTERNS = (
  re.compile(r"\b\d{4,}\s*(kg|litre|liter|l|ml)\b", re.IGNORECASE),
  re.compile(r"(apply\s+.*every\s+few\s+minutes|hourly\s+application)", re.IGNORECASE),
)
SELF_HARM_PATTERNS = (re.compile(r"(suicide|kill\s+myself|end\s+my\s+life|self\s+harm)", re.IGNORECASE),)
BANNED_PHRASES = ("drink pesticide", "consume fertilizer", "ingest chemicals")


class SafetyAction(str, Enum):
  ALLOW = "allow"
  FLAG = "flag"
  BLOCK = "block"


@dataclass(frozen=True)
class SafetyVerdict:
  action: SafetyAction
  rules: tuple[str, ...] = field(default_factory=tuple)
  version: int = RULE_VERSION

  def to_dict(self) -> dict[str, object]:
    return {"action": self.action.value, "rules": list(self.rules), "version": self.version}


@dataclass(frozen=True)
class FilteredText:
  safe: bool
  text: str
  verdict: SafetyVerdict


class SafetyFilter:
  """Flag risky chemical or dosage advice and block self-harm content."""

  def evaluate(self, text: str | None) -> SafetyVerdict:
    if not text or not isinstance(text, str):
      return SafetyVerdict(action=SafetyAction.ALLOW)

    rules: list[str] = []
    if any(pattern.search(text) for pattern in CHEMICAL_PATTERNS):
      rules.append("chemicals")
    if any(pattern.search(text) for pattern in OVERDOSE_PATTERNS):
      rules.append("overdose")
    if any(pattern.search(text) for pattern in SELF_HARM_PATTERNS):
      rules.append("self_harm")
    lowered = text.lower()
    rules.extend("banned_phrase" for phrase in BANNED_PHRASES if phrase in lowered)

    if "self_harm" in rules:
      action = SafetyAction.BLOCK
    elif rules:
      action = SafetyAction.FLAG
    else:
      action = SafetyAction.ALLOW

    if action is not SafetyAction.ALLOW:
      logger.warning("Safety filter action=%s rules=%s", action.value, rules)
    return SafetyVerdict(action=action, rules=tuple(rules))

  def apply(self, text: str) -> FilteredText:
    """Return the text to display; blocked content is replaced by a notice."""
    verdict = self.evaluate(text)
    if verdict.action is SafetyAction.BLOCK:
      return FilteredText(safe=False, text=WITHHELD_MESSAGE, verdict=verdict)
    return FilteredText(safe=True, text=text, verdict=verdict)
