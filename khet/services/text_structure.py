"""Split multi-line text into translatable segments and rebuild it afterwards.

Each line is classified as a numbered item, bullet item, header, plain text or
an empty line. Only the content of a line becomes a segment; list numbers,
bullet glyphs, indentation and header colons stay in the structure so they
survive translation unchanged.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

NUMBERED_RE = re.compile(r"^(\s*)(\d+)\.\s*(.+)$")
BULLET_RE = re.compile(r"^(\s*)([•\-\*])\s*(.+)$")
HEADER_RE = re.compile(r"^(\s*)(.+?):(\s*)$")
SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")


class LineKind(str, Enum):
  NUMBERED = "numbered_list"
  BULLET = "bullet_point"
  HEADER = "header"
  TEXT = "text"
  EMPTY = "empty_line"


@dataclass(frozen=True)
class StructuredLine:
  """One source line: its kind, markers, and the segment indexes holding its content."""

  kind: LineKind
  segment_indexes: tuple[int, ...] = ()
  indent: str = ""
  marker: str = ""
  spacing: str = ""


@dataclass(frozen=True)
class TextStructure:
  lines: tuple[StructuredLine, ...]
  segments: tuple[str, ...]


def split_sentences(text: str, limit: int) -> list[str]:
  """Pack whole sentences into pieces of at most `limit` characters.

  A single sentence longer than the limit is cut at the last space that fits,
  or hard-cut when it has none.
  """
  if len(text) <= limit:
    return [text]

  pieces: list[str] = []
  current = ""
  for sentence in SENTENCE_END_RE.split(text):
    candidate = f"{current} {sentence}" if current else sentence
    if len(candidate) <= limit:
      current = candidate
      continue
    if current:
      pieces.append(current)
    current = ""
    while len(sentence) > limit:
      cut = sentence.rfind(" ", 0, limit + 1)
      if cut <= 0:
        cut = limit
      pieces.append(sentence[:cut].rstrip())
      sentence = sentence[cut:].lstrip()
    current = sentence
  if current:
    pieces.append(current)
  return pieces


def extract_structure(text: str, *, max_segment_chars: int | None = None) -> TextStructure:
  """Classify every line of `text` and collect its translatable content."""
  lines: list[StructuredLine] = []
  segments: list[str] = []

  def add_segments(content: str, *, splittable: bool) -> tuple[int, ...]:
    parts = split_sentences(content, max_segment_chars) if splittable and max_segment_chars else [content]
    start = len(segments)
    segments.extend(parts)
    return tuple(range(start, len(segments)))

  for line in text.split("\n"):
    if line.strip() == "":
      lines.append(StructuredLine(kind=LineKind.EMPTY))
      continue

    match = NUMBERED_RE.match(line)
    if match:
      indexes = add_segments(match.group(3).strip(), splittable=True)
      lines.append(StructuredLine(kind=LineKind.NUMBERED, segment_indexes=indexes, indent=match.group(1), marker=match.group(2)))
      continue

    match = BULLET_RE.match(line)
    if match:
      indexes = add_segments(match.group(3).strip(), splittable=True)
      lines.append(StructuredLine(kind=LineKind.BULLET, segment_indexes=indexes, indent=match.group(1), marker=match.group(2)))
      continue

    match = HEADER_RE.match(line)
    if match:
      indexes = add_segments(match.group(2).strip(), splittable=True)
      lines.append(StructuredLine(kind=LineKind.HEADER, segment_indexes=indexes, indent=match.group(1), spacing=match.group(3)))
      continue

    indexes = add_segments(line.strip(), splittable=True)
    lines.append(StructuredLine(kind=LineKind.TEXT, segment_indexes=indexes, indent=line[: len(line) - len(line.lstrip())]))

  return TextStructure(lines=tuple(lines), segments=tuple(segments))


def reconstruct(structure: TextStructure, translated: Sequence[str]) -> str:
  """Rebuild text from translated segments using the recorded markers."""
  output: list[str] = []
  for line in structure.lines:
    content = " ".join(translated[index] if index < len(translated) else "" for index in line.segment_indexes)
    if line.kind is LineKind.EMPTY:
      output.append("")
    elif line.kind is LineKind.NUMBERED:
      output.append(f"{line.indent}{line.marker}. {content}")
    elif line.kind is LineKind.BULLET:
      output.append(f"{line.indent}{line.marker} {content}")
    elif line.kind is LineKind.HEADER:
      output.append(f"{line.indent}{content}:{line.spacing}")
    else:
      output.append(f"{line.indent}{content}")
  return "\n".join(output)
