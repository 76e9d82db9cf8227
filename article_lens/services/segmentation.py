"""Markdown-aware splitting of articles into overlapping segments."""

import re
from collections.abc import Sequence
from dataclasses import dataclass

from article_lens.schemas import Segment, SegmentType

_FENCE = re.compile(r"^\s{0,3}(```|~~~)")
_HEADING = re.compile(r"^\s{0,3}#{1,6}(\s|$)")
_QUOTE = re.compile(r"^\s{0,3}>")
_LIST_ITEM = re.compile(r"^\s{0,3}([-*+]|\d{1,9}[.)])\s+")

# Overlap carried into the next segment: trailing third of the blocks, at most this many
MAX_OVERLAP_BLOCKS = 3


@dataclass(frozen=True)
class Block:
    """One block-level unit of a Markdown document and its source offsets."""

    text: str
    start: int
    end: int
    kind: str  # paragraph, code, heading, quote, list


def _line_kind(line: str) -> str:
    if _FENCE.match(line):
        return "code"
    if _HEADING.match(line):
        return "heading"
    if _QUOTE.match(line):
        return "quote"
    if _LIST_ITEM.match(line):
        return "list"
    return "paragraph"


def lex_blocks(content: str) -> list[Block]:
    """Split Markdown into paragraphs, fenced code, headings, quote runs and list runs.

    Fenced code is kept whole, blank lines included. An unclosed fence
    runs to the end of the document.
    """
    lines = content.splitlines(keepends=True)
    blocks: list[Block] = []
    offset = 0
    i = 0

    def emit(start_line: int, end_line: int, start: int, kind: str) -> int:
        text = "".join(lines[start_line:end_line]).rstrip("\r\n")
        end = start + len(text)
        if text.strip():
            blocks.append(Block(text=text, start=start, end=end, kind=kind))
        return start + sum(len(line) for line in lines[start_line:end_line])

    while i < len(lines):
        line = lines[i]
        if not line.strip():
            offset += len(line)
            i += 1
            continue

        kind = _line_kind(line)
        j = i + 1
        if kind == "code":
            fence = _FENCE.match(line).group(1)
            while j < len(lines) and not lines[j].lstrip().startswith(fence):
                j += 1
            j = min(j + 1, len(lines))  # include the closing fence
        elif kind == "heading":
            pass
        elif kind == "quote":
            while j < len(lines) and _QUOTE.match(lines[j]):
                j += 1
        elif kind == "list":
            # Items plus indented continuation lines
            while j < len(lines) and lines[j].strip() and (
                _LIST_ITEM.match(lines[j]) or lines[j][:1] in (" ", "\t")
            ):
                j += 1
        else:
            while j < len(lines) and lines[j].strip() and _line_kind(lines[j]) == "paragraph":
                j += 1

        offset = emit(i, j, offset, kind)
        i = j

    return blocks


def detect_segment_type(blocks: Sequence[str]) -> SegmentType:
    """Tag a segment by its most structural block: code, then quote, then heading."""
    if any("```" in b or b.lstrip().startswith("~~~") for b in blocks):
        return "code"
    if any(b.strip().startswith(">") for b in blocks):
        return "quote"
    if any(b.strip().startswith("#") for b in blocks):
        return "heading"
    return "text"


def overlap_count(block_count: int) -> int:
    return min(MAX_OVERLAP_BLOCKS, block_count // 3)


def _make_segment(segment_id: int, blocks: list[Block], overlap: int) -> Segment:
    texts = tuple(b.text for b in blocks)
    return Segment(
        id=segment_id,
        content="\n\n".join(texts),
        start_index=blocks[0].start,
        end_index=blocks[-1].end,
        type=detect_segment_type(texts),
        blocks=texts,
        overlap_blocks=overlap,
    )


def segment_blocks(blocks: Sequence[Block], segment_size: int) -> list[Segment]:
    """Greedily pack blocks into segments of at most segment_size characters.

    A block larger than the budget becomes a segment of its own. When a
    segment closes, its trailing blocks are repeated at the head of the next.
    """
    segments: list[Segment] = []
    current: list[Block] = []
    current_overlap = 0
    current_length = 0

    for block in blocks:
        length = len(block.text)
        if current and current_length + length > segment_size:
            segments.append(_make_segment(len(segments), current, current_overlap))
            count = overlap_count(len(current))
            carried = current[len(current) - count :] if count else []
            current = [*carried, block]
            current_overlap = len(carried)
            current_length = sum(len(b.text) for b in carried) + length
        else:
            current.append(block)
            current_length += length

    if current:
        segments.append(_make_segment(len(segments), current, current_overlap))
    return segments


def reconstruct_blocks(segments: Sequence[Segment]) -> list[str]:
    """Original block sequence from segments, dropping the repeated overlap blocks."""
    blocks: list[str] = []
    for segment in sorted(segments, key=lambda s: s.id):
        blocks.extend(segment.blocks[segment.overlap_blocks :])
    return blocks
