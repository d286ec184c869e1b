"""
Story Reply Parsing and Chapter Decomposition

Turns a provider reply into title, summary, reading time and chapters.

Accepted replies:
- Markdown: "# Title", an introduction, "## Chapter" sections, each with an
  optional "[IMAGEM: ...]" illustration description
- JSON: {"title", "content", "summary"?, "readingTime"?, "chapters"?},
  possibly wrapped in code fences or preceded by a preamble

Chapter decomposition, in order of preference:
1. "##" chapter markers
2. Paragraph grouping into three parts (at least 3 paragraphs)
3. A single chapter holding the whole story

Stateless utility functions (no class needed).
"""

import json
import math
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from leiturinha.config.limits import (
    GROUPED_CHAPTER_COUNT,
    GROUPED_IMAGE_PROMPT_EXCERPT_LENGTH,
    IMAGE_PROMPT_EXCERPT_LENGTH,
    IMAGE_PROMPT_MAX_LENGTH,
    MIN_PARAGRAPHS_FOR_GROUPING,
    SUMMARY_MAX_SENTENCES,
    WORDS_PER_MINUTE,
)
from leiturinha.models.models import Chapter
from leiturinha.services.errors import GenerationFormatError

logger = logging.getLogger(__name__)


TITLE_PATTERN = re.compile(r'^#(?!#)[ \t]*(.+?)[ \t]*$', re.MULTILINE)
CHAPTER_PATTERN = re.compile(r'^##(?!#)[ \t]+([^\n]+)\n+(.*?)(?=^##(?!#)[ \t]|\Z)', re.MULTILINE | re.DOTALL)
IMAGE_MARKER_PATTERN = re.compile(r'\[(?:image|imagem):\s*([^\]]+)\]', re.IGNORECASE)
PARAGRAPH_SPLIT_PATTERN = re.compile(r'\n\s*\n')
SENTENCE_SPLIT_PATTERN = re.compile(r'[.!?]+')

GROUPED_CHAPTER_TITLES = ["O Início da Aventura", "O Desafio", "A Solução"]
SINGLE_CHAPTER_TITLE = "A História"


@dataclass
class ParsedStory:
    """Provider reply reduced to the fields a Story needs"""
    title: str
    content: str
    summary: str
    reading_time: int
    chapters: List[Chapter] = field(default_factory=list)


# =========================================================================
# Small helpers
# =========================================================================

def bound_image_prompt(prompt: str) -> str:
    """Collapse whitespace and cap length so stored prompts stay bounded"""
    prompt = " ".join(prompt.split())
    if len(prompt) > IMAGE_PROMPT_MAX_LENGTH:
        prompt = prompt[:IMAGE_PROMPT_MAX_LENGTH].rstrip()
    return prompt


def strip_image_markers(text: str) -> str:
    return IMAGE_MARKER_PATTERN.sub('', text).strip()


def grouped_chapter_title(number: int) -> str:
    """Title for the Nth (1-based) chapter produced by paragraph grouping"""
    if 1 <= number <= len(GROUPED_CHAPTER_TITLES):
        return GROUPED_CHAPTER_TITLES[number - 1]
    return f"Parte {number}"


def estimate_reading_time(content: str) -> int:
    """Minutes to read the story at WORDS_PER_MINUTE, never less than 1"""
    word_count = len(content.split())
    return max(1, math.ceil(word_count / WORDS_PER_MINUTE))


# =========================================================================
# Markdown parsing
# =========================================================================

def extract_title(content: str) -> Optional[str]:
    match = TITLE_PATTERN.search(content)
    if not match:
        return None
    title = match.group(1).strip()
    return title or None


def extract_summary(content: str, theme_name: str) -> str:
    """
    First sentences of the introduction (text between the title and the
    first chapter marker), or a generic line about the theme.
    """
    title_match = TITLE_PATTERN.search(content)
    first_chapter = re.search(r'^##(?!#)[ \t]', content, re.MULTILINE)

    intro = ""
    if title_match and first_chapter and first_chapter.start() > title_match.end():
        intro = content[title_match.end():first_chapter.start()]
    intro = strip_image_markers(intro)

    sentences = [s.strip() for s in SENTENCE_SPLIT_PATTERN.split(intro) if s.strip()]
    if not sentences:
        return f"Uma história sobre {theme_name}"
    return ". ".join(sentences[:SUMMARY_MAX_SENTENCES]) + "."


def _remove_title_line(content: str) -> str:
    match = TITLE_PATTERN.search(content)
    if not match:
        return content
    return (content[:match.start()] + content[match.end():]).strip()


def extract_chapters(content: str) -> List[Chapter]:
    """
    Split story content into chapters, each with a fixed image prompt.

    Always returns at least one chapter for non-empty content.
    """
    chapters: List[Chapter] = []

    # 1. Explicit "##" markers
    for match in CHAPTER_PATTERN.finditer(content):
        title = match.group(1).strip()
        raw_content = match.group(2).strip()

        marker = IMAGE_MARKER_PATTERN.search(raw_content)
        chapter_content = strip_image_markers(raw_content)
        if not title or not chapter_content:
            continue

        if marker:
            image_prompt = marker.group(1).strip()
        else:
            excerpt = chapter_content[:IMAGE_PROMPT_EXCERPT_LENGTH]
            image_prompt = f'Ilustração para o capítulo "{title}": {excerpt}'

        chapters.append(Chapter(
            title=title,
            content=chapter_content,
            image_prompt=bound_image_prompt(image_prompt),
        ))

    if chapters:
        return chapters

    # 2. Paragraph grouping
    body = strip_image_markers(_remove_title_line(content))
    paragraphs = [p.strip() for p in PARAGRAPH_SPLIT_PATTERN.split(body) if p.strip()]

    if len(paragraphs) >= MIN_PARAGRAPHS_FOR_GROUPING:
        chunk_size = math.ceil(len(paragraphs) / GROUPED_CHAPTER_COUNT)
        for number, start in enumerate(range(0, len(paragraphs), chunk_size), start=1):
            chapter_content = "\n\n".join(paragraphs[start:start + chunk_size])
            title = grouped_chapter_title(number)
            excerpt = chapter_content[:GROUPED_IMAGE_PROMPT_EXCERPT_LENGTH]
            chapters.append(Chapter(
                title=title,
                content=chapter_content,
                image_prompt=bound_image_prompt(f"Ilustração para {title}: {excerpt}"),
            ))
        return chapters

    # 3. Single chapter
    story_text = body or content.strip()
    excerpt = story_text[:IMAGE_PROMPT_EXCERPT_LENGTH]
    return [Chapter(
        title=SINGLE_CHAPTER_TITLE,
        content=story_text,
        image_prompt=bound_image_prompt(f"Ilustração para a história: {excerpt}"),
    )]


def parse_markdown_story(content: str, theme_name: str) -> ParsedStory:
    """
    Parse a markdown story reply.

    Raises:
        GenerationFormatError: If the title or the story text is missing
    """
    title = extract_title(content)
    if not title:
        raise GenerationFormatError("Story reply has no '# Title' line")

    body = _remove_title_line(content)
    if not strip_image_markers(body):
        raise GenerationFormatError("Story reply has a title but no content")

    return ParsedStory(
        title=title,
        content=strip_image_markers(content),
        summary=extract_summary(content, theme_name),
        reading_time=estimate_reading_time(body),
        chapters=extract_chapters(content),
    )


# =========================================================================
# JSON parsing
# =========================================================================

def clean_json_output(output: str) -> str:
    """
    Clean markdown code blocks and preamble from a JSON reply.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Preamble text before JSON (e.g., "Aqui está a história:\n{...}")
    - Invalid control characters (0x00-0x1f except tab, newline, carriage return)
    - Trailing commas before ] or }

    Args:
        output: Raw provider output possibly containing markdown

    Returns:
        Cleaned JSON string ready for parsing (may still be invalid)
    """
    result_str = output.strip()
    result_str = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f]', '', result_str)

    # Strategy 1: JSON inside a code block
    json_match = re.search(r'```(?:json)?\s*(\{[\s\S]*\})\s*```', result_str)
    if json_match:
        extracted = json_match.group(1).strip()
        try:
            json.loads(extracted, strict=False)
            return extracted
        except json.JSONDecodeError:
            pass

    # Strategy 2: first balanced JSON object anywhere in the text
    extracted = _extract_json_object(result_str)
    if extracted:
        result_str = extracted

    try:
        json.loads(result_str, strict=False)
        return result_str
    except json.JSONDecodeError:
        pass

    return re.sub(r',(\s*[}\]])', r'\1', result_str)


def _extract_json_object(text: str) -> Optional[str]:
    """
    Extract a JSON object from text by finding balanced braces.

    Returns:
        The extracted JSON string, or None if no closed object found
    """
    start_idx = text.find('{')
    if start_idx == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i in range(start_idx, len(text)):
        char = text[i]

        if escape_next:
            escape_next = False
            continue

        if char == '\\' and in_string:
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return text[start_idx:i + 1]

    return None


def _chapters_from_json(raw_chapters: Any) -> List[Chapter]:
    chapters: List[Chapter] = []
    if not isinstance(raw_chapters, list):
        return chapters

    for item in raw_chapters:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        content = strip_image_markers(str(item.get("content") or ""))
        if not title or not content:
            continue
        image_prompt = item.get("imagePrompt") or item.get("image_prompt")
        if not image_prompt:
            image_prompt = f'Ilustração para o capítulo "{title}": {content[:IMAGE_PROMPT_EXCERPT_LENGTH]}'
        chapters.append(Chapter(
            title=title,
            content=content,
            image_prompt=bound_image_prompt(str(image_prompt)),
        ))
    return chapters


def parse_json_story(raw: str, theme_name: str) -> ParsedStory:
    """
    Parse a JSON story reply.

    Raises:
        GenerationFormatError: If the JSON cannot be parsed or lacks title/content
    """
    try:
        data: Dict[str, Any] = json.loads(clean_json_output(raw), strict=False)
    except json.JSONDecodeError as e:
        raise GenerationFormatError(f"Story reply is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise GenerationFormatError("Story reply JSON is not an object")

    title = str(data.get("title") or "").strip()
    content = str(data.get("content") or "").strip()
    if not title or not content:
        raise GenerationFormatError("Story reply JSON is missing title or content")

    summary = str(data.get("summary") or "").strip() or extract_summary(content, theme_name)

    reading_time = data.get("readingTime", data.get("reading_time"))
    if not isinstance(reading_time, int) or isinstance(reading_time, bool) or reading_time < 1:
        reading_time = estimate_reading_time(content)

    chapters = _chapters_from_json(data.get("chapters")) or extract_chapters(content)

    return ParsedStory(
        title=title,
        content=strip_image_markers(content),
        summary=summary,
        reading_time=reading_time,
        chapters=chapters,
    )


def parse_story_reply(raw: str, theme_name: str) -> ParsedStory:
    """
    Parse a provider reply, markdown first, JSON otherwise.

    Raises:
        GenerationFormatError: If the reply is empty or malformed
    """
    if not raw or not raw.strip():
        raise GenerationFormatError("Story reply is empty")

    if extract_title(raw):
        return parse_markdown_story(raw, theme_name)

    if '{' in raw:
        return parse_json_story(raw, theme_name)

    raise GenerationFormatError("Story reply has neither a markdown title nor a JSON object")
