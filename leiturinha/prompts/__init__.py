"""
Prompts Package

- get_story_prompt / get_story_system_prompt: one markdown story per request
- get_chapter_illustration_prompt: scene request for a chapter image

Each prompt is a function that accepts context and returns a formatted prompt string.
"""

from .story import get_story_prompt, get_story_system_prompt, STORY_SYSTEM_MESSAGE
from .illustration import get_chapter_illustration_prompt

__all__ = [
    "get_story_prompt",
    "get_story_system_prompt",
    "STORY_SYSTEM_MESSAGE",
    "get_chapter_illustration_prompt",
]
