"""
Centralized Validation Limits

All content length limits in one place for consistency.
Import these in both API routes and Pydantic models.
"""

# =============================================================================
# WIZARD SELECTION LIMITS
# =============================================================================

# Characters a child can pick for one story
MAX_CHARACTERS_PER_STORY = 3

# Child name used for personalization
CHILD_NAME_MAX_LENGTH = 50

# =============================================================================
# STORY ASSEMBLY LIMITS
# =============================================================================

# Excerpt of chapter content used to build an illustration prompt
IMAGE_PROMPT_EXCERPT_LENGTH = 200

# Shorter excerpt for chapters produced by paragraph grouping
GROUPED_IMAGE_PROMPT_EXCERPT_LENGTH = 150

# Hard cap for any stored illustration prompt
IMAGE_PROMPT_MAX_LENGTH = 400

# Paragraph grouping fallback (no chapter markers in provider reply)
MIN_PARAGRAPHS_FOR_GROUPING = 3
GROUPED_CHAPTER_COUNT = 3

# Summary extracted from the story introduction
SUMMARY_MAX_SENTENCES = 2

# Reading speed used to estimate reading time
WORDS_PER_MINUTE = 200

# =============================================================================
# PROVIDER LIMITS
# =============================================================================

# Narration input is truncated to keep audio files small
TTS_MAX_CHARS = 1000
