"""
Story Wizard

Step-by-step collection of a WizardSelection:

    AGE_GROUP -> CHARACTERS -> THEME -> SUMMARY -> SUBMITTING -> DONE

Each forward move is guarded by the current step's predicate, so an
incomplete selection never reaches the story provider. A failed submission
returns to SUMMARY with the selection kept and the failure in `outcome`.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from leiturinha.config.limits import CHILD_NAME_MAX_LENGTH, MAX_CHARACTERS_PER_STORY
from leiturinha.models.models import AgeGroup, WizardSelection
from leiturinha.models.profiles import Entitlement, SessionContext
from leiturinha.services.errors import EntitlementError, ProviderError, SelectionError

logger = logging.getLogger(__name__)

GENERIC_SUBMISSION_ERROR = "Não foi possível gerar a história. Por favor, tente novamente."


class WizardStep(str, Enum):
    AGE_GROUP = "age_group"
    CHARACTERS = "characters"
    THEME = "theme"
    SUMMARY = "summary"
    SUBMITTING = "submitting"
    DONE = "done"


SELECTION_STEPS = [WizardStep.AGE_GROUP, WizardStep.CHARACTERS, WizardStep.THEME, WizardStep.SUMMARY]


class WizardValidationError(ValueError):
    """The current step's requirement is not met."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.user_message = user_message or message
        super().__init__(message)


class WizardStateError(RuntimeError):
    """Action not allowed in the current step."""


@dataclass
class SubmissionOutcome:
    success: bool
    story_id: Optional[int] = None
    message: str = ""
    retryable: bool = False


class StoryWizard:
    def __init__(
        self,
        session: SessionContext,
        submit: Callable[[WizardSelection], Awaitable[Any]],
        selection: Optional[WizardSelection] = None,
    ):
        """
        Args:
            session: Who is filling the wizard and what the plan allows
            submit: Coroutine that turns a selection into a stored story
                (typically StoryAssemblyService.assemble bound to the session)
            selection: Resume from an existing selection
        """
        self.session = session
        self._submit = submit
        self.selection = selection or WizardSelection()
        self.step = WizardStep.AGE_GROUP
        self.outcome: Optional[SubmissionOutcome] = None

    # ===== Selection helpers =====

    def select_age_group(self, age_group: AgeGroup):
        age_group = AgeGroup(age_group)
        if self.selection.age_group is not None and self.selection.age_group != age_group:
            # Themes are age-specific
            self.selection.theme_id = 0
        self.selection.age_group = age_group

    def toggle_character(self, character_id: int) -> bool:
        """Add or remove a character; returns True when it is now selected"""
        ids = self.selection.character_ids
        if character_id in ids:
            ids.remove(character_id)
            return False
        if len(ids) >= MAX_CHARACTERS_PER_STORY:
            raise WizardValidationError(
                f"At most {MAX_CHARACTERS_PER_STORY} characters",
                f"Escolha no máximo {MAX_CHARACTERS_PER_STORY} personagens.",
            )
        ids.append(character_id)
        return True

    def select_theme(self, theme_id: int):
        self.selection.theme_id = theme_id

    def set_child_name(self, child_name: Optional[str]):
        if child_name is not None:
            child_name = child_name.strip() or None
        if child_name and not self.session.has_entitlement(Entitlement.PERSONALIZATION):
            raise EntitlementError(
                f"Plan {self.session.tier.value} has no personalization",
                "Histórias com o nome da criança estão disponíveis no plano Família.",
            )
        if child_name and len(child_name) > CHILD_NAME_MAX_LENGTH:
            raise WizardValidationError(
                "Child name too long",
                f"O nome pode ter no máximo {CHILD_NAME_MAX_LENGTH} caracteres.",
            )
        self.selection.child_name = child_name

    def set_text_only(self, text_only: bool):
        self.selection.text_only = text_only

    # ===== Navigation =====

    def _check_step(self):
        if self.step == WizardStep.AGE_GROUP and self.selection.age_group is None:
            raise WizardValidationError("Age group not selected", "Escolha a faixa etária.")
        if self.step == WizardStep.CHARACTERS and not self.selection.character_ids:
            raise WizardValidationError("No characters selected", "Escolha pelo menos um personagem.")
        if self.step == WizardStep.THEME and self.selection.theme_id == 0:
            raise WizardValidationError("Theme not selected", "Escolha um tema.")

    def next(self) -> WizardStep:
        if self.step not in SELECTION_STEPS or self.step == WizardStep.SUMMARY:
            raise WizardStateError(f"Cannot advance from {self.step.value}")
        self._check_step()
        self.step = SELECTION_STEPS[SELECTION_STEPS.index(self.step) + 1]
        return self.step

    def prev(self) -> WizardStep:
        if self.step not in SELECTION_STEPS or self.step == WizardStep.AGE_GROUP:
            raise WizardStateError(f"Cannot go back from {self.step.value}")
        self.step = SELECTION_STEPS[SELECTION_STEPS.index(self.step) - 1]
        return self.step

    @property
    def progress_percent(self) -> int:
        if self.step in SELECTION_STEPS:
            ordinal = SELECTION_STEPS.index(self.step) + 1
        else:
            ordinal = len(SELECTION_STEPS)
        return ordinal * 100 // len(SELECTION_STEPS)

    # ===== Submission =====

    async def submit(self) -> SubmissionOutcome:
        """
        Hand the selection to the submit callable.

        Raises:
            WizardStateError: Already submitting, or not at SUMMARY
            WizardValidationError: Selection incomplete (submit callable not called)
        """
        if self.step == WizardStep.SUBMITTING:
            raise WizardStateError("Submission already in progress")
        if self.step != WizardStep.SUMMARY:
            raise WizardStateError(f"Cannot submit from {self.step.value}")
        if not self.selection.is_submittable:
            raise WizardValidationError(
                "Selection is incomplete",
                "Escolha a faixa etária, pelo menos um personagem e um tema.",
            )

        self.step = WizardStep.SUBMITTING
        try:
            story = await self._submit(self.selection.model_copy(deep=True))
        except ProviderError as e:
            logger.warning(f"Story submission failed ({type(e).__name__}): {e}")
            return self._fail(e.user_message, e.retryable)
        except (SelectionError, EntitlementError) as e:
            logger.warning(f"Story submission rejected: {e}")
            return self._fail(e.user_message, False)
        except Exception as e:
            logger.error(f"Unexpected error submitting story: {e}", exc_info=True)
            return self._fail(GENERIC_SUBMISSION_ERROR, True)

        story_id = getattr(story, "id", story)
        self.outcome = SubmissionOutcome(success=True, story_id=story_id)
        self.step = WizardStep.DONE
        logger.info(f"✨ Wizard finished with story {story_id}")
        return self.outcome

    def _fail(self, message: str, retryable: bool) -> SubmissionOutcome:
        self.outcome = SubmissionOutcome(success=False, message=message, retryable=retryable)
        self.step = WizardStep.SUMMARY
        return self.outcome
