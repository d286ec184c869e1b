"""
Age Group Style Definitions for Story Generation

Each age group maps to a fixed tier used by the story prompt:
- Writing instruction (sentence complexity, themes)
- Vocabulary level
- Story length in paragraphs

Illustration prompts reuse the same table for the target age line.
"""

from typing import Dict, Any, Union

from leiturinha.models.models import AgeGroup


AGE_STYLES: Dict[AgeGroup, Dict[str, Any]] = {
    AgeGroup.TODDLER: {
        "label": "3 a 5 anos",
        "instruction": (
            "Crie uma história curta com frases simples, com vocabulário muito básico e "
            "adequado para crianças de 3 a 5 anos. Use repetições e rimas simples. "
            "Foque em situações cotidianas, amizade e descobertas simples."
        ),
        "vocabulary": "básico",
        "length": "muito curta (4-5 parágrafos)",
        "paragraphs": (4, 5),
    },
    AgeGroup.EARLY_READER: {
        "label": "6 a 8 anos",
        "instruction": (
            "Crie uma história com frases um pouco mais elaboradas, mas ainda acessíveis "
            "para crianças de 6 a 8 anos. Pode incluir alguns desafios simples para os "
            "personagens e lições de amizade e cooperação."
        ),
        "vocabulary": "intermediário",
        "length": "curta (6-7 parágrafos)",
        "paragraphs": (6, 7),
    },
    AgeGroup.MIDDLE_GRADE: {
        "label": "9 a 12 anos",
        "instruction": (
            "Crie uma história mais elaborada com desenvolvimento de personagens e trama, "
            "adequada para crianças de 9 a 12 anos. Pode incluir temas como superação de "
            "desafios, autoconhecimento e amizade."
        ),
        "vocabulary": "avançado (mas ainda apropriado para crianças)",
        "length": "média (8-10 parágrafos)",
        "paragraphs": (8, 10),
    },
}


def get_age_style(age_group: Union[AgeGroup, str]) -> Dict[str, Any]:
    """
    Get the style tier for an age group.

    Args:
        age_group: AgeGroup or its value ("3-5", "6-8", "9-12")

    Returns:
        Dictionary with label, instruction, vocabulary and length.

    Raises:
        ValueError: If the age group is unknown
    """
    return AGE_STYLES[AgeGroup(age_group)]
