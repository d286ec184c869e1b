"""
Chapter Illustration Prompt

Turns a chapter's stored image prompt into a scene request for the image
provider: characters in the scene, visual style, mood and target age.
"""

from typing import List, Optional

from leiturinha.models.models import AgeGroup, IllustrationMood, IllustrationStyle
from leiturinha.utils.age_styles import get_age_style


STYLE_DESCRIPTIONS = {
    IllustrationStyle.CARTOON: "Cartoon infantil com contornos grossos e pretos bem definidos, cores planas",
    IllustrationStyle.WATERCOLOR: "Aquarela suave com bordas delicadas e cores transparentes",
    IllustrationStyle.PENCIL: "Desenho a lápis de cor com traços visíveis e textura de papel",
    IllustrationStyle.DIGITAL: "Ilustração digital limpa com cores vibrantes e formas simples",
}

MOOD_DESCRIPTIONS = {
    IllustrationMood.HAPPY: "alegre e acolhedor",
    IllustrationMood.ADVENTURE: "aventureiro e curioso",
    IllustrationMood.CALM: "calmo e tranquilo",
    IllustrationMood.EXCITING: "empolgante e cheio de energia",
}


def get_chapter_illustration_prompt(
    image_prompt: str,
    character_names: Optional[List[str]] = None,
    style: IllustrationStyle = IllustrationStyle.CARTOON,
    mood: IllustrationMood = IllustrationMood.ADVENTURE,
    age_group: Optional[AgeGroup] = None,
) -> str:
    """
    Generate the scene prompt sent to the image provider.

    Args:
        image_prompt: Scene description fixed at assembly time (or an override)
        character_names: Story character names to keep visually present
        style: Visual style of the illustration
        mood: Emotional tone of the scene
        age_group: Target readers; defaults to 6-8 when unknown

    Returns:
        Portuguese prompt for the image provider
    """
    age_label = get_age_style(age_group or AgeGroup.EARLY_READER)["label"]
    characters_line = (
        f"Personagens principais na cena: {', '.join(character_names)}."
        if character_names else ""
    )

    return f"""Ilustração de cena para livro infantil.

CENA: {image_prompt}
{characters_line}

ESPECIFICAÇÕES VISUAIS:
- Estilo: {STYLE_DESCRIPTIONS[IllustrationStyle(style)]}
- Clima: {MOOD_DESCRIPTIONS[IllustrationMood(mood)]}
- Visual simplificado e limpo, com poucos elementos e fundo minimalista
- Personagens com cabeças grandes e expressões claras e amigáveis

REQUISITOS:
- Para crianças de {age_label}.
- Sem texto, letras ou palavras na imagem.
- Nada assustador, violento ou fotorrealista.
"""
