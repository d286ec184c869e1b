"""
Story Generation Prompt

One request per story: age tier instructions, theme, characters and the
optional child name, asking for a markdown reply with chapter markers and
an illustration description per chapter.
"""

from typing import List, Optional

from leiturinha.utils.age_styles import get_age_style


STORY_SYSTEM_MESSAGE = "Você é um autor de histórias infantis em português brasileiro."


def get_story_system_prompt() -> str:
    return STORY_SYSTEM_MESSAGE


def get_story_prompt(
    age_group: str,
    theme_name: str,
    character_names: List[str],
    child_name: Optional[str] = None,
) -> str:
    """
    Build the story generation prompt.

    Args:
        age_group: "3-5", "6-8" or "9-12"
        theme_name: Theme shown to the parent (e.g. "Amizade")
        character_names: Character names in selection order
        child_name: Name to weave into the story (personalization)

    Returns:
        Portuguese prompt asking for a markdown story
    """
    style = get_age_style(age_group)
    characters_list = ", ".join(character_names)
    name_personalization = (
        f'Use o nome "{child_name}" como personagem principal ou secundário na história.'
        if child_name else ""
    )

    return f"""{style['instruction']}

Crie uma história {style['length']} sobre o tema "{theme_name}" com os seguintes personagens: {characters_list}.
{name_personalization}

A história deve ser educativa, envolvente e apropriada para a faixa etária. Use vocabulário de nível {style['vocabulary']}.
Não use palavras em inglês ou outras línguas. Apenas português brasileiro.
Não use conteúdo assustador, violento ou inadequado para crianças.

IMPORTANTE:
1. Divida a história em 3-5 capítulos curtos. Cada capítulo deve ter um título próprio e começar com a formatação "## Nome do Capítulo" (usando a marcação markdown).
2. Inicie a história com um título no formato "# Título da História" seguido de um breve resumo introdutório.
3. Para cada capítulo, adicione no final uma descrição para uma possível ilustração no formato:
   [IMAGEM: descrição detalhada de uma cena para ilustrar este capítulo, incluindo personagens e cenário]

A resposta deve estar em formato markdown, NÃO em JSON.
"""
