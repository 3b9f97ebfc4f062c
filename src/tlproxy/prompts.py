from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .config import ProxyConfig
from .glossary import GlossaryProvider
from .sessions import Turn

TRANSLATION_RULES = """【Translation Rules】:
1. PRESERVE TAGS: You will see tags like '[T_0]', '[T_1]'.
   - These replace newlines or code. Keep them EXACTLY as is.
   - Input: "Hello [T_0] World"
   - Output: "你好 [T_0] 世界"
2. NO CLEANUP: Do NOT remove the tags.
3. TERM CODES: Keep 'Z[A-Z]{2}Z' (e.g., 'ZMCZ') codes exactly as is.
4. Translate the text BETWEEN the tags naturally.
5. Output ONLY the translated result.
"""

TERM_EXTRACTION_RULES = """【Term Extraction】:
1. Wrap translation in <tl>...</tl>.
2. If you find Proper Nouns (Names) NOT in glossary, output <tm>Src=Trgt</tm> after the </tl> block.
"""

# Shorter texts are mostly placeholders and UI words; asking for terms there only yields noise.
MIN_EXTRACTION_CHARS = 5

Message = dict[str, str]


@dataclass(frozen=True)
class ComposedPrompt:
    messages: list[Message]
    user_content: str
    extract_terms: bool


def wants_term_extraction(cfg: ProxyConfig, source_text: str) -> bool:
    return bool(cfg.enable_glossary) and len(source_text) > MIN_EXTRACTION_CHARS


def build_system_prompt(
    base_system_prompt: str,
    *,
    glossary_hint: str | None = None,
    extract_terms: bool = False,
) -> str:
    sections = [base_system_prompt.rstrip(), TRANSLATION_RULES]
    hint = (glossary_hint or "").strip()
    if hint:
        sections.append(hint)
    if extract_terms:
        sections.append(TERM_EXTRACTION_RULES)
    return "\n\n".join(s for s in sections if s)


def compose_prompt(
    cfg: ProxyConfig,
    *,
    frozen_text: str,
    source_text: str,
    history: Sequence[Turn],
    glossary: GlossaryProvider | None = None,
) -> ComposedPrompt:
    """Build the chat messages for one attempt.

    `source_text` is the unfrozen text: glossary lookups and the extraction length check must see
    real words, not placeholders.
    """
    glossary_hint = ""
    if cfg.enable_glossary and glossary is not None:
        glossary_hint = glossary.get_context_prompt(source_text)
    extract_terms = wants_term_extraction(cfg, source_text)

    messages: list[Message] = [
        {
            "role": "system",
            "content": build_system_prompt(
                cfg.system_prompt,
                glossary_hint=glossary_hint,
                extract_terms=extract_terms,
            ),
        }
    ]
    for turn in history:
        messages.append({"role": "user", "content": turn.request})
        messages.append({"role": "assistant", "content": turn.response})

    user_content = cfg.pre_prompt + frozen_text
    messages.append({"role": "user", "content": user_content})
    return ComposedPrompt(messages=messages, user_content=user_content, extract_terms=extract_terms)
