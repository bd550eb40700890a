"""
Prompt assembly: glossary and story-bible injection, previous-context
framing and template substitution, plus cleanup of model output.
"""
import re
from typing import List, Optional

from chunkwise.core.models import GlossaryEntry, StoryBible

NO_GLOSSARY_CONTEXT = "No glossary context"
NO_STORY_BIBLE_CONTEXT = "No background information"
NO_INFORMATION = "No information"

_THINKING_BLOCK = re.compile(r'<thinking>.*?</thinking>', re.IGNORECASE | re.DOTALL)
_LEAKED_TAG = re.compile(r'<[a-zA-Z0-9/\s"=\'-]+>')


def format_glossary_for_prompt(entries: List[GlossaryEntry],
                               chunk: str,
                               max_entries: int = 30,
                               max_chars: int = 2000) -> str:
    """
    Glossary lines for the terms that occur in ``chunk``.

    Entries are ranked by occurrence count. Lines are added until either
    budget is hit, but the first relevant line is always kept.
    """
    if not entries:
        return NO_GLOSSARY_CONTEXT

    chunk_lower = chunk.lower()
    relevant = sorted(
        (entry for entry in entries if entry.keyword and entry.keyword.lower() in chunk_lower),
        key=lambda entry: entry.occurrence_count,
        reverse=True,
    )

    selected = []
    current_chars = 0
    for entry in relevant:
        if len(selected) >= max_entries:
            break
        line = f"- {entry.keyword} → {entry.translated_keyword} ({entry.target_language})"
        if current_chars + len(line) > max_chars and selected:
            break
        selected.append(line)
        current_chars += len(line) + 1

    return '\n'.join(selected) if selected else NO_GLOSSARY_CONTEXT


def format_story_bible(story_bible: StoryBible, chunk: str) -> str:
    """Active characters named in the chunk, all active world settings, summary and style guide."""
    chunk_lower = chunk.lower()
    characters = [c for c in story_bible.characters
                  if c.is_active and c.name and c.name.lower() in chunk_lower]
    world = [w for w in story_bible.world_settings if w.is_active]

    character_text = '\n\n'.join(
        f"### {c.name} ({c.role})\n"
        f"- Personality: {c.personality}\n"
        f"- Speaking style: {c.speaking_style}\n"
        f"- Relationships: {c.relationships}\n"
        f"- Notes: {c.notes}"
        for c in characters
    )
    world_text = '\n\n'.join(f"### [{w.category}] {w.title}\n{w.content}" for w in world)

    return (
        "[Characters (appearing in this passage)]\n"
        f"{character_text or 'No characters detected'}\n\n"
        "[World and setting]\n"
        f"{world_text or NO_INFORMATION}\n\n"
        "[Plot summary]\n"
        f"{story_bible.plot_summary or NO_INFORMATION}\n\n"
        "[Style guide]\n"
        f"{story_bible.style_guide or NO_INFORMATION}"
    )


def build_previous_context_section(text: Optional[str], is_translated: bool) -> str:
    """Frame the preceding passage so the model reads it as reference only."""
    if not text or not text.strip():
        return ""

    if is_translated:
        header = "[Previous translation (for style and tone reference)]"
        body = ("The following text is the **translated output** of the preceding passage. "
                "Use its style and tone so the new translation continues naturally. "
                "Never include it in your output.")
    else:
        header = "[Previous source text (for context reference)]"
        body = ("The following text is the **source text** of the preceding passage. "
                "Use it only to resolve context, pronoun references and stylistic continuity. "
                "Never include it in your output.")

    return f'{header}\n{body}\n"""\n{text}\n"""'


def build_prompt(template: str,
                 chunk: str,
                 glossary_context: str = NO_GLOSSARY_CONTEXT,
                 story_bible_context: str = NO_STORY_BIBLE_CONTEXT,
                 previous_section: str = "",
                 source_language: str = "",
                 target_language: str = "") -> str:
    """
    Substitute the template placeholders.

    When the template has no ``{{previous_context_section}}`` placeholder, a
    non-empty previous section is inserted right before ``{{slot}}``. The
    chunk is substituted last so its own text is never rewritten.
    """
    prompt = template
    prompt = prompt.replace('{{glossary_context}}', glossary_context)
    prompt = prompt.replace('{{story_bible}}', story_bible_context)
    prompt = prompt.replace('{{source_language}}', source_language)
    prompt = prompt.replace('{{target_language}}', target_language)

    if '{{previous_context_section}}' in prompt:
        prompt = prompt.replace('{{previous_context_section}}', previous_section)
    elif previous_section:
        prompt = prompt.replace('{{slot}}', f"{previous_section}\n\n{{{{slot}}}}", 1)

    return prompt.replace('{{slot}}', chunk)


def post_process(text: str, enabled: bool = True) -> str:
    """Strip reasoning blocks and leaked tag fragments from a reply."""
    if not text:
        return text
    if enabled:
        text = _THINKING_BLOCK.sub('', text)
        text = _LEAKED_TAG.sub('', text)
    return text.strip()
