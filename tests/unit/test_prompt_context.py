"""
Unit tests for prompt assembly and reply cleanup
"""
from chunkwise.core.models import Character, GlossaryEntry, StoryBible, WorldSetting
from chunkwise.core.translation.prompt_context import (
    NO_GLOSSARY_CONTEXT,
    build_previous_context_section,
    build_prompt,
    format_glossary_for_prompt,
    format_story_bible,
    post_process,
)


def entry(keyword, translated, count=0):
    return GlossaryEntry(keyword=keyword, translated_keyword=translated,
                         target_language="Korean", occurrence_count=count)


class TestGlossaryInjection:
    """Tests for format_glossary_for_prompt"""

    def test_includes_terms_present_in_chunk(self):
        """Should include an entry whose keyword occurs in the text"""
        context = format_glossary_for_prompt([entry("Apple", "사과")], "I ate an Apple today.")

        assert "Apple" in context
        assert "사과" in context

    def test_omits_terms_absent_from_chunk(self):
        """Should leave out entries whose keyword does not occur"""
        context = format_glossary_for_prompt([entry("Apple", "사과")], "Hello world.")

        assert context == NO_GLOSSARY_CONTEXT
        assert "사과" not in context

    def test_case_insensitive_match(self):
        """Should match keywords regardless of case"""
        context = format_glossary_for_prompt([entry("Apple", "사과")], "an APPLE pie")

        assert "사과" in context

    def test_ranks_by_occurrence_and_caps_entries(self):
        """Should keep the most frequent terms first within the entry budget"""
        entries = [entry("rare", "드문", 1), entry("common", "흔한", 9), entry("medium", "보통", 5)]

        context = format_glossary_for_prompt(entries, "rare common medium", max_entries=2)

        assert context.splitlines() == [
            "- common → 흔한 (Korean)",
            "- medium → 보통 (Korean)",
        ]

    def test_first_line_survives_char_budget(self):
        """Should always keep the first relevant entry"""
        entries = [entry("alpha", "알파", 2), entry("beta", "베타", 1)]

        context = format_glossary_for_prompt(entries, "alpha beta", max_chars=5)

        assert context == "- alpha → 알파 (Korean)"

    def test_empty_glossary(self):
        """Should return the placeholder for no entries"""
        assert format_glossary_for_prompt([], "anything") == NO_GLOSSARY_CONTEXT


class TestStoryBible:

    def test_lists_characters_in_passage(self):
        """Should include only active characters named in the chunk"""
        bible = StoryBible(
            characters=[
                Character(name="Alice", role="hero", personality="brave"),
                Character(name="Bob", role="rival"),
                Character(name="Carol", role="ghost", is_active=False),
            ],
            world_settings=[WorldSetting(category="place", title="Wonderland", content="A strange land")],
            style_guide="Formal register",
        )

        text = format_story_bible(bible, "Alice met Carol.")

        assert "### Alice (hero)" in text
        assert "Bob" not in text
        assert "Carol" not in text
        assert "### [place] Wonderland" in text
        assert "Formal register" in text

    def test_no_characters(self):
        """Should say when nobody from the bible appears"""
        text = format_story_bible(StoryBible(), "Nobody here.")

        assert "No characters detected" in text


class TestPromptBuilding:
    """Tests for build_prompt and the previous-context section"""

    def test_previous_section_headers(self):
        """Should label translated and source context differently"""
        translated = build_previous_context_section("이전", True)
        source = build_previous_context_section("before", False)

        assert translated.startswith("[Previous translation")
        assert source.startswith("[Previous source text")
        assert '"""\nbefore\n"""' in source

    def test_blank_previous_context(self):
        """Should produce nothing for blank context"""
        assert build_previous_context_section("   ", True) == ""
        assert build_previous_context_section(None, False) == ""

    def test_inserts_previous_section_before_slot(self):
        """Should place the section before the chunk when the template has no placeholder"""
        prompt = build_prompt("Translate:\n{{slot}}", "Hello", previous_section="PREV")

        assert prompt == "Translate:\nPREV\n\nHello"

    def test_substitutes_placeholders(self):
        """Should replace every placeholder"""
        template = ("{{source_language}}>{{target_language}}|{{glossary_context}}|"
                    "{{story_bible}}|{{previous_context_section}}|{{slot}}")

        prompt = build_prompt(template, "text", "G", "S", "P", "English", "Korean")

        assert prompt == "English>Korean|G|S|P|text"

    def test_chunk_text_is_not_rewritten(self):
        """Should leave placeholder-like text inside the chunk alone"""
        prompt = build_prompt("{{slot}}", "literal {{glossary_context}}")

        assert prompt == "literal {{glossary_context}}"


class TestPostProcess:

    def test_strips_thinking_and_tags(self):
        """Should remove reasoning blocks and leaked tags"""
        reply = "<thinking>plan\nsteps</thinking>\n<translation>안녕하세요</translation>  "

        assert post_process(reply) == "안녕하세요"

    def test_disabled_only_trims(self):
        """Should only strip whitespace when disabled"""
        assert post_process("  <b>x</b> ", enabled=False) == "<b>x</b>"

    def test_empty_reply(self):
        """Should pass empty replies through"""
        assert post_process("") == ""
