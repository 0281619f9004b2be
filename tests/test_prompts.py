from __future__ import annotations

import pytest

from altwatch.core.config import PromptSettings
from altwatch.core.models import MediaKind
from altwatch.services.prompts import (
    IMAGE_TEMPLATES,
    MAX_CONTEXT_CHARS,
    RECORDING_TEMPLATES,
    PromptBuilder,
    primary_subtag,
)


def _builder(settings: PromptSettings | None = None) -> PromptBuilder:
    return PromptBuilder(
        settings or PromptSettings(),
        image_model="vision-model",
        text_model="text-model",
    )


@pytest.mark.parametrize(
    ("hint", "expected"),
    [("pt-BR", "pt"), ("en_US", "en"), ("DE", "de"), ("", None), (None, None)],
)
def test_primary_subtag(hint: str | None, expected: str | None) -> None:
    assert primary_subtag(hint) == expected


def test_every_language_has_both_templates() -> None:
    assert set(IMAGE_TEMPLATES) == set(RECORDING_TEMPLATES)
    assert all("{model}" in template for template in IMAGE_TEMPLATES.values())
    assert all("{kind}" in template for template in RECORDING_TEMPLATES.values())


def test_known_language_selects_its_template() -> None:
    prompt = _builder().build_prompt("Hallo", "de-AT", MediaKind.IMAGE)

    assert prompt.startswith("Schreibe einen Alternativtext")
    assert "vision-model" in prompt
    assert "{model}" not in prompt


def test_unknown_language_falls_back_to_default() -> None:
    builder = _builder(PromptSettings(default_language="fr"))

    assert builder.resolve_language("xx") == "fr"
    assert builder.resolve_language(None) == "fr"


def test_recordings_use_the_text_model_and_kind() -> None:
    prompt = _builder().build_prompt("", "en", MediaKind.VIDEO)

    assert "transcript of a video" in prompt
    assert "text-model" in prompt
    assert "vision-model" not in prompt


def test_configured_template_overrides_images_only() -> None:
    settings = PromptSettings(templates={"eo": "Priskribu la bildon {model} {raw}"})
    builder = _builder(settings)

    image_prompt = builder.build_prompt("", "eo", MediaKind.IMAGE)
    audio_prompt = builder.build_prompt("", "eo", MediaKind.AUDIO)

    assert image_prompt == "Priskribu la bildon vision-model {raw}"
    assert audio_prompt.startswith("Below is a transcript of a audio")


def test_post_text_is_appended_as_context() -> None:
    prompt = _builder().build_prompt("  Sunset\n over   the sea ", "en", MediaKind.IMAGE)

    assert prompt.endswith("\n\nPost text for context: Sunset over the sea")


def test_long_post_text_is_shortened() -> None:
    prompt = _builder().build_prompt("a" * (MAX_CONTEXT_CHARS * 2), "en", MediaKind.IMAGE)

    context = prompt.rsplit(": ", 1)[1]
    assert context == "a" * MAX_CONTEXT_CHARS + "…"


def test_language_is_detected_from_the_post_when_there_is_no_hint() -> None:
    text = (
        "Heute waren wir mit den Kindern im Wald spazieren und haben einen "
        "riesigen Pilz unter einer alten Eiche gefunden."
    )

    prompt = _builder().build_prompt(text, None, MediaKind.IMAGE)

    assert prompt.startswith("Schreibe einen Alternativtext")


def test_hint_wins_over_the_detected_language() -> None:
    text = "Heute waren wir mit den Kindern im Wald spazieren und haben einen Pilz gefunden."

    assert _builder().resolve_language("fr", text) == "fr"


def test_text_without_language_falls_back_to_default() -> None:
    builder = _builder(PromptSettings(default_language="it"))

    assert builder.resolve_language(None, "12345 !!! 678") == "it"
    assert builder.resolve_language("", "   ") == "it"
