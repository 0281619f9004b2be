"""Language-aware prompt templates for description requests."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from langdetect import DetectorFactory, LangDetectException, detect_langs

from altwatch.core.config import constants
from altwatch.core.models import MediaKind

if TYPE_CHECKING:
    from collections.abc import Mapping

    from altwatch.core.config import PromptSettings

logger = logging.getLogger(__name__)

MAX_CONTEXT_CHARS = 500
# Guesses below this probability are ignored.
MIN_DETECTION_PROBABILITY = 0.7

# langdetect is randomized; a fixed seed makes guesses repeatable.
DetectorFactory.seed = 0

# Each template receives {model}. Image templates ask for a visual
# description; recording templates summarize a transcript.
IMAGE_TEMPLATES: dict[str, str] = {
    "en": (
        "Write alt text for this image for people using screen readers. "
        "Describe the important visual content, any visible text and the "
        "setting, plainly and objectively, in at most 200 characters. "
        "Finish with ' (alt text generated by {model})'. "
        "Reply with the alt text only."
    ),
    "de": (
        "Schreibe einen Alternativtext für dieses Bild für Menschen mit "
        "Screenreader. Beschreibe die wichtigen Bildinhalte, sichtbaren Text "
        "und die Umgebung sachlich in höchstens 200 Zeichen. Schließe mit "
        "' (Alternativtext erzeugt von {model})'. Antworte nur mit dem Text."
    ),
    "fr": (
        "Rédige un texte alternatif pour cette image à destination des "
        "personnes utilisant un lecteur d'écran. Décris le contenu visuel "
        "important, le texte visible et le décor, de façon neutre, en 200 "
        "caractères au plus. Termine par ' (texte alternatif généré par "
        "{model})'. Réponds uniquement avec ce texte."
    ),
    "es": (
        "Escribe un texto alternativo para esta imagen dirigido a personas "
        "que usan lectores de pantalla. Describe el contenido visual "
        "importante, el texto visible y el entorno de forma objetiva, en 200 "
        "caracteres como máximo. Termina con ' (texto alternativo generado "
        "por {model})'. Responde solo con el texto."
    ),
    "it": (
        "Scrivi un testo alternativo per questa immagine per chi usa uno "
        "screen reader. Descrivi il contenuto visivo importante, il testo "
        "visibile e l'ambiente in modo oggettivo, in massimo 200 caratteri. "
        "Concludi con ' (testo alternativo generato da {model})'. "
        "Rispondi solo con il testo."
    ),
    "pt": (
        "Escreva um texto alternativo para esta imagem para pessoas que usam "
        "leitores de tela. Descreva o conteúdo visual importante, o texto "
        "visível e o ambiente de forma objetiva, em no máximo 200 "
        "caracteres. Termine com ' (texto alternativo gerado por {model})'. "
        "Responda apenas com o texto."
    ),
    "nl": (
        "Schrijf een alt-tekst bij deze afbeelding voor mensen met een "
        "schermlezer. Beschrijf de belangrijke beeldinhoud, zichtbare tekst "
        "en de omgeving zakelijk, in hoogstens 200 tekens. Sluit af met "
        "' (alt-tekst gemaakt door {model})'. Antwoord alleen met de tekst."
    ),
    "ja": (
        "スクリーンリーダー利用者のために、この画像の代替テキストを書いてください。"
        "重要な視覚的内容、写っている文字、場面を客観的に200文字以内で説明し、"
        "最後に「（代替テキスト生成: {model}）」を付けてください。"
        "代替テキストのみを返してください。"
    ),
}

RECORDING_TEMPLATES: dict[str, str] = {
    "en": (
        "Below is a transcript of a {kind} attached to a social media post. "
        "Write a short description of the recording for people who cannot "
        "hear it, in at most 300 characters. Finish with "
        "' (description generated by {model})'. Reply with the description only."
    ),
    "de": (
        "Unten steht das Transkript einer Aufnahme ({kind}) aus einem Beitrag. "
        "Beschreibe die Aufnahme kurz für Menschen, die sie nicht hören "
        "können, in höchstens 300 Zeichen. Schließe mit "
        "' (Beschreibung erzeugt von {model})'. Antworte nur mit dem Text."
    ),
    "fr": (
        "Voici la transcription d'un enregistrement ({kind}) joint à une "
        "publication. Rédige une courte description pour les personnes qui "
        "ne peuvent pas l'entendre, en 300 caractères au plus. Termine par "
        "' (description générée par {model})'. Réponds uniquement avec ce texte."
    ),
    "es": (
        "A continuación está la transcripción de una grabación ({kind}) de "
        "una publicación. Escribe una breve descripción para quienes no "
        "pueden oírla, en 300 caracteres como máximo. Termina con "
        "' (descripción generada por {model})'. Responde solo con el texto."
    ),
    "it": (
        "Di seguito la trascrizione di una registrazione ({kind}) allegata a "
        "un post. Scrivi una breve descrizione per chi non può ascoltarla, "
        "in massimo 300 caratteri. Concludi con "
        "' (descrizione generata da {model})'. Rispondi solo con il testo."
    ),
    "pt": (
        "Abaixo está a transcrição de uma gravação ({kind}) anexada a uma "
        "publicação. Escreva uma breve descrição para quem não pode ouvi-la, "
        "em no máximo 300 caracteres. Termine com "
        "' (descrição gerada por {model})'. Responda apenas com o texto."
    ),
    "nl": (
        "Hieronder staat het transcript van een opname ({kind}) bij een "
        "bericht. Schrijf een korte beschrijving voor mensen die de opname "
        "niet kunnen horen, in hoogstens 300 tekens. Sluit af met "
        "' (beschrijving gemaakt door {model})'. Antwoord alleen met de tekst."
    ),
    "ja": (
        "以下は投稿に添付された録音（{kind}）の文字起こしです。"
        "聞くことができない人のために、300文字以内で簡潔に説明してください。"
        "最後に「（説明生成: {model}）」を付け、説明のみを返してください。"
    ),
}

CONTEXT_LABEL = "Post text for context"


def primary_subtag(language_hint: str | None) -> str | None:
    """Return the lowercase primary subtag of a BCP 47 tag (``pt-BR`` -> ``pt``)."""
    if not language_hint:
        return None
    subtag = language_hint.strip().replace("_", "-").split("-", 1)[0].lower()
    return subtag or None


def detect_language(text: str) -> str | None:
    """Guess the primary language subtag of ``text``, or ``None`` if unsure."""
    if not text.strip():
        return None
    try:
        guesses = detect_langs(text)
    except LangDetectException:
        return None
    if not guesses or guesses[0].prob < MIN_DETECTION_PROBABILITY:
        return None
    return primary_subtag(guesses[0].lang)


class PromptBuilder:
    """Build the description prompt for one media item."""

    def __init__(
        self,
        settings: PromptSettings,
        *,
        image_model: str,
        text_model: str,
    ) -> None:
        self._default_language = (
            primary_subtag(settings.default_language) or constants.DEFAULT_LANGUAGE
        )
        self._overrides: Mapping[str, str] = settings.templates
        self._image_model = image_model
        self._text_model = text_model

    def _known(self, language: str) -> bool:
        return language in IMAGE_TEMPLATES or language in self._overrides

    def resolve_language(self, language_hint: str | None, text: str = "") -> str:
        """Pick the template language for a post.

        The platform's hint wins when present. Without one the language is
        detected from ``text``. Anything unsupported falls back to the default.
        """
        subtag = primary_subtag(language_hint)
        if subtag is None:
            subtag = detect_language(text)
            if subtag is not None:
                logger.debug("Detected post language %s", subtag)
        if subtag is not None and self._known(subtag):
            return subtag
        return self._default_language

    def _template(self, language: str, kind: MediaKind) -> str:
        if kind is MediaKind.IMAGE:
            if override := self._overrides.get(language):
                return override
            return IMAGE_TEMPLATES.get(language, IMAGE_TEMPLATES["en"])
        return RECORDING_TEMPLATES.get(language, RECORDING_TEMPLATES["en"])

    def build_prompt(
        self,
        text: str,
        language_hint: str | None,
        kind: MediaKind,
    ) -> str:
        """Return the prompt for a media item of ``kind`` in a post.

        Args:
            text: Plain text of the post, used as context.
            language_hint: Language tag of the post, if the platform knows it.
                Without one the language is detected from ``text``.
            kind: Kind of the attachment being described.

        """
        language = self.resolve_language(language_hint, text)
        model = self._image_model if kind is MediaKind.IMAGE else self._text_model
        template = self._template(language, kind)
        # Config overrides may contain braces, so substitute by hand.
        prompt = template.replace("{model}", model).replace("{kind}", str(kind))

        context = " ".join(text.split())
        if context:
            if len(context) > MAX_CONTEXT_CHARS:
                context = context[:MAX_CONTEXT_CHARS].rstrip() + "…"
            prompt = f"{prompt}\n\n{CONTEXT_LABEL}: {context}"
        logger.debug("Built %s prompt in %s", kind, language)
        return prompt
