"""Prompt templating and language hints for the model-call executor."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from lm_flow.flow.context import PREVIOUS_OUTPUT, current_payload

DEFAULT_USER_LANGUAGE = "en"
DEFAULT_LEARNING_LANGUAGE = "english"

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "zh": "Chinese",
    "english": "English",
    "chinese": "Chinese",
    "cantonese": "Cantonese",
    "spanish": "Spanish",
    "portuguese": "Portuguese",
    "french": "French",
    "russian": "Russian",
    "japanese": "Japanese",
    "german": "German",
    "korean": "Korean",
    "italian": "Italian",
    "turkish": "Turkish",
    "polish": "Polish",
    "dutch": "Dutch",
}

PHONETIC_FORMATS: dict[str, str] = {
    "english": 'Use IPA (International Phonetic Alphabet) notation, e.g., "/hɛloʊ/"',
    "japanese": 'Use Romaji (romanized form), e.g., "konnichiwa"',
    "chinese": 'Use Pinyin, e.g., "dān cí"',
    "cantonese": 'Use Jyutping, e.g., "daan1 ci4"',
    "korean": 'Use Revised Romanization, e.g., "annyeonghaseyo"',
}

JSON_REMINDER = "Please respond in JSON format."

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
_IF_PREVIOUS_DIALOG = re.compile(
    r"\{\{#if previousDialog\}\}(.*?)\{\{else\}\}(.*?)\{\{/if\}\}", re.DOTALL
)


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False)


def languages(context: Mapping[str, Any]) -> tuple[str, str, str, str]:
    """Return ``(user, user_name, learning, learning_name)``."""
    user = context.get("userLanguage") or DEFAULT_USER_LANGUAGE
    learning = context.get("learningLanguage") or DEFAULT_LEARNING_LANGUAGE
    return (
        user,
        LANGUAGE_NAMES.get(user, user),
        learning,
        LANGUAGE_NAMES.get(learning, learning),
    )


def system_language_instruction(context: Mapping[str, Any]) -> str:
    user, user_name, learning, learning_name = languages(context)
    return (
        "IMPORTANT LANGUAGE RULES:\n"
        f"- You MUST respond in {user_name} (user's language: {user})\n"
        f"- The learning language is {learning_name} ({learning})\n"
        f"- All your responses, explanations, and analysis must be in {user_name}\n"
        f"- Generated content for learning should be in {learning_name}"
    )


def user_language_context(context: Mapping[str, Any]) -> str:
    user, user_name, learning, learning_name = languages(context)
    return (
        "Language Context:\n"
        f"- User Language: {user_name} ({user}) - Use this for all responses\n"
        f"- Learning Language: {learning_name} ({learning}) - "
        "Use this for generated learning content"
    )


def dialog_format_instructions(context: Mapping[str, Any]) -> str:
    user, user_name, learning, learning_name = languages(context)
    return (
        "CRITICAL FORMAT REQUIREMENTS:\n"
        "Each dialog entry MUST have both fields:\n"
        f'- "use_text": Text in {user_name} ({user}) - what the user understands\n'
        f'- "learn_text": Text in {learning_name} ({learning}) - what the user is learning'
    )


def dialog_validation_instructions(context: Mapping[str, Any]) -> str:
    user, user_name, learning, learning_name = languages(context)
    return (
        "Validation Requirements:\n"
        '1. Each dialog entry must have both "use_text" and "learn_text"\n'
        f'2. "use_text" must be in {user_name} ({user})\n'
        f'3. "learn_text" must be in {learning_name} ({learning})\n'
        "4. Dialog must be natural, relevant, and appropriate for language learning"
    )


def phonetic_format_instruction(context: Mapping[str, Any]) -> str:
    learning = context.get("learningLanguage") or DEFAULT_LEARNING_LANGUAGE
    return PHONETIC_FORMATS.get(
        learning, "Use IPA notation appropriate for the language"
    )


def template_variables(context: Mapping[str, Any]) -> dict[str, str]:
    """Everything a prompt template may reference."""
    payload = current_payload(context)
    variables = {
        key: to_text(value) for key, value in context.items() if isinstance(key, str)
    }
    user, _, learning, _ = languages(context)
    variables.update(
        {
            "input": to_text(payload),
            PREVIOUS_OUTPUT: to_text(context.get(PREVIOUS_OUTPUT)),
            "userLanguage": user,
            "learningLanguage": learning,
            "dialogFormatInstructions": dialog_format_instructions(context),
            "validationInstructions": dialog_validation_instructions(context),
            "phoneticFormat": phonetic_format_instruction(context),
        }
    )
    if isinstance(payload, dict):
        for key in ("previousDialog", "extensionRequest"):
            if payload.get(key):
                variables[key] = to_text(payload[key])
    return variables


def render(template: str, variables: Mapping[str, str]) -> str:
    """Substitute ``{{name}}`` placeholders. Unknown names are left as-is."""
    branch = 1 if variables.get("previousDialog") else 2
    text = _IF_PREVIOUS_DIALOG.sub(lambda m: m.group(branch), template)
    return _PLACEHOLDER.sub(lambda m: variables.get(m.group(1), m.group(0)), text)


def build_messages(
    context: Mapping[str, Any],
    *,
    system_prompt: str | None = None,
    user_prompt_template: str | None = None,
    response_format: str | None = None,
) -> list[dict[str, str]]:
    variables = template_variables(context)
    messages: list[dict[str, str]] = []

    if system_prompt:
        messages.append(
            {
                "role": "system",
                "content": f"{system_language_instruction(context)}\n\n"
                f"{render(system_prompt, variables)}",
            }
        )

    if user_prompt_template:
        user_content = (
            f"{user_language_context(context)}\n\n{render(user_prompt_template, variables)}"
        )
    else:
        user_content = variables["input"]

    # OpenAI-compatible JSON mode rejects prompts that never mention JSON.
    if response_format == "json" and "json" not in user_content.lower():
        user_content += f"\n\n{JSON_REMINDER}"

    messages.append({"role": "user", "content": user_content})
    return messages


def parse_response(text: str, response_format: str | None) -> Any:
    if response_format != "json":
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"content": text}
