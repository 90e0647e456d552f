"""System prompt composition for chat-style providers."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from translate_gateway.core.config import GlossaryEntry, WorkflowConfig

PROTECT_PLACEHOLDERS_TEXT = (
    "Keep placeholders and markup exactly as they are, e.g. {{...}}, {0}, %s, :variable, "
    "&nbsp;, HTML/XML tags such as <b>...</b>, Markdown syntax and links, inline formulas "
    "and code snippets."
)
JSON_ARRAY_CONSTRAINT = (
    "Output strictly one JSON array with the same length as the input array; each element "
    "is only the translated string. No extra text, comments or explanations."
)
PLAIN_TEXT_CONSTRAINT = "Output only the translated text without any explanation."

_TEMPLATE_VAR = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def format_glossary(glossary: Iterable[GlossaryEntry | dict[str, Any]] | None) -> str:
    """Render glossary entries as ``- src → dst`` lines, skipping incomplete ones."""
    lines = []
    for entry in glossary or []:
        if isinstance(entry, dict):
            src, dst = entry.get("src"), entry.get("dst")
        else:
            src, dst = entry.src, entry.dst
        src = str(src or "").strip()
        dst = str(dst or "").strip()
        if not src or not dst:
            continue
        lines.append(f"- {src} → {dst}")
    return "\n".join(lines)


def compose_prompt(
    source_lang: str = "auto",
    target_lang: str = "zh-CN",
    workflow: WorkflowConfig | None = None,
    batch: bool = False,
) -> str:
    """Build the system instruction for one translation call.

    A non-empty ``workflow.prompt_template`` wins; it may reference
    ``{{sourceLang}}``, ``{{targetLang}}``, ``{{style}}``, ``{{tone}}``,
    ``{{glossary}}``, ``{{protectPlaceholders}}`` and ``{{jsonConstraint}}``.
    Unknown placeholders are left untouched.
    """
    workflow = workflow or WorkflowConfig()
    glossary_text = format_glossary(workflow.glossary)
    protect_text = PROTECT_PLACEHOLDERS_TEXT if workflow.protect_placeholders else ""

    want_json_array = batch or workflow.response_format.lower() == "json"
    output_constraint = JSON_ARRAY_CONSTRAINT if want_json_array else PLAIN_TEXT_CONSTRAINT

    if workflow.prompt_template.strip():
        values = {
            "sourceLang": str(source_lang),
            "targetLang": str(target_lang),
            "style": workflow.style,
            "tone": workflow.tone,
            "glossary": glossary_text,
            "protectPlaceholders": "true" if workflow.protect_placeholders else "false",
            "jsonConstraint": output_constraint,
        }
        return _TEMPLATE_VAR.sub(lambda m: values.get(m.group(1), m.group(0)), workflow.prompt_template)

    parts = [
        f"You are a professional translation engine. Translate the text from {source_lang} to {target_lang}.",
        f"Requirements: {workflow.style}; tone: {workflow.tone}.",
        f"Glossary (follow strictly):\n{glossary_text}" if glossary_text else "",
        protect_text,
        output_constraint,
        "Preserve the original line breaks, whitespace, punctuation and inline structure.",
    ]
    return "\n".join(p for p in parts if p)
