"""
Inline prompt modifiers.

Prompts may carry `--ar W:H`, `--s N` and `--sref ID` tokens anywhere in the
text. `parse` pulls them out into CommandTags and `serialize` puts a tag set
back onto a base prompt, always in the order ar, s, sref.
"""
import re
from typing import List, Literal, NamedTuple, Optional

from pydantic import BaseModel

CommandType = Literal["ar", "s", "sref"]

# A flag only counts when it and its value are whole whitespace-separated words.
_PATTERNS = {
    "ar": re.compile(r"(?<!\S)--ar\s+(\d+:\d+)(?!\S)"),
    "s": re.compile(r"(?<!\S)--s\s+(\d+)(?!\S)"),
    "sref": re.compile(r"(?<!\S)--sref\s+(\w+)(?!\S)"),
}
COMMAND_ORDER = ("ar", "s", "sref")


class CommandTag(BaseModel):
    type: CommandType
    value: str


class PromptModifiers(BaseModel):
    aspect_ratio: str = ""
    stylization: int = 0
    style_reference: str = ""


class ParsedPrompt(NamedTuple):
    base_prompt: str
    commands: List[CommandTag]

    def command(self, type: CommandType) -> Optional[CommandTag]:
        return next((c for c in self.commands if c.type == type), None)

    @property
    def modifiers(self) -> PromptModifiers:
        ar = self.command("ar")
        s = self.command("s")
        sref = self.command("sref")
        return PromptModifiers(
            aspect_ratio=ar.value if ar else "",
            stylization=int(s.value) if s else 0,
            style_reference=sref.value if sref else "",
        )


def _collapse(text: str) -> str:
    return " ".join(text.split())


def parse(prompt_text: str) -> ParsedPrompt:
    commands = []
    base = prompt_text
    for type in COMMAND_ORDER:
        pattern = _PATTERNS[type]
        match = pattern.search(prompt_text)
        if match:
            commands.append(CommandTag(type=type, value=match.group(1)))
        base = pattern.sub(" ", base)
    return ParsedPrompt(_collapse(base), commands)


def serialize(
    base_prompt: str,
    aspect_ratio: str = "",
    stylization: int = 0,
    style_reference: str = "",
) -> str:
    parts = [base_prompt.strip()]
    if aspect_ratio:
        parts.append(f"--ar {aspect_ratio}")
    if stylization:
        parts.append(f"--s {stylization}")
    if style_reference:
        parts.append(f"--sref {style_reference}")
    return " ".join(p for p in parts if p)
