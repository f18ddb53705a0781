import pytest

from common.prompt_modifiers import PromptModifiers, parse, serialize


def types(parsed):
    return [c.type for c in parsed.commands]


def test_plain_prompt_has_no_commands():
    parsed = parse("a lighthouse at dusk")
    assert parsed.base_prompt == "a lighthouse at dusk"
    assert parsed.commands == []


def test_extracts_all_three_modifiers():
    parsed = parse("a lighthouse --ar 16:9 --s 250 --sref abc123")
    assert parsed.base_prompt == "a lighthouse"
    assert [(c.type, c.value) for c in parsed.commands] == [
        ("ar", "16:9"),
        ("s", "250"),
        ("sref", "abc123"),
    ]


@pytest.mark.parametrize(
    "prompt",
    [
        "--sref moody a lighthouse --s 100 --ar 3:2",
        "a --s 100 lighthouse --sref moody --ar 3:2",
        "--ar 3:2 --sref moody --s 100 a lighthouse",
    ],
)
def test_command_order_is_fixed(prompt):
    parsed = parse(prompt)
    assert types(parsed) == ["ar", "s", "sref"]
    assert "--" not in parsed.base_prompt
    assert parsed.base_prompt == "a lighthouse"


def test_whitespace_is_collapsed():
    assert parse("  a   cat --s 10   on a mat  ").base_prompt == "a cat on a mat"


def test_only_first_occurrence_becomes_a_command():
    parsed = parse("cat --s 10 dog --s 20")
    assert parsed.base_prompt == "cat dog"
    assert [(c.type, c.value) for c in parsed.commands] == [("s", "10")]


@pytest.mark.parametrize(
    "prompt",
    [
        "cat --ar wide",
        "cat --s high",
        "cat --ar 16:9x",
        "cat --sref",
        "cat --chaos 20",
        "cat--s 10",
    ],
)
def test_malformed_flags_stay_in_base_prompt(prompt):
    parsed = parse(prompt)
    assert parsed.commands == []
    assert parsed.base_prompt == prompt


def test_sref_is_not_mistaken_for_stylization():
    parsed = parse("cat --sref 42")
    assert types(parsed) == ["sref"]
    assert parsed.command("s") is None


def test_modifiers_from_commands():
    parsed = parse("cat --s 300 --ar 1:1")
    assert parsed.modifiers == PromptModifiers(aspect_ratio="1:1", stylization=300)


def test_serialize_skips_unset_values():
    assert serialize("cat") == "cat"
    assert serialize("cat", stylization=0, aspect_ratio="", style_reference="") == "cat"
    assert serialize("cat ", style_reference="x1", aspect_ratio="2:3") == "cat --ar 2:3 --sref x1"
    assert serialize("cat", stylization=750) == "cat --s 750"


@pytest.mark.parametrize(
    "modifiers",
    [
        PromptModifiers(),
        PromptModifiers(aspect_ratio="16:9"),
        PromptModifiers(stylization=1000, style_reference="random"),
        PromptModifiers(aspect_ratio="4:5", stylization=1, style_reference="3842167"),
    ],
)
def test_parse_inverts_serialize(modifiers):
    text = serialize("an owl in a library", **modifiers.model_dump())
    parsed = parse(text)
    assert parsed.base_prompt == "an owl in a library"
    assert parsed.modifiers == modifiers
