"""
Tests for message annotation parsing.
"""

from threadsync.models.annotations import (
    AttachmentAnnotation,
    ModelAnnotation,
    OpaqueAnnotation,
    dump_annotations,
    model_from_annotations,
    parse_annotations,
    resolve_message_model,
    with_model_annotation,
)


def test_parse_known_and_unknown_types():
    parsed = parse_annotations(
        [
            {"type": "model", "model": "openai/gpt-4o"},
            {"type": "attachment", "url": "https://files.example/a.png", "name": "a.png"},
            {"type": "reaction", "emoji": "+1"},
            "not an object",
        ]
    )

    assert isinstance(parsed[0], ModelAnnotation)
    assert isinstance(parsed[1], AttachmentAnnotation)
    assert isinstance(parsed[2], OpaqueAnnotation)
    assert len(parsed) == 3


def test_unknown_annotations_survive_round_trip():
    raw = [{"type": "reaction", "emoji": "+1", "by": "bob"}]

    assert dump_annotations(parse_annotations(raw)) == raw


def test_missing_type_is_kept_as_unknown():
    parsed = parse_annotations([{"note": "hi"}])

    assert parsed[0].type == "unknown"


def test_unhashable_type_is_kept_as_unknown():
    parsed = parse_annotations([{"type": ["model"], "model": "openai/gpt-4o"}])

    assert isinstance(parsed[0], OpaqueAnnotation)
    assert model_from_annotations([{"type": {"kind": "model"}}]) is None


def test_parse_empty():
    assert parse_annotations(None) == []
    assert parse_annotations([]) == []


def test_model_resolution_prefers_explicit_field():
    annotations = [{"type": "model", "model": "anthropic/claude-sonnet-4-5"}]

    assert model_from_annotations(annotations) == "anthropic/claude-sonnet-4-5"
    assert resolve_message_model("openai/gpt-4o", annotations) == "openai/gpt-4o"
    assert resolve_message_model(None, annotations) == "anthropic/claude-sonnet-4-5"
    assert resolve_message_model(None, []) is None


def test_with_model_annotation_adds_once():
    first = with_model_annotation([], "openai/gpt-4o")
    second = with_model_annotation(first, "anthropic/claude-sonnet-4-5")

    assert first == [{"type": "model", "model": "openai/gpt-4o"}]
    assert second == first
