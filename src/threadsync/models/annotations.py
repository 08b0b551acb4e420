"""
Message annotations.

Annotations are stored as a JSON list on the message. Each entry carries a
``type`` tag; known tags parse into their own model and anything else is kept
verbatim as an OpaqueAnnotation so no client metadata is lost.
"""

from typing import Any, Iterable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class ModelAnnotation(BaseModel):
    """Records which model produced an assistant message."""

    type: Literal["model"] = "model"
    model: str


class AttachmentAnnotation(BaseModel):
    """Reference to a file stored in external blob storage."""

    type: Literal["attachment"] = "attachment"
    url: str
    name: Optional[str] = None
    content_type: Optional[str] = None


class OpaqueAnnotation(BaseModel):
    """Annotation with an unrecognized tag."""

    model_config = ConfigDict(extra="allow")

    type: str


Annotation = Union[ModelAnnotation, AttachmentAnnotation, OpaqueAnnotation]

ANNOTATION_TYPES: dict[str, type[BaseModel]] = {
    "model": ModelAnnotation,
    "attachment": AttachmentAnnotation,
}


def parse_annotation(raw: dict[str, Any]) -> Annotation:
    """Parse one stored annotation by its ``type`` tag."""
    tag = raw.get("type")
    annotation_cls = ANNOTATION_TYPES.get(tag) if isinstance(tag, str) else None
    if annotation_cls is None:
        return OpaqueAnnotation.model_validate(
            {**raw, "type": str(raw.get("type", "unknown"))}
        )
    return annotation_cls.model_validate(raw)


def parse_annotations(raw: Optional[Iterable[dict[str, Any]]]) -> list[Annotation]:
    """Parse a stored annotation list, skipping entries that are not objects."""
    if not raw:
        return []
    return [parse_annotation(item) for item in raw if isinstance(item, dict)]


def dump_annotations(annotations: Iterable[Annotation]) -> list[dict[str, Any]]:
    """Serialize annotations back to their stored JSON form."""
    return [annotation.model_dump(exclude_none=True) for annotation in annotations]


def model_from_annotations(raw: Optional[Iterable[dict[str, Any]]]) -> Optional[str]:
    """Return the model recorded in the first model annotation, if any."""
    for annotation in parse_annotations(raw):
        if isinstance(annotation, ModelAnnotation):
            return annotation.model
    return None


def resolve_message_model(
    model: Optional[str], annotations: Optional[Iterable[dict[str, Any]]]
) -> Optional[str]:
    """Resolve the model used for a message: explicit column first, then annotations."""
    return model or model_from_annotations(annotations)


def with_model_annotation(
    raw: Optional[Iterable[dict[str, Any]]], model: str
) -> list[dict[str, Any]]:
    """Return the annotation list with a model annotation added if none exists."""
    annotations = parse_annotations(raw)
    if not any(isinstance(a, ModelAnnotation) for a in annotations):
        annotations.append(ModelAnnotation(model=model))
    return dump_annotations(annotations)
