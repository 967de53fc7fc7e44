"""Request / response models for the painter invocation contract."""
from __future__ import annotations

from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

INPAINT_MARKER = "INPAINT"

_IMAGE_SIZE_MAP = {
    "1024x1024": "1K",
    "2048x2048": "2K",
    "4096x4096": "4K",
    "1K": "1K",
    "2K": "2K",
    "4K": "4K",
}


def normalise_image_size(value: str | None) -> str | None:
    """Map pixel or named sizes onto the canonical ``1K``/``2K``/``4K`` set."""

    if value is None:
        return None
    key = str(value).strip().lower().replace("×", "x")
    if not key:
        return None
    if key.endswith("k"):
        key = key.upper()
    return _IMAGE_SIZE_MAP.get(key, "2K")


class _CamelModel(BaseModel):
    """Base model accepting camelCase or snake_case keys and ignoring unknown fields."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)


class ImageRole(str, Enum):
    BASE = "BASE"
    MASK = "MASK"
    REF = "REF"

    @classmethod
    def from_label(cls, label: str | None) -> "ImageRole":
        text = (label or "").strip().upper()
        if text.startswith(cls.BASE.value):
            return cls.BASE
        if text.startswith(cls.MASK.value):
            return cls.MASK
        return cls.REF


class ImageInput(_CamelModel):
    url: str
    label: str = "REF"
    allow_transform: Optional[bool] = None

    @field_validator("url", mode="before")
    @classmethod
    def _strip_url(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @property
    def role(self) -> ImageRole:
        return ImageRole.from_label(self.label)


class HistoryTurn(_CamelModel):
    role: Literal["user", "model"] = "user"
    text: str = ""


class GenerationParams(_CamelModel):
    aspect_ratio: Optional[str] = None
    image_size: Optional[str] = None
    seed: Optional[int] = None
    temperature: Optional[float] = None
    response_modalities: Optional[List[str]] = None
    thinking_config: Optional[dict[str, Any]] = None
    edit_mode: Optional[str] = None

    def merged_over(self, base: "GenerationParams | None") -> "GenerationParams":
        """Return ``base`` updated with every field explicitly set on ``self``."""

        if base is None:
            return self
        payload = base.model_dump()
        payload.update(self.model_dump(exclude_unset=True))
        return GenerationParams.model_validate(payload)


class Shot(_CamelModel):
    model_config = ConfigDict(
        extra="ignore", populate_by_name=True, alias_generator=to_camel, frozen=True
    )

    shot_id: str = Field(min_length=1)
    user_text: str = Field(
        default="", validation_alias=AliasChoices("userText", "user_text", "prompt")
    )
    images: List[ImageInput] = Field(default_factory=list)
    reference_image_urls: List[str] = Field(default_factory=list)
    system_instruction: Optional[str] = None
    history: List[HistoryTurn] = Field(default_factory=list)
    edit_mode: Optional[str] = None
    params: Optional[GenerationParams] = Field(
        default=None,
        validation_alias=AliasChoices("params", "painterParams", "generationParams"),
    )

    def effective_params(self, job_params: GenerationParams | None = None) -> GenerationParams:
        """Shot params over job params; the shot's own edit mode fills the gap."""

        params = (self.params or GenerationParams()).merged_over(job_params)
        if not params.edit_mode and self.edit_mode:
            params = params.model_copy(update={"edit_mode": self.edit_mode})
        return params

    def image_inputs(self, job_params: GenerationParams | None = None) -> List[ImageInput]:
        """Ordered image inputs with ``allow_transform`` resolved.

        Bare ``referenceImageUrls`` are appended as ``REF_n``.  BASE and MASK
        images are never transformed under an inpaint edit mode.
        """

        edit_mode = (self.effective_params(job_params).edit_mode or "").upper()
        inpaint = INPAINT_MARKER in edit_mode

        resolved: List[ImageInput] = []
        for image in self.images:
            if image.allow_transform is None:
                keep_pixels = inpaint and image.role in (ImageRole.BASE, ImageRole.MASK)
                image = image.model_copy(update={"allow_transform": not keep_pixels})
            resolved.append(image)

        ref_count = sum(1 for image in resolved if image.role is ImageRole.REF)
        for url in self.reference_image_urls:
            ref_count += 1
            resolved.append(ImageInput(url=url, label=f"REF_{ref_count}", allow_transform=True))
        return resolved


class JobConfig(_CamelModel):
    painter_model: Optional[str] = None
    painter_gateway: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("painterGateway", "painterApiUrl", "gatewayUrl", "painter_gateway"),
    )
    painter_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("painterKey", "apiKey", "painter_key")
    )
    painter_keys: List[str] = Field(default_factory=list)
    painter_params: Optional[GenerationParams] = None
    provider_shape: Optional[Literal["gateway", "native"]] = None


class JobRequest(_CamelModel):
    task_id: Optional[str] = None
    config: JobConfig = Field(default_factory=JobConfig)
    shots: List[Shot] = Field(default_factory=list)
    legacy: bool = Field(default=False, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _normalise_legacy_shape(cls, data: Any) -> Any:
        """Turn ``{prompt|prompts, referenceImageUrls, shotId}`` into ``shots``."""

        if not isinstance(data, dict) or data.get("shots"):
            return data

        prompt = data.get("prompt")
        prompts = data.get("prompts")
        if isinstance(prompt, str):
            texts = [prompt]
        elif isinstance(prompts, list) and prompts:
            texts = [str(item) if item is not None else "" for item in prompts]
        else:
            return data

        shot_id = data.get("shotId") or data.get("shot_id")
        if not isinstance(shot_id, str) or not shot_id.strip():
            raise ValueError("shotId is required for single-shot requests")
        shot_id = shot_id.strip()

        refs = data.get("referenceImageUrls") or []
        if len(texts) == 1:
            shots = [{"shotId": shot_id, "userText": texts[0], "referenceImageUrls": refs}]
        else:
            shots = [
                {"shotId": f"{shot_id}_{index}", "userText": text, "referenceImageUrls": refs}
                for index, text in enumerate(texts, start=1)
            ]

        normalised = dict(data)
        normalised["shots"] = shots
        normalised["legacy"] = True
        return normalised

    @model_validator(mode="after")
    def _check_shots(self) -> "JobRequest":
        if not self.shots:
            raise ValueError("shots must contain at least one shot")
        seen: set[str] = set()
        for shot in self.shots:
            if shot.shot_id in seen:
                raise ValueError(f"duplicate shotId: {shot.shot_id}")
            seen.add(shot.shot_id)
        return self


class ShotResult(_CamelModel):
    shot_id: str
    success: bool
    image_url: Optional[str] = None
    shoot_log_text: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _one_of_url_or_error(self) -> "ShotResult":
        if self.success and (not self.image_url or self.error):
            raise ValueError("successful shot results carry imageUrl and no error")
        if not self.success and (self.image_url or not self.error):
            raise ValueError("failed shot results carry error and no imageUrl")
        return self

    @classmethod
    def ok(cls, shot_id: str, image_url: str, shoot_log_text: str | None = None) -> "ShotResult":
        return cls(
            shot_id=shot_id,
            success=True,
            image_url=image_url,
            shoot_log_text=shoot_log_text or None,
        )

    @classmethod
    def failed(cls, shot_id: str, error: str) -> "ShotResult":
        return cls(shot_id=shot_id, success=False, error=error or "unknown error")


class BatchResponse(_CamelModel):
    success: bool
    task_id: Optional[str] = None
    results: List[ShotResult] = Field(default_factory=list)
    count: int = 0

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
