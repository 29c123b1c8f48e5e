"""Pydantic schemas for video generation requests and job field groups.

These are the typed views over the JSON field groups stored on ``VideoJob``:

- ``GenerationParameters``: snapshot taken at submission time
- ``InputImage``: reference to an uploaded conditioning image
- ``OperationState``: last known provider operation payload
- ``Artifact``: resolved output object with its signed URL
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from postwave.models.video_job import VideoType

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif"})


class AspectRatio(str, Enum):
    LANDSCAPE = "16:9"
    SQUARE = "1:1"
    PORTRAIT = "9:16"


class Movement(str, Enum):
    SLOW = "slow"
    MEDIUM = "medium"
    FAST = "fast"


class CameraMotion(str, Enum):
    ZOOM_IN = "zoom_in"
    ZOOM_OUT = "zoom_out"
    PAN_LEFT = "pan_left"
    PAN_RIGHT = "pan_right"
    STATIC = "static"


class VisualStyle(str, Enum):
    CINEMATIC = "cinematic"
    PHOTOREALISTIC = "photorealistic"
    ANIME = "anime"
    CARTOON = "cartoon"
    ARTISTIC = "artistic"


class Lighting(str, Enum):
    NATURAL = "natural"
    SUNSET = "sunset"
    SUNRISE = "sunrise"
    GOLDEN_HOUR = "golden_hour"
    BLUE_HOUR = "blue_hour"
    STUDIO = "studio"


class ColorTone(str, Enum):
    WARM = "warm"
    COOL = "cool"
    NEUTRAL = "neutral"
    VIBRANT = "vibrant"
    MUTED = "muted"


class GenerationConfig(BaseModel):
    """Style knobs for the generated video."""

    model_config = ConfigDict(frozen=True)

    movement: Movement = Movement.MEDIUM
    camera: CameraMotion = CameraMotion.STATIC
    style: VisualStyle = VisualStyle.CINEMATIC
    lighting: Lighting = Lighting.NATURAL
    color_tone: ColorTone = ColorTone.NEUTRAL

    def non_default_fields(self) -> dict[str, str]:
        """Return only the knobs that differ from their defaults, keyed by wire name.

        Defaults are left out of provider requests so the provider's own
        defaults stay in effect.
        """
        wire_names = {"color_tone": "colorTone"}
        result = {}
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if value != field.default:
                result[wire_names.get(name, name)] = value.value
        return result


class GenerationParameters(BaseModel):
    """Fixed configuration snapshot for one generation request."""

    model_config = ConfigDict(frozen=True)

    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    duration_seconds: int = Field(default=5, ge=1, le=20)
    sample_count: int = Field(default=1, ge=1, le=4)
    enhance_prompt: bool = True
    seed: int | None = Field(default=None, ge=1, le=999_999_999)
    config: GenerationConfig = Field(default_factory=GenerationConfig)


class InputImage(BaseModel):
    """Uploaded conditioning image for image-to-video generation."""

    model_config = ConfigDict(frozen=True)

    location: str = Field(..., min_length=1, description="Storage URI of the uploaded image")
    media_type: str = Field(..., description="Validated image MIME type")

    @field_validator("media_type")
    @classmethod
    def validate_media_type(cls, v: str) -> str:
        if v not in ALLOWED_IMAGE_TYPES:
            raise ValueError(
                f"Unsupported image type {v!r}. Must be one of: "
                + ", ".join(sorted(ALLOWED_IMAGE_TYPES))
            )
        return v


class VideoJobCreate(BaseModel):
    """Validated request to generate a video."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=100)
    prompt: str = Field(..., min_length=10, max_length=1000)
    description: str | None = Field(default=None, max_length=500)
    video_type: VideoType = VideoType.TEXT_TO_VIDEO
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    tags: list[str] = Field(default_factory=list)
    input_image: InputImage | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v: Any) -> Any:
        """Accept comma-separated tags as well as a list."""
        if isinstance(v, str):
            return [tag.strip() for tag in v.split(",") if tag.strip()]
        return v

    @model_validator(mode="after")
    def validate_input_image(self) -> "VideoJobCreate":
        if self.video_type == VideoType.IMAGE_TO_VIDEO and self.input_image is None:
            raise ValueError("image-to-video generation requires an uploaded input image")
        if self.video_type == VideoType.TEXT_TO_VIDEO and self.input_image is not None:
            raise ValueError("input_image is only accepted for image-to-video generation")
        return self


class OperationState(BaseModel):
    """Provider long-running operation payload as last observed."""

    name: str
    done: bool = False
    metadata: dict = Field(default_factory=dict)
    response: dict = Field(default_factory=dict)
    error: dict | None = None

    @field_validator("metadata", "response", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def failed(self) -> bool:
        return self.done and self.error is not None

    @property
    def error_message(self) -> str:
        message = (self.error or {}).get("message")
        return message or "Video generation failed"

    def output_locations(self) -> list[str]:
        """Extract output storage URIs from a successful response.

        The provider has reported outputs in several shapes over time:
        ``videos[].gcsUri``, ``generatedSamples[].video.uri`` and a flat
        ``videoUri``/``outputUri``.
        """
        response = self.response
        locations: list[str] = []

        for video in response.get("videos") or []:
            uri = video.get("gcsUri") or video.get("uri")
            if uri:
                locations.append(uri)

        for sample in response.get("generatedSamples") or []:
            uri = (sample.get("video") or {}).get("uri")
            if uri:
                locations.append(uri)

        for key in ("videoUri", "outputUri"):
            if response.get(key):
                locations.append(response[key])

        return locations


class Artifact(BaseModel):
    """Completed output object and its time-limited access URL."""

    location: str
    url: str
    url_expiry: datetime
    size: int | None = None
    content_type: str = "video/mp4"
    filename: str

    def is_url_expired(self, now: datetime) -> bool:
        return self.url_expiry <= now
