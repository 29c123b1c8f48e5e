"""Tests for request validation and provider payload construction."""

import pytest
from pydantic import ValidationError

from postwave.models.video_job import VideoType
from postwave.schemas.video import (
    AspectRatio,
    ColorTone,
    GenerationConfig,
    GenerationParameters,
    InputImage,
    Movement,
    OperationState,
    VideoJobCreate,
)
from postwave.services.synthesis.request_builder import build_instances, build_parameters

STORAGE_URI = "gs://test-bucket/generated-videos/job-1/"


class TestBuildParameters:
    def test_defaults_send_fixed_fields_only(self):
        parameters = build_parameters(GenerationParameters(), STORAGE_URI)

        assert parameters == {
            "aspectRatio": "16:9",
            "durationSeconds": 5,
            "sampleCount": 1,
            "storageUri": STORAGE_URI,
            "enhancePrompt": True,
        }

    def test_seed_and_non_default_knobs_are_sent(self):
        params = GenerationParameters(
            aspect_ratio=AspectRatio.PORTRAIT,
            duration_seconds=8,
            seed=42,
            config=GenerationConfig(movement=Movement.FAST, color_tone=ColorTone.WARM),
        )

        parameters = build_parameters(params, STORAGE_URI)

        assert parameters["aspectRatio"] == "9:16"
        assert parameters["durationSeconds"] == 8
        assert parameters["seed"] == 42
        # Only knobs that differ from their defaults, with wire names
        assert parameters["videoGenerationConfig"] == {"movement": "fast", "colorTone": "warm"}


class TestBuildInstances:
    def test_text_to_video(self):
        assert build_instances("a quiet harbor") == [{"prompt": "a quiet harbor"}]

    def test_image_to_video(self):
        image = InputImage(location="gs://test-bucket/input-images/a.png", media_type="image/png")

        instances = build_instances("a quiet harbor", image)

        assert instances == [
            {
                "prompt": "a quiet harbor",
                "image": {
                    "gcsUri": "gs://test-bucket/input-images/a.png",
                    "mimeType": "image/png",
                },
            }
        ]


class TestVideoJobCreate:
    def test_tags_accept_comma_separated_string(self):
        request = VideoJobCreate(
            title="  Harbor  ",
            prompt="A slow aerial shot over a quiet harbor",
            tags="sea, dawn, ,harbor",
        )

        assert request.title == "Harbor"
        assert request.tags == ["sea", "dawn", "harbor"]

    def test_image_to_video_requires_input_image(self):
        with pytest.raises(ValidationError, match="requires an uploaded input image"):
            VideoJobCreate(
                title="Harbor",
                prompt="A slow aerial shot over a quiet harbor",
                video_type=VideoType.IMAGE_TO_VIDEO,
            )

    def test_text_to_video_rejects_input_image(self):
        with pytest.raises(ValidationError, match="only accepted for image-to-video"):
            VideoJobCreate(
                title="Harbor",
                prompt="A slow aerial shot over a quiet harbor",
                input_image={"location": "gs://b/i.png", "media_type": "image/png"},
            )

    @pytest.mark.parametrize(
        "overrides",
        [
            {"title": ""},
            {"title": "x" * 101},
            {"prompt": "too short"},
            {"description": "x" * 501},
            {"parameters": {"duration_seconds": 0}},
            {"parameters": {"sample_count": 5}},
            {"parameters": {"aspect_ratio": "4:3"}},
        ],
    )
    def test_rejects_out_of_range_fields(self, overrides):
        payload = {"title": "Harbor", "prompt": "A slow aerial shot over a quiet harbor"}
        payload.update(overrides)

        with pytest.raises(ValidationError):
            VideoJobCreate(**payload)

    def test_input_image_media_type_is_validated(self):
        with pytest.raises(ValidationError, match="Unsupported image type"):
            InputImage(location="gs://b/i.bmp", media_type="image/bmp")


class TestOperationState:
    def test_output_locations_from_every_known_shape(self):
        operation = OperationState(
            name="operations/1",
            done=True,
            response={
                "videos": [{"gcsUri": "gs://b/a.mp4"}],
                "generatedSamples": [{"video": {"uri": "gs://b/b.mp4"}}],
                "videoUri": "gs://b/c.mp4",
            },
        )

        assert operation.output_locations() == ["gs://b/a.mp4", "gs://b/b.mp4", "gs://b/c.mp4"]

    def test_failed_operation_message(self):
        operation = OperationState(
            name="operations/1", done=True, error={"code": 3, "message": "X"}, response=None
        )

        assert operation.failed
        assert operation.error_message == "X"
        assert operation.response == {}

    def test_failed_operation_without_message_uses_default(self):
        operation = OperationState(name="operations/1", done=True, error={"code": 13})

        assert operation.error_message == "Video generation failed"
