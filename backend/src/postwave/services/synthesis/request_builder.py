"""Build provider request payloads from a job's prompt, input image and parameter snapshot."""

from postwave.schemas.video import GenerationParameters, InputImage


def build_instances(prompt: str, input_image: InputImage | None = None) -> list[dict]:
    """Build the single-instance payload.

    Returns:
        ``[{"prompt": ...}]`` or, for image-to-video,
        ``[{"prompt": ..., "image": {"gcsUri": ..., "mimeType": ...}}]``
    """
    instance: dict = {"prompt": prompt}
    if input_image is not None:
        instance["image"] = {
            "gcsUri": input_image.location,
            "mimeType": input_image.media_type,
        }
    return [instance]


def build_parameters(params: GenerationParameters, storage_uri: str) -> dict:
    """Build the parameters payload.

    Aspect ratio, duration, sample count, output location and the enhance-prompt
    flag are always sent. Seed and style knobs are only sent when set to
    something other than their defaults.
    """
    parameters: dict = {
        "aspectRatio": params.aspect_ratio.value,
        "durationSeconds": params.duration_seconds,
        "sampleCount": params.sample_count,
        "storageUri": storage_uri,
        "enhancePrompt": params.enhance_prompt,
    }
    if params.seed is not None:
        parameters["seed"] = params.seed

    config = params.config.non_default_fields()
    if config:
        parameters["videoGenerationConfig"] = config

    return parameters
