from datetime import datetime, timezone

import pytest

from fluxstudio.core.errors import ValidationError
from fluxstudio.core.types import (
    AspectRatio,
    FluxModel,
    GeneratedImage,
    GenerationRequest,
    PollResult,
    PollStatus,
    format_timestamp,
    parse_timestamp,
)


def test_request_rejects_blank_prompt():
    with pytest.raises(ValidationError, match="Prompt is required"):
        GenerationRequest(prompt="   ")


def test_request_rejects_unknown_aspect_ratio():
    with pytest.raises(ValidationError, match="aspect ratio"):
        GenerationRequest(prompt="a red ball", aspect_ratio="5:4")


@pytest.mark.parametrize("tolerance", [-1, 7, "2"])
def test_request_rejects_bad_safety_tolerance(tolerance):
    with pytest.raises(ValidationError, match="safety_tolerance"):
        GenerationRequest(prompt="a red ball", safety_tolerance=tolerance)


def test_request_rejects_non_png_output():
    with pytest.raises(ValidationError):
        GenerationRequest(prompt="a red ball", output_format="jpeg")


def test_payload_omits_unset_optionals_and_keeps_seed_zero():
    payload = GenerationRequest(prompt="a red ball", aspect_ratio="16:9", seed=0).to_payload()

    assert payload == {
        "prompt": "a red ball",
        "aspect_ratio": "16:9",
        "output_format": "png",
        "prompt_upsampling": False,
        "safety_tolerance": 2,
        "seed": 0,
    }


def test_from_payload_applies_defaults():
    request = GenerationRequest.from_payload({"prompt": "a lighthouse", "extra": "ignored"})

    assert request.aspect_ratio is AspectRatio.SQUARE
    assert request.safety_tolerance == 2
    assert request.input_image is None


def test_model_parse():
    assert FluxModel.parse("flux-kontext-max") is FluxModel.MAX
    with pytest.raises(ValidationError, match="Valid model is required"):
        FluxModel.parse("flux-dev")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Ready", PollStatus.READY),
        ("completed", PollStatus.COMPLETED),
        ("Pending", PollStatus.PENDING),
        ("Task not found", PollStatus.NOT_FOUND),
        ("Request Moderated", PollStatus.MODERATED),
        ("REQUEST MODERATED", PollStatus.MODERATED),
        ("Content_Moderated", PollStatus.MODERATED),
        ("Error", PollStatus.FAILED),
        ("something new", PollStatus.UNKNOWN),
        (None, PollStatus.UNKNOWN),
    ],
)
def test_status_normalization(raw, expected):
    assert PollStatus.normalize(raw) is expected


def test_poll_result_reads_moderation_reasons_and_sample():
    result = PollResult.from_payload(
        {
            "id": "job-1",
            "status": "Request Moderated",
            "details": {"Moderation Reasons": ["Derivative Works Filter"]},
            "progress": 1.7,
        }
    )

    assert result.status is PollStatus.MODERATED
    assert result.moderation_reasons == ["Derivative Works Filter"]
    assert result.progress == 1.0
    assert result.sample is None


def test_poll_result_ignores_string_details():
    result = PollResult.from_payload({"status": "Failed", "details": "boom", "error": "Out of capacity"})

    assert result.moderation_reasons == []
    assert result.error == "Out of capacity"


def test_timestamp_format_uses_milliseconds_and_z():
    value = datetime(2024, 5, 1, 12, 30, 15, 123456, tzinfo=timezone.utc)

    assert format_timestamp(value) == "2024-05-01T12:30:15.123Z"
    assert parse_timestamp("2024-05-01T12:30:15.123Z") == value.replace(microsecond=123000)


def test_image_record_round_trip():
    image = GeneratedImage(
        id="job-1",
        url="/generated-images/job-1.png",
        prompt="a red ball",
        model="flux-kontext-pro",
        aspect_ratio="1:1",
        timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )

    assert image.to_metadata() == {
        "id": "job-1",
        "prompt": "a red ball",
        "model": "flux-kontext-pro",
        "aspectRatio": "1:1",
        "timestamp": "2024-05-01T00:00:00.000Z",
    }
    assert GeneratedImage.from_record(image.to_record()) == image


def test_image_from_record_requires_id():
    with pytest.raises(ValueError):
        GeneratedImage.from_record({"timestamp": "2024-05-01T00:00:00Z"})
