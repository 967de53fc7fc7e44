import pytest
from pydantic import ValidationError

from painter.schemas import (
    BatchResponse,
    GenerationParams,
    ImageRole,
    JobRequest,
    Shot,
    ShotResult,
    normalise_image_size,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1024x1024", "1K"),
        ("2048×2048", "2K"),
        ("4096X4096", "4K"),
        ("4k", "4K"),
        ("800x600", "2K"),
        ("", None),
        (None, None),
    ],
)
def test_normalise_image_size(raw, expected) -> None:
    assert normalise_image_size(raw) == expected


def test_job_request_accepts_camel_case_and_ignores_unknown_fields() -> None:
    request = JobRequest.model_validate(
        {
            "taskId": "t1",
            "config": {"painterModel": "m2", "painterParams": {"aspectRatio": "3:4"}, "extra": 1},
            "shots": [{"shotId": "s1", "userText": "hello", "unknown": True}],
        }
    )
    assert request.task_id == "t1"
    assert request.config.painter_model == "m2"
    assert request.config.painter_params.aspect_ratio == "3:4"
    assert request.shots[0].user_text == "hello"
    assert not request.legacy


def test_legacy_single_prompt_becomes_one_shot() -> None:
    request = JobRequest.model_validate(
        {"prompt": "a red dress", "shotId": "look-1", "referenceImageUrls": ["https://x/a.jpg"]}
    )
    assert request.legacy
    assert len(request.shots) == 1
    shot = request.shots[0]
    assert shot.shot_id == "look-1"
    assert shot.user_text == "a red dress"
    assert shot.reference_image_urls == ["https://x/a.jpg"]


def test_legacy_prompt_list_gets_suffixed_ids() -> None:
    request = JobRequest.model_validate({"prompts": ["one", "two"], "shotId": "look"})
    assert [shot.shot_id for shot in request.shots] == ["look_1", "look_2"]


def test_legacy_shape_requires_shot_id() -> None:
    with pytest.raises(ValidationError):
        JobRequest.model_validate({"prompt": "a red dress"})


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"shots": []},
        {"shots": [{"shotId": "s1", "userText": "a"}, {"shotId": "s1", "userText": "b"}]},
        {"shots": [{"shotId": "", "userText": "a"}]},
    ],
)
def test_invalid_jobs(payload) -> None:
    with pytest.raises(ValidationError):
        JobRequest.model_validate(payload)


def test_inpaint_keeps_base_and_mask_pixels() -> None:
    shot = Shot.model_validate(
        {
            "shotId": "s1",
            "userText": "fix the sleeve",
            "editMode": "EDIT_MODE_INPAINT_INSERTION",
            "images": [
                {"url": "https://x/base.jpg", "label": "BASE"},
                {"url": "https://x/mask.png", "label": "MASK"},
                {"url": "https://x/style.jpg", "label": "REF_1"},
                {"url": "https://x/forced.jpg", "label": "BASE_2", "allowTransform": True},
            ],
            "referenceImageUrls": ["https://x/extra.jpg"],
        }
    )
    images = shot.image_inputs()

    assert [image.allow_transform for image in images] == [False, False, True, True, True]
    assert images[-1].label == "REF_2"
    assert images[3].role is ImageRole.BASE


def test_without_inpaint_everything_may_be_transformed() -> None:
    shot = Shot.model_validate(
        {"shotId": "s1", "userText": "x", "images": [{"url": "https://x/base.jpg", "label": "BASE"}]}
    )
    assert shot.image_inputs()[0].allow_transform is True


def test_job_edit_mode_applies_to_shot_images() -> None:
    shot = Shot.model_validate(
        {"shotId": "s1", "userText": "x", "images": [{"url": "https://x/base.jpg", "label": "BASE"}]}
    )
    job_params = GenerationParams(edit_mode="EDIT_MODE_INPAINT_REMOVAL")
    assert shot.image_inputs(job_params)[0].allow_transform is False


def test_shot_result_invariant() -> None:
    ok = ShotResult.ok("s1", "https://x/a.png", "")
    assert ok.shoot_log_text is None
    assert ShotResult.failed("s2", "").error == "unknown error"

    with pytest.raises(ValidationError):
        ShotResult(shot_id="s1", success=True)
    with pytest.raises(ValidationError):
        ShotResult(shot_id="s1", success=False, image_url="https://x/a.png", error="boom")


def test_batch_response_payload_uses_camel_case() -> None:
    payload = BatchResponse(
        success=True,
        task_id="t1",
        results=[ShotResult.ok("s1", "https://x/a.png", "log"), ShotResult.failed("s2", "blocked")],
        count=2,
    ).to_payload()

    assert payload == {
        "success": True,
        "taskId": "t1",
        "count": 2,
        "results": [
            {"shotId": "s1", "success": True, "imageUrl": "https://x/a.png", "shootLogText": "log"},
            {"shotId": "s2", "success": False, "error": "blocked"},
        ],
    }
