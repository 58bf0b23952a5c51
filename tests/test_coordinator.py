import base64
import io
from collections import Counter

import pytest
from PIL import Image

from image_summarizer.core.errors import ServiceUnavailableError, UploadValidationError
from image_summarizer.core.settings import MIB
from image_summarizer.services.schema import AnalysisOutcome, AnalysisRequest, IncomingUpload
from conftest import DEFAULT_REPLY, make_image, raise_timeout, staged_files


def _request(name="photo.png", content=None, prompt=None) -> AnalysisRequest:
    return AnalysisRequest(upload=IncomingUpload(name, content or make_image()), prompt=prompt)


@pytest.fixture
def release_spy(store, monkeypatch):
    """Counts release() calls per artifact id."""
    calls = Counter()
    original = store.release

    async def _spy(artifact):
        calls[artifact.artifact_id] += 1
        await original(artifact)

    monkeypatch.setattr(store, "release", _spy)
    return calls


async def test_run_single_success_cleans_up(coordinator, fake_ollama, settings, release_spy):
    outcome = await coordinator.run_single(_request(prompt=""))

    assert outcome.success
    assert outcome.summary == DEFAULT_REPLY
    assert outcome.error is None
    assert outcome.filename == "photo.png"
    assert outcome.processing_time is not None and outcome.processing_time >= 0
    assert fake_ollama.generate_calls[0]["prompt"] == settings.default_prompt
    assert list(release_spy.values()) == [1]
    assert staged_files(settings) == []


async def test_large_image_is_sent_downscaled(coordinator, fake_ollama, settings):
    outcome = await coordinator.run_single(_request(content=make_image(size=(2048, 1024))))

    assert outcome.success
    sent = base64.b64decode(fake_ollama.generate_calls[0]["images"][0])
    with Image.open(io.BytesIO(sent)) as img:
        assert img.format == "JPEG"
        assert max(img.size) == 1024
    assert staged_files(settings) == []


async def test_preprocessing_failure_still_infers_with_original_bytes(
    coordinator, fake_ollama, settings, monkeypatch
):
    def _broken(source, target):
        raise OSError("encoder exploded")

    monkeypatch.setattr(coordinator.preprocessor, "_render", _broken)
    original = make_image(size=(300, 200))

    outcome = await coordinator.run_single(_request(content=original))

    assert outcome.success
    assert base64.b64decode(fake_ollama.generate_calls[0]["images"][0]) == original
    assert staged_files(settings) == []


async def test_inference_failure_becomes_failed_outcome(coordinator, fake_ollama, settings, release_spy):
    fake_ollama.generate_effects[0] = raise_timeout

    outcome = await coordinator.run_single(_request())

    assert not outcome.success
    assert outcome.summary is None
    assert "timed out" in outcome.error
    assert list(release_spy.values()) == [1]
    assert staged_files(settings) == []


async def test_unexpected_exception_is_contained(coordinator, settings, monkeypatch, release_spy):
    async def _explode(image_path, prompt):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(coordinator.client, "infer", _explode)

    outcome = await coordinator.run_single(_request())

    assert not outcome.success
    assert "kaboom" in outcome.error
    assert list(release_spy.values()) == [1]
    assert staged_files(settings) == []


async def test_backend_down_never_calls_generate(coordinator, fake_ollama, settings):
    fake_ollama.up = False

    with pytest.raises(ServiceUnavailableError):
        await coordinator.analyze(_request())

    assert fake_ollama.generate_calls == []
    assert staged_files(settings) == []


async def test_oversized_upload_is_rejected_before_staging(coordinator, settings, release_spy, monkeypatch):
    staged = []
    original_stage = coordinator.store.stage

    async def _stage(upload):
        staged.append(upload.filename)
        return await original_stage(upload)

    monkeypatch.setattr(coordinator.store, "stage", _stage)

    with pytest.raises(UploadValidationError):
        await coordinator.analyze(_request(name="huge.png", content=b"\0" * (16 * MIB + 1)))

    assert staged == []
    assert not release_spy
    assert staged_files(settings) == []


async def test_batch_isolates_timeout_of_middle_item(coordinator, fake_ollama, settings, release_spy):
    fake_ollama.generate_effects[1] = raise_timeout
    requests = [_request(name=f"img{i}.png") for i in range(1, 4)]

    batch = await coordinator.run_batch(requests)

    assert [r.filename for r in batch.results] == ["img1.png", "img2.png", "img3.png"]
    assert [r.success for r in batch.results] == [True, False, True]
    assert "timed out" in batch.results[1].error
    assert (batch.total, batch.successful, batch.failed) == (3, 2, 1)
    assert len(release_spy) == 3
    assert set(release_spy.values()) == {1}
    assert staged_files(settings) == []


async def test_batch_releases_each_item_before_the_next(coordinator, fake_ollama, settings):
    seen_on_disk = []
    original_infer = coordinator.client.infer

    async def _infer(image_path, prompt):
        seen_on_disk.append(len([p for p in staged_files(settings) if p.is_file()]))
        return await original_infer(image_path, prompt)

    coordinator.client.infer = _infer
    await coordinator.run_batch([_request(name=f"{i}.png") for i in range(4)])

    # the staged original plus its optimized copy, never more
    assert seen_on_disk == [2, 2, 2, 2]


async def test_batch_with_invalid_item(coordinator, settings):
    requests = [
        _request(name="ok.png"),
        _request(name="notes.txt", content=b"hello"),
        _request(name="ok.jpg", content=make_image(fmt="JPEG")),
    ]

    batch = await coordinator.run_batch(requests)

    assert [r.success for r in batch.results] == [True, False, True]
    assert "File type not allowed" in batch.results[1].error
    assert batch.summary_dict() == {"total": 3, "successful": 2, "failed": 1}


async def test_batch_backend_down_fails_every_item(coordinator, fake_ollama, settings):
    fake_ollama.up = False

    batch = await coordinator.run_batch([_request(name=f"{i}.png") for i in range(3)])

    assert batch.failed == 3 and batch.successful == 0
    assert all("not running" in r.error for r in batch.results)
    assert staged_files(settings) == []


async def test_bounded_concurrency_keeps_submission_order(coordinator, fake_ollama, settings):
    fake_ollama.generate_effects[2] = raise_timeout
    requests = [_request(name=f"{i}.png") for i in range(6)]

    batch = await coordinator.run_batch(requests, concurrency=3)

    assert [r.filename for r in batch.results] == [f"{i}.png" for i in range(6)]
    assert batch.total == 6
    assert batch.successful + batch.failed == 6
    assert batch.failed == 1
    assert staged_files(settings) == []


async def test_empty_batch(coordinator):
    batch = await coordinator.run_batch([])
    assert batch.results == []
    assert (batch.total, batch.successful, batch.failed) == (0, 0, 0)


def test_outcome_requires_exactly_one_payload():
    with pytest.raises(ValueError):
        AnalysisOutcome(success=True, filename="a.png", summary="x", error="y")
    with pytest.raises(ValueError):
        AnalysisOutcome(success=False, filename="a.png")
    with pytest.raises(ValueError):
        AnalysisOutcome(success=False, filename="a.png", summary="x")


def test_outcome_wire_shapes():
    ok = AnalysisOutcome.ok("a.png", "a summary", 2.345, 1234)
    assert ok.as_dict() == {
        "success": True,
        "filename": "a.png",
        "summary": "a summary",
        "processingTime": "2.3s",
        "fileSize": 1234,
    }
    failed = AnalysisOutcome.failed("b.png", "Analysis timed out")
    assert failed.as_dict() == {"success": False, "filename": "b.png", "error": "Analysis timed out"}


async def test_batch_nameless_item_fails_alone(coordinator, fake_ollama, settings):
    requests = [_request(name="first.png"), _request(name=""), _request(name="third.png")]

    batch = await coordinator.run_batch(requests)

    assert [r.success for r in batch.results] == [True, False, True]
    assert batch.results[1].error == "No image file provided"
    assert len(fake_ollama.generate_calls) == 2
    assert staged_files(settings) == []
