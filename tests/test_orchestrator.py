import asyncio

import pytest

from chunked_upload.models.errors import (
    AuthenticationError,
    FinalizationError,
    PartUploadFailed,
    ResumeMismatchError,
    UploadCancelledError,
    UploadValidationError,
)
from chunked_upload.models.upload_models import UploadOptions, UploadState
from tests.conftest import MIB, NOW


def video_options(**kwargs):
    kwargs.setdefault("logical_id", "entry-1")
    return UploadOptions(kind="video", content_type="video/mp4", **kwargs)


async def test_end_to_end_23_mib(orchestrator, control_plane, transport, store, make_file):
    path = make_file(23 * MIB)
    progress = []

    controller = orchestrator.start(path, video_options(on_progress=progress.append))
    result = await controller.result

    assert result.object_key == "videos/user-1/1700000000000-abc.mp4"
    assert [p.part_number for p in result.final_session_state.completed_parts] == [1, 2, 3, 4, 5]
    assert [p.part_number for p in control_plane.completed_with] == [1, 2, 3, 4, 5]
    assert [p.integrity_tag for p in control_plane.completed_with] == [f"etag-{n}" for n in range(1, 6)]
    assert transport.puts == [(1, 5 * MIB), (2, 5 * MIB), (3, 5 * MIB), (4, 5 * MIB), (5, 3 * MIB)]
    assert store.load("entry-1") is None
    assert controller.state == UploadState.DONE


async def test_state_saved_after_initiate_and_every_part(orchestrator, store, make_file):
    path = make_file(12 * MIB)

    await orchestrator.start(path, video_options()).result

    assert store.saves == [[], [1], [1, 2], [1, 2, 3]]


async def test_progress_is_monotonic_and_ends_at_100(orchestrator, make_file):
    path = make_file(23 * MIB)
    progress = []

    await orchestrator.start(path, video_options(on_progress=progress.append)).result

    percentages = [p.percentage for p in progress]
    assert percentages == sorted(percentages)
    assert percentages[-1] == 100
    assert progress[-1].bytes_uploaded == progress[-1].total_bytes == 23 * MIB
    assert [p.current_part for p in progress] == [1, 2, 3, 4, 5]


async def test_resume_skips_completed_parts(orchestrator, control_plane, transport, make_file, make_session):
    path = make_file(50 * MIB)
    session = make_session(path, 50 * MIB, completed=(1, 2, 3))
    progress = []

    result = await orchestrator.start(
        path, video_options(on_progress=progress.append, resume_from=session)
    ).result

    assert transport.parts_put() == [4, 5, 6, 7, 8, 9, 10]
    assert control_plane.part_urls_requested() == [4, 5, 6, 7, 8, 9, 10]
    assert not any(c[0] == "initiate" for c in control_plane.calls)
    assert progress[0].percentage >= 30
    assert {p.part_number for p in result.final_session_state.completed_parts} == set(range(1, 11))


async def test_resumed_run_matches_uninterrupted_run(orchestrator, control_plane, transport, store, make_file):
    path = make_file(23 * MIB)
    transport.failures = {3: 3}

    with pytest.raises(PartUploadFailed):
        await orchestrator.start(path, video_options()).result

    saved = store.load("entry-1")
    assert [p.part_number for p in saved.completed_parts] == [1, 2]

    controller = await orchestrator.resume("entry-1")
    result = await controller.result

    parts = {(p.part_number, p.integrity_tag) for p in result.final_session_state.completed_parts}
    assert parts == {(n, f"etag-{n}") for n in range(1, 6)}
    assert store.load("entry-1") is None


async def test_part_retried_with_backoff(orchestrator, transport, fake_sleep, make_file):
    path = make_file(6 * MIB)
    transport.failures = {2: 2}

    await orchestrator.start(path, video_options()).result

    assert transport.parts_put() == [1, 2, 2, 2]
    assert fake_sleep.delays == [1.0, 2.0]


async def test_exhausted_retries_fail_and_keep_session(orchestrator, control_plane, transport, store, make_file):
    path = make_file(6 * MIB)
    transport.failures = {2: 5}

    controller = orchestrator.start(path, video_options())
    with pytest.raises(PartUploadFailed) as exc_info:
        await controller.result

    assert exc_info.value.part_number == 2
    assert exc_info.value.attempts == 3
    assert transport.parts_put() == [1, 2, 2, 2]
    assert controller.state == UploadState.FAILED
    assert store.has_resumable_upload("entry-1")
    assert store.get_upload_progress("entry-1") == 50
    assert not any(c[0] in ("abort", "complete") for c in control_plane.calls)


async def test_cancel_mid_part_aborts(orchestrator, control_plane, transport, store, make_file):
    path = make_file(12 * MIB)
    transport.hang_on_part = 2

    controller = orchestrator.start(path, video_options())
    await asyncio.wait_for(transport.entered_hang.wait(), timeout=5)
    controller.cancel()

    with pytest.raises(UploadCancelledError):
        await controller.result

    assert [p.part_number for p in controller.current_state().completed_parts] == [1]
    assert ("abort", "upload-1") in control_plane.calls
    assert not any(c[0] == "complete" for c in control_plane.calls)
    assert controller.state == UploadState.ABORTED
    assert store.load("entry-1") is None


async def test_cancel_is_reported_even_when_abort_fails(orchestrator, control_plane, transport, server_error, make_file):
    path = make_file(12 * MIB)
    transport.hang_on_part = 1
    control_plane.abort_error = server_error

    controller = orchestrator.start(path, video_options())
    await asyncio.wait_for(transport.entered_hang.wait(), timeout=5)
    controller.cancel()

    with pytest.raises(UploadCancelledError):
        await controller.result
    assert controller.state == UploadState.ABORTED


async def test_cancel_during_initiate_releases_server_upload(orchestrator, control_plane, transport, store, make_file):
    path = make_file(6 * MIB)
    control_plane.initiate_gate = asyncio.Event()

    controller = orchestrator.start(path, video_options())
    await asyncio.wait_for(control_plane.initiate_entered.wait(), timeout=5)
    controller.cancel()
    control_plane.initiate_gate.set()

    with pytest.raises(UploadCancelledError):
        await controller.result

    assert ("abort", "upload-1") in control_plane.calls
    assert control_plane.part_urls_requested() == []
    assert transport.puts == []
    assert controller.state == UploadState.ABORTED
    assert store.load("entry-1") is None


async def test_validation_failure_makes_no_network_calls(orchestrator, control_plane, make_file):
    path = make_file(1024, name="clip.avi")

    controller = orchestrator.start(path, UploadOptions(kind="video", content_type="video/x-msvideo"))
    with pytest.raises(UploadValidationError) as exc_info:
        await controller.result

    assert exc_info.value.code == "INVALID_CONTENT_TYPE"
    assert control_plane.calls == []
    assert controller.state == UploadState.FAILED


async def test_missing_file_is_validation_error(orchestrator, control_plane, tmp_path):
    controller = orchestrator.start(tmp_path / "gone.mp4", video_options())

    with pytest.raises(UploadValidationError) as exc_info:
        await controller.result
    assert exc_info.value.code == "FILE_NOT_FOUND"
    assert control_plane.calls == []


async def test_oversized_photo_rejected(orchestrator, make_file):
    path = make_file(21 * MIB, name="photo.jpg")

    controller = orchestrator.start(path, UploadOptions(kind="photo", content_type="image/jpeg"))
    with pytest.raises(UploadValidationError) as exc_info:
        await controller.result
    assert exc_info.value.code == "FILE_TOO_LARGE"


async def test_resume_rejects_changed_file(orchestrator, control_plane, make_file, make_session):
    path = make_file(11 * MIB)
    session = make_session(path, 10 * MIB, completed=(1,))

    controller = orchestrator.start(path, video_options(resume_from=session))
    assert controller.current_state() is None
    with pytest.raises(ResumeMismatchError):
        await controller.result
    assert control_plane.calls == []
    assert controller.current_state() is None


async def test_resume_rejects_other_source(orchestrator, make_file, make_session):
    path = make_file(10 * MIB)
    other = make_file(10 * MIB, name="other.mp4")
    session = make_session(other, 10 * MIB, completed=(1,))

    with pytest.raises(ResumeMismatchError):
        await orchestrator.start(path, video_options(resume_from=session)).result


async def test_resume_unknown_id(orchestrator):
    with pytest.raises(ResumeMismatchError):
        await orchestrator.resume("missing")


async def test_finalization_failure_keeps_session_for_resume(orchestrator, control_plane, transport, store, server_error, make_file):
    path = make_file(12 * MIB)
    control_plane.complete_error = server_error

    with pytest.raises(FinalizationError):
        await orchestrator.start(path, video_options()).result

    saved = store.load("entry-1")
    assert saved.is_complete()

    control_plane.complete_error = None
    transport.puts.clear()
    result = await (await orchestrator.resume("entry-1")).result

    assert transport.puts == []
    assert result.object_key == saved.object_key
    assert store.load("entry-1") is None


async def test_authentication_error_not_wrapped(orchestrator, control_plane, make_file):
    path = make_file(6 * MIB)
    control_plane.initiate_error = AuthenticationError("Invalid or expired token")

    with pytest.raises(AuthenticationError):
        await orchestrator.start(path, video_options()).result


async def test_logical_id_defaults_to_source(orchestrator, store, control_plane, make_file):
    path = make_file(6 * MIB)
    control_plane.complete_error = FinalizationError("down")

    with pytest.raises(FinalizationError):
        await orchestrator.start(path, UploadOptions(kind="video", content_type="video/mp4")).result

    assert [logical_id for logical_id, _ in store.list_all()] == [str(path)]


async def test_session_created_at_uses_clock(orchestrator, make_file):
    path = make_file(6 * MIB)

    result = await orchestrator.start(path, video_options()).result

    assert result.final_session_state.created_at == NOW
