"""
Owner and operator use cases: read, list, notes, delete and reset.
"""

import os

import pytest

from rxpipeline.application.dto.prescription_dto import CreatePrescriptionRequest, UpdateNotesRequest
from rxpipeline.application.use_cases.delete_prescription import DeletePrescriptionUseCase
from rxpipeline.application.use_cases.get_prescription import GetPrescriptionUseCase, ListPrescriptionsUseCase
from rxpipeline.application.use_cases.reset_prescription import ResetPrescriptionUseCase
from rxpipeline.application.use_cases.update_prescription_notes import UpdatePrescriptionNotesUseCase
from rxpipeline.core.exceptions import InvalidImageError, OCRError
from rxpipeline.domain.enums.prescription import EnqueueState, PipelineStage, PrescriptionStatus
from rxpipeline.domain.errors import (
    InvalidStatusTransitionError,
    NotesLockedError,
    PrescriptionAccessDeniedError,
    PrescriptionDeletionNotAllowedError,
    PrescriptionNotFoundError,
)

MISSING_ID = "RX-" + "0" * 32


async def fail_extraction(prescription_id, extraction_worker, ocr_service, clock):
    ocr_service.failures = [OCRError("engine crashed") for _ in range(3)]
    await extraction_worker.run_once()
    clock.advance(5)
    await extraction_worker.run_once()
    clock.advance(10)
    await extraction_worker.run_once()


@pytest.mark.asyncio
async def test_get_prescription_for_owner_and_operator(upload, repository):
    prescription_id = await upload(owner_id="owner-1")
    use_case = GetPrescriptionUseCase(repository)

    dto = await use_case.execute(prescription_id, requester_id="owner-1")
    assert dto.id == prescription_id
    assert dto.status == "pending"
    assert dto.original_filename == "scan.png"
    assert dto.failure_reason is None

    assert (await use_case.execute(prescription_id, is_operator=True)).id == prescription_id

    with pytest.raises(PrescriptionAccessDeniedError):
        await use_case.execute(prescription_id, requester_id="someone-else")


@pytest.mark.asyncio
async def test_get_unknown_or_malformed_id(repository):
    use_case = GetPrescriptionUseCase(repository)

    with pytest.raises(PrescriptionNotFoundError):
        await use_case.execute(MISSING_ID, is_operator=True)
    with pytest.raises(PrescriptionNotFoundError):
        await use_case.execute("not-an-id", is_operator=True)


@pytest.mark.asyncio
async def test_list_is_scoped_to_owner_and_paginated(upload, repository):
    ids = [await upload(owner_id="owner-1") for _ in range(3)]
    await upload(owner_id="owner-2")
    use_case = ListPrescriptionsUseCase(repository)

    listed = await use_case.execute("owner-1")
    assert sorted(dto.id for dto in listed) == sorted(ids)
    assert all(dto.owner_id == "owner-1" for dto in listed)

    assert len(await use_case.execute("owner-1", limit=2)) == 2
    assert len(await use_case.execute("owner-1", limit=2, offset=2)) == 1
    # limit is clamped to at least one
    assert len(await use_case.execute("owner-1", limit=0)) == 1


@pytest.mark.asyncio
async def test_create_rejects_invalid_upload(create_use_case, repository):
    with pytest.raises(InvalidImageError):
        await create_use_case.execute(
            CreatePrescriptionRequest(owner_id="owner-1", image_bytes=b"%PDF", filename="scan.pdf")
        )
    with pytest.raises(InvalidImageError):
        await create_use_case.execute(
            CreatePrescriptionRequest(owner_id="owner-1", image_bytes=b"", filename="scan.png")
        )
    with pytest.raises(ValueError):
        await create_use_case.execute(
            CreatePrescriptionRequest(owner_id="", image_bytes=b"img", filename="scan.png")
        )
    assert repository.items == {}


@pytest.mark.asyncio
async def test_update_notes_while_pending(upload, repository):
    prescription_id = await upload(owner_id="owner-1")
    use_case = UpdatePrescriptionNotesUseCase(repository)

    dto = await use_case.execute(UpdateNotesRequest(prescription_id, "owner-1", "  allergic to penicillin "))

    assert dto.notes == "allergic to penicillin"
    assert repository.get(prescription_id).notes == "allergic to penicillin"

    with pytest.raises(PrescriptionAccessDeniedError):
        await use_case.execute(UpdateNotesRequest(prescription_id, "owner-2", "hijack"))

    dto = await use_case.execute(UpdateNotesRequest(prescription_id, "operator-7", "checked", is_operator=True))
    assert dto.notes == "checked"


@pytest.mark.asyncio
async def test_notes_locked_once_extraction_is_done(upload, repository, extraction_worker):
    prescription_id = await upload(owner_id="owner-1", notes="original")
    await extraction_worker.run_once()

    with pytest.raises(NotesLockedError):
        await UpdatePrescriptionNotesUseCase(repository).execute(
            UpdateNotesRequest(prescription_id, "owner-1", "changed")
        )
    assert repository.get(prescription_id).notes == "original"


@pytest.mark.asyncio
async def test_delete_refused_while_job_outstanding(upload, repository, image_storage):
    prescription_id = await upload(owner_id="owner-1")

    with pytest.raises(PrescriptionDeletionNotAllowedError):
        await DeletePrescriptionUseCase(repository, image_storage).execute(prescription_id, "owner-1")
    assert prescription_id in repository.items


@pytest.mark.asyncio
async def test_delete_finished_prescription_removes_image(
    upload, repository, image_storage, extraction_worker, analysis_worker
):
    prescription_id = await upload(owner_id="owner-1")
    await extraction_worker.run_once()
    await analysis_worker.run_once()
    image_ref = repository.get(prescription_id).image_ref
    use_case = DeletePrescriptionUseCase(repository, image_storage)

    with pytest.raises(PrescriptionAccessDeniedError):
        await use_case.execute(prescription_id, "owner-2")

    assert await use_case.execute(prescription_id, "owner-1") is True
    assert prescription_id not in repository.items
    assert not os.path.exists(image_ref)


@pytest.mark.asyncio
async def test_reset_failed_prescription_reruns_pipeline(
    upload, repository, queue, clock, dispatcher, settings, extraction_worker, ocr_service
):
    prescription_id = await upload(owner_id="owner-1", languages=["fra"])
    await fail_extraction(prescription_id, extraction_worker, ocr_service, clock)
    assert repository.get(prescription_id).status == PrescriptionStatus.EXTRACTION_FAILED

    dto = await ResetPrescriptionUseCase(repository, dispatcher, settings.ocr).execute(prescription_id)

    assert dto.status == "pending"
    assert dto.reset_count == 1
    assert dto.failure_reason is None
    record = repository.get(prescription_id)
    assert record.enqueue_state == EnqueueState.QUEUED
    [envelope] = queue.peek(PipelineStage.EXTRACTION)
    assert envelope.attempts == 0

    await extraction_worker.run_once()
    assert repository.get(prescription_id).status == PrescriptionStatus.EXTRACTION_DONE


@pytest.mark.asyncio
async def test_reset_refused_unless_failed(upload, repository, queue, dispatcher, settings, extraction_worker):
    prescription_id = await upload()
    await extraction_worker.run_once()
    use_case = ResetPrescriptionUseCase(repository, dispatcher, settings.ocr)

    with pytest.raises(InvalidStatusTransitionError):
        await use_case.execute(prescription_id)

    record = repository.get(prescription_id)
    assert record.status == PrescriptionStatus.EXTRACTION_DONE
    assert record.reset_count == 0
    assert await queue.length(PipelineStage.EXTRACTION) == 0

    with pytest.raises(PrescriptionNotFoundError):
        await use_case.execute(MISSING_ID)
