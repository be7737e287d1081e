"""
Tests for document_intake.py

Upload validation with partial success, the failure classes raised when
nothing was stored, and idempotent extraction of financial data.
"""
import pytest

from app.core.errors import InvalidStateError, UpstreamError, ValidationError
from app.models.company_asset import AssetType, CompanyAsset
from app.models.extracted_financial_data import ExtractedFinancialData
from app.models.materials_job import JobStatus
from app.services import document_intake, orchestrator
from app.services.document_intake import IncomingFile, upload_documents
from app.services.events import EVENT_PROCESS_UPLOADS
from app.services.storage import ObjectStore

from tests.fixtures.materials_fixtures import CSV_BYTES, PDF_BYTES, FakeAIGenerator


class BrokenStore(ObjectStore):
    def put(self, data, content_type, *, key=None):
        raise UpstreamError("Object store unavailable", source="storage")

    def get(self, reference):
        raise UpstreamError("Object store unavailable", source="storage")


def job_awaiting_uploads(db, company, caller, dispatcher, runner):
    job = orchestrator.create_job(
        db, company_id=company.id, caller=caller, dispatcher=dispatcher, generate_im=True
    )
    runner.drain(db)
    job = orchestrator.get_job(db, job.id)
    assert job.status == JobStatus.AWAITING_UPLOADS
    return job


def pdf(name="annual_report_2023.pdf"):
    return IncomingFile(name, "application/pdf", PDF_BYTES)


# ---------------------------------------------------------------------------
# upload_documents
# ---------------------------------------------------------------------------

class TestUploadDocuments:
    """Tests for per-file validation and storage."""

    def test_partial_success(self, db, company, caller, dispatcher, runner, store):
        """One valid PDF and one executable: the PDF is kept, the exe reported."""
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)

        report = upload_documents(
            db,
            job,
            [pdf(), IncomingFile("setup.exe", "application/x-msdownload", b"MZ\x90\x00")],
            store=store,
            dispatcher=dispatcher,
        )

        assert report.total == 2
        assert report.uploaded == 1
        assert report.failed[0]["filename"] == "setup.exe"
        assert "Unsupported file type" in report.failed[0]["error"]
        assert dispatcher.names() == [EVENT_PROCESS_UPLOADS]
        assert dispatcher.events[0][1]["document_ids"] == report.document_ids

        assets = db.query(CompanyAsset).filter(CompanyAsset.job_id == job.id).all()
        assert len(assets) == 1
        assert assets[0].asset_type == AssetType.FINANCIAL_DOCUMENT
        assert assets[0].asset_metadata["uploaded_for"] == "materials_generation"
        assert assets[0].asset_metadata["job_id"] == str(job.id)
        assert orchestrator.get_job(db, job.id).status == JobStatus.AWAITING_UPLOADS

    def test_storage_key_is_sanitised(self, db, company, caller, dispatcher, runner, store):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        upload_documents(db, job, [pdf("Tilinpäätös 2023 (final).pdf")], store=store, dispatcher=dispatcher)

        asset = db.query(CompanyAsset).filter(CompanyAsset.job_id == job.id).one()
        assert asset.storage_ref.startswith(f"materials/{job.organization_id}/{job.company_id}/{job.id}/")
        assert " " not in asset.storage_ref
        assert asset.name == "Tilinpäätös 2023 (final).pdf"

    def test_oversized_file_rejected(self, db, company, caller, dispatcher, runner, store):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        report = upload_documents(
            db, job, [pdf(), IncomingFile("big.csv", "text/csv", b"x" * 2048)],
            store=store, dispatcher=dispatcher, max_bytes=1024,
        )
        assert report.uploaded == 1
        assert "limit" in report.failed[0]["error"]

    def test_all_invalid_is_validation_error(self, db, company, caller, dispatcher, runner, store):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        with pytest.raises(ValidationError):
            upload_documents(
                db, job, [IncomingFile("notes.txt", "text/plain", b"hello")], store=store, dispatcher=dispatcher
            )
        assert document_intake.count_documents(db, job.id) == 0
        assert dispatcher.names() == []

    def test_storage_failure_is_upstream_error(self, db, company, caller, dispatcher, runner):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        with pytest.raises(UpstreamError):
            upload_documents(db, job, [pdf()], store=BrokenStore(), dispatcher=dispatcher)

    def test_wrong_state(self, db, company, caller, dispatcher, store):
        job = orchestrator.create_job(db, company_id=company.id, caller=caller, dispatcher=dispatcher)
        with pytest.raises(InvalidStateError):
            upload_documents(db, job, [pdf()], store=store, dispatcher=dispatcher)

    def test_dispatch_failure_keeps_documents(self, db, company, caller, dispatcher, runner, store):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        dispatcher.fail_with = RuntimeError("broker down")

        report = upload_documents(db, job, [pdf()], store=store, dispatcher=dispatcher)

        assert report.uploaded == 1
        assert document_intake.count_documents(db, job.id) == 1


class TestCompleteUploads:
    def test_requires_a_document(self, db, company, caller, dispatcher, runner):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        with pytest.raises(ValidationError):
            orchestrator.complete_uploads(db, job.id, caller)

    def test_moves_to_questionnaire(self, db, company, caller, dispatcher, runner, store):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        upload_documents(db, job, [pdf()], store=store, dispatcher=dispatcher)

        job = orchestrator.complete_uploads(db, job.id, caller)

        assert job.status == JobStatus.QUESTIONNAIRE_PENDING
        assert job.documents_uploaded is True
        assert orchestrator.questionnaire_view(db, job.id, caller)["total"] == 8


# ---------------------------------------------------------------------------
# process_uploads
# ---------------------------------------------------------------------------

class TestProcessUploads:
    """Extraction runs once per document and never fails the job."""

    def test_extracts_each_document_once(self, db, company, caller, dispatcher, runner, store, ai):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        upload_documents(
            db, job, [pdf(), IncomingFile("figures.csv", "text/csv", CSV_BYTES)], store=store, dispatcher=dispatcher
        )
        runner.drain(db)

        rows = db.query(ExtractedFinancialData).filter(ExtractedFinancialData.job_id == job.id).all()
        assert len(rows) == 2
        assert all(r.confidence_score == 0.85 for r in rows)
        assert all(r.extraction_method == "ai_structured" for r in rows)
        assert rows[0].extracted_data["periods"][0]["year"] == 2023

        # re-delivery of the same event
        assert document_intake.process_uploads(db, job, generator=ai, store=store) == 0
        assert db.query(ExtractedFinancialData).filter(ExtractedFinancialData.job_id == job.id).count() == 2

    def test_csv_content_reaches_the_model(self, db, company, caller, dispatcher, runner, store, ai):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        upload_documents(db, job, [IncomingFile("figures.csv", "text/csv", CSV_BYTES)], store=store, dispatcher=dispatcher)
        ai.calls.clear()

        document_intake.process_uploads(db, job, generator=ai, store=store)

        assert "2023,5200000" in ai.calls[0]["prompt"]

    def test_extraction_failure_recorded(self, db, company, caller, dispatcher, runner, store):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        upload_documents(db, job, [pdf()], store=store, dispatcher=dispatcher)

        processed = document_intake.process_uploads(
            db, job, generator=FakeAIGenerator(fail_always=True), store=store
        )

        row = db.query(ExtractedFinancialData).filter(ExtractedFinancialData.job_id == job.id).one()
        assert processed == 1
        assert row.confidence_score == 0.0
        assert "AI provider unavailable" in row.extracted_data["error"]
        assert orchestrator.get_job(db, job.id).status == JobStatus.AWAITING_UPLOADS

    def test_complete_uploads_not_offered_before_first_upload(self, db, company, caller, dispatcher, runner):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)

        status = orchestrator.get_status(db, job.id, caller)

        assert "upload_documents" in status["available_actions"]
        assert "complete_uploads" not in status["available_actions"]
        with pytest.raises(ValidationError):
            orchestrator.complete_uploads(db, job.id, caller)

    def test_status_counts_documents(self, db, company, caller, dispatcher, runner, store):
        job = job_awaiting_uploads(db, company, caller, dispatcher, runner)
        upload_documents(db, job, [pdf(), pdf("q2.pdf")], store=store, dispatcher=dispatcher)

        status = orchestrator.get_status(db, job.id, caller)
        assert status["data_collection"]["uploaded_documents"] == 2
        assert "complete_uploads" in status["available_actions"]
