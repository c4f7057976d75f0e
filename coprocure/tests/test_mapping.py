"""
Tests for column mapping validation and application.
"""
import pytest

from coprocure.core.errors import MissingFieldsError, StateError, UpstreamError, ValidationError
from coprocure.db.models import AuditEvent, ColumnMapping
from coprocure.services import mapping


class TestValidateMapping:

    def test_complete_needs_mapping_is_valid(self):
        result = mapping.validate_mapping({
            "Empresa": "company_id",
            "Descripcion": "item_name",
            "Categoria": "item_category",
            "Cantidad": "quantity",
        }, "needs")
        assert result.valid is True
        assert result.missing == set()

    def test_partial_mapping_reports_missing_targets(self):
        result = mapping.validate_mapping({"colA": "company_id", "colB": "item_name"}, "needs")
        assert result.valid is False
        assert result.missing == {"item_category", "quantity"}
        assert result.unknown_targets == set()

    def test_missing_quantity_reported(self):
        result = mapping.validate_mapping({
            "Empresa": "company_id",
            "Descripcion": "item_name",
            "Categoria": "item_category",
        }, "needs")
        assert result.valid is False
        assert result.missing == {"quantity"}

    def test_unmapped_source_columns_are_dropped(self):
        result = mapping.validate_mapping({
            "Empresa": "company_id",
            "Inicio": "start_date",
            "Fin": "end_date",
            "Notas": None,
            "Responsable": "   ",
        }, "shutdowns")
        assert result.valid is True
        assert result.mapping == {"Empresa": "company_id", "Inicio": "start_date", "Fin": "end_date"}

    def test_blank_targets_do_not_satisfy_required_fields(self):
        result = mapping.validate_mapping({
            "Empresa": "company_id",
            "Inicio": None,
            "Fin": "",
        }, "shutdowns")
        assert result.valid is False
        assert result.missing == {"start_date", "end_date"}
        assert result.mapping == {"Empresa": "company_id"}

    def test_target_may_be_fed_by_several_columns(self):
        result = mapping.validate_mapping({"Proveedor": "supplier_name", "Razon social": "supplier_name"}, "suppliers")
        assert result.valid is True

    def test_suppliers_only_need_a_name(self):
        assert mapping.validate_mapping({"Proveedor": "supplier_name"}, "suppliers").valid
        assert mapping.validate_mapping({}, "suppliers").missing == {"supplier_name"}

    def test_unknown_targets_do_not_invalidate(self):
        result = mapping.validate_mapping({"Proveedor": "supplier_name", "Color": "favorite_color"}, "suppliers")
        assert result.valid is True
        assert result.unknown_targets == {"favorite_color"}

    def test_invalid_dataset_type(self):
        with pytest.raises(ValidationError):
            mapping.validate_mapping({"Proveedor": "supplier_name"}, "vendors")

    def test_mapping_must_be_an_object(self):
        with pytest.raises(ValidationError):
            mapping.validate_mapping(["supplier_name"], "suppliers")


class TestTargetFields:

    def test_required_flags(self):
        fields = {f["name"]: f["required"] for f in mapping.target_fields("shutdowns")}
        assert fields == {
            "company_id": True,
            "site_id": False,
            "asset_area": False,
            "start_date": True,
            "end_date": True,
            "criticality": False,
        }

    def test_required_fields_are_target_fields(self):
        for dataset_type in ("shutdowns", "needs", "suppliers"):
            names = {f["name"] for f in mapping.target_fields(dataset_type)}
            assert mapping.required_fields(dataset_type) <= names


class TestMissingFieldsError:

    def test_message_lists_fields_in_order(self):
        err = MissingFieldsError({"quantity", "item_name"}, "needs")
        assert err.message == "Missing required fields for needs: item_name, quantity"
        assert err.details["missing"] == ["item_name", "quantity"]
        assert err.status_code == 400


NEEDS_MAPPING = {
    "Empresa": "company_id",
    "Descripcion": "item_name",
    "Categoria": "item_category",
    "Cantidad": "quantity",
    "Unidad": None,
}


class TestApplyMapping:

    @pytest.mark.asyncio
    async def test_dispatches_and_resumes_job(self, db_session, operator, mock_engine, make_job):
        job = make_job(status="awaiting_mapping", detected_columns=["Cantidad", "Categoria", "Descripcion", "Empresa"])

        updated = await mapping.apply_mapping(db_session, job.job_id, NEEDS_MAPPING, operator, mock_engine)

        assert updated.status == "running"
        cleaned = {k: v for k, v in NEEDS_MAPPING.items() if v}
        assert cleaned["Cantidad"] == "quantity"
        mock_engine.apply_mapping.assert_awaited_once_with(job.job_id, cleaned, job.correlation_id)

        stored = db_session.query(ColumnMapping).filter(ColumnMapping.job_id == job.job_id).one()
        assert stored.mapping == cleaned
        assert stored.applied_by == "user-op"

        event = db_session.query(AuditEvent).filter(AuditEvent.entity_id == job.job_id).one()
        assert event.event_type == "column_mapping_applied"
        assert event.correlation_id == job.correlation_id

    @pytest.mark.asyncio
    async def test_incomplete_mapping_rejected(self, db_session, operator, mock_engine, make_job):
        job = make_job(status="awaiting_mapping")
        incomplete = dict(NEEDS_MAPPING, Cantidad="")

        with pytest.raises(MissingFieldsError) as exc:
            await mapping.apply_mapping(db_session, job.job_id, incomplete, operator, mock_engine)

        assert exc.value.missing == ["quantity"]
        mock_engine.apply_mapping.assert_not_awaited()
        db_session.refresh(job)
        assert job.status == "awaiting_mapping"
        assert db_session.query(ColumnMapping).count() == 0

    @pytest.mark.asyncio
    async def test_requires_awaiting_mapping(self, db_session, operator, mock_engine, make_job):
        job = make_job(status="running")
        with pytest.raises(StateError):
            await mapping.apply_mapping(db_session, job.job_id, NEEDS_MAPPING, operator, mock_engine)
        mock_engine.apply_mapping.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_engine_failure_keeps_job_awaiting(self, db_session, operator, mock_engine, make_job):
        job = make_job(status="awaiting_mapping")
        mock_engine.apply_mapping.side_effect = UpstreamError("Workflow engine failed: busy", upstream_status=503)

        with pytest.raises(UpstreamError):
            await mapping.apply_mapping(db_session, job.job_id, NEEDS_MAPPING, operator, mock_engine)

        db_session.refresh(job)
        assert job.status == "awaiting_mapping"
        assert db_session.query(ColumnMapping).count() == 0
