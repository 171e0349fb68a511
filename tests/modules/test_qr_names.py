"""Tests for QR name registration, renames and retirement."""

from uuid import uuid4

import pytest

from concession_kernel.exceptions import DuplicateQRNameError, MissingFieldError, QRNameNotFoundError


class TestCreate:
    def test_create_trims(self, qr_service, tenant):
        qr = qr_service.create(tenant.id, "  YQ S-1 ", " VIP ", description="Row S")
        assert qr.qr_name == "YQ S-1"
        assert qr.seat_class == "VIP"
        assert qr.is_active is True

    def test_same_name_other_class_allowed(self, qr_service, tenant):
        qr_service.create(tenant.id, "YQ S-1", "VIP")
        qr_service.create(tenant.id, "YQ S-1", "Gold")
        assert len(qr_service.list(tenant.id)) == 2

    def test_duplicate_is_case_insensitive(self, qr_service, tenant):
        qr_service.create(tenant.id, "YQ S-1", "VIP")
        with pytest.raises(DuplicateQRNameError):
            qr_service.create(tenant.id, "yq s-1", "vip ")

    def test_inactive_names_still_clash(self, qr_service, tenant):
        qr = qr_service.create(tenant.id, "YQ S-1", "VIP")
        qr_service.deactivate(tenant.id, qr.id)
        with pytest.raises(DuplicateQRNameError):
            qr_service.create(tenant.id, "YQ S-1", "VIP")

    def test_other_tenant_may_reuse(self, qr_service, tenant, other_tenant):
        qr_service.create(tenant.id, "YQ S-1", "VIP")
        assert qr_service.create(other_tenant.id, "YQ S-1", "VIP").tenant_id == other_tenant.id

    @pytest.mark.parametrize("name,seat_class", [("", "VIP"), ("YQ S-1", "  "), (None, "VIP")])
    def test_required_fields(self, qr_service, tenant, name, seat_class):
        with pytest.raises(MissingFieldError):
            qr_service.create(tenant.id, name, seat_class)


class TestListAndRename:
    def test_list_ordering_and_active_filter(self, qr_service, tenant):
        b = qr_service.create(tenant.id, "B-1", "VIP", sort_order=2)
        a = qr_service.create(tenant.id, "A-1", "VIP", sort_order=1)
        qr_service.deactivate(tenant.id, b.id)

        assert [q.id for q in qr_service.list(tenant.id)] == [a.id, b.id]
        assert [q.id for q in qr_service.list(tenant.id, active_only=True)] == [a.id]

    def test_rename(self, qr_service, tenant):
        qr = qr_service.create(tenant.id, "YQ S-1", "VIP")
        renamed = qr_service.rename(tenant.id, qr.id, {"qr_name": "YQ S-2", "description": "moved"})
        assert renamed.qr_name == "YQ S-2"
        assert renamed.seat_class == "VIP"
        assert renamed.description == "moved"

    def test_rename_onto_existing_pair(self, qr_service, tenant):
        qr_service.create(tenant.id, "YQ S-1", "VIP")
        other = qr_service.create(tenant.id, "YQ S-2", "VIP")
        with pytest.raises(DuplicateQRNameError):
            qr_service.rename(tenant.id, other.id, {"qr_name": "YQ S-1"})

    def test_rename_to_itself_is_fine(self, qr_service, tenant):
        qr = qr_service.create(tenant.id, "YQ S-1", "VIP")
        assert qr_service.rename(tenant.id, qr.id, {"qr_name": "yq s-1"}).qr_name == "yq s-1"

    def test_unknown_field(self, qr_service, tenant):
        qr = qr_service.create(tenant.id, "YQ S-1", "VIP")
        with pytest.raises(ValueError):
            qr_service.rename(tenant.id, qr.id, {"colour": "red"})


class TestDelete:
    def test_delete(self, qr_service, tenant):
        qr = qr_service.create(tenant.id, "YQ S-1", "VIP")
        qr_service.delete(tenant.id, qr.id)
        assert qr_service.list(tenant.id) == []

    def test_other_tenant_cannot_touch(self, qr_service, tenant, other_tenant):
        qr = qr_service.create(tenant.id, "YQ S-1", "VIP")
        with pytest.raises(QRNameNotFoundError):
            qr_service.delete(other_tenant.id, qr.id)

    def test_unknown_id(self, qr_service, tenant):
        with pytest.raises(QRNameNotFoundError):
            qr_service.deactivate(tenant.id, uuid4())
