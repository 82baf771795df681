"""
Tests para la configuración de bins de lotería

Cubre:
- Planificación pura de cambios (sin base de datos)
- Estado de la cantidad de bins
- Reconciliación: crear, reactivar, desactivar, bloqueo por packs activos
- Vista previa (validate) y su concordancia con la reconciliación
- Endpoints HTTP con contexto multi-tenant
"""
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from app.common.exceptions import (
    InvalidArgumentError, BinCountValidationError, StoreNotFoundError,
    BinsBlockedByActivePacksError, TransactionTimeoutError
)
from app.core.query_metrics import QueryMetricsService, correlation_id_var
from app.modules.lottery.bin_count_service import (
    LotteryBinCountService, plan_bin_changes, kept_display_order_threshold
)
from app.modules.lottery.models import LotteryBin, LotteryPack, PackStatus
from app.modules.stores.models import Store


def fake_bin(order, active=True, packs=0):
    return SimpleNamespace(display_order=order, is_active=active, packs=[object()] * packs)


def bins_by_order(db: Session, store):
    db.expire_all()
    rows = db.query(LotteryBin).filter(LotteryBin.store_id == store.id).order_by(LotteryBin.display_order).all()
    return {b.display_order: b for b in rows}


def active_orders(db: Session, store):
    return sorted(order for order, b in bins_by_order(db, store).items() if b.is_active)


def is_write(statement):
    return statement.lstrip().upper().startswith(("INSERT", "UPDATE", "DELETE"))


# ===== PLANIFICACIÓN =====

class TestPlanBinChanges:

    def test_creates_from_zero(self):
        plan = plan_bin_changes([], 3)
        assert plan.new_display_orders == [0, 1, 2]
        assert plan.to_reactivate == []
        assert not plan.is_blocked

    def test_reactivates_lowest_inactive_before_creating(self):
        bins = [fake_bin(0), fake_bin(1), fake_bin(2), fake_bin(4, active=False), fake_bin(3, active=False)]
        plan = plan_bin_changes(bins, 6)
        assert [b.display_order for b in plan.to_reactivate] == [3, 4]
        assert plan.new_display_orders == [5]

    def test_partial_reactivation(self):
        bins = [fake_bin(0), fake_bin(1, active=False), fake_bin(2, active=False)]
        plan = plan_bin_changes(bins, 2)
        assert [b.display_order for b in plan.to_reactivate] == [1]
        assert plan.new_display_orders == []

    def test_new_bins_start_after_highest_order_including_inactive(self):
        bins = [fake_bin(0), fake_bin(7, active=False)]
        plan = plan_bin_changes(bins, 4)
        assert [b.display_order for b in plan.to_reactivate] == [7]
        assert plan.new_display_orders == [8, 9]

    def test_shrink_removes_highest_first(self):
        bins = [fake_bin(i) for i in range(5)]
        plan = plan_bin_changes(bins, 3)
        assert [b.display_order for b in plan.to_deactivate] == [4, 3]
        assert plan.blocked_count == 0

    def test_shrink_blocked_by_packed_bin_in_removal_range(self):
        bins = [fake_bin(0), fake_bin(1), fake_bin(2), fake_bin(3), fake_bin(4, packs=1)]
        plan = plan_bin_changes(bins, 3)
        assert plan.is_blocked
        assert plan.blocked_count == 1
        assert plan.bins_with_packs_count == 1

    def test_packed_bin_outside_removal_range_does_not_block(self):
        bins = [fake_bin(0, packs=2), fake_bin(1), fake_bin(2)]
        plan = plan_bin_changes(bins, 1)
        assert [b.display_order for b in plan.to_deactivate] == [2, 1]
        assert not plan.is_blocked

    def test_same_count_changes_nothing(self):
        bins = [fake_bin(0), fake_bin(1), fake_bin(2, active=False)]
        plan = plan_bin_changes(bins, 2)
        assert plan.to_reactivate == [] and plan.to_deactivate == [] and plan.new_display_orders == []


class TestKeptThreshold:

    def test_contiguous_orders(self):
        assert kept_display_order_threshold([0, 1, 2, 3, 4], 3) == 2

    def test_zero_keeps_nothing(self):
        assert kept_display_order_threshold([0, 1, 2], 0) == -1

    def test_gaps_shift_threshold(self):
        # display_order 1 and 2 are deactivated
        assert kept_display_order_threshold([0, 3, 4, 5], 2) == 3


# ===== ESTADO =====

class TestGetBinCount:

    def test_returns_statistics(self, db_session, store, make_bins):
        make_bins(store, 10, packed=(1, 4, 8))
        result = LotteryBinCountService(db_session).get_bin_count(str(store.id))
        assert result.store_id == store.id
        assert result.bin_count == 10
        assert result.active_bins == 10
        assert result.bins_with_packs == 3
        assert result.empty_bins == 7

    def test_null_bin_count(self, db_session, store):
        result = LotteryBinCountService(db_session).get_bin_count(store.id)
        assert result.bin_count is None
        assert result.active_bins == 0
        assert result.empty_bins == 0

    def test_ignores_inactive_and_non_active_packs(self, db_session, store, make_bins):
        bins = make_bins(store, 4, inactive=(3,))
        db_session.add(LotteryPack(
            tenant_id=store.tenant_id, store_id=store.id, bin_id=bins[0].id,
            game_code="202", pack_number="0000100", status=PackStatus.DEPLETED
        ))
        db_session.commit()
        result = LotteryBinCountService(db_session).get_bin_count(store.id)
        assert result.active_bins == 3
        assert result.bins_with_packs == 0

    def test_invalid_uuid(self, db_session):
        with pytest.raises(InvalidArgumentError, match="Invalid store ID format"):
            LotteryBinCountService(db_session).get_bin_count("not-a-valid-uuid")

    def test_store_not_found(self, db_session):
        missing = uuid4()
        with pytest.raises(StoreNotFoundError, match=f"Store with ID {missing} not found"):
            LotteryBinCountService(db_session).get_bin_count(missing)

    def test_other_tenant_cannot_see_store(self, db_session, store):
        with pytest.raises(StoreNotFoundError):
            LotteryBinCountService(db_session).get_bin_count(store.id, tenant_id=uuid4())


# ===== RECONCILIACIÓN =====

class TestUpdateBinCount:

    def test_creates_bins_for_empty_store(self, db_session, store, user_id):
        result = LotteryBinCountService(db_session).update_bin_count(store.id, 5, user_id)

        assert result.bins_created == 5
        assert result.bins_reactivated == 0
        assert result.bins_deactivated == 0
        assert result.previous_count is None
        assert result.new_count == 5

        bins = bins_by_order(db_session, store)
        assert sorted(bins) == [0, 1, 2, 3, 4]
        assert [bins[i].name for i in range(5)] == ["Bin 1", "Bin 2", "Bin 3", "Bin 4", "Bin 5"]
        assert all(b.is_active and b.tenant_id == store.tenant_id for b in bins.values())
        assert db_session.get(Store, store.id).lottery_bin_count == 5

    def test_deactivates_highest_bins_first(self, db_session, store, make_bins, user_id):
        make_bins(store, 5)
        result = LotteryBinCountService(db_session).update_bin_count(store.id, 3, user_id)

        assert result.bins_deactivated == 2
        assert result.previous_count == 5
        bins = bins_by_order(db_session, store)
        assert active_orders(db_session, store) == [0, 1, 2]
        assert bins[3].deleted_at is not None
        assert bins[4].deleted_at is not None

    def test_blocked_by_active_pack_mutates_nothing(self, db_session, store, make_bins, user_id, executed_statements):
        make_bins(store, 5, packed=(4,))
        executed_statements.clear()

        with pytest.raises(BinsBlockedByActivePacksError) as exc_info:
            LotteryBinCountService(db_session).update_bin_count(store.id, 3, user_id)

        assert exc_info.value.blocked_count == 1
        assert exc_info.value.status_code == 409
        assert "active packs" in exc_info.value.detail
        assert not any(is_write(s) for s in executed_statements)
        assert active_orders(db_session, store) == [0, 1, 2, 3, 4]
        assert db_session.get(Store, store.id).lottery_bin_count == 5

    def test_blocked_when_only_removable_bin_has_pack(self, db_session, store, make_bins, user_id):
        make_bins(store, 2, packed=(1,))
        with pytest.raises(BinsBlockedByActivePacksError, match="Cannot reduce bin count"):
            LotteryBinCountService(db_session).update_bin_count(store.id, 1, user_id)

    def test_blocked_count_names_every_packed_bin(self, db_session, store, make_bins, user_id):
        make_bins(store, 5, packed=(2, 3, 4))
        with pytest.raises(BinsBlockedByActivePacksError) as exc_info:
            LotteryBinCountService(db_session).update_bin_count(store.id, 1, user_id)
        assert exc_info.value.blocked_count == 3

    def test_reactivates_deactivated_bins(self, db_session, store, make_bins, user_id):
        bins = make_bins(store, 5, inactive=(3, 4))
        original_ids = {b.display_order: b.id for b in bins}

        result = LotteryBinCountService(db_session).update_bin_count(store.id, 5, user_id)

        assert result.bins_created == 0
        assert result.bins_reactivated == 2
        restored = bins_by_order(db_session, store)
        assert restored[3].id == original_ids[3]
        assert restored[4].id == original_ids[4]
        assert restored[3].is_active and restored[3].deleted_at is None

    def test_reactivates_then_creates(self, db_session, store, make_bins, user_id):
        make_bins(store, 5, inactive=(3, 4))
        result = LotteryBinCountService(db_session).update_bin_count(store.id, 6, user_id)
        assert result.bins_reactivated == 2
        assert result.bins_created == 1
        assert active_orders(db_session, store) == [0, 1, 2, 3, 4, 5]

    def test_rejects_out_of_range_before_any_query(self, db_session, store, user_id, executed_statements):
        executed_statements.clear()
        service = LotteryBinCountService(db_session)
        for bad_count in (250, 201, -1):
            with pytest.raises(BinCountValidationError, match="Bin count must be an integer between 0 and 200"):
                service.update_bin_count(store.id, bad_count, user_id)
        assert executed_statements == []

    def test_rejects_non_integer(self, db_session, store, user_id):
        service = LotteryBinCountService(db_session)
        with pytest.raises(BinCountValidationError):
            service.update_bin_count(store.id, 5.5, user_id)
        with pytest.raises(BinCountValidationError):
            service.update_bin_count(store.id, True, user_id)

    def test_rejects_malformed_ids_before_any_query(self, db_session, store, user_id, executed_statements):
        executed_statements.clear()
        service = LotteryBinCountService(db_session)
        with pytest.raises(InvalidArgumentError, match="Invalid store ID format"):
            service.update_bin_count("store-1", 5, user_id)
        with pytest.raises(InvalidArgumentError, match="Invalid user ID format"):
            service.update_bin_count(store.id, 5, "user-1")
        assert executed_statements == []

    def test_store_not_found(self, db_session, user_id):
        with pytest.raises(StoreNotFoundError):
            LotteryBinCountService(db_session).update_bin_count(uuid4(), 3, user_id)

    def test_boundaries(self, db_session, store, make_bins, user_id):
        service = LotteryBinCountService(db_session)
        result = service.update_bin_count(store.id, 200, user_id)
        assert result.bins_created == 200
        assert active_orders(db_session, store) == list(range(200))

        result = service.update_bin_count(store.id, 0, user_id)
        assert result.bins_deactivated == 200
        assert active_orders(db_session, store) == []
        assert db_session.get(Store, store.id).lottery_bin_count == 0

    @pytest.mark.parametrize("count", [0, 1, 7, 42])
    def test_second_call_is_a_no_op(self, db_session, store, make_bins, user_id, count):
        make_bins(store, 10, inactive=(8, 9))
        service = LotteryBinCountService(db_session)
        service.update_bin_count(store.id, count, user_id)
        again = service.update_bin_count(store.id, count, user_id)

        assert (again.bins_created, again.bins_reactivated, again.bins_deactivated) == (0, 0, 0)
        assert again.previous_count == count
        assert len(active_orders(db_session, store)) == count
        assert db_session.get(Store, store.id).lottery_bin_count == count

    def test_grow_then_shrink_keeps_original_orders(self, db_session, store, make_bins, user_id):
        make_bins(store, 4)
        service = LotteryBinCountService(db_session)
        service.update_bin_count(store.id, 9, user_id)
        service.update_bin_count(store.id, 4, user_id)

        bins = bins_by_order(db_session, store)
        assert active_orders(db_session, store) == [0, 1, 2, 3]
        assert sorted(bins) == list(range(9))

        service.update_bin_count(store.id, 6, user_id)
        assert active_orders(db_session, store) == [0, 1, 2, 3, 4, 5]
        assert len(bins_by_order(db_session, store)) == 9

    def test_packed_bin_never_deactivated(self, db_session, store, make_bins, user_id):
        make_bins(store, 6, packed=(0, 2))
        service = LotteryBinCountService(db_session)
        service.update_bin_count(store.id, 3, user_id)
        with pytest.raises(BinsBlockedByActivePacksError):
            service.update_bin_count(store.id, 2, user_id)
        with pytest.raises(BinsBlockedByActivePacksError):
            service.update_bin_count(store.id, 0, user_id)

        bins = bins_by_order(db_session, store)
        assert bins[0].is_active and bins[2].is_active
        assert active_orders(db_session, store) == [0, 1, 2]

    def test_non_active_packs_do_not_block(self, db_session, store, make_bins, user_id):
        bins = make_bins(store, 3)
        db_session.add(LotteryPack(
            tenant_id=store.tenant_id, store_id=store.id, bin_id=bins[2].id,
            game_code="303", pack_number="0000001", status=PackStatus.RETURNED
        ))
        db_session.commit()
        result = LotteryBinCountService(db_session).update_bin_count(store.id, 2, user_id)
        assert result.bins_deactivated == 1

    def test_tenant_scoped_update(self, db_session, store, user_id):
        with pytest.raises(StoreNotFoundError):
            LotteryBinCountService(db_session).update_bin_count(store.id, 3, user_id, tenant_id=uuid4())
        assert bins_by_order(db_session, store) == {}

    def test_timeout_rolls_back_everything(self, db_session, store, make_bins, user_id):
        make_bins(store, 3)
        metrics = QueryMetricsService()
        service = LotteryBinCountService(db_session, metrics=metrics, transaction_timeout_ms=0)

        with pytest.raises(TransactionTimeoutError):
            service.update_bin_count(store.id, 8, user_id)

        assert active_orders(db_session, store) == [0, 1, 2]
        assert len(bins_by_order(db_session, store)) == 3
        assert db_session.get(Store, store.id).lottery_bin_count == 3
        assert metrics.get_metrics()["transaction_timeouts"] == 1

    def test_timeout_is_logged_with_correlation_id(self, db_session, store, make_bins, user_id, caplog):
        make_bins(store, 2)
        service = LotteryBinCountService(db_session, metrics=QueryMetricsService(), transaction_timeout_ms=0)

        token = correlation_id_var.set("req-timeout-1")
        try:
            with pytest.raises(TransactionTimeoutError):
                service.update_bin_count(store.id, 6, user_id)
        finally:
            correlation_id_var.reset(token)

        assert "correlation_id=req-timeout-1" in caplog.text


# ===== VISTA PREVIA =====

class TestValidateBinCountChange:

    def test_adding(self, db_session, store, make_bins):
        make_bins(store, 5)
        result = LotteryBinCountService(db_session).validate_bin_count_change(store.id, 10)
        assert result.allowed is True
        assert result.current_count == 5
        assert result.bins_to_add == 5
        assert result.bins_to_remove == 0
        assert "add 5 new bin" in result.message

    def test_removing_empty(self, db_session, store, make_bins):
        make_bins(store, 10)
        result = LotteryBinCountService(db_session).validate_bin_count_change(store.id, 5)
        assert result.allowed is True
        assert result.bins_to_remove == 5
        assert "remove 5 empty bin" in result.message

    def test_no_changes(self, db_session, store, make_bins):
        make_bins(store, 5)
        result = LotteryBinCountService(db_session).validate_bin_count_change(store.id, 5)
        assert result.allowed is True
        assert result.bins_to_add == 0 and result.bins_to_remove == 0
        assert "No changes" in result.message

    def test_blocked_by_pack(self, db_session, store, make_bins):
        make_bins(store, 5, packed=(4,))
        result = LotteryBinCountService(db_session).validate_bin_count_change(store.id, 3)
        assert result.allowed is False
        assert result.bins_with_packs_blocking == 1
        assert "Cannot remove 1 bin" in result.message
        assert "active packs" in result.message

    def test_packs_in_kept_range_allowed(self, db_session, store, make_bins):
        make_bins(store, 10, packed=(0, 1))
        result = LotteryBinCountService(db_session).validate_bin_count_change(store.id, 5)
        assert result.allowed is True
        assert result.bins_with_packs_blocking == 0

    def test_reads_only(self, db_session, store, make_bins, executed_statements):
        make_bins(store, 5, packed=(4,))
        executed_statements.clear()
        LotteryBinCountService(db_session).validate_bin_count_change(store.id, 0)
        assert executed_statements
        assert not any(is_write(s) for s in executed_statements)

    def test_invalid_uuid(self, db_session):
        with pytest.raises(InvalidArgumentError, match="Invalid store ID format"):
            LotteryBinCountService(db_session).validate_bin_count_change("invalid-uuid", 10)

    def test_threshold_follows_gaps_in_display_order(self, db_session, store, make_bins, user_id):
        # Active orders 0, 3, 4, 5: shrinking to 2 keeps 0 and 3
        make_bins(store, 6, inactive=(1, 2), packed=(3,))
        service = LotteryBinCountService(db_session)

        preview = service.validate_bin_count_change(store.id, 2)
        assert preview.allowed is True
        assert preview.bins_with_packs_blocking == 0

        result = service.update_bin_count(store.id, 2, user_id)
        assert result.bins_deactivated == 2
        assert active_orders(db_session, store) == [0, 3]

    @pytest.mark.parametrize("packed,target", [
        ((4,), 3),
        ((2, 3, 4), 1),
        ((0, 1), 2),
        ((1, 5), 3),
        ((), 0),
    ])
    def test_agrees_with_update(self, db_session, store, make_bins, user_id, packed, target):
        make_bins(store, 6, packed=packed)
        service = LotteryBinCountService(db_session)
        preview = service.validate_bin_count_change(store.id, target)

        if preview.allowed:
            result = service.update_bin_count(store.id, target, user_id)
            assert result.bins_with_packs_count == preview.bins_with_packs_blocking == 0
            assert result.bins_deactivated == preview.bins_to_remove
        else:
            with pytest.raises(BinsBlockedByActivePacksError) as exc_info:
                service.update_bin_count(store.id, target, user_id)
            assert exc_info.value.blocked_count == preview.bins_with_packs_blocking


# ===== ENDPOINTS =====

class TestBinCountEndpoints:

    def url(self, store_id, suffix=""):
        return f"/api/v1/stores/{store_id}/lottery/bin-count{suffix}"

    def test_get_status(self, client, store, make_bins, auth_headers):
        make_bins(store, 4, packed=(1,))
        response = client.get(self.url(store.id), headers=auth_headers("cashier"))
        assert response.status_code == 200
        assert response.json() == {
            "store_id": str(store.id),
            "bin_count": 4,
            "active_bins": 4,
            "bins_with_packs": 1,
            "empty_bins": 3,
        }

    def test_get_status_invalid_id(self, client, auth_headers):
        response = client.get(self.url("not-a-uuid"), headers=auth_headers())
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid store ID format"

    def test_get_status_other_tenant(self, client, store, auth_headers):
        response = client.get(self.url(store.id), headers=auth_headers(tenant=uuid4()))
        assert response.status_code == 404

    def test_update(self, client, store, auth_headers):
        response = client.put(self.url(store.id), json={"bin_count": 5}, headers=auth_headers("admin"))
        assert response.status_code == 200
        assert response.json() == {
            "previous_count": None,
            "new_count": 5,
            "bins_created": 5,
            "bins_reactivated": 0,
            "bins_deactivated": 0,
            "bins_with_packs_count": 0,
        }

    def test_update_blocked(self, client, store, make_bins, auth_headers):
        make_bins(store, 5, packed=(4,))
        response = client.put(self.url(store.id), json={"bin_count": 3}, headers=auth_headers())
        assert response.status_code == 409
        assert "active packs" in response.json()["detail"]

    def test_update_out_of_range(self, client, store, auth_headers):
        response = client.put(self.url(store.id), json={"bin_count": 250}, headers=auth_headers())
        assert response.status_code == 400
        assert "between 0 and 200" in response.json()["detail"]

    def test_update_rejects_non_integer_body(self, client, store, auth_headers):
        response = client.put(self.url(store.id), json={"bin_count": 5.5}, headers=auth_headers())
        assert response.status_code == 400
        assert "integer" in response.json()["detail"]

    def test_previous_count_after_first_configuration(self, client, store, auth_headers):
        first = client.put(self.url(store.id), json={"bin_count": 4}, headers=auth_headers())
        assert first.json()["previous_count"] is None
        second = client.put(self.url(store.id), json={"bin_count": 6}, headers=auth_headers())
        assert second.status_code == 200
        assert second.json()["previous_count"] == 4

    def test_update_requires_owner_or_admin(self, client, store, auth_headers):
        response = client.put(self.url(store.id), json={"bin_count": 5}, headers=auth_headers("cashier"))
        assert response.status_code == 403

    def test_update_unknown_store(self, client, auth_headers):
        response = client.put(self.url(uuid4()), json={"bin_count": 5}, headers=auth_headers())
        assert response.status_code == 404

    def test_validate(self, client, store, make_bins, auth_headers):
        make_bins(store, 5, packed=(4,))
        response = client.get(self.url(store.id, "/validate"), params={"bin_count": 3}, headers=auth_headers("manager"))
        assert response.status_code == 200
        body = response.json()
        assert body["allowed"] is False
        assert body["bins_with_packs_blocking"] == 1

    def test_validate_out_of_range_query(self, client, store, auth_headers):
        response = client.get(self.url(store.id, "/validate"), params={"bin_count": 201}, headers=auth_headers())
        assert response.status_code == 422

    def test_requires_token(self, client, store, tenant_id):
        response = client.get(self.url(store.id), headers={"X-Company-ID": str(tenant_id)})
        assert response.status_code in (401, 403)

    def test_requires_company_header(self, client, store):
        response = client.get(self.url(store.id))
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing X-Company-ID header"
