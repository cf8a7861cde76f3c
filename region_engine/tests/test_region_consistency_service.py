from datetime import datetime, timezone

import pytest

from region_engine.domain.exceptions import RegionNotFound
from region_engine.domain.region_changes import CountryAssignment, RegionFieldChanges, RegionReplacementLists
from region_engine.services.region_consistency_service import StandardRegionConsistencyService


def _at(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


@pytest.fixture
def duplicated(seed):
    seed.region("reg_a", name="EU", currency_code="eur", created_at=_at(1))
    seed.region("reg_b", name="EU", currency_code="eur", created_at=_at(2))
    seed.shipping_option("so_b1", "reg_b")
    seed.country("de", "reg_a")
    return seed


def test_get_and_update_round_trip(service, seed, fixed_time):
    seed.region("reg_us")

    aggregate = service.update_region_aggregate(
        "reg_us",
        RegionFieldChanges(tax_code="US-TAX"),
        RegionReplacementLists(countries=[CountryAssignment("us")]),
    )

    assert service.get_region_aggregate("reg_us") == aggregate
    assert aggregate.region.updated_at == fixed_time


def test_get_missing_region(service, seed):
    with pytest.raises(RegionNotFound) as info:
        service.get_region_aggregate("reg_nope")
    assert info.value.to_dict()["entity_id"] == "reg_nope"


def test_reconcile_merges_groups(service, duplicated):
    report = service.reconcile_duplicate_regions()

    assert report.ok
    assert report.groups_found == 1
    assert report.to_dict()["merged"] == [{"survivor_id": "reg_b", "donor_ids": ["reg_a"]}]
    assert report.repair is None
    assert duplicated.column("SELECT id FROM region") == ["reg_b"]
    assert duplicated.scalar("SELECT region_id FROM country WHERE iso_2 = 'de'") == "reg_b"


def test_reconcile_without_duplicates_is_a_no_op(service, seed):
    seed.region("reg_us")

    report = service.reconcile_duplicate_regions()

    assert report.to_dict() == {"groups_found": 0, "merged": [], "failures": []}


def test_dry_run_changes_nothing(service, duplicated):
    before = {rid: duplicated.snapshot(rid) for rid in ("reg_a", "reg_b")}

    report = service.reconcile_duplicate_regions(dry_run=True)

    payload = report.to_dict()
    assert payload["dry_run"] is True
    assert payload["merged"] == []
    assert payload["planned"][0]["survivor_id"] == "reg_b"
    assert payload["planned"][0]["donor_ids"] == ["reg_a"]
    assert {rid: duplicated.snapshot(rid) for rid in ("reg_a", "reg_b")} == before


def test_reconcile_can_run_repair_afterwards(store, config, time_source, runtime_logger, duplicated):
    service = StandardRegionConsistencyService.build(
        store,
        config.model_copy(update={"REPAIR_AFTER_RECONCILE": True}),
        time_source=time_source,
        runtime_logger=runtime_logger,
    )

    report = service.reconcile_duplicate_regions()

    assert report.to_dict()["repair"] == {
        "regions_repaired": 1,
        "fulfillment_links_added": 1,
        "payment_links_added": 1,
    }
    assert duplicated.column("SELECT provider_id FROM region_payment_providers WHERE region_id = 'reg_b'") == ["manual"]


def test_status_report_flags_missing_links_and_orphans(service, seed):
    seed.region("reg_us")
    seed.link("fulfillment", "reg_us", "manual")
    seed.link("payment", "reg_us", "stripe")
    seed.shipping_option("so_us", "reg_us")
    seed.region("reg_bare", name="Bare")
    seed.shipping_option("so_lost", "reg_gone")
    seed.country("xx", "reg_gone")

    report = service.get_region_status_report()

    assert not report.clean
    statuses = {s.region_id: s for s in report.regions}
    assert statuses["reg_us"].has_provider_links
    assert statuses["reg_us"].shipping_option_count == 1
    assert not statuses["reg_bare"].has_provider_links
    assert report.orphaned_shipping_option_ids == ["so_lost"]
    assert report.orphaned_country_codes == ["xx"]


def test_status_report_is_clean_after_repair(service, seed):
    seed.region("reg_us")

    service.repair_region_provider_associations()

    assert service.get_region_status_report().clean


def test_repair_shipping_defaults(service, seed):
    seed.region("reg_us")
    seed.shipping_option("so_1", "reg_us", price_type=None)

    report = service.repair_shipping_option_defaults()

    assert report.to_dict() == {"options_repaired": 1, "fields_fixed": 1}
