import json

import pytest

from region_engine.cli import main


def _run(capsys, service, *argv):
    code = main(list(argv), service=service)
    return code, json.loads(capsys.readouterr().out)


@pytest.fixture
def region(seed):
    seed.region("reg_us", tax_rate=0.2)
    seed.link("fulfillment", "reg_us", "manual")
    seed.link("payment", "reg_us", "stripe")
    return "reg_us"


def test_show(capsys, service, region):
    code, payload = _run(capsys, service, "show", region)

    assert code == 0
    assert payload["id"] == region
    assert payload["fulfillment_providers"] == [{"provider_id": "manual"}]
    assert payload["tax_rate"] == "0.2"


def test_show_missing_region(capsys, service, seed):
    code, payload = _run(capsys, service, "show", "reg_missing")

    assert code == 1
    assert payload["error"] == "RegionNotFound"
    assert payload["retryable"] is False


def test_update(capsys, service, region):
    body = json.dumps({"name": "United States", "payment_providers": [{"provider_id": "manual"}], "countries": ["us"]})

    code, payload = _run(capsys, service, "update", region, "--json", body)

    assert code == 0
    assert payload["name"] == "United States"
    assert payload["payment_providers"] == [{"provider_id": "manual"}]
    assert [c["iso_2"] for c in payload["countries"]] == ["us"]


@pytest.mark.parametrize("body", ["{not json", "[1, 2]", '{"name": null}', '{"tax_rat": 0.1}'])
def test_update_rejects_bad_bodies(capsys, service, region, body):
    code, payload = _run(capsys, service, "update", region, "--json", body)

    assert code == 1
    assert payload["error"] == "ValidationError"


def test_reconcile_dry_run(capsys, service, seed):
    seed.region("reg_1", name="EU", currency_code="eur")
    seed.region("reg_2", name="EU", currency_code="eur")

    code, payload = _run(capsys, service, "reconcile", "--dry-run")

    assert code == 0
    assert payload["dry_run"] is True
    assert payload["groups_found"] == 1
    assert seed.scalar("SELECT COUNT(*) FROM region") == 2


def test_repair_and_status(capsys, service, seed):
    seed.region("reg_bare")

    code, payload = _run(capsys, service, "status")
    assert code == 0
    assert payload["clean"] is False

    code, payload = _run(capsys, service, "repair")
    assert code == 0
    assert payload["regions_repaired"] == 1

    code, payload = _run(capsys, service, "status")
    assert payload["clean"] is True


def test_repair_shipping(capsys, service, seed):
    seed.region("reg_us")
    seed.shipping_option("so_1", "reg_us", profile_id=None)

    code, payload = _run(capsys, service, "repair-shipping")

    assert code == 0
    assert payload == {"options_repaired": 1, "fields_fixed": 1}
