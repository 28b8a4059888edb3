"""Unit tests for the domestic and international index rebuilds."""

import gzip
import json
import os
from typing import List
from unittest.mock import MagicMock

import pytest
from elasticsearch import ConnectionError as TransportConnectionError

from npdelivery.api import NovaPoshtaClient, NovaPostClient
from npdelivery.config import Settings
from npdelivery.indexer import IndexManager
from npdelivery.sync import (
    DIVISIONS_PAGE_LIMIT,
    DomesticSync,
    InternationalSync,
    SyncAborted,
    divisions_incomplete,
    iter_dump_items,
)


KYIV = "8d5a980d-391c-11dd-90d9-001a92567626"
BROVARY = "db5c88c6-391c-11dd-90d9-001a92567626"


def city(ref: str, name: str, city_id: str) -> dict:
    return {
        "Ref": ref,
        "Description": name,
        "DescriptionRu": name + " (ru)",
        "SettlementTypeDescription": "місто",
        "SettlementTypeDescriptionRu": "город",
        "CityID": city_id,
        "AreaDescription": "Київська",
    }


def division(ref: str, city_ref: str, type_ref: str, number: int) -> dict:
    return {
        "SiteKey": str(number),
        "Ref": ref,
        "Description": f"Відділення №{number}",
        "DescriptionRu": f"Отделение №{number}",
        "CityRef": city_ref,
        "TypeOfWarehouse": type_ref,
    }


def indexed_sources(bulk_calls: list, prefix: str) -> List[dict]:
    return [
        action["_source"]
        for batch in bulk_calls
        for action in batch
        if action["_index"].startswith(prefix + "_")
    ]


@pytest.fixture
def np_api() -> MagicMock:
    """Nova Poshta API with two cities and three warehouses."""
    api = MagicMock(spec=NovaPoshtaClient)
    api.get_cities.return_value = {
        "success": True,
        "data": [city(KYIV, "Київ", "4"), city(BROVARY, "Бровари", "12")],
    }
    api.get_warehouse_types.return_value = {
        "success": True,
        "data": [
            {"Ref": "type-postomat", "DescriptionRu": "Почтомат"},
            {"Ref": "type-cargo", "DescriptionRu": "Грузовое отделение"},
        ],
    }

    warehouses = [
        division("wh-1", KYIV, "type-cargo", 1),
        division("wh-2", KYIV, "type-postomat", 2),
        division("wh-3", BROVARY, "type-cargo", 1),
    ]

    def get_warehouses(page: int, limit: int) -> dict:
        if limit == 1:
            return {"success": True, "data": warehouses[:1], "info": {"totalCount": 3}}
        return {"success": True, "data": warehouses if page == 1 else []}

    api.get_warehouses.side_effect = get_warehouses
    return api


class TestDivisionsIncomplete:
    """Count sanity check before switching the divisions alias."""

    @pytest.mark.parametrize(
        ("current", "total", "loaded", "expected"),
        [
            (None, 100, 10, False),       # first run, nothing live
            (0, 100, 10, False),
            (100, 100, 100, False),       # steady state
            (90, 100, 100, False),        # network grew
            (95, 100, 80, True),          # lost pages: fewer than live
            (95, 100, 97, False),         # short, but better than live
            (120, 100, 100, True),        # upstream shrank sharply
            (120, 100, 90, False),
        ],
    )
    def test_rule(self, current, total, loaded, expected) -> None:
        assert divisions_incomplete(current, total, loaded) is expected


class TestDomesticSync:
    """np:save rebuild."""

    def test_builds_and_switches(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        np_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        result = DomesticSync(settings, manager, api=np_api).run()

        assert result.switched is True
        assert result.counts == {"cities": 2, "divisions": 3}
        assert result.upstream_total == 3

        created = [c.kwargs["index"] for c in es_client.indices.create.call_args_list]
        assert created == [result.indices["np_cities"], result.indices["np_divisions"]]

        aliases = [
            c.kwargs["actions"][0]["add"]
            for c in es_client.indices.update_aliases.call_args_list
        ]
        assert aliases == [
            {"index": result.indices["np_cities"], "alias": "np_cities"},
            {"index": result.indices["np_divisions"], "alias": "np_divisions"},
        ]

    def test_documents(
        self,
        settings: Settings,
        manager: IndexManager,
        np_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        os.makedirs(os.path.dirname(settings.local_tariff_file))
        with open(settings.local_tariff_file, "w", encoding="utf-8") as f:
            json.dump({BROVARY: {"ref": BROVARY, "areaDescription": "Київська"}}, f)

        DomesticSync(settings, manager, api=np_api).run()

        cities = {doc["ref"]: doc for doc in indexed_sources(bulk_calls, "np_cities")}
        assert cities[BROVARY]["localTariff"] is True
        assert cities[KYIV]["localTariff"] is False
        assert cities[KYIV]["typeCityRu"] == "город"
        assert cities[BROVARY]["cityID"] == "12"

        divisions = {doc["ref"]: doc for doc in indexed_sources(bulk_calls, "np_divisions")}
        assert divisions["wh-1"]["typeOfWarehouse"] == "division"
        assert divisions["wh-2"]["typeOfWarehouse"] == "postomat"
        assert divisions["wh-3"]["cityRef"] == BROVARY

    def test_pages_through_divisions(
        self,
        settings: Settings,
        manager: IndexManager,
        np_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        np_api.get_warehouses.side_effect = lambda page, limit: (
            {"info": {"totalCount": 1200}, "data": []} if limit == 1
            else {"data": [division(f"wh-{page}", KYIV, "type-cargo", page)]}
        )
        sleep = MagicMock()

        DomesticSync(settings, manager, api=np_api, sleep=sleep).run()

        pages = [c.args for c in np_api.get_warehouses.call_args_list]
        assert pages == [
            (1, 1),
            (1, DIVISIONS_PAGE_LIMIT),
            (2, DIVISIONS_PAGE_LIMIT),
            (3, DIVISIONS_PAGE_LIMIT),
        ]
        assert sleep.call_count == 2

    def test_count_mismatch_keeps_old_alias(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        np_api: MagicMock,
        bulk_calls: list,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Live index has more divisions than this run loaded out of a larger total."""
        es_client.count.return_value = {"count": 10}
        np_api.get_warehouses.side_effect = lambda page, limit: (
            {"info": {"totalCount": 12}, "data": []} if limit == 1
            else {"data": [division("wh-1", KYIV, "type-cargo", 1)]}
        )

        with pytest.raises(SyncAborted):
            DomesticSync(settings, manager, api=np_api).run()

        es_client.indices.update_aliases.assert_not_called()
        deleted = [c.kwargs["index"] for c in es_client.indices.delete.call_args_list]
        assert len(deleted) == 2
        assert deleted[0].startswith("np_cities_")
        assert deleted[1].startswith("np_divisions_")
        assert "not correctly processed 1 of get 12 divisions" in caplog.text

    def test_cities_outage_aborts(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        np_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        np_api.get_cities.return_value = None

        with pytest.raises(SyncAborted, match="cities"):
            DomesticSync(settings, manager, api=np_api).run()

        assert es_client.indices.delete.call_count == 2
        es_client.indices.update_aliases.assert_not_called()

    def test_missing_total_aborts(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        np_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        np_api.get_warehouses.side_effect = lambda page, limit: None

        with pytest.raises(SyncAborted, match="total"):
            DomesticSync(settings, manager, api=np_api).run()

        es_client.indices.update_aliases.assert_not_called()

    def test_lost_page_is_tolerated_when_counts_agree(
        self,
        settings: Settings,
        manager: IndexManager,
        np_api: MagicMock,
        bulk_calls: list,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        np_api.get_warehouses.side_effect = lambda page, limit: (
            {"info": {"totalCount": 600}, "data": []} if limit == 1
            else None if page == 2
            else {"data": [division("wh-1", KYIV, "type-cargo", 1)]}
        )

        result = DomesticSync(settings, manager, api=np_api).run()

        assert result.switched is True
        assert result.counts["divisions"] == 1
        assert "page 2 of 2 is unavailable" in caplog.text

    def test_bulk_transport_error_discards_new_indices(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        np_api: MagicMock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def failing_bulk(client, actions, **kwargs):
            raise TransportConnectionError("connection refused")

        monkeypatch.setattr("npdelivery.indexer.bulk", failing_bulk)

        with pytest.raises(TransportConnectionError):
            DomesticSync(settings, manager, api=np_api).run()

        created = [c.kwargs["index"] for c in es_client.indices.create.call_args_list]
        deleted = [c.kwargs["index"] for c in es_client.indices.delete.call_args_list]
        assert deleted == created
        es_client.indices.update_aliases.assert_not_called()


def write_dump(path: str, items: List[dict]) -> None:
    with gzip.open(path, "wt", encoding="utf-8") as f:
        json.dump({"items": items}, f)


def write_truncated_dump(path: str, items: List[dict]) -> None:
    """Write the first half of a valid compressed dump, as a cut-off download would."""
    data = gzip.compress(json.dumps({"items": items}).encode("utf-8"))
    with open(path, "wb") as f:
        f.write(data[:len(data) // 2])


def intl_division(div_id: str, country: str, city_id: str, city_name: str) -> dict:
    return {
        "id": div_id,
        "name": f"Division {div_id}",
        "countryCode": country,
        "settlement": {"id": city_id},
        "addressParts": {
            "city": city_name,
            "street": "Marszałkowska",
            "building": "10",
            "postCode": "00-001",
        },
        "address": f"{city_name}, Marszałkowska 10",
        "externalId": f"ext-{div_id}",
    }


@pytest.fixture
def npi_api() -> MagicMock:
    api = MagicMock(spec=NovaPostClient)
    api.get_versions.return_value = {"base_version": {"url": "https://files.test/base.json.gz"}}
    api.items = [
        intl_division("1", "PL", "waw", "Warszawa"),
        intl_division("2", "PL", "waw", "Warszawa"),
        intl_division("3", "DE", "ber", "Berlin"),
        intl_division("4", "UA", "kyiv", "Kyiv"),
    ]
    api.downloaded = []

    def download(versions: dict, dest: str) -> bool:
        api.downloaded.append(dest)
        write_dump(dest, api.items)
        return True

    api.download_base_version.side_effect = download
    return api


class TestInternationalSync:
    """npi:save rebuild."""

    def test_builds_and_switches(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        npi_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        result = InternationalSync(settings, manager, api=npi_api).run()

        assert result.switched is True
        assert result.counts == {"countries": 2, "cities": 2, "divisions": 3}
        assert es_client.indices.create.call_count == 3
        assert es_client.indices.update_aliases.call_count == 3

        countries = indexed_sources(bulk_calls, "npi_countries")
        assert countries == [
            {"code": "pl", "name": "Poland"},
            {"code": "de", "name": "Germany"},
        ]

        cities = indexed_sources(bulk_calls, "npi_cities")
        assert cities == [
            {"id": "waw", "name": "Warszawa", "countryCode": "pl"},
            {"id": "ber", "name": "Berlin", "countryCode": "de"},
        ]

        divisions = indexed_sources(bulk_calls, "npi_divisions")
        assert [d["id"] for d in divisions] == ["1", "2", "3"]
        assert divisions[0]["zipcode"] == "00-001"
        assert divisions[0]["cityId"] == "waw"

    def test_temporary_file_removed(
        self,
        settings: Settings,
        manager: IndexManager,
        npi_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        InternationalSync(settings, manager, api=npi_api).run()

        assert len(npi_api.downloaded) == 1
        assert not os.path.exists(npi_api.downloaded[0])

    def test_missing_versions(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        npi_api: MagicMock,
    ) -> None:
        npi_api.get_versions.return_value = None

        with pytest.raises(SyncAborted):
            InternationalSync(settings, manager, api=npi_api).run()

        es_client.indices.create.assert_not_called()

    def test_failed_download(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        npi_api: MagicMock,
    ) -> None:
        npi_api.download_base_version.side_effect = None
        npi_api.download_base_version.return_value = False

        with pytest.raises(SyncAborted):
            InternationalSync(settings, manager, api=npi_api).run()

        es_client.indices.create.assert_not_called()
        es_client.indices.update_aliases.assert_not_called()

    def test_corrupt_dump_discards_new_indices(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        npi_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        def download(versions: dict, dest: str) -> bool:
            with open(dest, "wb") as f:
                f.write(b"not a gzip file")
            return True

        npi_api.download_base_version.side_effect = download

        with pytest.raises(SyncAborted):
            InternationalSync(settings, manager, api=npi_api).run()

        assert es_client.indices.delete.call_count == 3
        es_client.indices.update_aliases.assert_not_called()

    def test_truncated_download_discards_new_indices(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        npi_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        items = [intl_division(str(n), "PL", f"city-{n % 50}", "Warszawa") for n in range(2000)]

        def download(versions: dict, dest: str) -> bool:
            npi_api.downloaded.append(dest)
            write_truncated_dump(dest, items)
            return True

        npi_api.download_base_version.side_effect = download

        with pytest.raises(SyncAborted, match="could not be read"):
            InternationalSync(settings, manager, api=npi_api).run()

        created = [c.kwargs["index"] for c in es_client.indices.create.call_args_list]
        deleted = [c.kwargs["index"] for c in es_client.indices.delete.call_args_list]
        assert len(created) == 3
        assert deleted == created
        es_client.indices.update_aliases.assert_not_called()
        assert not os.path.exists(npi_api.downloaded[0])

    def test_bulk_transport_error_discards_new_indices(
        self,
        settings: Settings,
        manager: IndexManager,
        es_client: MagicMock,
        npi_api: MagicMock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def failing_bulk(client, actions, **kwargs):
            raise TransportConnectionError("connection refused")

        monkeypatch.setattr("npdelivery.indexer.bulk", failing_bulk)

        with pytest.raises(TransportConnectionError):
            InternationalSync(settings, manager, api=npi_api).run()

        assert es_client.indices.delete.call_count == 3
        es_client.indices.update_aliases.assert_not_called()

    def test_item_without_settlement_adds_no_city(
        self,
        settings: Settings,
        manager: IndexManager,
        npi_api: MagicMock,
        bulk_calls: list,
    ) -> None:
        orphan = intl_division("5", "PL", "", "Warszawa")
        del orphan["settlement"]
        npi_api.items = [orphan, intl_division("6", "PL", "waw", "Warszawa")]

        result = InternationalSync(settings, manager, api=npi_api).run()

        cities_actions = [
            action
            for batch in bulk_calls
            for action in batch
            if action["_index"].startswith("npi_cities_")
        ]
        assert [action["_id"] for action in cities_actions] == ["waw"]
        assert result.counts == {"countries": 1, "cities": 1, "divisions": 2}


class TestIterDumpItems:
    """Reading the gzip dump."""

    def test_reads_items(self, tmp_path) -> None:
        path = str(tmp_path / "dump.json.gz")
        write_dump(path, [{"id": "1"}, "junk", {"id": "2"}])

        assert [item["id"] for item in iter_dump_items(path)] == ["1", "2"]

    def test_missing_items_key(self, tmp_path) -> None:
        path = str(tmp_path / "dump.json.gz")
        with gzip.open(path, "wt", encoding="utf-8") as f:
            json.dump({"total": 0}, f)

        assert list(iter_dump_items(path)) == []

    def test_items_are_yielded_before_the_whole_dump_is_read(self, tmp_path) -> None:
        path = str(tmp_path / "dump.json.gz")
        write_truncated_dump(path, [{"id": str(n), "name": f"Division {n}"} for n in range(20000)])

        items = iter_dump_items(path)

        assert next(items)["id"] == "0"
        with pytest.raises(EOFError):
            list(items)
