# tests/test_sources.py
import json
import sys

import pytest
import requests

from catalog_tracker import sources
from catalog_tracker.errors import AuthRequired, SourceUnavailable
from catalog_tracker.schemas import SellerConfig
from catalog_tracker.sources import (
    JsonFileSource, ProcessTask, ScraperCommandSource, parse_sellers_csv, resolve_seller_configs,
    to_csv_export_url,
)

DUMP = [
    {
        "id": "p1",
        "sellerPhone": "919900000001",
        "name": "iPhone 13",
        "priceRaw": 45000000,
        "currency": "INR",
        "availability": "in stock",
        "productUrl": "https://web.whatsapp.com/product/p1/919900000001",
    },
    {"id": "p2", "sellerPhone": 919900000002, "name": "Pixel 7", "priceRaw": "30000000"},
    ["not", "a", "record"],
]


def write_dump(tmp_path, data=DUMP):
    path = tmp_path / "products.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_json_file_source_reads_camel_case_dump(tmp_path):
    listings = JsonFileSource(write_dump(tmp_path)).get_raw_listings()
    assert [l.id for l in listings] == ["p1", "p2"]
    assert listings[0].seller_phone == "919900000001"
    assert listings[0].product_url.endswith("/p1/919900000001")
    assert listings[1].seller_phone == "919900000002"


def test_json_file_source_filters_by_seller_scope(tmp_path):
    source = JsonFileSource(write_dump(tmp_path))
    listings = source.get_raw_listings([SellerConfig(phone="919900000002")])
    assert [l.id for l in listings] == ["p2"]


def test_json_file_source_errors(tmp_path):
    with pytest.raises(SourceUnavailable):
        JsonFileSource(tmp_path / "missing.json").get_raw_listings()
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(SourceUnavailable):
        JsonFileSource(bad).get_raw_listings()
    with pytest.raises(SourceUnavailable):
        JsonFileSource(write_dump(tmp_path, {"id": "p1"})).get_raw_listings()


def test_process_task_streams_lines():
    seen = []
    result = ProcessTask([sys.executable, "-c", "print('one'); print('two')"], on_line=seen.append).run()
    assert result.ok
    assert seen == ["one", "two"]
    assert not result.auth_required


def scraper_command(tmp_path, body):
    script = tmp_path / "scraper.py"
    script.write_text(body, encoding="utf-8")
    return [sys.executable, str(script)]


def test_scraper_command_source_loads_its_dump(tmp_path):
    out = tmp_path / "products.json"
    body = (
        "import json, sys\n"
        "print('Scraping seller 919900000001')\n"
        "with open(sys.argv[1], 'w') as fh:\n"
        f"    json.dump({DUMP[:1]!r}, fh)\n"
    )
    command = scraper_command(tmp_path, body) + [str(out)]
    lines = []
    listings = ScraperCommandSource(command, out, on_line=lines.append).get_raw_listings()
    assert [l.id for l in listings] == ["p1"]
    assert lines == ["Scraping seller 919900000001"]


def test_scraper_command_source_detects_qr_login(tmp_path):
    command = scraper_command(tmp_path, "print('Please scan QR code to continue')\n")
    with pytest.raises(AuthRequired):
        ScraperCommandSource(command, tmp_path / "products.json").get_raw_listings()


def test_scraper_command_source_nonzero_exit(tmp_path):
    command = scraper_command(tmp_path, "import sys\nprint('boom')\nsys.exit(3)\n")
    with pytest.raises(SourceUnavailable, match="code 3"):
        ScraperCommandSource(command, tmp_path / "products.json").get_raw_listings()


def test_scraper_command_source_missing_program(tmp_path):
    source = ScraperCommandSource([str(tmp_path / "no-such-scraper")], tmp_path / "products.json")
    with pytest.raises(SourceUnavailable):
        source.get_raw_listings()
    assert source.stop() is False


def test_to_csv_export_url():
    share = "https://docs.google.com/spreadsheets/d/abc123/edit#gid=42"
    assert to_csv_export_url(share) == "https://docs.google.com/spreadsheets/d/abc123/export?format=csv&gid=42"
    assert to_csv_export_url("https://docs.google.com/spreadsheets/d/abc123/edit").endswith("gid=0")
    assert to_csv_export_url("https://example.com/sellers.csv") == "https://example.com/sellers.csv"


def test_parse_sellers_csv():
    text = (
        "Name,City,Catalogue_Link\n"
        "Phone Hub,Mumbai,https://wa.me/c/x/catalog/919900000001\n"
        " ,Pune,https://web.whatsapp.com/catalog/919900000002/\n"
        "Dup,Delhi,https://web.whatsapp.com/catalog/919900000001\n"
        "No link,Goa,\n"
    )
    sellers = parse_sellers_csv(text)
    assert [s.phone for s in sellers] == ["919900000001", "919900000002"]
    assert sellers[0].name == "Phone Hub"
    assert sellers[1].name is None
    assert sellers[1].city == "Pune"
    assert parse_sellers_csv("name,city\nx,y\n") == []


def test_fetch_sellers_from_sheet_gives_up_after_retries(monkeypatch):
    calls = []

    def failing_get(url, timeout):
        calls.append(url)
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(sources.requests, "get", failing_get)
    monkeypatch.setattr("catalog_tracker.utils.time.sleep", lambda s: None)
    assert sources.fetch_sellers_from_sheet("https://docs.google.com/spreadsheets/d/abc/edit") == []
    assert len(calls) == 3


def test_resolve_seller_configs_fallbacks(monkeypatch):
    monkeypatch.setattr(sources, "fetch_sellers_from_sheet", lambda url: [])
    sellers = resolve_seller_configs("https://sheet", " 911, 912 ,", None, None)
    assert [s.phone for s in sellers] == ["911", "912"]

    sellers = resolve_seller_configs(None, "", "913", "Solo Shop")
    assert sellers == [SellerConfig(phone="913", name="Solo Shop")]
    assert resolve_seller_configs(None, "", None, None) == []

    monkeypatch.setattr(sources, "fetch_sellers_from_sheet", lambda url: [SellerConfig(phone="914")])
    assert [s.phone for s in resolve_seller_configs("https://sheet", "911", None, None)] == ["914"]
