import io

import pandas as pd
import pytest
import requests

import prompts.menu_csv as menu_csv
from prompts.menu_csv import (
    forward_csv_to_importer,
    generate_bulk_csv,
    packages_to_dataframe,
    rows_from_dataframe,
    to_bulk_csv_row,
)
from prompts.menu_normalizer import normalize_package_row
from prompts.menu_types import CSV_COLUMNS

HEADER = (
    "title,description,details,hospital_name,treatment_name,Sub Treatments,price,original_price,"
    "currency,duration,treatment_category,anaesthesia,commission,featured,status,doctor_name,"
    "is_le_package,includes,image_file_id,hospital_location,category,hospital_country,"
    "translation_title,translation_description,translation_details,translation"
)


def _row(**overrides):
    raw = {
        "title": "Hydration Drip",
        "hospital_name": "Bumrungrad Intl",
        "treatment_name": "IV Therapy",
        "price": 100,
        "currency": "GBP",
        "status": "active",
        "_meta": {"source_file": "menu.pdf", "source_page": 1, "confidence_score": 0.9},
    }
    raw.update(overrides)
    return normalize_package_row(raw)


class FakeResponse:
    def __init__(self, status_code, body=None, reason=""):
        self.status_code = status_code
        self.ok = status_code < 400
        self.reason = reason
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


# ---------- serialisation ----------

def test_header_and_bom():
    csv_text = generate_bulk_csv([_row()])
    assert csv_text.startswith("\ufeff")
    assert csv_text[1:].split("\n")[0] == HEADER
    assert len(CSV_COLUMNS) == 26


def test_bom_can_be_turned_off():
    assert generate_bulk_csv([], bom=False) == HEADER + "\n"


def test_cell_formatting():
    row = _row(price=100.0, original_price=149.5, commission=None, featured=True,
               sub_treatments="Vitamin C, Zinc")
    cells = dict(zip(CSV_COLUMNS, to_bulk_csv_row(row)))

    assert cells["price"] == "100"
    assert cells["original_price"] == "149.5"
    assert cells["commission"] == ""
    assert cells["featured"] == "TRUE"
    assert cells["is_le_package"] == "FALSE"
    assert cells["Sub Treatments"] == "Vitamin C, Zinc"
    assert cells["description"] == ""


def test_quoting_and_unicode_survive_a_pandas_read():
    rows = [
        _row(title='Glow "Deluxe" Drip, 60 min', translation_title="โปรแกรมผิวใส"),
        _row(title="美白针", currency="THB", price="3,500"),
    ]
    df = pd.read_csv(io.StringIO(generate_bulk_csv(rows, bom=False)), dtype=str, keep_default_na=False)

    assert list(df.columns) == CSV_COLUMNS
    assert df.loc[0, "title"] == 'Glow "Deluxe" Drip, 60 min'
    assert df.loc[0, "translation_title"] == "โปรแกรมผิวใส"
    assert df.loc[1, "price"] == "3500"
    assert df.loc[1, "currency"] == "THB"


# ---------- editing round trip ----------

def test_untouched_rows_are_kept_as_is():
    rows = [_row(), _row(title="Glow Drip", price=180)]
    rows[0].id = "pkg_1"
    back = rows_from_dataframe(packages_to_dataframe(rows), rows)
    assert back[0] is rows[0]
    assert back[1] is rows[1]


def test_edited_row_is_renormalised_keeping_provenance():
    rows = [_row(currency="Yen")]
    rows[0].id = "pkg_1"
    assert any("Yen" in w for w in rows[0].warnings)

    df = packages_to_dataframe(rows)
    df.loc[0, "currency"] = "£"
    df.loc[0, "price"] = "120"
    back = rows_from_dataframe(df, rows)[0]

    assert back is not rows[0]
    assert back.id == "pkg_1"
    assert (back.price, back.currency) == (120.0, "GBP")
    assert back.meta.source_file == "menu.pdf"
    assert back.meta.confidence_score == 0.9
    assert back.warnings == []


# ---------- importer ----------

def test_forward_success(monkeypatch):
    seen = {}

    def fake_post(url, files=None, data=None, timeout=None):
        seen.update(url=url, files=files, data=data)
        return FakeResponse(200, {"ok": True})
    monkeypatch.setattr(menu_csv.requests, "post", fake_post)

    result = forward_csv_to_importer("a,b\n", "http://importer.test/upload",
                                     confirm_auto_create=True, clear_existing=False)

    assert result == "success"
    assert seen["url"] == "http://importer.test/upload"
    assert seen["files"]["file"][0] == "clinic-menu-import.csv"
    assert seen["files"]["file"][1] == b"a,b\n"
    assert seen["data"] == {"confirmAutoCreate": "true", "clearExisting": "false"}


@pytest.mark.parametrize(
    "response, expected",
    [
        (FakeResponse(422, {"message": "Unknown hospital"}), "failed:Unknown hospital"),
        (FakeResponse(500, None, reason="Internal Server Error"), "failed:Internal Server Error"),
        (FakeResponse(502, ["not", "a", "dict"]), "failed:502"),
    ],
)
def test_forward_failure_reason(monkeypatch, response, expected):
    monkeypatch.setattr(menu_csv.requests, "post", lambda *a, **k: response)
    assert forward_csv_to_importer("x", "http://importer.test") == expected


def test_forward_network_error(monkeypatch):
    def boom(*a, **k):
        raise requests.ConnectionError("refused")
    monkeypatch.setattr(menu_csv.requests, "post", boom)
    assert forward_csv_to_importer("x", "http://importer.test") == "failed:network_error"
