import json

import pytest

import prompts.menu_ocr as menu_ocr
from prompts.menu_extraction import (
    extract_packages_from_ocr_text,
    extract_packages_with_report,
    group_pages_by_file,
    parse_model_packages,
)
from prompts.menu_ocr import handle_upload_and_extract_ocr
from prompts.menu_types import IncomingFile
from utils.errors import ExtractionFailedError, LlmUnavailableError, ModelOutputError, TruncatedOutputError

IV_MENU = (
    "IV DRIP MENU\n"
    "Hydration Drip £100 Sodium Chloride + Bicarbonate\n"
    "MultiVit Drip £125 Basic Hydration + B Complex\n"
    "Immunity Drip £150 Vitamin C + Zinc\n"
    "NAD+ Boost £300 NAD+ 250mg\n"
    "Glow Drip £180 Glutathione"
)
IV_ITEMS = [("Hydration Drip", 100), ("MultiVit Drip", 125), ("Immunity Drip", 150),
            ("NAD+ Boost", 300), ("Glow Drip", 180)]


def _package(title, price, currency="GBP", **extra):
    pkg = {
        "title": title,
        "hospital_name": "Bumrungrad Intl",
        "treatment_name": "IV Therapy",
        "price": price,
        "currency": currency,
        "status": "active",
        "_meta": {"confidence_score": 0.9, "warnings": []},
    }
    pkg.update(extra)
    return pkg


def test_group_pages_by_file_keeps_file_order_and_sorts_pages(page):
    pages = [page("a2", "A", "a.pdf", 2), page("b1", "B", "b.pdf", 1), page("a1", "A", "a.pdf", 1)]
    groups = group_pages_by_file(pages)
    assert list(groups) == ["A", "B"]
    assert [p.page_number for p in groups["A"]] == [1, 2]


def test_five_price_anchors_give_five_packages(page, stub_llm):
    stub_llm.reply({"packages": [_package(t, p) for t, p in IV_ITEMS]})
    report = extract_packages_with_report([page(IV_MENU)], stub_llm)

    assert len(report.packages) >= 5
    assert report.files[0].anchors == 5
    assert report.files[0].warnings == []
    assert [p.price for p in report.packages] == [100, 125, 150, 300, 180]
    assert all(p.currency == "GBP" for p in report.packages)


def test_under_extraction_is_reported_not_raised(page, stub_llm):
    stub_llm.reply({"packages": [_package(t, p) for t, p in IV_ITEMS[:3]]})
    report = extract_packages_with_report([page(IV_MENU)], stub_llm)

    assert len(report.packages) == 3
    assert report.files[0].error is None
    assert report.files[0].warnings == [
        "Model returned 3 package(s) but 5 price anchor(s) were found; some items may be missing"
    ]


def test_explained_merge_counts_toward_anchor_total(page, stub_llm):
    pkgs = [_package(t, p) for t, p in IV_ITEMS[:4]]
    pkgs[0]["_meta"]["warnings"] = ["Merged duplicate price anchor for Hydration Drip"]
    stub_llm.reply({"packages": pkgs})
    report = extract_packages_with_report([page(IV_MENU)], stub_llm)

    assert report.files[0].warnings == []


def test_one_call_per_file_with_provenance(page, stub_llm):
    stub_llm.reply({"packages": [_package("Hydration Drip", 100)]})
    stub_llm.reply({"packages": [_package("Botox", 200, _meta={"source_file": "from-model.png"})]})
    pages = [
        page("Hydration Drip £100", "A", "a.pdf", 2),
        page("Botox £200", "B", "b.png", 1),
        page("IV DRIP MENU", "A", "a.pdf", 1),
    ]
    rows = extract_packages_from_ocr_text(pages, stub_llm)

    assert len(stub_llm.prompts) == 2
    assert "--- PAGE 1 (a.pdf) ---" in stub_llm.prompts[0]
    assert "b.png" not in stub_llm.prompts[0]
    assert [r.meta.source_file for r in rows] == ["a.pdf", "from-model.png"]
    # page stamped only when the file has a single page
    assert [r.meta.source_page for r in rows] == [None, 1]
    assert rows[0].id.startswith("pkg_A_0_")
    assert rows[1].id.startswith("pkg_B_0_")


def test_bad_json_fails_only_that_file(page, stub_llm):
    stub_llm.reply("Sorry, I cannot help with that.")
    stub_llm.reply({"packages": [_package("Botox", 200)]})
    pages = [page("Hydration Drip £100", "A", "a.pdf"), page("Botox £200", "B", "b.png")]

    report = extract_packages_with_report(pages, stub_llm)

    assert "invalid JSON for a.pdf" in report.files[0].error
    assert report.files[1].error is None
    assert [r.title for r in report.packages] == ["Botox"]


def test_partial_failure_still_returns_rows(page, stub_llm):
    stub_llm.reply("not json").reply({"packages": [_package("Botox", 200)]})
    pages = [page("Hydration Drip £100", "A", "a.pdf"), page("Botox £200", "B", "b.png")]

    assert [r.title for r in extract_packages_from_ocr_text(pages, stub_llm)] == ["Botox"]


def test_transport_failure_is_recorded_per_file(page, stub_llm):
    stub_llm.fail(LlmUnavailableError("ThrottlingException: slow down"))
    stub_llm.reply({"packages": [_package("Botox", 200)]})
    pages = [page("Hydration Drip £100", "A", "a.pdf"), page("Botox £200", "B", "b.png")]

    report = extract_packages_with_report(pages, stub_llm)
    assert "ThrottlingException" in report.files[0].error
    assert len(report.packages) == 1


def test_all_files_failing_raises(page, stub_llm):
    stub_llm.reply("garbage").reply("more garbage")
    pages = [page("Hydration Drip £100", "A", "a.pdf"), page("Botox £200", "B", "b.png")]

    with pytest.raises(ExtractionFailedError) as exc:
        extract_packages_from_ocr_text(pages, stub_llm)
    assert set(exc.value.failures) == {"a.pdf", "b.png"}


def test_empty_file_is_skipped_without_llm_call(page, stub_llm):
    stub_llm.reply({"packages": [_package("Botox", 200)]})
    pages = [page("  ", "A", "blank.pdf"), page("Botox £200", "B", "b.png")]

    report = extract_packages_with_report(pages, stub_llm)

    assert len(stub_llm.prompts) == 1
    assert report.files[0].skipped
    assert report.files[0].warnings == ["No text extracted from this file; skipped AI extraction"]
    assert extract_packages_from_ocr_text([page("", "A", "blank.pdf")], stub_llm) == []


@pytest.mark.parametrize("payload", ['{"items": []}', '{"packages": null}', '{"packages": {"title": "x"}}', "42"])
def test_missing_packages_array_is_empty(payload):
    assert parse_model_packages(payload, "menu.pdf") == []


def test_bare_list_and_non_dict_entries():
    raw = json.dumps([{"title": "A"}, "junk", {"title": "B"}])
    assert [p["title"] for p in parse_model_packages(raw, "menu.pdf")] == ["A", "B"]


def test_parse_failure_carries_bounded_previews():
    raw = "x" * 2000
    with pytest.raises(ModelOutputError) as exc:
        parse_model_packages(raw, "menu.pdf")
    assert exc.value.file_name == "menu.pdf"
    assert len(exc.value.raw_preview) == 500
    assert len(exc.value.cleaned_preview) == 500
    assert not isinstance(exc.value, TruncatedOutputError)


def test_truncated_output_is_distinguished(page, stub_llm):
    with pytest.raises(TruncatedOutputError):
        parse_model_packages('{"packages": [{"title": "Hydra', "menu.pdf", truncated=True)

    stub_llm.reply('{"packages": [{"title": "Hydra', truncated=True)
    report = extract_packages_with_report([page("Hydration Drip £100")], stub_llm)
    assert "truncated" in report.files[0].error


def test_end_to_end_pdf_with_text_layer_and_scanned_page(make_pdf, monkeypatch, settings, stub_llm):
    monkeypatch.setattr(menu_ocr, "run_tesseract", lambda image, settings=None: "Laser Resurfacing 300 USD")
    pdf = make_pdf(
        "Facial Treatment - $120\nIncludes cleansing, exfoliation, mask and LED therapy session",
        None,
    )
    batch = handle_upload_and_extract_ocr([IncomingFile("clinic.pdf", "application/pdf", pdf)], settings)

    assert [p.page_number for p in batch.ocr_pages] == [1, 2]
    assert all(p.raw_text for p in batch.ocr_pages)

    stub_llm.reply({"packages": [
        _package("Facial Treatment", 120, currency="USD", treatment_name="Facial Plastic Surgery",
                 _meta={"source_page": 1, "confidence_score": 0.8}),
        _package("Laser Resurfacing", 300, currency="USD", treatment_name="Laser Resurfacing",
                 _meta={"source_page": 2, "confidence_score": 0.6}),
    ]})
    rows = extract_packages_from_ocr_text(batch.ocr_pages, stub_llm)

    assert "Facial Treatment - $120" in stub_llm.prompts[0]
    facial = [r for r in rows if r.price == 120]
    assert len(facial) == 1
    assert facial[0].currency == "USD"
    assert facial[0].meta.source_page == 1
    assert facial[0].meta.source_file == "clinic.pdf"


def test_bracketed_note_before_json_still_parses():
    raw = 'Result [2 items]: {"packages": [{"title": "A"}, {"title": "B"}]}'
    assert [p["title"] for p in parse_model_packages(raw, "menu.pdf")] == ["A", "B"]
