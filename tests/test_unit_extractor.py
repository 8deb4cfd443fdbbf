from overlaysync.exclusion import ExclusionPolicy
from overlaysync.models import SyncLevel
from overlaysync.propagation import PropagationEngine
from overlaysync.timing_store import TimingStore
from overlaysync.unit_extractor import DocumentUnitExtractor


def test_extracts_hierarchy_in_document_order(document):
    result = DocumentUnitExtractor().extract(document)
    assert result.diagnostics == []
    ids = [u.id for u in result.units]
    assert ids[:4] == ["page1_p1", "page1_p1_s1", "page1_p1_s1_w1", "page1_p1_s1_w2"]
    assert [u.order for u in result.units] == list(range(len(result.units)))

    sentence = result.units[1]
    assert sentence.level is SyncLevel.SENTENCE
    assert sentence.parent_id == "page1_p1"
    assert sentence.text == "Hi there"
    assert result.units[0].text == "Hi there The cat sat It was warm"
    assert [u.page_number for u in result.units if u.level is SyncLevel.PARAGRAPH] == [1, 2]


def test_missing_ids_are_derived_from_position():
    document = {"pages": [{"number": 3, "nodes": [
        {"level": "paragraph", "children": [
            {"level": "sentence", "children": [{"level": "word", "text": "One"}, {"level": "word", "text": "two"}]},
        ]},
    ]}]}
    extractor = DocumentUnitExtractor()
    ids = [u.id for u in extractor.extract(document).units]
    assert ids == ["page3_p1", "page3_p1_s1", "page3_p1_s1_w1", "page3_p1_s1_w2"]
    assert [u.id for u in extractor.extract(document).units] == ids


def test_non_readable_node_skips_subtree(document):
    document["pages"][0]["nodes"][0]["children"][1]["readable"] = False
    ids = [u.id for u in DocumentUnitExtractor().extract(document).units]
    assert "page1_p1_s2" not in ids
    assert "page1_p1_s2_w1" not in ids
    assert "page1_p1_s3" in ids


def test_default_exclusions_drop_unspoken_content():
    document = {"pages": [{"number": 1, "nodes": [
        {"id": "toc-1", "level": "paragraph", "text": "Chapter One"},
        {"id": "page1_p2", "level": "paragraph", "text": "Table of Contents"},
        {"id": "page1_p3", "level": "paragraph", "text": "12"},
        {"id": "page1_p4", "level": "paragraph", "text": "Once upon a time."},
    ]}]}
    units = DocumentUnitExtractor().extract(document).units
    assert [u.id for u in units] == ["page1_p4"]


def test_custom_exclusions():
    policy = ExclusionPolicy(text_patterns=[r"^figure \d+"], exclude_ids=["page1_p2"], use_defaults=False)
    document = {"pages": [{"number": 1, "nodes": [
        {"id": "page1_p1", "level": "paragraph", "text": "Figure 3: a cat"},
        {"id": "page1_p2", "level": "paragraph", "text": "Skip me"},
        {"id": "toc", "level": "paragraph", "text": "Kept without defaults"},
    ]}]}
    units = DocumentUnitExtractor(policy).extract(document).units
    assert [u.id for u in units] == ["toc"]


def test_malformed_input_gives_empty_result_with_diagnostic():
    for bad in (None, "text", {"pages": "nope"}, []):
        result = DocumentUnitExtractor().extract(bad)
        assert result.units == []
        assert result.diagnostics


def test_duplicate_ids_keep_first_occurrence():
    document = {"pages": [{"number": 1, "nodes": [
        {"id": "dup", "level": "paragraph", "text": "First"},
        {"id": "dup", "level": "paragraph", "text": "Second"},
    ]}]}
    result = DocumentUnitExtractor().extract(document)
    assert [u.text for u in result.units] == ["First"]
    assert any("Duplicate" in d for d in result.diagnostics)


def test_level_mismatch_is_reported():
    document = {"pages": [{"number": 1, "nodes": [
        {"id": "page1_p1", "level": "paragraph", "children": [
            {"id": "page1_p1_w1", "level": "word", "text": "Oops"},
        ], "text": "Oops"},
    ]}]}
    result = DocumentUnitExtractor().extract(document)
    assert [u.id for u in result.units] == ["page1_p1"]
    assert any("expected" in d for d in result.diagnostics)


def test_empty_text_is_skipped():
    document = {"pages": [{"number": 1, "nodes": [{"id": "page1_p1", "level": "paragraph", "text": "   "}]}]}
    result = DocumentUnitExtractor().extract(document)
    assert result.units == []
    assert result.diagnostics


def test_numeric_word_is_narrated():
    document = {"pages": [{"number": 1, "nodes": [
        {"level": "paragraph", "children": [
            {"level": "sentence", "children": [
                {"level": "word", "text": t} for t in ("In", "1984", "we", "left")
            ]},
        ]},
        {"level": "paragraph", "text": "17"},
    ]}]}
    units = DocumentUnitExtractor().extract(document).units
    assert [u.id for u in units] == [
        "page1_p1", "page1_p1_s1",
        "page1_p1_s1_w1", "page1_p1_s1_w2", "page1_p1_s1_w3", "page1_p1_s1_w4",
    ]

    store = TimingStore(units)
    store.upsert("page1_p1_s1", 0.0, 12.0)
    PropagationEngine().apply(store, "page1_p1_s1")
    year = store.get("page1_p1_s1_w2")
    assert (year.start, year.end) == (2.0, 6.0)
