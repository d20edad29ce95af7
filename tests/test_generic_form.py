from docbot.extraction.generic_form import (
    correct_swapped_fields,
    extract_form,
    looks_like_date,
    looks_like_doc_number,
)

TS = "2026-01-31T03:04:05.678Z"


def test_same_line_fields():
    text = (
        "แบบฟอร์มส่งเอกสาร\n"
        "วันที่: 12/01/2569\n"
        "เลขที่เอกสาร : DOC-001\n"
        "ชื่อ-สกุล สมชาย ใจดี\n"
        "รายละเอียด: ส่งใบรับรองแพทย์\n"
        "หมายเหตุ - ด่วน"
    )
    doc = extract_form(text, TS)
    assert doc.date == "12/01/2569"
    assert doc.doc_number == "DOC-001"
    assert doc.name == "สมชาย ใจดี"
    assert doc.detail == "ส่งใบรับรองแพทย์"
    assert doc.remark == "ด่วน"
    assert doc.raw == text
    assert doc.timestamp == TS


def test_swapped_date_and_doc_number_are_exchanged():
    text = "เลขที่เอกสาร: 31/01/2026\nวันที่: DOC-99\nชื่อ: สมชาย"
    doc = extract_form(text, TS)
    assert (doc.date, doc.doc_number) == ("31/01/2026", "DOC-99")


def test_swap_correction_is_stable_when_reapplied():
    once = correct_swapped_fields("DOC-99", "31/01/2026")
    assert once == ("31/01/2026", "DOC-99")
    assert correct_swapped_fields(*once) == once


def test_swap_when_date_holds_doc_number_and_doc_number_is_free_text():
    assert correct_swapped_fields("AB-12", "ไม่ระบุ") == ("ไม่ระบุ", "AB-12")


def test_no_swap_when_both_fields_fit():
    assert correct_swapped_fields("12/01/2569", "DOC-1") == ("12/01/2569", "DOC-1")


def test_shape_helpers():
    assert looks_like_date("1-2-26")
    assert not looks_like_date("DOC-1")
    assert looks_like_doc_number("A-1")
    assert not looks_like_doc_number("12/01/2569")
    assert not looks_like_doc_number("two words 1")


def test_next_line_value_skips_garbage():
    text = "เลขที่เอกสาร:\n-\n่ั\n...\nXY-778\nวันที่\n12/01/2569"
    doc = extract_form(text, TS)
    assert doc.doc_number == "XY-778"
    assert doc.date == "12/01/2569"


def test_garbage_same_line_value_falls_back_to_next_line():
    text = "ชื่อ: .\nสมหญิง ใจงาม\nวันที่: 1/1/2026"
    doc = extract_form(text, TS)
    assert doc.name == "สมหญิง ใจงาม"


def test_label_match_ignores_case_and_spacing():
    text = "Doc No: QX-5\nDATE 02/02/2026"
    doc = extract_form(text, TS)
    assert doc.doc_number == "QX-5"
    assert doc.date == "02/02/2026"


def test_ascii_label_needs_a_word_boundary():
    doc = extract_form("Dated letter\nNotebook: 5", TS)
    assert doc.date == ""
    assert doc.remark == ""


def test_overlong_doc_number_is_dropped():
    text = "เลขที่เอกสาร: " + "A1" * 25 + "\nวันที่: 1/1/2026"
    assert extract_form(text, TS).doc_number == ""


def test_extraction_is_pure():
    text = "เลขที่เอกสาร: 31/01/2026\nวันที่: DOC-99\nชื่อ: สมชาย"
    first = extract_form(text, TS)
    second = extract_form(text, TS)
    assert first.model_dump_json() == second.model_dump_json()


def test_empty_text_gives_empty_record():
    doc = extract_form("", TS)
    assert doc.date == doc.doc_number == doc.name == doc.detail == doc.remark == ""


def test_custom_label_dictionary():
    labels = {"date": ("issued",), "doc_number": ("ref",)}
    doc = extract_form("Issued: 3/3/2026\nRef: R-7", TS, labels=labels)
    assert (doc.date, doc.doc_number) == ("3/3/2026", "R-7")


def test_iso_date_with_numeric_doc_number_is_not_swapped():
    text = "วันที่: 2026-01-31\nเลขที่เอกสาร: 0012345\nชื่อ: สมชาย"
    doc = extract_form(text, TS)
    assert (doc.date, doc.doc_number) == ("2026-01-31", "0012345")


def test_iso_date_in_doc_number_field_is_moved_to_date():
    assert looks_like_date("2026-01-31")
    assert not looks_like_doc_number("2026-01-31")
    assert correct_swapped_fields("INV-7", "2026-01-31") == ("2026-01-31", "INV-7")
