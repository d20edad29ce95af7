from docbot.extraction.receipt import (
    MAX_ITEMS,
    extract_date_time,
    extract_items,
    extract_patient_name,
    extract_receipt,
    extract_totals,
    find_amounts,
)

TS = "2026-01-31T03:04:05.678Z"

RECEIPT = """โรงพยาบาลตัวอย่าง
ใบเสร็จรับเงิน
BN. L69-01-003-761
HN: 0012345
วันที่ 12/01/2569 เวลา 10:35:12
ชื่อผู้ป่วย
นาย
สมชาย ใจดี
ประเภทการชำระเงิน : เงินสด
Consultation fee
500.00
Anti-aging Cream 1,200.00
ภาษีมูลค่าเพิ่ม 7% 119.00
รวมทั้งสิ้น 1,819.00
ผู้รับเงิน ลงชื่อ 1,819.00"""


def test_full_receipt():
    receipt = extract_receipt(RECEIPT, TS)
    assert receipt.identifier == "L69-01-003-761"
    assert receipt.secondary_identifier == "0012345"
    assert receipt.date_raw == "12/01/2569"
    assert receipt.time_raw == "10:35:12"
    assert receipt.patient_name == "สมชาย ใจดี"
    assert receipt.payment_type == "เงินสด"
    assert receipt.total == "1,819.00"
    assert receipt.vat == "119.00"
    assert [(item.description, item.amount) for item in receipt.items] == [
        ("Consultation fee", "500.00"),
        ("Anti-aging Cream", "1,200.00"),
    ]
    assert receipt.raw == RECEIPT
    assert receipt.timestamp == TS


def test_identifier_after_bn_marker():
    receipt = extract_receipt("ใบเสร็จรับเงิน\nBN. L69-01-003-761", TS)
    assert receipt.identifier == "L69-01-003-761"


def test_item_description_from_same_line_despite_headers():
    lines = ["ใบเสร็จรับเงิน", "รายการ จำนวนเงิน", "Anti-aging Cream 1,200.00"]
    items = extract_items(lines)
    assert [(i.description, i.amount) for i in items] == [("Anti-aging Cream", "1,200.00")]


def test_item_description_from_previous_line():
    items = extract_items(["ค่ายา", "350.00 บาท"])
    assert [(i.description, i.amount) for i in items] == [("ค่ายา", "350.00")]


def test_amount_without_description_is_skipped():
    assert extract_items(["รวม", "12.00"]) == []


def test_items_are_deduplicated_and_capped():
    assert len(extract_items(["X-ray 100.00", "X-ray 100.00"])) == 1
    lines = [f"Item number {n} 10.00" for n in range(MAX_ITEMS + 5)]
    assert len(extract_items(lines)) == MAX_ITEMS


def test_money_pattern():
    assert find_amounts("1,234.56 and 99.00") == ["1,234.56", "99.00"]
    assert find_amounts("12.03.2569 and 100") == []


def test_total_skips_signature_lines_and_prefers_specific_marker():
    lines = ["ยอดรวม 900.00", "รวมทั้งสิ้น 1,000.00", "cashier total 5.00"]
    assert extract_totals(lines) == ("1,000.00", "")


def test_total_falls_back_to_last_amount():
    assert extract_totals(["Drug A 10.00", "Drug B 25.50"]) == ("25.50", "")


def test_date_and_time_on_separate_lines():
    assert extract_date_time(["Date: 01/02/2026", "Time 09:05"]) == ("01/02/2026", "09:05")


def test_patient_name_on_marker_line():
    assert extract_patient_name(["ชื่อ-สกุล: นางสาว สมหญิง ใจงาม"]) == "นางสาว สมหญิง ใจงาม"


def test_malformed_input_never_raises():
    receipt = extract_receipt("\n\n:::\n..\n", TS)
    assert receipt.identifier == ""
    assert receipt.items == []
    assert receipt.total == ""


def test_receipt_extraction_is_pure():
    assert extract_receipt(RECEIPT, TS).model_dump() == extract_receipt(RECEIPT, TS).model_dump()


def test_face_care_items_are_not_page_lines():
    items = extract_items(["ครีมบำรุงผิวหน้า 1,200.00", "มาส์กหน้า 300.00"])
    assert [(i.description, i.amount) for i in items] == [
        ("ครีมบำรุงผิวหน้า", "1,200.00"),
        ("มาส์กหน้า", "300.00"),
    ]


def test_page_number_lines_are_not_items():
    items = extract_items(["ค่าตรวจ 200.00", "หน้า 1/1 200.00", "Page 2 15.00"])
    assert [(i.description, i.amount) for i in items] == [("ค่าตรวจ", "200.00")]


def test_short_total_marker_inside_a_word_is_an_item():
    lines = ["ชุดรวมวิตามิน 450.00", "ค่าบริการ 50.00"]
    assert [(i.description, i.amount) for i in extract_items(lines)] == [
        ("ชุดรวมวิตามิน", "450.00"),
        ("ค่าบริการ", "50.00"),
    ]
    assert extract_totals(lines) == ("50.00", "")
    assert extract_totals(["ยา 100.00", "รวม 100.00"]) == ("100.00", "")
