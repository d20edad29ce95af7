"""Label synonyms and receipt marker tokens.

Everything here is read-only data. Within each tuple a synonym must come before any
shorter synonym that is its prefix, because matching takes the first synonym that
fits ("ชื่อ-สกุล" has to win over "ชื่อ").
"""

from typing import Dict, Tuple

FORM_FIELDS: Tuple[str, ...] = ("date", "doc_number", "name", "detail", "remark")

FORM_LABELS: Dict[str, Tuple[str, ...]] = {
    "date": ("วันที่เอกสาร", "วันที่", "วันที", "document date", "date"),
    "doc_number": (
        "เลขที่เอกสาร",
        "เลขเอกสาร",
        "เลขที่",
        "document number",
        "document no",
        "doc no",
    ),
    "name": ("ชื่อ-นามสกุล", "ชื่อ-สกุล", "ชื่อผู้ส่ง", "ชื่อ", "full name", "name"),
    "detail": ("รายละเอียด", "details", "detail", "description"),
    "remark": ("หมายเหตุ", "remarks", "remark", "note"),
}

# Receipt markers
RECEIPT_ID_MARKERS: Tuple[str, ...] = ("เลขที่ใบเสร็จ", "receipt no", "BN")
RECEIPT_SECONDARY_ID_MARKERS: Tuple[str, ...] = ("รหัสผู้ป่วย", "HN")
RECEIPT_DATE_MARKERS: Tuple[str, ...] = ("วันที่", "date")
RECEIPT_TIME_MARKERS: Tuple[str, ...] = ("เวลา", "time")
RECEIPT_NAME_MARKERS: Tuple[str, ...] = ("ชื่อผู้ป่วย", "ชื่อ-สกุล", "ชื่อ", "patient name", "name")
RECEIPT_PAYMENT_MARKERS: Tuple[str, ...] = (
    "ประเภทการชำระเงิน",
    "ประเภทการชำระ",
    "ชำระโดย",
    "payment type",
    "paid by",
)
RECEIPT_TOTAL_MARKERS: Tuple[str, ...] = (
    "รวมทั้งสิ้น",
    "ยอดรวมสุทธิ",
    "grand total",
    "net total",
    "ยอดรวม",
    "รวมเงิน",
    "total",
    "รวม",
)
RECEIPT_VAT_MARKERS: Tuple[str, ...] = ("ภาษีมูลค่าเพิ่ม", "vat")
RECEIPT_SIGNATURE_MARKERS: Tuple[str, ...] = (
    "ลายมือชื่อ",
    "ผู้รับเงิน",
    "แคชเชียร์",
    "cashier",
    "signature",
)
# Only matched when followed by a page number ("หน้า 1/2", "Page 1").
RECEIPT_PAGE_MARKERS: Tuple[str, ...] = ("หน้า", "page")
RECEIPT_HEADER_MARKERS: Tuple[str, ...] = (
    "ใบเสร็จรับเงิน",
    "ใบกำกับภาษี",
    "receipt",
    "รายการ",
    "จำนวนเงิน",
    "description",
    "amount",
)
HONORIFICS: Tuple[str, ...] = ("นางสาว", "นาง", "นาย", "ด.ช", "ด.ญ", "mrs", "mr", "ms", "miss")

RECEIPT_REQUIRED_TOKENS: Tuple[str, ...] = ("ใบเสร็จรับเงิน", "โรงพยาบาล")
