"""
src/cfo_agent/tools/tally.py - Tally ERP XML export import

This module provides:
- parse_tally_xml(xml_text): company, vouchers, stock and ledgers from an export
- import_summary(data): short plain-text digest for the chat
- tally_import(...): the agent tool (parse + totals + warnings)

Tally exports are loose: the same field shows up under different tags depending
on version and report, so every lookup takes a list of candidate tags and uses
the first non-empty one. Untrusted uploads are parsed with defusedxml, which
refuses entity expansion and external references.
"""


import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from xml.etree.ElementTree import Element

import structlog
from defusedxml import DefusedXmlException
from defusedxml.ElementTree import ParseError, fromstring

from cfo_agent.orchestrator.errors import ToolExecutionError


logger = structlog.get_logger()

TALLY_CONFIDENCE_BOOST: int = 18        # Percentage points the agent may add when ledgers back a figure
TALLY_MARKERS: Tuple[str, ...] = ("TALLYMESSAGE", "VOUCHER", "ENVELOPE")

_NUMBER = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")

# A lookup is a tag, or a (parent, child) pair meaning "child directly under parent"
Lookup = Union[str, Tuple[str, str]]


# --- Element helpers -----------------------------------------------------------
def _matches(node: Element, lookup: Lookup) -> Iterable[Element]:

    if isinstance(lookup, tuple):
        parent_tag, child_tag = lookup
        for parent in node.iter(parent_tag):
            if parent is not node:
                yield from (child for child in parent if child.tag == child_tag)
        return
    for el in node.iter(lookup):
        if el is not node:
            yield el

def _text(node: Optional[Element], *lookups: Lookup) -> Optional[str]:
    """First non-empty text among descendants matching `lookups`, in order."""

    if node is None:
        return None
    for lookup in lookups:
        for el in _matches(node, lookup):
            text = "".join(el.itertext()).strip()
            if text:
                return text

    return None

def _number(text: Optional[str]) -> float:
    """Leading number in a Tally value ("-1,250.00", "10 Nos"); 0 when there is none."""

    if not text:
        return 0.0
    match = _NUMBER.search(text)
    if not match:
        return 0.0

    return float(match.group(0).replace(",", ""))

def _flag(text: Optional[str]) -> bool:

    return (text or "").strip().lower() == "yes"

def format_tally_date(value: Optional[str], *, today: Optional[date] = None) -> str:
    """
    Tally dates are YYYYMMDD. ISO dates pass through; anything else becomes today.
    """

    fallback = (today or date.today()).isoformat()
    if not value:
        return fallback
    digits = re.sub(r"\D", "", value)
    if len(digits) == 8:
        try:
            return datetime.strptime(digits, "%Y%m%d").date().isoformat()
        except ValueError:
            return fallback
    try:
        return datetime.fromisoformat(value.strip()).date().isoformat()
    except ValueError:
        return fallback


# --- Sections ------------------------------------------------------------------
def _voucher_type(node: Element) -> str:

    return (node.get("VCHTYPE") or node.get("VOUCHERTYPENAME") or _text(node, "VOUCHERTYPENAME") or "").strip()

def _gst_details(node: Element) -> Dict[str, Any]:

    source = next(iter(_matches(node, "GSTDETAILS")), node)
    cgst = abs(_number(_text(source, "CGSTAMOUNT", "CGST")))
    sgst = abs(_number(_text(source, "SGSTAMOUNT", "SGST")))
    igst = abs(_number(_text(source, "IGSTAMOUNT", "IGST")))
    cess = abs(_number(_text(source, "CESSAMOUNT", "CESS")))

    return {
        "gstin": _text(source, "PARTYGSTIN", "GSTIN"),
        "tax_rate": _number(_text(source, "GSTRATE", "TAXRATE")),
        "cgst": cgst,
        "sgst": sgst,
        "igst": igst,
        "cess": cess,
        "total_tax": round(cgst + sgst + igst + cess, 2),
        "place_of_supply": _text(source, "PLACEOFSUPPLY"),
        "reverse_charge": _flag(_text(source, "ISREVERSECHARGE")),
    }

def _company(root: Element, today: date) -> Dict[str, Any]:

    company = root if root.tag == "COMPANY" else next(iter(_matches(root, "COMPANY")), None)
    fy_start, fy_end = f"{today.year}-04-01", f"{today.year + 1}-03-31"
    financial_year = _text(company, "FINANCIALYEAR", "BOOKSDATE")
    if financial_year and financial_year.count("-") == 1:
        start, end = financial_year.split("-")
        fy_start, fy_end = format_tally_date(start, today=today), format_tally_date(end, today=today)

    return {
        "name": (
            (company.get("NAME") if company is not None else None)
            or _text(company, "NAME", "COMPANYNAME")
            or _text(root, "COMPANYNAME")
            or "Unknown Company"
        ),
        "gstin": _text(company, "GSTIN", "PARTYGSTIN", "GSTREGISTRATIONNUMBER"),
        "address": _text(company, "ADDRESS", "MAILINGNAME"),
        "state": _text(company, "STATENAME", "STATE"),
        "financial_year_start": fy_start,
        "financial_year_end": fy_end,
        "export_date": today.isoformat(),
    }

def _trade_voucher(node: Element, index: int, kind: str, today: date) -> Dict[str, Any]:
    """Sales or purchase voucher; taxable value is the gross amount less GST."""

    gst = _gst_details(node)
    amount = abs(_number(_text(node, "AMOUNT", ("PARTYLEDGERS.LIST", "AMOUNT"))))
    party = _text(node, "PARTYNAME", "PARTYLEDGERNAME")
    voucher = {
        "voucher_number": _text(node, "VOUCHERNUMBER", "NUMBER") or f"{kind[:3].upper()}-{index + 1}",
        "date": format_tally_date(_text(node, "DATE", "VOUCHERDATE"), today=today),
        "amount": amount,
        "taxable_value": round(amount - gst["total_tax"], 2),
        "gst_details": gst,
        "narration": _text(node, "NARRATION"),
    }
    if kind == "sales":
        voucher.update({
            "party_name": party or "Unknown Party",
            "ledger_name": _text(node, "LEDGERNAME", "BASICBUYERNAME") or "Sales",
            "invoice_number": _text(node, "INVOICENUMBER", "REFERENCENUMBER"),
        })
    else:
        voucher.update({
            "supplier_name": party or "Unknown Supplier",
            "ledger_name": _text(node, "LEDGERNAME") or "Purchase",
            "bill_number": _text(node, "BILLNUMBER", "REFERENCE"),
        })

    return voucher

def _bank_transaction(node: Element, index: int, kind: str, today: date) -> Optional[Dict[str, Any]]:
    """Payment or receipt that touches a bank ledger (or carries a cheque number); None otherwise."""

    bank_ledger = _text(node, ("BANKALLOCATIONS.LIST", "LEDGERNAME"), "LEDGERNAME")
    cheque = _text(node, "INSTRUMENTNUMBER", "CHEQUENUMBER")
    if "bank" not in (bank_ledger or "").lower() and not cheque:
        return None

    return {
        "voucher_number": _text(node, "VOUCHERNUMBER") or f"{kind.upper()}-{index + 1}",
        "date": format_tally_date(_text(node, "DATE"), today=today),
        "bank_name": bank_ledger or "Bank Account",
        "payee_name": _text(node, "PARTYNAME", "PARTYLEDGERNAME") or "Unknown",
        "amount": abs(_number(_text(node, "AMOUNT"))),
        "transaction_type": kind,
        "reference_number": _text(node, "REFERENCE", "REFERENCENUMBER"),
        "cheque_number": cheque,
        "narration": _text(node, "NARRATION"),
        "cleared": _flag(_text(node, "ISCLEARED")),
    }

def _inventory(root: Element) -> List[Dict[str, Any]]:

    items = []
    nodes = [el for tag in ("STOCKITEM", "INVENTORYENTRIES.LIST", "ALLINVENTORYENTRIES.LIST") for el in root.iter(tag)]
    for index, node in enumerate(nodes):
        quantity = _number(_text(node, "CLOSINGBALANCE", "BILLEDQTY", "ACTUALQTY"))
        rate = _number(_text(node, "RATE", "STANDARDCOST"))
        value = _number(_text(node, "CLOSINGVALUE", "AMOUNT")) or quantity * rate
        items.append({
            "name": node.get("NAME") or _text(node, "NAME", "STOCKITEMNAME") or f"Item-{index + 1}",
            "part_number": _text(node, "PARTNUMBER", "ITEMCODE"),
            "group": _text(node, "PARENT", "STOCKGROUP") or "Default",
            "category": _text(node, "CATEGORY", "STOCKCATEGORY"),
            "quantity": quantity,
            "unit": _text(node, "BASEUNITS", "UNIT") or "Nos",
            "rate": rate,
            "value": round(abs(value), 2),
            "opening_balance": _number(_text(node, "OPENINGBALANCE")),
            "hsn_code": _text(node, "HSNCODE"),
        })

    return items

def _ledgers(root: Element) -> List[Dict[str, Any]]:

    summaries = []
    for node in (el for tag in ("LEDGER", "LEDGERENTRIESLIST") for el in root.iter(tag)):
        name = node.get("NAME") or _text(node, "NAME", "LEDGERNAME")
        if not name:
            continue
        summaries.append({
            "ledger_name": name,
            "opening_balance": _number(_text(node, "OPENINGBALANCE")),
            "closing_balance": _number(_text(node, "CLOSINGBALANCE")),
            "debit_total": _number(_text(node, "DEBITTOTAL")),
            "credit_total": _number(_text(node, "CREDITTOTAL")),
            "group": _text(node, "PARENT", "GROUP") or "Unknown",
        })

    return summaries


# --- Public API ----------------------------------------------------------------
def parse_tally_xml(xml_text: str, *, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Parse a Tally export. Raises ToolExecutionError when the text is not XML or
    does not look like a Tally export.

    Vouchers are classified by type: Sales and Purchase are trade vouchers;
    Payment / Receipt (and their Bank variants) count as bank transactions when
    they touch a bank ledger. A Receipt posted to a sales or revenue ledger is
    counted as a sale instead.
    """

    if not any(marker in xml_text for marker in TALLY_MARKERS):
        raise ToolExecutionError("tally_import", "not a Tally XML export (no TALLYMESSAGE, VOUCHER or ENVELOPE)")
    try:
        root = fromstring(xml_text)
    except (ParseError, DefusedXmlException) as e:
        raise ToolExecutionError("tally_import", f"invalid XML: {e}") from e

    today = today or date.today()
    warnings: List[str] = []
    sales: List[Dict[str, Any]] = []
    purchases: List[Dict[str, Any]] = []
    bank: List[Dict[str, Any]] = []

    for index, node in enumerate(root.iter("VOUCHER")):
        kind = _voucher_type(node).lower()
        if not _text(node, "DATE", "VOUCHERDATE"):
            warnings.append(f"voucher {index + 1} ({kind or 'untyped'}) has no date; using {today.isoformat()}")
        if kind == "sales":
            sales.append(_trade_voucher(node, len(sales), "sales", today))
        elif kind == "purchase":
            purchases.append(_trade_voucher(node, len(purchases), "purchase", today))
        elif kind in ("payment", "bank payment"):
            txn = _bank_transaction(node, len(bank), "payment", today)
            if txn:
                bank.append(txn)
        elif kind in ("receipt", "bank receipt"):
            ledger = (_text(node, "LEDGERNAME", "PARTYLEDGERNAME") or "").lower()
            if kind == "receipt" and ("sales" in ledger or "revenue" in ledger):
                sale = _trade_voucher(node, len(sales), "sales", today)
                sale["taxable_value"] = sale["amount"]
                sales.append(sale)
                continue
            txn = _bank_transaction(node, len(bank), "receipt", today)
            if txn:
                bank.append(txn)
        else:
            warnings.append(f"voucher {index + 1}: skipped unsupported type '{kind or 'untyped'}'")

    inventory = _inventory(root)
    if not (sales or purchases or bank or inventory):
        warnings.append("no vouchers or stock items found")

    metadata = {
        "total_sales": round(sum(v["amount"] for v in sales), 2),
        "total_purchases": round(sum(v["amount"] for v in purchases), 2),
        "total_inventory_value": round(sum(i["value"] for i in inventory), 2),
        "total_bank_payments": round(sum(p["amount"] for p in bank), 2),
        "voucher_count": len(sales) + len(purchases) + len(bank),
        "imported_at": datetime.now().isoformat(timespec="seconds"),
        "confidence_boost": TALLY_CONFIDENCE_BOOST,
    }
    logger.info("Tally export parsed", vouchers=metadata["voucher_count"], stock_items=len(inventory), warnings=len(warnings))

    return {
        "company": _company(root, today),
        "sales_vouchers": sales,
        "purchase_vouchers": purchases,
        "inventory_items": inventory,
        "bank_payments": bank,
        "ledger_summaries": _ledgers(root),
        "metadata": metadata,
        "warnings": warnings,
    }

def import_summary(data: Dict[str, Any]) -> str:

    company, meta = data["company"], data["metadata"]
    lines = [
        f"Tally import: {company['name']} (FY {company['financial_year_start']} to {company['financial_year_end']})",
        f"Sales: INR {meta['total_sales']:,.2f} across {len(data['sales_vouchers'])} vouchers",
        f"Purchases: INR {meta['total_purchases']:,.2f} across {len(data['purchase_vouchers'])} vouchers",
        f"Inventory value: INR {meta['total_inventory_value']:,.2f} ({len(data['inventory_items'])} items)",
        f"Bank transactions: INR {meta['total_bank_payments']:,.2f} ({len(data['bank_payments'])})",
        f"Confidence boost: +{meta['confidence_boost']}%",
    ]
    lines.extend(f"Warning: {w}" for w in data["warnings"])

    return "\n".join(lines)

def tally_import(*, xml_content: str) -> Dict[str, Any]:
    """
    Agent tool: parse a Tally XML export pasted into the conversation and
    return the extracted records with totals and a digest.
    """

    data = parse_tally_xml(xml_content)
    data["summary"] = import_summary(data)

    return data
