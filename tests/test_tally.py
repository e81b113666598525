from datetime import date

import pytest

from cfo_agent.orchestrator.errors import ToolExecutionError
from cfo_agent.tools import tally
from cfo_agent.tools.catalog import build_registry


EXPORT = """<?xml version="1.0" encoding="UTF-8"?>
<ENVELOPE>
  <BODY><IMPORTDATA><REQUESTDATA>
    <TALLYMESSAGE>
      <COMPANY NAME="Acme Traders">
        <GSTIN>27AAACA1234A1Z5</GSTIN>
        <STATENAME>Maharashtra</STATENAME>
        <FINANCIALYEAR>20230401-20240331</FINANCIALYEAR>
      </COMPANY>
    </TALLYMESSAGE>
    <TALLYMESSAGE>
      <VOUCHER VCHTYPE="Sales">
        <DATE>20240315</DATE>
        <VOUCHERNUMBER>S-101</VOUCHERNUMBER>
        <PARTYLEDGERNAME>Blue Retail</PARTYLEDGERNAME>
        <AMOUNT>11800.00</AMOUNT>
        <GSTDETAILS><CGSTAMOUNT>900</CGSTAMOUNT><SGSTAMOUNT>900</SGSTAMOUNT><GSTRATE>18</GSTRATE></GSTDETAILS>
      </VOUCHER>
      <VOUCHER VCHTYPE="Purchase">
        <DATE>20240310</DATE>
        <PARTYLEDGERNAME>Steel Co</PARTYLEDGERNAME>
        <AMOUNT>-5900</AMOUNT>
        <GSTDETAILS><IGSTAMOUNT>900</IGSTAMOUNT></GSTDETAILS>
      </VOUCHER>
      <VOUCHER VCHTYPE="Payment">
        <DATE>20240320</DATE>
        <VOUCHERNUMBER>P-7</VOUCHERNUMBER>
        <PARTYLEDGERNAME>Landlord</PARTYLEDGERNAME>
        <BANKALLOCATIONS.LIST><LEDGERNAME>HDFC Bank</LEDGERNAME></BANKALLOCATIONS.LIST>
        <AMOUNT>25,000.00</AMOUNT>
        <INSTRUMENTNUMBER>000123</INSTRUMENTNUMBER>
      </VOUCHER>
      <VOUCHER VCHTYPE="Payment">
        <DATE>20240321</DATE>
        <LEDGERNAME>Petty Cash</LEDGERNAME>
        <AMOUNT>300</AMOUNT>
      </VOUCHER>
      <VOUCHER VCHTYPE="Receipt">
        <DATE>20240322</DATE>
        <LEDGERNAME>Sales Account</LEDGERNAME>
        <AMOUNT>2000</AMOUNT>
      </VOUCHER>
    </TALLYMESSAGE>
    <TALLYMESSAGE>
      <STOCKITEM NAME="Steel Rod 8mm">
        <PARENT>Raw Material</PARENT>
        <CLOSINGBALANCE>120 Nos</CLOSINGBALANCE>
        <RATE>50/Nos</RATE>
        <HSNCODE>7214</HSNCODE>
      </STOCKITEM>
      <LEDGER NAME="HDFC Bank">
        <PARENT>Bank Accounts</PARENT>
        <OPENINGBALANCE>-100000</OPENINGBALANCE>
        <CLOSINGBALANCE>-75000</CLOSINGBALANCE>
      </LEDGER>
    </TALLYMESSAGE>
  </REQUESTDATA></IMPORTDATA></BODY>
</ENVELOPE>
"""


@pytest.fixture
def parsed():
    return tally.parse_tally_xml(EXPORT, today=date(2024, 4, 2))


def test_company_and_financial_year_come_from_the_export(parsed) -> None:
    company = parsed["company"]

    assert company["name"] == "Acme Traders"
    assert company["gstin"] == "27AAACA1234A1Z5"
    assert (company["financial_year_start"], company["financial_year_end"]) == ("2023-04-01", "2024-03-31")


def test_sales_and_purchases_separate_gst_from_taxable_value(parsed) -> None:
    sale = parsed["sales_vouchers"][0]
    purchase = parsed["purchase_vouchers"][0]

    assert (sale["voucher_number"], sale["date"], sale["party_name"]) == ("S-101", "2024-03-15", "Blue Retail")
    assert sale["gst_details"]["total_tax"] == pytest.approx(1800)
    assert sale["taxable_value"] == pytest.approx(10000)
    assert purchase["amount"] == pytest.approx(5900)
    assert purchase["taxable_value"] == pytest.approx(5000)
    assert purchase["voucher_number"] == "PUR-1"


def test_receipt_posted_to_sales_ledger_counts_as_a_sale(parsed) -> None:
    assert [v["amount"] for v in parsed["sales_vouchers"]] == [11800, 2000]
    assert parsed["metadata"]["total_sales"] == pytest.approx(13800)


def test_only_bank_backed_payments_are_bank_transactions(parsed) -> None:
    bank = parsed["bank_payments"]

    assert [(p["voucher_number"], p["bank_name"], p["amount"]) for p in bank] == [("P-7", "HDFC Bank", 25000)]
    assert bank[0]["cheque_number"] == "000123"


def test_stock_and_ledgers_are_extracted(parsed) -> None:
    item = parsed["inventory_items"][0]
    ledger = parsed["ledger_summaries"][0]

    assert (item["name"], item["quantity"], item["rate"], item["value"]) == ("Steel Rod 8mm", 120, 50, 6000)
    assert item["hsn_code"] == "7214"
    assert (ledger["ledger_name"], ledger["closing_balance"], ledger["group"]) == ("HDFC Bank", -75000, "Bank Accounts")


def test_metadata_totals_and_confidence_boost(parsed) -> None:
    meta = parsed["metadata"]

    assert meta["voucher_count"] == 4
    assert meta["total_purchases"] == pytest.approx(5900)
    assert meta["total_inventory_value"] == pytest.approx(6000)
    assert meta["confidence_boost"] == 18
    assert parsed["warnings"] == []


def test_undated_and_unsupported_vouchers_produce_warnings() -> None:
    xml = (
        "<ENVELOPE>"
        "<VOUCHER VCHTYPE='Sales'><AMOUNT>100</AMOUNT></VOUCHER>"
        "<VOUCHER VCHTYPE='Journal'><DATE>20240301</DATE></VOUCHER>"
        "</ENVELOPE>"
    )

    out = tally.parse_tally_xml(xml, today=date(2024, 4, 2))

    assert out["sales_vouchers"][0]["date"] == "2024-04-02"
    assert out["warnings"] == [
        "voucher 1 (sales) has no date; using 2024-04-02",
        "voucher 2: skipped unsupported type 'journal'",
    ]


@pytest.mark.parametrize(
    "raw, expected",
    [("20240315", "2024-03-15"), ("2024-03-15", "2024-03-15"), ("20241399", "2024-04-02"), ("", "2024-04-02")],
)
def test_format_tally_date(raw, expected) -> None:
    assert tally.format_tally_date(raw, today=date(2024, 4, 2)) == expected


@pytest.mark.parametrize("text", ["<ENVELOPE><VOUCHER>", "plain text, not an export"])
def test_unusable_input_is_a_tool_error(text) -> None:
    with pytest.raises(ToolExecutionError):
        tally.parse_tally_xml(text)


def test_entity_expansion_is_refused() -> None:
    xml = (
        '<?xml version="1.0"?>'
        '<!DOCTYPE ENVELOPE [<!ENTITY lol "lol"><!ENTITY lol2 "&lol;&lol;&lol;">]>'
        "<ENVELOPE><NARRATION>&lol2;</NARRATION></ENVELOPE>"
    )

    with pytest.raises(ToolExecutionError):
        tally.parse_tally_xml(xml)


async def test_tally_import_runs_through_the_registry(settings) -> None:
    result = await build_registry(settings).execute("tally_import", {"xml_content": EXPORT}, call_id="c1")

    assert result.ok is True
    assert result.output["metadata"]["voucher_count"] == 4
    assert "Acme Traders" in result.output["summary"]
