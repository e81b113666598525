"""
src/cfo_agent/tools/catalog.py

The registry the agent ships with. Keep parameter schemas small and typed to
reduce hallucinated arguments.
"""


import tempfile
from functools import partial
from pathlib import Path

from cfo_agent.config import AgentSettings, Priority
from cfo_agent.tools import exports, finance, tally
from cfo_agent.tools.registry import ParamSpec, ToolDescriptor, ToolRegistry


def reports_dir(settings: AgentSettings) -> Path:

    return settings.data_path("reports") or Path(tempfile.gettempdir()) / "cfo_agent_reports"


def build_registry(settings: AgentSettings) -> ToolRegistry:

    registry = ToolRegistry(timeout_s=settings.tool_timeout_s)

    registry.register(ToolDescriptor(
        name="unit_economics_calculator",
        description="Calculates net revenue, gross margin, and contribution margin.",
        parameters={
            "price": ParamSpec(type="number", description="Selling price of the product"),
            "cogs": ParamSpec(type="number", description="Cost of goods sold"),
            "shipping": ParamSpec(type="number", description="Shipping cost per unit"),
            "returns_rate": ParamSpec(type="number", description="Expected returns rate (0 to 1)"),
        },
        fn=finance.unit_economics_calculator,
    ))
    registry.register(ToolDescriptor(
        name="tariff_forecaster",
        description="Forecasts duty and tariff impact for a specific product and country.",
        parameters={
            "country_code": ParamSpec(type="string", description="ISO country code of the importer"),
            "hs_code": ParamSpec(type="string", description="Harmonized System code of the product"),
            "product_value": ParamSpec(type="number", description="Value of the product in USD"),
        },
        fn=finance.tariff_forecaster,
    ))
    registry.register(ToolDescriptor(
        name="dead_stock_oracle",
        description="Predicts dead stock risk (Risk Monitor).",
        parameters={
            "inventory_data": ParamSpec(
                type="array",
                description="Inventory rows: sku, days_since_last_sale, quantity_on_hand, reorder_point",
            ),
        },
        fn=finance.dead_stock_oracle,
    ))
    registry.register(ToolDescriptor(
        name="generate_gst_draft",
        description="Drafts a GSTR-3B summary for a period. Human-in-the-loop required.",
        parameters={
            "period": ParamSpec(type="string", description="Filing period, e.g. 2024-03"),
            "output_tax_liability": ParamSpec(type="number", description="GST collected on sales"),
            "input_tax_credit": ParamSpec(type="number", description="GST paid on purchases"),
        },
        fn=finance.generate_gst_draft,
    ))
    registry.register(ToolDescriptor(
        name="send_whatsapp_alert",
        description="Sends high-priority alert (Risk Monitor). Human-in-the-loop required.",
        parameters={
            "message": ParamSpec(type="string", description="The alert message to send"),
            "priority": ParamSpec(
                type="string",
                description="Priority level of the alert",
                enum=[p.value for p in Priority],
            ),
        },
        fn=finance.send_whatsapp_alert,
    ))
    registry.register(ToolDescriptor(
        name="generate_pdf_report",
        description="Generates a PDF financial report with summary and metrics.",
        parameters={
            "summary": ParamSpec(type="string", description="Executive summary for the report"),
            "metrics": ParamSpec(type="object", description="Key metrics to include in the report table"),
        },
        fn=partial(exports.generate_pdf_report, output_dir=reports_dir(settings)),
    ))
    registry.register(ToolDescriptor(
        name="tally_import",
        description="Imports a Tally ERP XML export: company, sales, purchases, stock, bank and ledger totals.",
        parameters={
            "xml_content": ParamSpec(type="string", description="The full Tally XML export text"),
        },
        fn=tally.tally_import,
    ))

    return registry
