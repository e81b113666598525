"""
src/cfo_agent/tools/finance.py - the specialist tools behind the CFO agent

This module provides:
- unit_economics_calculator(...): net revenue, gross and contribution margin
- tariff_forecaster(...): duty impact for a product shipped to a country
- dead_stock_oracle(...): per-SKU risk that stock stops selling
- generate_gst_draft(...): GSTR-3B style draft for a filing period
- send_whatsapp_alert(...): queue a risk alert (the actual send is frozen)

Design notes:
* Pure functions over their keyword arguments; the registry validates shapes first.
* Domain failures raise ToolExecutionError so the model sees a readable reason.
* Numbers are MVP heuristics, not tax or customs advice.
"""


import math
import uuid
from typing import Any, Dict, List

import structlog

from cfo_agent.config import Priority
from cfo_agent.orchestrator.errors import ToolExecutionError


logger = structlog.get_logger()

FIXED_COSTS: float = 10_000.0           # Monthly fixed costs used for break-even
BASE_TARIFF: float = 0.10
ADDITIONAL_DUTY: float = 0.05
DEAD_STOCK_HORIZON_DAYS: int = 180


# --- Unit economics ------------------------------------------------------------
def unit_economics_calculator(*, price: float, cogs: float, shipping: float, returns_rate: float) -> Dict[str, Any]:
    """
    Per-unit economics after returns.

    net_revenue         = price * (1 - returns_rate)
    gross_margin        = net_revenue - cogs - shipping
    contribution_margin = gross_margin / net_revenue
    break_even_units    = ceil(FIXED_COSTS / gross_margin), None if the margin is not positive
    """

    if not 0 <= returns_rate <= 1:
        raise ToolExecutionError("unit_economics_calculator", f"returns_rate must be between 0 and 1, got {returns_rate}")

    net_revenue = price * (1 - returns_rate)
    if net_revenue == 0:
        raise ToolExecutionError("unit_economics_calculator", "net revenue is zero; contribution margin is undefined")

    gross_margin = net_revenue - cogs - shipping
    contribution_margin = gross_margin / net_revenue
    break_even_units = math.ceil(FIXED_COSTS / gross_margin) if gross_margin > 0 else None

    return {
        "net_revenue": round(net_revenue, 2),
        "gross_margin": round(gross_margin, 2),
        "contribution_margin": round(contribution_margin, 4),
        "break_even_units": break_even_units,
    }


# --- Tariff forecaster ---------------------------------------------------------
def tariff_forecaster(*, country_code: str, hs_code: str, product_value: float) -> Dict[str, Any]:
    """Flat base tariff plus an additional specific duty, in USD."""

    if product_value < 0:
        raise ToolExecutionError("tariff_forecaster", "product_value cannot be negative")

    effective_rate = BASE_TARIFF + ADDITIONAL_DUTY

    return {
        "country_code": country_code.upper(),
        "hs_code": hs_code,
        "total_duty": round(product_value * effective_rate, 2),
        "effective_rate": effective_rate,
        "currency": "USD",
    }


# --- Dead stock oracle ---------------------------------------------------------
def _dead_stock_score(item: Dict[str, Any]) -> float:
    """
    Internal: 0..1 risk that an item stops selling.

    Age since last sale carries most of the weight; holding more than twice the
    reorder point adds a penalty.
    """

    days = float(item.get("days_since_last_sale") or 0)
    on_hand = float(item.get("quantity_on_hand") or 0)
    reorder_point = float(item.get("reorder_point") or 0)

    score = min(days / DEAD_STOCK_HORIZON_DAYS, 1.0)
    if reorder_point > 0 and on_hand > 2 * reorder_point:
        score += 0.2

    return round(min(score, 1.0), 2)

def _recommended_action(score: float) -> str:

    if score >= 0.7:
        return "Markdown 30% or liquidate"
    if score >= 0.4:
        return "Markdown 20%"

    return "Hold"

def dead_stock_oracle(*, inventory_data: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Score each inventory row. Rows need a "sku"; the metrics are optional.

    Returns:
        {"analysis": [{"sku", "probability_of_dead_stock", "days_since_last_sale", "recommended_action"}, ...]}
    """

    analysis = []
    for idx, item in enumerate(inventory_data):
        if not isinstance(item, dict) or not item.get("sku"):
            raise ToolExecutionError("dead_stock_oracle", f"inventory row {idx} has no 'sku'")
        score = _dead_stock_score(item)
        analysis.append({
            "sku": str(item["sku"]),
            "probability_of_dead_stock": score,
            "days_since_last_sale": int(item.get("days_since_last_sale") or 0),
            "recommended_action": _recommended_action(score),
        })

    return {"analysis": analysis}


# --- GST ------------------------------------------------------------------------
def generate_gst_draft(*, period: str, output_tax_liability: float, input_tax_credit: float) -> Dict[str, Any]:
    """
    Draft a GSTR-3B summary. Never filed from here: status stays "draft".

    net_payable   = max(0, output_tax_liability - input_tax_credit)
    carry_forward = unused input tax credit
    """

    if output_tax_liability < 0 or input_tax_credit < 0:
        raise ToolExecutionError("generate_gst_draft", "tax amounts cannot be negative")

    net = output_tax_liability - input_tax_credit

    return {
        "period": period,
        "gstr3b_draft": {
            "output_tax_liability": round(output_tax_liability, 2),
            "input_tax_credit": round(input_tax_credit, 2),
            "net_payable": round(max(net, 0.0), 2),
            "carry_forward": round(max(-net, 0.0), 2),
        },
        "status": "draft",
    }


# --- Alerts ---------------------------------------------------------------------
def send_whatsapp_alert(*, message: str, priority: str) -> Dict[str, Any]:
    """
    Queue a WhatsApp alert. Delivery goes through a routing service that is not
    wired up yet, so this only logs and returns a queue reference.
    """

    level = Priority(priority)
    reference = f"wa_{uuid.uuid4().hex[:12]}"
    logger.info("WhatsApp alert queued", priority=level.value, reference=reference, chars=len(message))

    return {
        "success": True,
        "status": "queued",
        "reference": reference,
        "message": "Alert sent via WhatsApp routing service.",
    }
