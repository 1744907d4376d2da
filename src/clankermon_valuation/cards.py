"""Farcaster frame cards for the step-by-step evaluation.

Each card is built from the current request alone: the level typed on the
first card travels to the last one inside the continuation URL, so the
server keeps no session. The level is trusted as sent by the client.
"""

from __future__ import annotations

import html
from typing import Any, Optional
from urllib.parse import urlencode

from .core.formatting import find_final_valuation
from .core.models import (
    ButtonAction,
    Card,
    CardButton,
    CardStage,
    DonationTransaction,
    EvaluationResult,
    TransactionParams,
)

DEFAULT_LEVEL = "1"
DEFAULT_TYPE = "Unknown"

IMAGES = {
    CardStage.START: "https://i.imgur.com/placeholder-level.png",
    CardStage.GET_TYPE: "https://i.imgur.com/placeholder-type.png",
    CardStage.EVALUATE: "https://i.imgur.com/placeholder-result.png",
    CardStage.ERROR: "https://i.imgur.com/placeholder-error.png",
}

PATHS = {
    CardStage.START: "/api/frame/start",
    CardStage.GET_TYPE: "/api/frame/get-type",
    CardStage.EVALUATE: "/api/frame/evaluate",
    CardStage.DONATE: "/api/frame/donate",
}


def stage_url(base_url: str, stage: CardStage, **params: str) -> str:
    """Continuation URL for ``stage``, carrying ``params`` in its query string."""
    url = base_url.rstrip("/") + PATHS[stage]
    if params:
        url += "?" + urlencode(params)
    return url


def read_input_text(body: Any) -> Optional[str]:
    """Text the user typed on the previous card, if any.

    Frame clients post ``{"untrustedData": {"inputText": ...}}``; anything
    else counts as no input.
    """
    if not isinstance(body, dict):
        return None
    data = body.get("untrustedData")
    if not isinstance(data, dict):
        return None
    text = data.get("inputText")
    if text is None:
        return None
    text = str(text).strip()
    return text or None


# ─── Stages ──────────────────────────────────────────────────────────────────


def render_start(base_url: str) -> Card:
    return Card(
        stage=CardStage.START,
        image=IMAGES[CardStage.START],
        heading="Step 1: Enter Level",
        input_placeholder="Enter Clankermon Level (1-100)",
        buttons=[CardButton(label="Next")],
        post_url=stage_url(base_url, CardStage.GET_TYPE),
    )


def render_get_type(base_url: str, input_text: Optional[str]) -> Card:
    level = input_text or DEFAULT_LEVEL
    return Card(
        stage=CardStage.GET_TYPE,
        image=IMAGES[CardStage.GET_TYPE],
        heading="Step 2: Enter Type",
        input_placeholder="Enter Clankermon Type (e.g., Fire, Water)",
        buttons=[CardButton(label="Evaluate")],
        post_url=stage_url(base_url, CardStage.EVALUATE, level=level),
    )


def evaluate_inputs(level: Optional[str], input_text: Optional[str]) -> tuple[Optional[str], str]:
    """Level from the continuation URL and type from the card input."""
    return level, input_text or DEFAULT_TYPE


def render_evaluate(base_url: str, result: EvaluationResult) -> Card:
    final = find_final_valuation(result)
    usd = final.usd_valuation if final else "0.00"
    eth = final.eth_valuation if final else "0.000000"
    return Card(
        stage=CardStage.EVALUATE,
        image=IMAGES[CardStage.EVALUATE],
        heading="Evaluation Results",
        lines=[
            f"Level: {result.level} | Type: {result.cm_type}",
            f"USD: ${usd}",
            f"ETH: Ξ{eth}",
        ],
        buttons=[
            CardButton(
                label="\U0001f49d Donate 0.23 USDC",
                action=ButtonAction.TX,
                target=stage_url(base_url, CardStage.DONATE),
            ),
            CardButton(
                label="\U0001f504 New Evaluation",
                target=stage_url(base_url, CardStage.START),
            ),
        ],
    )


def render_error(base_url: str) -> Card:
    return Card(
        stage=CardStage.ERROR,
        image=IMAGES[CardStage.ERROR],
        heading="Error",
        lines=["Failed to evaluate. Please try again."],
        buttons=[CardButton(label="Try Again", target=stage_url(base_url, CardStage.START))],
    )


def donation_transaction(chain_id: str, to: Optional[str], value: str) -> DonationTransaction:
    """The fixed donation descriptor; independent of any earlier card."""
    return DonationTransaction(chainId=chain_id, params=TransactionParams(to=to, value=value))


# ─── HTML ────────────────────────────────────────────────────────────────────


def _meta(prop: str, content: str) -> str:
    return f'<meta property="{prop}" content="{html.escape(content, quote=True)}" />'


def to_html(card: Card) -> str:
    """Render a card as a frame document."""
    tags = [
        _meta("fc:frame", "vNext"),
        _meta("fc:frame:image", card.image),
    ]
    if card.input_placeholder:
        tags.append(_meta("fc:frame:input:text", card.input_placeholder))
    for index, button in enumerate(card.buttons, start=1):
        prefix = f"fc:frame:button:{index}"
        tags.append(_meta(prefix, button.label))
        tags.append(_meta(f"{prefix}:action", button.action.value))
        if button.target:
            key = "target" if button.action is ButtonAction.TX else "post_url"
            tags.append(_meta(f"{prefix}:{key}", button.target))
    if card.post_url:
        tags.append(_meta("fc:frame:post_url", card.post_url))

    head = "\n    ".join(tags)
    body = "\n    ".join([f"<h1>{html.escape(card.heading)}</h1>"] + [f"<p>{html.escape(line)}</p>" for line in card.lines])
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "  <head>\n"
        '    <meta charset="utf-8" />\n'
        f"    {head}\n"
        "  </head>\n"
        "  <body>\n"
        f"    {body}\n"
        "  </body>\n"
        "</html>\n"
    )
