"""Clankermon Valuation Server.

Value a Clankermon by level and type: a parameterized Dune Analytics query,
exposed as a JSON endpoint, a Farcaster frame and an MCP tool.
"""

__version__ = "0.1.0"

from importlib.resources import files

FRAME_TEMPLATE = "frames/index.html"


def get_frame_html(base_url: str) -> str:
    """Return the frame entry document. Re-reads each call for hot reload."""
    template = files(__name__).joinpath(FRAME_TEMPLATE).read_text(encoding="utf-8")
    return template.replace("{{BASE_URL}}", base_url.rstrip("/"))
