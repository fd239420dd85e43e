"""Tool Scoring: review aggregation and featured ranking for a tool directory.

Recomputes per-tool aggregated review scores and the featured-tools ranking,
and exposes both as admin tools over MCP.
"""

__version__ = "0.1.0"
