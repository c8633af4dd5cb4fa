"""
Report Renderer.

Renders ReportData into chunked, validated chat messages tailored to the
market regime, running A/B tests, and caller preferences.

Structure:
    modules/telegram/renderer/
    ├── models.py            # ReportData, UserPreferences, Message, templates
    ├── regimes.py           # Regime configs and selection
    ├── predicates.py        # Closed predicate set gating buttons
    ├── sections.py          # Section generators
    ├── templates.py         # Per-regime templates and interactive elements
    ├── ab_testing.py        # Variant assignment and experiment metrics
    ├── personalization.py   # Preference-driven adaptation
    ├── chunking.py          # Length-constrained message splitting
    ├── validation.py        # Platform limit checks
    └── renderer.py          # The rendering pipeline
"""

from modules.telegram.renderer.ab_testing import ABTestManager
from modules.telegram.renderer.models import Message, Regime, ReportData, UserPreferences
from modules.telegram.renderer.renderer import ReportRenderer, RendererSettings

__all__ = [
    "ABTestManager",
    "Message",
    "Regime",
    "RendererSettings",
    "ReportData",
    "ReportRenderer",
    "UserPreferences",
]
