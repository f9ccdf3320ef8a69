"""
Insurance Kernel - worksheet import core

Turns legacy insurance worksheets into balanced accounting documents:
- Rule-based row exclusion with diagnostics
- Template-driven dual-account mapping
- Sign/direction algebra and point-in-time currency conversion
- Balanced document construction with forex gain/loss balancing
- Idempotent master-data synchronization
"""

__version__ = "0.1.0"
