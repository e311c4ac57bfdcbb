"""
Collateral simulation.

This module provides:
- collateralize: variation margin account appended to a scenario cube
- margin_target: two-way CSA margin requirement
"""

from hjm_xva.collateral.vm import collateralize, collateralize_from_config, margin_target

__all__ = ["collateralize", "collateralize_from_config", "margin_target"]
