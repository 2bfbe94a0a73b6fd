"""
Configuration Manager Module
============================

Responsibility:
- Centralized loading and validation of JSON configuration files.
- Enforcement of schema constraints and logical rules (ratios, folds, grid).
- Guardrails on search size and memory.
- Explicit seed derivation for the split, CV and randomized-search stages.
"""

from .config_manager import ConfigurationManager

__all__ = ['ConfigurationManager']
