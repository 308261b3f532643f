"""Fluid simulation scenarios."""

from .tank import (
    FloatingBox,
    create_dam_break_config,
    create_floating_box,
)

__all__ = [
    'FloatingBox',
    'create_dam_break_config',
    'create_floating_box',
]
