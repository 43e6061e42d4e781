"""Shared computational helpers."""

from coexnet.utils.blocks import block_ranges, fill_symmetric_blocks, run_blocks

__all__ = ['block_ranges', 'fill_symmetric_blocks', 'run_blocks']
