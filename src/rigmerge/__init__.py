"""Rigmerge: consolidate independently loaded rigged scenes into one rig."""

__version__ = "0.1.0"
