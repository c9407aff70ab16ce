"""Filesystem superblock probing, fstab configuration and the block command."""

__version__ = "0.1.0"