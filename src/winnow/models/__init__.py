# Copyright (c) Syntropy Systems
"""Data models for winnow."""
