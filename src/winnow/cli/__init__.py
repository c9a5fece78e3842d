# Copyright (c) Syntropy Systems
"""winnow command-line interface."""
