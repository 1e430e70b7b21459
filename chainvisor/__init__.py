# MIT License
# Copyright (c) 2025 Hashborn

"""Chainvisor: upgrade-info watcher for chain node supervisors."""

__version__ = "1.0.0"
