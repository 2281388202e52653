# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for cargo-precache."""
