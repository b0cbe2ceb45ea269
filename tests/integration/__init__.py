"""
psi-relay — integration test package

File: tests/integration/__init__.py
Last updated: 2026-10-18

Purpose
- Test package marker file for end-to-end relay tests.

Functional requirements
- Must not import heavy modules at import time; keep test collection fast.
- Must not require the optional OpenMined bindings or network access.
"""
