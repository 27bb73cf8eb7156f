"""Test suite for the QQL engine.

This package contains:
- Unit tests for the lexer, parser, compute runtime and engine components
- CPU/kernel parity checks (Triton ones skip without CUDA)
- End-to-end runs through the in-memory and CSV providers
"""
