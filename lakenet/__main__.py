#!/usr/bin/env python3
"""
LAKENET Command Line Interface Entry Point
==========================================

This module provides the entry point for running LAKENET as a module:
    python -m lakenet

It delegates to the main CLI functionality in cli.py
"""

from .cli import main

if __name__ == "__main__":
    main()
