#!/usr/bin/env python3
"""
Main entry point for running the queryload CLI as a module.

Usage:
    python3 -m queryload run --url http://vmselect:8481
    python3 -m queryload run --config load.yaml --duration 5m
    python3 -m queryload queries
    python3 -m queryload validate load.yaml
"""

from .cli import main

if __name__ == "__main__":
    main()
