#!/usr/bin/env python3
"""Convenience script to run aic from a source checkout."""

from aiconnect import main

if __name__ == "__main__":
    main()
