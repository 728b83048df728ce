#!/usr/bin/env python3
"""
Main entry point for the decay-weighted vegetation index processor.

Equivalent to the ``vi-decay`` console script installed with the package.
"""
import sys

from vi_decay.cli import main


if __name__ == "__main__":
    sys.exit(main())
