#!/usr/bin/env python3
"""
Liquidation engine entry point.

Usage:
  python -m liquidator.main check            - Run one monitoring cycle
  python -m liquidator.main positions        - Show watched positions
  python -m liquidator.main report           - Send a report
  python -m liquidator.main monitor [secs]   - Continuous monitoring
"""
from .cli import main

if __name__ == "__main__":
    main()
