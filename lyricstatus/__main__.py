"""Run with: python -m lyricstatus"""

from .engine import main

raise SystemExit(main())
