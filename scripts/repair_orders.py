#!/usr/bin/env python3
"""
Fix legacy order rows (totals, address reference, tracking log) in one pass.

    python -m scripts.repair_orders
"""

import sys

from core.config import setup_logging
from core.db import db_session
from services.repair import repair_orders

if __name__ == "__main__":
    setup_logging()
    with db_session() as db:
        report = repair_orders(db)
    print(f"Scanned {report.scanned}, repaired {len(report.repaired)}, unrepairable {len(report.unrepairable)}")
    for number in report.unrepairable:
        print(f"  needs manual attention: {number}")
    sys.exit(1 if report.unrepairable else 0)
