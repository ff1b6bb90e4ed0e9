"""CI gate: assert the Alembic migration graph is a single linear chain.

A second root (down_revision = None) or a second head means two migrations
were written against the same parent; the upgrade order is then undefined.

Expected state:
  Single root and head: 001_staff_core

When a migration is added, it chains off the current head and EXPECTED_HEADS
is updated here in the same change.

Usage:
  python .github/scripts/ci_alembic_heads_check.py
"""
from __future__ import annotations

import sys
from pathlib import Path

api_root = Path(__file__).resolve().parents[2] / "apps" / "api"
sys.path.insert(0, str(api_root))

from alembic.config import Config
from alembic.script import ScriptDirectory

EXPECTED_HEADS = {"001_staff_core"}
MAX_ROOTS = 1


def main() -> int:
    cfg = Config(str(api_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(api_root / "alembic"))

    script = ScriptDirectory.from_config(cfg)
    heads = set(script.get_heads())

    if heads != EXPECTED_HEADS:
        print("MIGRATION HEAD CHECK FAILED")
        print(f"  Expected heads: {sorted(EXPECTED_HEADS)}")
        print(f"  Actual heads:   {sorted(heads)}")
        for h in sorted(heads - EXPECTED_HEADS):
            print(f"    new: {h}")
        for h in sorted(EXPECTED_HEADS - heads):
            print(f"    missing: {h}")
        print("  Fix: chain the migration off the current head, or update EXPECTED_HEADS.")
        return 1

    revisions = list(script.walk_revisions())
    roots = [r.revision for r in revisions if r.down_revision is None]
    if len(roots) > MAX_ROOTS:
        print("MIGRATION ROOT CHECK FAILED")
        print(f"  Expected at most {MAX_ROOTS} root, found {len(roots)}: {sorted(roots)}")
        return 1

    print(f"Migration integrity check: OK ({len(heads)} head, {len(roots)} root, {len(revisions)} total)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
