#!/usr/bin/env python3
"""Inspect stepcounter.db and print the stored daily step rows."""
import sqlite3
import sys
from datetime import datetime
from pathlib import Path

db_paths = [
    Path(__file__).parent / "stepcounter.db",  # backend/stepcounter.db
    Path(__file__).parent.parent / "stepcounter.db",  # root/stepcounter.db
]

db_path = next((path for path in db_paths if path.exists()), None)

if not db_path:
    print("ERROR: Could not find stepcounter.db in expected locations")
    print(f"Looked in: {[str(p) for p in db_paths]}")
    sys.exit(1)

print(f"Opening database: {db_path.absolute()}")
print("=" * 60)

conn = sqlite3.connect(str(db_path))
cursor = conn.cursor()

cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='daily_steps'")
if cursor.fetchone() is None:
    print("[WARNING] daily_steps table does not exist yet")
    print("   (It is created when the API starts)")
    conn.close()
    sys.exit(0)

cursor.execute(
    "SELECT date, accumulated_steps, sensor_snapshot, timestamp "
    "FROM daily_steps ORDER BY date DESC LIMIT 31"
)
rows = cursor.fetchall()
print(f"\n[OK] daily_steps, showing {len(rows)} most recent days:")
for day, steps, snapshot, ts in rows:
    written = datetime.fromtimestamp(ts / 1000).isoformat(timespec="seconds") if ts else "-"
    print(f"  {day}: {steps:>7} steps  snapshot={snapshot:<9} written={written}")

cursor.execute("SELECT COALESCE(SUM(accumulated_steps), 0) FROM daily_steps")
print(f"\nTotal steps recorded: {cursor.fetchone()[0]}")

conn.close()
