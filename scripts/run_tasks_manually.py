# scripts/run_tasks_manually.py
import argparse
import asyncio
import logging
import sys
import os

# Make the `app` package importable when run from the repo root
sys.path.append(os.getcwd())

from app.core.logging_config import setup_logging
from app.tasks_registry import TASKS

logger = logging.getLogger("run_tasks_manually")


async def main(task_names):
    """
    Runs the selected tasks one after another.
    """
    print("--- Manual Task Runner ---")
    total = len(task_names)
    for index, name in enumerate(task_names, start=1):
        task = TASKS[name]
        print(f"\n[{index}/{total}] Running: {name}...")
        if task["is_async"]:
            result = await task["function"]()
        else:
            # Sync tasks run in a worker thread so the event loop stays free
            result = await asyncio.to_thread(task["function"])
        if result is not None:
            print(result.model_dump_json(indent=2) if hasattr(result, "model_dump_json") else result)
        print("Done.")
    print("\n--- All tasks completed! ---")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run scheduled jobs by hand.")
    parser.add_argument("tasks", nargs="*", help=f"Task names (default: all). Available: {', '.join(TASKS)}")
    args = parser.parse_args()
    unknown = [name for name in args.tasks if name not in TASKS]
    if unknown:
        parser.error(f"Unknown task(s): {', '.join(unknown)}")

    setup_logging()

    try:
        asyncio.run(main(args.tasks or list(TASKS.keys())))
    except KeyboardInterrupt:
        print("\nScript interrupted by user.")
