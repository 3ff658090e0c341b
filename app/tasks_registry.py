# app/tasks_registry.py

from app.core.redis import redis_client
from app.dependencies import get_db_context
from app.services import abandoned_cart, announcement

# --- Wrappers that open their own DB session for each run ---
# Used by the admin "run task" endpoint and scripts/run_tasks_manually.py.

async def run_abandoned_cart_sweep():
    with get_db_context() as db:
        return await abandoned_cart.run_abandoned_cart_sweep(db, redis_client)

async def run_announcement_sweep():
    with get_db_context() as db:
        return await announcement.run_announcement_sweep(db, redis_client)


# --- Registry of every task that can be triggered by hand ---
# Key: task name used by the API and the CLI.
# 'function': the callable.
# 'description': shown in the admin task list.
# 'is_async': whether the callable must be awaited.

TASKS = {
    "abandoned_carts": {
        "function": run_abandoned_cart_sweep,
        "description": "Promotes and expires carts, then sends the due abandoned-cart recovery emails.",
        "is_async": True,
    },
    "announcement_emails": {
        "function": run_announcement_sweep,
        "description": "Sends the due pre-launch announcement emails (hype, tickets live, final reminder).",
        "is_async": True,
    },
}

def get_tasks_list():
    return [
        {"task_name": name, "description": data["description"]}
        for name, data in TASKS.items()
    ]
