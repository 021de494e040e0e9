# debug_orchestrator.py
import asyncio
import json

from routegen.config import Settings
from routegen.history import InMemoryHistoryStore
from routegen.orchestrator import build_route


async def main():
    payload = {
        # Place names are resolved through Google Places before the build.
        "start": "Copenhagen Central Station",
        "end": "Roskilde Cathedral",
        "stop_count": 3,
        "preference_text": "quiet cafes, old churches and a walk by the water before dinner",
    }
    history = InMemoryHistoryStore({"debug-user": [6, 4, 7, 8, 6, 7, 3, 5]})

    result = await build_route(
        payload,
        settings=Settings.from_env(),
        history_store=history,
        user_id="debug-user",
    )
    print("➡️ Route builder returned:\n")
    print(
        json.dumps(
            {
                "chosen": {k: v.model_dump() for k, v in result.chosen_waypoints.items()},
                "iterations": result.iterations,
                "aborted": result.aborted,
                "locations": result.locations(),
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    asyncio.run(main())
