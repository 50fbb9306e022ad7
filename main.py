"""How It Lands

Simple CLI for running one line past the audience perspectives.
"""

import argparse
import asyncio
import json

from app.api.deps import create_session
from app.services.analysis_store import close_store, get_store


async def run_analysis(line_text: str, show_json: bool = False):
    """Analyze one line and print the event stream."""
    print(f"Line: {line_text}")
    print("-" * 50)

    store = get_store()
    await store.ensure_schema()
    session = create_session(line_text, store)

    try:
        async for event in session.stream():
            event_type = event.event.value
            data = event.data

            if show_json:
                print(event.format(), end="")
                continue

            if event_type == "start":
                print(f"[*] Analysis {data.get('analysis_id')} started")

            elif event_type == "progress":
                print(f"  [~] {data.get('message')}")

            elif event_type == "result-primary":
                latest = data.get("primary", [])[-1:]
                for record in latest:
                    print(f"\n[+] {record.get('agent_mode')}: {record.get('feedback_text')}")
                    print(
                        f"    relatability={record.get('relatability')} "
                        f"laugh={record.get('laugh_potential')} "
                        f"energy={record.get('crowd_energy')}"
                    )

            elif event_type == "result-synthesis":
                synthesis = data.get("synthesis", {})
                print(f"\n{'='*50}")
                print("REVIEW:")
                print(f"{'='*50}")
                print(json.dumps(synthesis, indent=2))

            elif event_type == "error":
                print(f"\n[!] Error: {data.get('message', 'Unknown error')}")

            elif event_type == "done":
                print(f"\n[*] Done: {data.get('analysis_id')}")
    finally:
        await close_store()


def main():
    parser = argparse.ArgumentParser(description="How It Lands line analyzer")
    parser.add_argument("--line", "-l", required=True, help="Standup line to analyze")
    parser.add_argument("--json", action="store_true", help="Print raw SSE frames")

    args = parser.parse_args()

    asyncio.run(run_analysis(args.line, args.json))


if __name__ == "__main__":
    main()
