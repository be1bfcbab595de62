"""Check that the configured Claude model answers, and optionally list available models.

    python scripts/probe_claude.py [--list]
"""
import os
import sys

import anthropic
from dotenv import load_dotenv

# Load from .env if it exists
load_dotenv()


def list_models(client: anthropic.Anthropic):
    print("Models available:")
    for model in client.models.list().data:
        print(f"  - {model.id} (Created: {model.created_at})")


def main() -> int:
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        print("ANTHROPIC_API_KEY not found in environment.")
        return 1

    from brain.study_brain import StudyBrain

    client = anthropic.Anthropic(api_key=api_key)
    brain = StudyBrain(client=client)

    if "--list" in sys.argv[1:]:
        try:
            list_models(client)
        except anthropic.APIError as e:
            print(f"  FAILED to list models: {type(e).__name__}: {e}")

    print(f"Probing model: {brain.model}...")
    status = brain.check_availability(force=True)
    if status["available"]:
        print(f"  SUCCESS: {brain.model}")
        return 0
    print(f"  FAILED: {status.get('error')}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
