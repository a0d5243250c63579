#!/usr/bin/env python3
"""
Deliberation Engine - Basic Usage Example

Simple example showing how to run a deliberation programmatically.
"""

import asyncio


async def main():
    from deliberation import DeliberationCouncil, load_config

    config = load_config("config.yaml")
    council = await DeliberationCouncil.from_config(config)

    participants = config["council"]["participants"]
    question = "What are the three laws of robotics?"

    print(f"Question: {question}")
    print(f"Participants: {', '.join(participants)}\n")

    estimate = council.estimate(question, participants)
    print(f"Estimated cost: ${estimate.estimated:.4f}\n")

    session = await council.deliberate(question, participants)
    status = session.status_view()

    print("=" * 60)
    if session.result:
        print(f"FINAL ANSWER (chairman: {session.result.chairman_model_id}):")
        print("=" * 60)
        print(session.result.final_answer)
        print()
        for model_id, share in session.result.normalized_weights.items():
            print(f"  {model_id}: {share:.1%}")
    else:
        print(f"FAILED: {status['failureReason']} {status.get('message', '')}")
    print("=" * 60)

    await council.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
