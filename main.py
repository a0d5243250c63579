#!/usr/bin/env python3
"""
Deliberation Engine - CLI Interface
"""

import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

import typer
from loguru import logger

from deliberation import DeliberationCouncil, load_config
from deliberation.config import default_participants
from deliberation.costs import estimate_session_cost
from deliberation.errors import BudgetExceeded, InvalidDeliberationRequest

app = typer.Typer(
    name="llm-deliberate",
    help="Multi-model deliberation: collect, blind peer review, Borda ranking, chairman synthesis",
    add_completion=False,
)

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(config: Dict[str, Any], verbose: bool = False):
    """Configure loguru sinks from the ``logging`` section."""
    log_cfg = config.get("logging", {})
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level="DEBUG" if verbose else log_cfg.get("level", "INFO"))
    if log_cfg.get("file"):
        logger.add(log_cfg["file"], level="DEBUG", rotation="10 MB", retention=5)


def _participants(config: Dict[str, Any], models: Optional[str]) -> List[str]:
    if models:
        return [m.strip() for m in models.split(",") if m.strip()]
    return default_participants(config)


def print_session(status: Dict[str, Any], audit: Optional[Dict[str, Any]] = None):
    print("\n" + "=" * 60)
    print(f"📜 SESSION {status['sessionId']} - {status['state']}")
    print("=" * 60)

    if audit and audit.get("aggregate"):
        print("\n🗳️  Consensus ranking:")
        for i, scored in enumerate(audit["aggregate"]["scored_models"], 1):
            flag = "  (ranked itself first)" if scored["self_preference_flag"] else ""
            print(f"  {i}. {scored['model_id']}: {scored['borda_score']} pts{flag}")

    if "result" in status:
        result = status["result"]
        print(f"\n🏛️  Chairman: {result['chairmanModelId']}\n")
        print(result["finalAnswer"])
    else:
        print(f"\n❌ {status.get('failureReason')}: {status.get('message', '')}")
    print("=" * 60 + "\n")


@app.command()
def run(
    question: str = typer.Argument(..., help="Question to deliberate"),
    models: Optional[str] = typer.Option(None, "--models", "-m", help="Comma-separated participant model ids"),
    chairman: Optional[str] = typer.Option(None, "--chairman", "-c", help="Designated chairman model id"),
    config_path: str = typer.Option("config.yaml", "--config", help="Path to config.yaml"),
    as_json: bool = typer.Option(False, "--json", help="Print the status as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run one deliberation and print the ranking and final answer."""
    config = load_config(config_path)
    setup_logging(config, verbose)
    participants = _participants(config, models)

    async def _run():
        council = await DeliberationCouncil.from_config(config)
        try:
            session, members = council.create_session(question, participants, chairman)
            audit = await council.run(session, members)
            return session.status_view(), audit
        finally:
            await council.shutdown()

    try:
        status, audit = asyncio.run(_run())
    except (InvalidDeliberationRequest, BudgetExceeded) as e:
        logger.error(str(e))
        raise typer.Exit(code=2)

    if as_json:
        print(json.dumps(status, indent=2))
    else:
        print_session(status, audit)
    if status["state"] != "COMPLETE":
        raise typer.Exit(code=1)


@app.command()
def estimate(
    question: str = typer.Argument(..., help="Question to price"),
    models: Optional[str] = typer.Option(None, "--models", "-m", help="Comma-separated participant model ids"),
    chairman: Optional[str] = typer.Option(None, "--chairman", "-c"),
    config_path: str = typer.Option("config.yaml", "--config"),
):
    """Estimate the cost of a deliberation without calling any model."""
    config = load_config(config_path)
    setup_logging(config)
    participants = _participants(config, models)
    chairman = chairman or config.get("council", {}).get("chairman")

    cost = estimate_session_cost(question, participants, chairman)
    print(f"\n💰 Estimated cost: ${cost.estimated:.4f}")
    for item, amount in cost.breakdown.items():
        print(f"  {item}: ${amount:.6f}")
    limit = config.get("budget", {}).get("per_session", 2.00)
    print(f"\nPer-session limit: ${limit:.2f}")


@app.command()
def check(config_path: str = typer.Option("config.yaml", "--config")):
    """Show configuration and backend health."""
    config = load_config(config_path)
    setup_logging(config)

    async def _check():
        council = await DeliberationCouncil.from_config(config)
        try:
            health = await council.model_manager.backend_manager.health_check_all()
            models = council.model_manager.backend_manager.list_all_models()
            return health, models
        finally:
            await council.shutdown()

    health, models = asyncio.run(_check())
    print("\n📊 Backends:")
    if not health:
        print("  (none connected)")
    for name, ok in health.items():
        print(f"  {'✅' if ok else '❌'} {name}: {len(models.get(name, []))} models")

    participants = default_participants(config)
    print(f"\nDefault participants: {', '.join(participants) or '(none)'}")
    print(f"Chairman: {config.get('council', {}).get('chairman') or 'top-ranked model'}")
    if not all(health.values()) or not health:
        raise typer.Exit(code=1)


@app.command()
def serve(
    config_path: str = typer.Option("config.yaml", "--config"),
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from deliberation.api import create_app

    config = load_config(config_path)
    setup_logging(config)
    server_cfg = config.get("server", {})

    async def _serve():
        council = await DeliberationCouncil.from_config(config)
        api = create_app(council)
        server = uvicorn.Server(uvicorn.Config(
            api,
            host=host or server_cfg.get("host", "127.0.0.1"),
            port=port or server_cfg.get("port", 8000),
            log_level="info"
        ))
        await server.serve()

    asyncio.run(_serve())


if __name__ == "__main__":
    app()
