"""
Local multi-client simulation.

Runs N bot players as independent GameClients against one in-memory store and
drives a full game to completion. A stalled player (--stall) never acts; its
own deadline driver submits for it, which is how a real game survives a
player who walks away.

    python simulate.py --players 4 --frames 3 --stall 2
"""
import argparse
import asyncio
import json
import logging
import random
from typing import List, Optional

from models.errors import GameActionError
from models.game import GameReplay, GameStatus, SubmissionPhase
from services.game_records import GameRecords
from services.memory_store import InMemoryStore
from agents.chain_reconstructor import ChainReconstructor
from agents.game_client import GameClient
from agents.lobby import Lobby
from agents.phase_coordinator import PhaseCoordinator

logger = logging.getLogger(__name__)


def _scribble(rng: random.Random, points: int = 6) -> str:
    """A fake stroke list in the drawing surface's serialised format."""
    stroke = {
        "color": rng.choice(["#000000", "#e63946", "#457b9d"]),
        "width": rng.choice([2, 4, 8]),
        "points": [[rng.randint(0, 400), rng.randint(0, 300)] for _ in range(points)],
    }
    return json.dumps([stroke])


async def _play(client: GameClient, name: str, frames: int, rng: random.Random, pace: float) -> None:
    """Act once per (status, round) until the game completes."""
    handled = set()
    while True:
        game = client.game
        if game is not None and game.status == GameStatus.COMPLETE:
            return
        if game is not None and game.status in (GameStatus.PROMPT, GameStatus.DRAWING):
            key = (game.status, game.current_round)
            if key not in handled:
                handled.add(key)
                try:
                    task = await client.task()
                    await asyncio.sleep(rng.uniform(0, pace))
                    if task.action == "write_prompt":
                        seen = len([f for f in task.reference_frames if f.has_content])
                        text = f"{name}'s idea for round {task.round_number}"
                        if task.round_number > 1:
                            text += f" (after {seen} frames)"
                        await client.submit_prompt(text)
                    elif task.action == "draw":
                        for n in range(frames):
                            await client.save_frame(n, _scribble(rng))
                        await client.submit_drawing()
                except GameActionError as exc:
                    logger.info(f"{name}: {exc.message}")
        await asyncio.sleep(pace)


async def run_simulation(
    players: int = 4,
    frames: int = 3,
    stall: Optional[int] = None,
    prompt_seconds: float = 2.0,
    drawing_seconds: float = 3.0,
    poll_interval: float = 0.1,
    latency: float = 0.0,
    seed: Optional[int] = None,
    change_feed: bool = True,
) -> GameReplay:
    rng = random.Random(seed)
    records = GameRecords(InMemoryStore(latency=latency, change_feed=change_feed))
    lobby = Lobby(records, rng=rng, base_delay=0.0)

    game, host = await lobby.create_game("Bot 1", frames)
    player_ids = [host.id]
    for i in range(2, players + 1):
        _, player = await lobby.join_game(game.room_code, f"Bot {i}")
        player_ids.append(player.id)
    await lobby.start_game(game.id, host.id)

    durations = {SubmissionPhase.PROMPT: prompt_seconds, SubmissionPhase.DRAWING: drawing_seconds}
    clients: List[GameClient] = [
        GameClient(
            records, game.id, pid,
            poll_interval=poll_interval,
            durations=durations,
            coordinator=PhaseCoordinator(records, base_delay=poll_interval / 2),
            deadline_tick=min(0.1, poll_interval),
        )
        for pid in player_ids
    ]
    for client in clients:
        await client.start()

    bots = [
        asyncio.create_task(_play(client, f"Bot {i + 1}", frames, rng, poll_interval))
        for i, client in enumerate(clients)
        if i != stall
    ]
    timeout = players * (prompt_seconds + drawing_seconds) * 2 + 10
    try:
        await clients[0].wait_for_status(GameStatus.COMPLETE, timeout=timeout)
    finally:
        for bot in bots:
            bot.cancel()
        await asyncio.gather(*bots, return_exceptions=True)
        for client in clients:
            await client.stop()

    replay = await ChainReconstructor(records).load(game.id)
    return replay


def print_replay(replay: GameReplay) -> None:
    print(f"Room '{replay.game.room_code}': {len(replay.players)} players, "
          f"{replay.game.total_rounds} rounds\n")
    for chain in replay.chains:
        print(f"Chain of {chain.origin.nickname}:")
        for step in chain.steps:
            text = step.prompt.text if step.prompt and step.prompt.text else "(no prompt)"
            drawn = len([f for f in step.animation_frames if f.has_content])
            print(f"  round {step.round}: \"{text}\" by {step.prompt_author.nickname}"
                  f" → {drawn} frames by {step.animation_author.nickname}")
        print()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Simulate a full game with bot players")
    parser.add_argument("--players", type=int, default=4)
    parser.add_argument("--frames", type=int, default=3, choices=[3, 5, 8])
    parser.add_argument("--stall", type=int, default=None,
                        help="0-based index of a player who never acts")
    parser.add_argument("--prompt-seconds", type=float, default=2.0)
    parser.add_argument("--drawing-seconds", type=float, default=3.0)
    parser.add_argument("--latency", type=float, default=0.0,
                        help="simulated store latency per call, in seconds")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--no-change-feed", action="store_true",
                        help="clients coordinate by polling alone")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    replay = asyncio.run(run_simulation(
        players=args.players,
        frames=args.frames,
        stall=args.stall,
        prompt_seconds=args.prompt_seconds,
        drawing_seconds=args.drawing_seconds,
        latency=args.latency,
        seed=args.seed,
        change_feed=not args.no_change_feed,
    ))
    print_replay(replay)


if __name__ == "__main__":
    main()
