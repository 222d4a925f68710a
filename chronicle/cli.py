"""
Chronicle CLI - Command-line interface for the engine.

Usage:
    chronicle serve [--host H] [--port P]      Run the REST/WebSocket API
    chronicle play [--save ID]                 Play in the terminal
    chronicle saves                            List saved games
    chronicle bonus <value>                    Stat bonus for an attribute value
    chronicle damage <base> <level> [--stat N] Weapon damage for a skill level
    chronicle price <value> <cha>              Buy and sell prices at a charisma

Settings come from CHRONICLE_* environment variables.
"""

import argparse
import asyncio
import sys

from .config import Settings, configure_logging


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Chronicle - Narrative RPG Engine",
        prog="chronicle",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    # Play command
    play_parser = subparsers.add_parser("play", help="Play in the terminal")
    play_parser.add_argument("--save", help="Save id to continue (or create)")

    # Saves command
    subparsers.add_parser("saves", help="List saved games")

    # Rule calculators
    bonus_parser = subparsers.add_parser("bonus", help="Stat bonus for an attribute value")
    bonus_parser.add_argument("value", type=int)

    damage_parser = subparsers.add_parser("damage", help="Weapon damage for a skill level")
    damage_parser.add_argument("base", type=int, help="Weapon base damage")
    damage_parser.add_argument("level", type=int, help="Skill level")
    damage_parser.add_argument("--stat", type=int, default=8, help="Attacking attribute (STR/DEX/WIS)")

    price_parser = subparsers.add_parser("price", help="Buy and sell prices at a charisma")
    price_parser.add_argument("value", type=int, help="Item base value")
    price_parser.add_argument("cha", type=int, help="Charisma")

    args = parser.parse_args()

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "play":
        cmd_play(args)
    elif args.command == "saves":
        cmd_saves(args)
    elif args.command == "bonus":
        cmd_bonus(args)
    elif args.command == "damage":
        cmd_damage(args)
    elif args.command == "price":
        cmd_price(args)
    else:
        parser.print_help()
        sys.exit(1)


def cmd_serve(args):
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "chronicle.api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


def cmd_saves(args):
    """List saved games."""
    from .errors import PersistenceError
    from .storage import FileStore

    settings = Settings.from_env()
    try:
        saves = FileStore(settings.data_dir).list()
    except PersistenceError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    if not saves:
        print(f"No saves in {settings.data_dir}")
        return
    for save in saves:
        print(f"{save.save_id}  {save.character_name or '-':<20} {save.mode:<20} {save.story_length} segments")


def cmd_bonus(args):
    from .engine_core.rules import stat_bonus

    print(f"Stat {args.value}: +{stat_bonus(args.value)}")


def cmd_damage(args):
    from .engine_core.rules import ability_modifier, skill_damage_multiplier, weapon_damage

    scaled = weapon_damage(args.base, args.level)
    modifier = ability_modifier(args.stat)
    print(f"Multiplier at level {args.level}: x{skill_damage_multiplier(args.level):g}")
    print(f"Weapon damage: {scaled}")
    print(f"With ability modifier {modifier:+d}: {max(0, scaled + modifier)}")


def cmd_price(args):
    from .engine_core.rules import buy_percent, buy_price, sell_percent, sell_price

    print(f"Buy:  {buy_price(args.value, args.cha)} gold ({buy_percent(args.cha)}%)")
    print(f"Sell: {sell_price(args.value, args.cha)} gold ({sell_percent(args.cha)}%)")


# =============================================================================
# Terminal play
# =============================================================================

def _print_state(state) -> None:
    character = state.character
    if state.story_log:
        print()
        print(state.story_log[-1].text)
    if character is not None:
        print(f"\n[{character.name}] HP {character.hp}/{character.max_hp}  XP {character.xp}  "
              f"Gold {character.gold}  Points {character.skill_points}  ({state.mode.value})")
    if state.combat is not None:
        for enemy in state.combat.enemies:
            print(f"  {enemy.enemy_id}: {enemy.name} {enemy.hp}/{enemy.max_hp}")
    if state.transaction is not None:
        for item in state.transaction.vendor.inventory:
            print(f"  for sale: {item.name} ({item.value} gold)")
    for index, action in enumerate(state.current_actions, 1):
        print(f"  {index}. {action}")


def _ask_skills(draft) -> dict[str, int]:
    print(f"\nYou have {draft.starting_skill_points} skill points.")
    for pool, skills in draft.skill_pools.items():
        print(f"  {pool}: {', '.join(skill.name for skill in skills)}")
    return _parse_levels(input("Skills as name=level, comma separated: "))


def _parse_levels(raw: str) -> dict[str, int]:
    chosen = {}
    for part in raw.split(","):
        if "=" in part:
            name, level = part.split("=", 1)
            chosen[name.strip()] = int(level)
    return chosen


async def _play(loop) -> None:
    from .engine_core.action import TransactionKind
    from .engine_core.state import GameMode

    if loop.mode == GameMode.INITIAL_LOAD:
        await loop.new_game()

    while True:
        state = loop.state
        mode = state.mode
        if mode == GameMode.CHARACTER_CREATION:
            name = input("Character name: ")
            result = await loop.create_character({"name": name})
        elif mode == GameMode.CHARACTER_CUSTOMIZE:
            result = await loop.finalize_character(_ask_skills(state.draft))
        elif mode == GameMode.LOOTING:
            print(f"\n{state.loot.text}")
            input("(enter to continue)")
            result = await loop.continue_from_loot()
        elif mode == GameMode.LEVEL_UP:
            print(f"Current skills: {state.character.skills}")
            raised = _parse_levels(input("Raise skills as name=level, comma separated: "))
            result = await loop.confirm_level_up({**state.character.skills, **raised})
        elif mode == GameMode.GAME_OVER:
            if input("Game over. Start again? [y/N] ").lower() != "y":
                return
            result = await loop.new_game()
        else:
            text = input("> ").strip()
            if text in ("quit", "exit"):
                return
            if text.isdigit() and 0 < int(text) <= len(state.current_actions):
                text = state.current_actions[int(text) - 1]
            if mode == GameMode.COMBAT:
                result = await loop.submit_combat_action(text)
            elif mode == GameMode.TRANSACTION:
                verb, _, item = text.partition(" ")
                kind = TransactionKind(verb) if verb in ("buy", "sell") else TransactionKind.EXIT
                result = await loop.perform_transaction(kind, item or None)
            elif mode == GameMode.GAMBLING:
                result = await loop.leave_gambling() if text == "leave" else await loop.place_wager(int(text or 0))
            elif text == "level up":
                result = await loop.enter_level_up()
            elif text == "gamble":
                result = await loop.enter_gambling()
            else:
                result = await loop.submit_action(text)

        if result.success:
            for change in result.state_changes:
                print(f"  * {change}")
            _print_state(loop.state)
        else:
            print(f"Error ({result.error_code.value}): {result.error}")


def cmd_play(args):
    """Play one adventure in the terminal."""
    from .errors import GameNotFound, PersistenceError
    from .oracle import HttpIllustrator, HttpOracle
    from .session import GameLoop
    from .storage import DebouncedSaver, FileStore

    settings = Settings.from_env()
    configure_logging(settings)
    if not settings.oracle_url:
        print("Error: set CHRONICLE_ORACLE_URL to the oracle proxy")
        sys.exit(1)

    base = settings.oracle_url.rstrip("/")
    oracle = HttpOracle(f"{base}/geminiProxy", settings.oracle_model, settings.oracle_api_key, settings.oracle_timeout)
    illustrator = HttpIllustrator(
        f"{base}/imagenProxy", settings.oracle_image_model, settings.oracle_api_key, settings.oracle_timeout
    )

    async def run():
        try:
            store = FileStore(settings.data_dir)
        except PersistenceError as e:
            print(f"Error: {e.message}")
            sys.exit(1)
        saver = DebouncedSaver(store, delay=settings.save_debounce_seconds)
        state = None
        if args.save:
            try:
                state = store.load(args.save)
            except GameNotFound:
                print(f"Starting new save {args.save}")
        loop = GameLoop(oracle, illustrator, state=state, saver=saver, save_id=args.save)
        _print_state(loop.state)
        try:
            await _play(loop)
        finally:
            await loop.drain()
            await saver.flush()

    try:
        asyncio.run(run())
    except (KeyboardInterrupt, EOFError):
        print()


if __name__ == "__main__":
    main()
