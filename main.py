"""
HabitFlow Reminders — Entry Point.

`python main.py` starts the Telegram bot, which hosts the minute scheduler.
`python main.py --once` runs a single reminder check and exits.
"""

import argparse
import asyncio
import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def run_once() -> None:
    from habitflow.adapters.factory import create_scheduler
    from habitflow.bot.telegram_bot import format_tick_summary

    result = asyncio.run(create_scheduler().run_tick())
    print(format_tick_summary(result))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="HabitFlow task and habit reminders")
    parser.add_argument("--once", action="store_true", help="run one reminder check and exit")
    args = parser.parse_args()

    if args.once:
        run_once()
    else:
        from habitflow.bot.telegram_bot import main

        main()
